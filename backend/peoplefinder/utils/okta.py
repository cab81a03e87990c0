"""Okta directory membership lookups"""
import time
from typing import Any, Dict, NamedTuple, Optional

import requests

from peoplefinder.config import settings
from peoplefinder.utils.cache import TTLCache
from peoplefinder.utils.logger import logger


# Page size for the prefix search; the exact match is picked client side
SEARCH_LIMIT = 10


class DirectoryUnavailable(Exception):
    """Okta could not be queried (not configured, unreachable or erroring)"""


class DirectoryUser(NamedTuple):
    id: str
    email: str
    status: Optional[str] = None
    display_name: Optional[str] = None

    @classmethod
    def from_okta(cls, data: Dict[str, Any]) -> "DirectoryUser":
        profile = data.get("profile") or {}
        first, last = profile.get("firstName"), profile.get("lastName")
        display_name = profile.get("displayName") or " ".join(p for p in (first, last) if p) or None
        return cls(
            id=str(data.get("id", "")),
            email=(profile.get("email") or profile.get("login") or "").lower(),
            status=data.get("status"),
            display_name=display_name,
        )


class DirectoryLookup(NamedTuple):
    found: bool
    user: Optional[DirectoryUser] = None


class OktaDirectory:
    """
    Thin client over ``GET /api/v1/users``.

    Positive lookups are cached; misses are not, so a newly provisioned user
    gets in without waiting for the cache to expire.
    """

    def __init__(
        self,
        cache: TTLCache,
        org_url: Optional[str] = None,
        api_token: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.cache = cache
        self.org_url = (org_url if org_url is not None else settings.OKTA_ORG_URL or "").rstrip("/")
        self.api_token = api_token if api_token is not None else settings.OKTA_API_TOKEN
        self.max_retries = settings.OKTA_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = settings.OKTA_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.org_url and self.api_token)

    def _get(self, path: str, params: Dict[str, Any]) -> requests.Response:
        url = f"{self.org_url}{path}"
        headers = {
            "Authorization": f"SSWS {self.api_token}",
            "Accept": "application/json",
        }
        attempt = 0
        while True:
            try:
                response = self.session.get(
                    url, params=params, headers=headers, timeout=settings.HTTP_TIMEOUT_SECONDS
                )
            except requests.RequestException as exc:
                raise DirectoryUnavailable(f"Okta request failed: {exc}") from exc

            if response.status_code != 429 or attempt >= self.max_retries:
                return response

            delay = self.retry_delay * (2 ** attempt)
            logger.warning(f"Okta rate limited, retrying in {delay:.1f}s (attempt {attempt + 1})")
            time.sleep(delay)
            attempt += 1

    def find_user_by_email(self, email: str) -> Optional[DirectoryUser]:
        """
        Look a user up by email.

        Returns:
            The user whose profile email equals ``email`` (any case), or None.

        Raises:
            DirectoryUnavailable: missing config, transport error or non-2xx.
        """
        if not self.configured:
            raise DirectoryUnavailable("Okta is not configured")

        normalized = email.strip().lower()
        key = f"okta:user:{normalized}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        # ``q`` is a prefix search over names and email, so several users can come back
        response = self._get("/api/v1/users", {"q": normalized, "limit": SEARCH_LIMIT})
        if response.status_code >= 400:
            raise DirectoryUnavailable(f"Okta returned HTTP {response.status_code}")

        try:
            users = response.json()
        except ValueError as exc:
            raise DirectoryUnavailable("Okta returned invalid JSON") from exc

        if not isinstance(users, list):
            return None

        for data in users:
            if not isinstance(data, dict):
                continue
            user = DirectoryUser.from_okta(data)
            if user.email == normalized:
                self.cache.set(key, user)
                return user
        return None

    def ping(self) -> bool:
        """True if Okta answers an authenticated request"""
        if not self.configured:
            return False
        try:
            response = self._get("/api/v1/users", {"limit": 1})
        except DirectoryUnavailable:
            return False
        return response.status_code < 400


def authorize_directory_member(directory: OktaDirectory, email: str) -> DirectoryLookup:
    """Gate sign-in on the user being present in the directory.

    Raises:
        DirectoryUnavailable: propagated from the client.
    """
    user = directory.find_user_by_email(email)
    if user is None:
        logger.info("Sign-in attempt for user not in directory", extra={"email": email})
        return DirectoryLookup(found=False)
    return DirectoryLookup(found=True, user=user)
