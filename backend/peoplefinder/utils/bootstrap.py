"""Seed-admin bootstrap"""
import threading
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from peoplefinder.models.admin import Admin
from peoplefinder.utils.auth import get_admin_by_email, normalize_email
from peoplefinder.utils.logger import logger

BOOTSTRAP_CREATOR = "bootstrap"


class AdminBootstrap:
    """
    Ensures the configured seed email exists in the admins table.

    ``ensure()`` does its work at most once per instance. Concurrent callers
    block on the lock until the first run finishes and then return its result.
    """

    def __init__(self, session_factory: Callable[[], Session], seed_email: Optional[str]):
        self.session_factory = session_factory
        self.seed_email = normalize_email(seed_email)
        self._lock = threading.Lock()
        self._done = False
        self._result: Optional[bool] = None

    @property
    def done(self) -> bool:
        return self._done

    def ensure(self) -> Optional[bool]:
        """
        Run the upsert once.

        Returns:
            True if a row was created, False if it already existed,
            None if skipped (no seed email) or the database errored.
        """
        with self._lock:
            if self._done:
                return self._result
            self._result = self._run()
            self._done = True
            return self._result

    def _run(self) -> Optional[bool]:
        if not self.seed_email:
            logger.info("INITIAL_ADMIN_EMAIL not set, skipping admin bootstrap")
            return None

        db = self.session_factory()
        try:
            if get_admin_by_email(db, self.seed_email) is not None:
                return False
            db.add(Admin(
                email=self.seed_email,
                username=self.seed_email.split("@")[0],
                created_by=BOOTSTRAP_CREATOR,
            ))
            db.commit()
            logger.info("Bootstrapped initial admin", extra={"email": self.seed_email})
            return True
        except SQLAlchemyError:
            db.rollback()
            logger.error("Admin bootstrap failed", extra={"email": self.seed_email}, exc_info=True)
            return None
        finally:
            db.close()
