"""Admin login against a fixed credential pair.

A successful login is remembered in a key/value session store together with
its timestamp and expires after a fixed time-to-live.
"""

import logging
import secrets
from collections.abc import Callable, MutableMapping
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

AUTH_KEY = "admin_authenticated"
LOGIN_TIME_KEY = "admin_login_time"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdminAuth:
    """Checks admin credentials and tracks the remembered login."""

    def __init__(
        self,
        username: str,
        password: str,
        ttl: timedelta = timedelta(hours=24),
        session: MutableMapping[str, str] | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._username = username
        self._password = password
        self.ttl = ttl
        self.session = session if session is not None else {}
        self._now = now

    def check_credentials(self, username: str, password: str) -> bool:
        """Exact match against the configured pair."""
        user_ok = secrets.compare_digest(username.encode(), self._username.encode())
        pass_ok = secrets.compare_digest(password.encode(), self._password.encode())
        return user_ok and pass_ok

    def login(self, username: str, password: str) -> bool:
        if not self.check_credentials(username, password):
            logger.warning("Rejected admin login for %r", username)
            return False
        self.session[AUTH_KEY] = "true"
        self.session[LOGIN_TIME_KEY] = self._now().isoformat()
        logger.info("Admin logged in")
        return True

    def logout(self) -> None:
        self.session.pop(AUTH_KEY, None)
        self.session.pop(LOGIN_TIME_KEY, None)

    def expires_at(self) -> datetime | None:
        """When the remembered login lapses, or None if there is none."""
        if self.session.get(AUTH_KEY) != "true":
            return None
        raw = self.session.get(LOGIN_TIME_KEY)
        if not raw:
            return None
        try:
            login_time = datetime.fromisoformat(raw)
        except ValueError:
            return None
        return login_time + self.ttl

    def is_authenticated(self) -> bool:
        """True while a login is remembered; clears it once expired."""
        expires = self.expires_at()
        if expires is None:
            self.logout()
            return False
        if self._now() > expires:
            logger.info("Admin login expired")
            self.logout()
            return False
        return True
