"""
Session context: who is signed in and with which bearer credential.

Login, registration and persisting the session across restarts live
outside the sync engine; they call sign_in()/sign_out() here.
"""
import logging
from typing import Callable, List, Optional

from .schema import User

logger = logging.getLogger(__name__)


class Session:
    """Current user identity and credential, with change listeners."""

    def __init__(self, user: Optional[User] = None, token: Optional[str] = None):
        self.user = user
        self.token = token
        self._listeners: List[Callable[[Optional[User]], None]] = []

    @property
    def current_user_id(self) -> Optional[str]:
        return self.user.id if self.user else None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user and self.token)

    def subscribe(self, callback: Callable[[Optional[User]], None]) -> None:
        """Call callback(user) on every sign-in, user switch and sign-out."""
        self._listeners.append(callback)

    def sign_in(self, user: User, token: str) -> None:
        changed = self.current_user_id != user.id
        self.user = user
        self.token = token
        if changed:
            logger.info(f"Signed in as {user.id}")
            self._notify()

    def set_token(self, token: str) -> None:
        """Replace the credential (e.g. after a refresh) without a user change."""
        self.token = token

    def sign_out(self) -> None:
        if self.user is None and self.token is None:
            return
        logger.info(f"Signed out {self.current_user_id}")
        self.user = None
        self.token = None
        self._notify()

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback(self.user)
            except Exception as e:
                logger.error(f"Error in session listener: {e}")
