# app/services/session_state.py
"""
Session State — the single active identity, mirrored under SESSION_KEY.
Login overwrites the stored session; logout removes the key entirely.
"""

import hmac
from typing import Optional

from pydantic import ValidationError

from app.schemas.session import Role, UserSession
from app.services.storage import JSONRepository
from app.utils.logger import get_logger

logger = get_logger(__name__)


class SessionState:
    def __init__(self, repository: JSONRepository, credentials: dict):
        self.repository = repository
        self.credentials = credentials
        self._session: Optional[UserSession] = self._rehydrate()

    def _rehydrate(self) -> Optional[UserSession]:
        saved = self.repository.load()
        if saved is None:
            return None
        try:
            return UserSession.model_validate(saved)
        except ValidationError:
            logger.warning("Stored session is malformed — treating as logged out")
            self.repository.clear()
            return None

    @property
    def current(self) -> Optional[UserSession]:
        return self._session

    @property
    def role(self) -> Optional[Role]:
        return self._session.role if self._session else None

    def login(self, username: str, password: str) -> Optional[UserSession]:
        """Check the fixed credentials. Returns the new session, or None on failure."""
        entry = self.credentials.get(username)
        if not entry or not hmac.compare_digest(entry["password"].encode(), password.encode()):
            logger.warning(f"Failed login attempt for user '{username}'")
            return None
        self._session = UserSession(username=username, role=Role(entry["role"]))
        self.repository.save(self._session.model_dump(mode="json"))
        logger.info(f"User '{username}' logged in as {self._session.role.value}")
        return self._session

    def logout(self):
        if self._session:
            logger.info(f"User '{self._session.username}' logged out")
        self._session = None
        self.repository.clear()
