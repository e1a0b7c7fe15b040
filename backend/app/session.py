"""Signed-in user session handed to the pipeline engine.

A session is acquired when the user first opens the board and is
invalidated on sign-out; engines refuse to work with an invalidated one.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class SessionInvalidatedError(Exception):
    """Raised when a signed-out session is used."""


@dataclass
class UserSession:
    user_id: str
    email: Optional[str] = None
    profile: Dict[str, Any] = field(default_factory=dict)
    acquired_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    invalidated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.invalidated_at is None

    def invalidate(self) -> None:
        if self.invalidated_at is None:
            self.invalidated_at = datetime.now(timezone.utc)

    def require_active(self) -> None:
        if not self.is_active:
            raise SessionInvalidatedError(f"Session for user {self.user_id} was signed out")

    @classmethod
    def from_profile(cls, profile: Dict[str, Any]) -> "UserSession":
        return cls(
            user_id=str(profile["id"]),
            email=profile.get("email"),
            profile=dict(profile),
        )
