from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SessionContext:
    """Identity of the acting user, built once per request and passed along."""

    user_id: Optional[int]
    role: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_organizer(self) -> bool:
        return self.role == 'organizer'

    @classmethod
    def from_user(cls, user) -> 'SessionContext':
        if user is None:
            return ANONYMOUS
        return cls(user_id=user.id, role=user.role, email=user.email)


ANONYMOUS = SessionContext(user_id=None)
