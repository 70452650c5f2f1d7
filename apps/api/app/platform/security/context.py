from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class Role(StrEnum):
    ADMIN = "admin"
    GESTIONNAIRE = "gestionnaire"
    CONSEILLER = "conseiller"

    @classmethod
    def parse(cls, value: str | None) -> Role | None:
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass(slots=True)
class AuthContext:
    """Identity of the acting user, passed explicitly into every scope computation."""

    user_id: str
    role: Role | None = None
    team_id: str | None = None
    email: str | None = None
    correlation_id: str | None = None

    def __post_init__(self) -> None:
        if self.role is not None and not isinstance(self.role, Role):
            self.role = Role.parse(str(self.role))

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN
