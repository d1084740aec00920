from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller identity extracted from a session JWT."""

    subject_id: str
    email: str | None = None
    roles: list[str] = field(default_factory=list)
    token: str | None = None

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles
