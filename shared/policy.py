"""
Authorization predicates.

All checks are pure functions over a verified Principal and an immutable
snapshot of the resource. A missing principal is always denied.
"""
from enum import Enum
from dataclasses import dataclass
from typing import Optional, Tuple


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    ADVERTISER = "advertiser"
    BUSINESS = "business"

    @classmethod
    def parse(cls, value) -> "Role":
        """Parse a role from untrusted input; raises ValueError on anything unknown."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Invalid role: {value!r}")
        return cls(value.strip().lower())


@dataclass(frozen=True)
class Principal:
    subject_id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass(frozen=True)
class RegistrationSnapshot:
    registration_id: int
    tournament_id: int
    captain_id: int
    status: str
    player_ids: Tuple[int, ...] = ()


def is_admin(principal: Optional[Principal]) -> bool:
    return principal is not None and principal.role == Role.ADMIN


def is_self(principal: Optional[Principal], user_id) -> bool:
    return principal is not None and user_id is not None and principal.subject_id == user_id


def is_owner_or_admin(principal: Optional[Principal], owner_id) -> bool:
    return is_admin(principal) or is_self(principal, owner_id)


def is_team_captain_or_admin(principal: Optional[Principal], registration: Optional[RegistrationSnapshot]) -> bool:
    if is_admin(principal):
        return True
    if registration is None:
        return False
    return is_self(principal, registration.captain_id)
