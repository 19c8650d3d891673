"""Authorization predicates over an authenticated principal.

Role and membership checks are plain predicates that compose with ``&``,
``|`` and ``~``; routers evaluate one composed predicate per endpoint
instead of re-fetching roles in each guard::

    premium = has_active_membership("gold") | has_role("admin")
    if not premium(principal):
        ...
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from portal_auth.database import as_utc
from portal_auth.schemas.users import UserResponse


@dataclass(frozen=True)
class Principal:
    user: UserResponse
    roles: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_user(cls, user: UserResponse) -> "Principal":
        return cls(user=user, roles=frozenset(user.roles))


class Predicate:
    def __init__(self, check: Callable[[Principal], bool], description: str) -> None:
        self._check = check
        self.description = description

    def __call__(self, principal: Principal) -> bool:
        return bool(self._check(principal))

    def __and__(self, other: "Predicate") -> "Predicate":
        return Predicate(
            lambda principal: self(principal) and other(principal),
            f"({self.description} and {other.description})",
        )

    def __or__(self, other: "Predicate") -> "Predicate":
        return Predicate(
            lambda principal: self(principal) or other(principal),
            f"({self.description} or {other.description})",
        )

    def __invert__(self) -> "Predicate":
        return Predicate(
            lambda principal: not self(principal), f"not {self.description}"
        )

    def __repr__(self) -> str:
        return f"Predicate({self.description})"


def has_role(role: str) -> Predicate:
    return Predicate(lambda principal: role in principal.roles, f"role {role}")


def has_active_membership(
    tier: str, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
) -> Predicate:
    def check(principal: Principal) -> bool:
        user = principal.user
        if user.membership_level != tier:
            return False
        expires = as_utc(user.membership_expires)
        return expires is None or expires > clock()

    return Predicate(check, f"active {tier} membership")


def is_user(user_id: int) -> Predicate:
    return Predicate(lambda principal: principal.user.id == user_id, f"user {user_id}")

