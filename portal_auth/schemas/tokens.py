from dataclasses import dataclass


@dataclass(frozen=True)
class TokenIdentity:
    id: int
    username: str
    email: str
