from datetime import datetime, timedelta, timezone
import logging
import secrets

import jwt

from portal_auth.config import ConfigurationError, Settings
from portal_auth.schemas.tokens import TokenIdentity
from portal_auth.schemas.users import UserResponse

LOGGER = logging.getLogger(__name__)

INVALID_TOKEN_MESSAGE = "Invalid or expired token"


class TokenError(ValueError):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_signing_secret(settings: Settings) -> str:
    if settings.jwt_secret:
        return settings.jwt_secret
    if settings.is_production:
        raise ConfigurationError("JWT_SECRET must be set in production")
    LOGGER.warning(
        "JWT_SECRET not set. Using a per-process secret; issued tokens will not "
        "survive a restart."
    )
    return secrets.token_urlsafe(48)


class TokenIssuer:
    def __init__(self, secret: str, algorithm: str = "HS256", ttl_minutes: int = 60) -> None:
        if not secret:
            raise ConfigurationError("Token signing secret is not configured")
        self._secret = secret
        self._algorithm = algorithm
        self._ttl = timedelta(minutes=ttl_minutes)

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    def issue_token(self, user: UserResponse, now: datetime | None = None) -> str:
        issued_at = now or _utcnow()
        payload = {
            "sub": str(user.id),
            "username": user.username,
            "email": user.email,
            "type": "access",
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self._ttl).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def authenticate(self, token: str) -> TokenIdentity:
        if not token:
            raise TokenError(INVALID_TOKEN_MESSAGE)
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["exp", "sub"]},
            )
        except jwt.InvalidTokenError as exc:
            # Expiry and bad signatures are reported identically.
            raise TokenError(INVALID_TOKEN_MESSAGE) from exc
        if payload.get("type") != "access":
            raise TokenError(INVALID_TOKEN_MESSAGE)
        try:
            user_id = int(payload["sub"])
        except (TypeError, ValueError) as exc:
            raise TokenError(INVALID_TOKEN_MESSAGE) from exc
        return TokenIdentity(
            id=user_id,
            username=payload.get("username", ""),
            email=payload.get("email", ""),
        )
