from datetime import datetime, timedelta, timezone
import hashlib
import hmac
import logging
import secrets

from sqlalchemy import delete, select, update

from portal_auth.config import Settings
from portal_auth.database import Database
from portal_auth.models.session import SessionEntry

LOGGER = logging.getLogger(__name__)


def resolve_session_secret(settings: Settings) -> str:
    if settings.session_secret:
        return settings.session_secret
    LOGGER.warning(
        "SESSION_SECRET not set. Using a per-process secret; sessions will not "
        "survive a restart."
    )
    return secrets.token_hex(32)


class SessionStore:
    def __init__(self, database: Database, secret: str, ttl_days: int = 7) -> None:
        self._database = database
        self._secret = secret.encode("utf-8")
        self._ttl = timedelta(days=ttl_days)

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    def create_session(
        self,
        user_id: int,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> str:
        now = datetime.now(timezone.utc)
        session_id = secrets.token_urlsafe(32)
        with self._database.session_scope() as session:
            session.execute(delete(SessionEntry).where(SessionEntry.expires_at <= now))
            session.add(
                SessionEntry(
                    session_id=session_id,
                    user_id=user_id,
                    ip_address=ip_address,
                    user_agent=user_agent[:512] if user_agent else None,
                    created_at=now,
                    expires_at=now + self._ttl,
                    revoked_at=None,
                )
            )
        return session_id

    def revoke_session(self, session_id: str) -> bool:
        now = datetime.now(timezone.utc)
        with self._database.session_scope() as session:
            result = session.execute(
                update(SessionEntry)
                .where(
                    SessionEntry.session_id == session_id,
                    SessionEntry.revoked_at.is_(None),
                )
                .values(revoked_at=now)
            )
            return result.rowcount > 0

    def get_user_id(self, session_id: str) -> int | None:
        now = datetime.now(timezone.utc)
        with self._database.session_scope() as session:
            entry = session.execute(
                select(SessionEntry).where(
                    SessionEntry.session_id == session_id,
                    SessionEntry.revoked_at.is_(None),
                    SessionEntry.expires_at > now,
                )
            ).scalar_one_or_none()
            if entry is None:
                return None
            return entry.user_id

    def sign(self, session_id: str) -> str:
        return f"{session_id}.{self._signature(session_id)}"

    def unsign(self, cookie_value: str | None) -> str | None:
        if not cookie_value:
            return None
        token, _, signature = cookie_value.rpartition(".")
        if not token or not hmac.compare_digest(signature, self._signature(token)):
            return None
        return token

    def _signature(self, token: str) -> str:
        return hmac.new(self._secret, token.encode("utf-8"), hashlib.sha256).hexdigest()
