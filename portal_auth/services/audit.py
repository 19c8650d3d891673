from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy import func, select

from portal_auth.database import Database
from portal_auth.models.audit import AuditLogEntry
from portal_auth.schemas.users import AuditLogResponse

LOGGER = logging.getLogger(__name__)


class AuditLog:
    """Append-only trail of security-relevant actions."""

    def __init__(self, database: Database) -> None:
        self._database = database

    def append(
        self,
        user_id: int | None,
        action: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> int:
        with self._database.session_scope() as session:
            entry = AuditLogEntry(
                user_id=user_id,
                action=action,
                ip_address=ip_address,
                user_agent=user_agent[:512] if user_agent else None,
                details=details,
                created_at=datetime.now(timezone.utc),
            )
            session.add(entry)
            session.flush()
            entry_id = entry.id
        LOGGER.info("Audit action=%s user_id=%s", action, user_id)
        return entry_id

    def list_for_user(self, user_id: int, limit: int = 50) -> list[AuditLogResponse]:
        with self._database.session_scope() as session:
            entries = session.execute(
                select(AuditLogEntry)
                .where(AuditLogEntry.user_id == user_id)
                .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
                .limit(limit)
            ).scalars().all()
            return [
                AuditLogResponse.model_validate(entry, from_attributes=True)
                for entry in entries
            ]

    def count(self, action: str | None = None) -> int:
        stmt = select(func.count(AuditLogEntry.id))
        if action is not None:
            stmt = stmt.where(AuditLogEntry.action == action)
        with self._database.session_scope() as session:
            return session.execute(stmt).scalar_one()
