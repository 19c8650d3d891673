"""One-time verification codes.

Codes are never deleted: every issued code stays in ``verification_codes`` as
part of the audit trail. Redemption always looks at the most recently issued
code for a (user, channel, purpose) triple and consumes it with a single
conditional UPDATE, so two concurrent redemptions of the same code cannot
both succeed.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
import hmac
import logging
import secrets
from typing import Callable

from sqlalchemy import select, update

from portal_auth.database import Database, as_utc
from portal_auth.models.verification import VerificationCodeEntry

LOGGER = logging.getLogger(__name__)

CODE_LENGTH = 6
CHANNELS = ("email", "sms")
PURPOSES = ("verification", "mfa")


class RedeemFailure(str, Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    MISMATCH = "mismatch"


class CodeRedemptionError(ValueError):
    def __init__(self, reason: RedeemFailure) -> None:
        super().__init__(f"Verification code rejected: {reason.value}")
        self.reason = reason


@dataclass(frozen=True)
class IssuedCode:
    id: int
    user_id: int
    channel: str
    purpose: str
    code: str
    expires_at: datetime
    created_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_channel(channel: str, purpose: str) -> None:
    if channel not in CHANNELS:
        raise ValueError(f"Unsupported verification channel: {channel}")
    if purpose not in PURPOSES:
        raise ValueError(f"Unsupported verification purpose: {purpose}")


class VerificationLedger:
    def __init__(
        self,
        database: Database,
        ttl_minutes: int = 10,
        code_length: int = CODE_LENGTH,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._database = database
        self._ttl = timedelta(minutes=ttl_minutes)
        self._code_length = code_length
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    def issue(
        self, user_id: int, channel: str, purpose: str = "verification"
    ) -> IssuedCode:
        _check_channel(channel, purpose)
        now = self._clock()
        entry = VerificationCodeEntry(
            user_id=user_id,
            channel=channel,
            purpose=purpose,
            code=self._generate_code(),
            expires_at=now + self._ttl,
            is_verified=False,
            created_at=now,
        )
        with self._database.session_scope() as session:
            session.add(entry)
            session.flush()
            issued = IssuedCode(
                id=entry.id,
                user_id=user_id,
                channel=channel,
                purpose=purpose,
                code=entry.code,
                expires_at=entry.expires_at,
                created_at=now,
            )
        LOGGER.info(
            "Issued %s code id=%s user_id=%s channel=%s",
            purpose,
            issued.id,
            user_id,
            channel,
        )
        return issued

    def redeem(
        self, user_id: int, code: str, channel: str, purpose: str = "verification"
    ) -> None:
        _check_channel(channel, purpose)
        now = self._clock()
        clean_code = code.strip()
        with self._database.session_scope() as session:
            entry = session.execute(
                select(VerificationCodeEntry)
                .where(
                    VerificationCodeEntry.user_id == user_id,
                    VerificationCodeEntry.channel == channel,
                    VerificationCodeEntry.purpose == purpose,
                )
                .order_by(
                    VerificationCodeEntry.created_at.desc(),
                    VerificationCodeEntry.id.desc(),
                )
                .limit(1)
            ).scalar_one_or_none()
            if entry is None:
                raise CodeRedemptionError(RedeemFailure.NOT_FOUND)
            if now > as_utc(entry.expires_at):
                raise CodeRedemptionError(RedeemFailure.EXPIRED)
            if entry.is_verified:
                raise CodeRedemptionError(RedeemFailure.ALREADY_USED)
            if not hmac.compare_digest(entry.code, clean_code):
                raise CodeRedemptionError(RedeemFailure.MISMATCH)
            consumed = session.execute(
                update(VerificationCodeEntry)
                .where(
                    VerificationCodeEntry.id == entry.id,
                    VerificationCodeEntry.is_verified.is_(False),
                )
                .values(is_verified=True)
            )
            if consumed.rowcount != 1:
                raise CodeRedemptionError(RedeemFailure.ALREADY_USED)

    def history(self, user_id: int, channel: str | None = None) -> list[IssuedCode]:
        stmt = select(VerificationCodeEntry).where(
            VerificationCodeEntry.user_id == user_id
        )
        if channel is not None:
            stmt = stmt.where(VerificationCodeEntry.channel == channel)
        stmt = stmt.order_by(VerificationCodeEntry.created_at, VerificationCodeEntry.id)
        with self._database.session_scope() as session:
            return [
                IssuedCode(
                    id=entry.id,
                    user_id=entry.user_id,
                    channel=entry.channel,
                    purpose=entry.purpose,
                    code=entry.code,
                    expires_at=as_utc(entry.expires_at),
                    created_at=as_utc(entry.created_at),
                )
                for entry in session.execute(stmt).scalars().all()
            ]

    def _generate_code(self) -> str:
        value = secrets.randbelow(10**self._code_length)
        return str(value).zfill(self._code_length)
