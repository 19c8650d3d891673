from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Callable, Optional

from portal_auth.config import Settings
from portal_auth.database import Database
from portal_auth.services.audit import AuditLog
from portal_auth.services.auth import AuthOrchestrator
from portal_auth.services.dispatch import CodeDispatcher, CodeSender
from portal_auth.services.email import EmailSender
from portal_auth.services.passwords import PasswordHasher
from portal_auth.services.sessions import SessionStore, resolve_session_secret
from portal_auth.services.sms import TwilioSmsSender
from portal_auth.services.tokens import TokenIssuer, resolve_signing_secret
from portal_auth.services.users import UserStore
from portal_auth.services.verification import VerificationLedger

LOGGER = logging.getLogger(__name__)

_UNSET = object()


@dataclass
class AppContext:
    """Process-wide services, built once at startup and closed at shutdown."""

    settings: Settings
    database: Database
    users: UserStore
    ledger: VerificationLedger
    dispatcher: CodeDispatcher
    sessions: SessionStore
    tokens: TokenIssuer
    audit: AuditLog
    auth: AuthOrchestrator

    def close(self) -> None:
        self.database.dispose()


def _default_email_sender(settings: Settings, ttl_seconds: int) -> Optional[CodeSender]:
    if not settings.email_configured:
        LOGGER.warning("SendGrid API key not set. Email verification will not work.")
        return None
    return EmailSender(
        settings.sendgrid_api_key,
        settings.from_email,
        settings.app_name,
        ttl_seconds,
    )


def _default_sms_sender(settings: Settings, ttl_seconds: int) -> Optional[CodeSender]:
    if not settings.sms_configured:
        LOGGER.warning("Twilio credentials not set. SMS verification will not work.")
        return None
    return TwilioSmsSender(
        settings.twilio_account_sid,
        settings.twilio_auth_token,
        settings.twilio_phone_number,
        settings.app_name,
        ttl_seconds,
        default_country_code=settings.default_country_code,
    )


def build_context(
    settings: Settings,
    *,
    database: Database | None = None,
    email_sender=_UNSET,
    sms_sender=_UNSET,
    clock: Callable[[], datetime] | None = None,
) -> AppContext:
    """Wire every service from ``settings``.

    Senders and the ledger clock can be replaced, which is how tests run the
    full flow without reaching SendGrid or Twilio. Passing ``None`` for a
    sender disables that channel.
    """
    signing_secret = resolve_signing_secret(settings)
    database = database or Database(settings.database_url)

    ledger_options = {} if clock is None else {"clock": clock}
    ledger = VerificationLedger(
        database,
        ttl_minutes=settings.verification_code_ttl_minutes,
        **ledger_options,
    )
    if email_sender is _UNSET:
        email_sender = _default_email_sender(settings, ledger.ttl_seconds)
    if sms_sender is _UNSET:
        sms_sender = _default_sms_sender(settings, ledger.ttl_seconds)

    users = UserStore(database)
    dispatcher = CodeDispatcher(ledger, email_sender=email_sender, sms_sender=sms_sender)
    sessions = SessionStore(
        database, resolve_session_secret(settings), ttl_days=settings.session_ttl_days
    )
    tokens = TokenIssuer(
        signing_secret,
        algorithm=settings.jwt_algorithm,
        ttl_minutes=settings.access_token_expire_minutes,
    )
    audit = AuditLog(database)
    auth = AuthOrchestrator(
        users=users,
        hasher=PasswordHasher(rounds=settings.password_hash_rounds),
        ledger=ledger,
        dispatcher=dispatcher,
        sessions=sessions,
        tokens=tokens,
        audit=audit,
    )
    return AppContext(
        settings=settings,
        database=database,
        users=users,
        ledger=ledger,
        dispatcher=dispatcher,
        sessions=sessions,
        tokens=tokens,
        audit=audit,
        auth=auth,
    )
