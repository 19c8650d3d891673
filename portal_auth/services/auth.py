"""Authentication state machine.

A login moves ``ANONYMOUS`` -> ``CREDENTIAL_CHECKED`` and then either straight
to ``AUTHENTICATED`` or, for accounts with MFA enabled, to ``MFA_PENDING``.
Only ``AUTHENTICATED`` outcomes carry a session id and a bearer token; a
pending login is completed by :meth:`AuthOrchestrator.verify_mfa`. Any failed
check ends in ``REJECTED`` and is surfaced as an exception with a generic
message.
"""

from dataclasses import dataclass
from enum import Enum
import logging
import secrets

from portal_auth.schemas.users import RegisterRequest, UserResponse
from portal_auth.services.audit import AuditLog
from portal_auth.services.dispatch import CodeDispatcher, DispatchError
from portal_auth.services.passwords import PasswordHasher
from portal_auth.services.sessions import SessionStore
from portal_auth.services.tokens import TokenIssuer
from portal_auth.services.users import DuplicateIdentityError, UserStore
from portal_auth.services.verification import CodeRedemptionError, VerificationLedger

LOGGER = logging.getLogger(__name__)

__all__ = [
    "AuthOrchestrator",
    "AuthOutcome",
    "AuthState",
    "DuplicateIdentityError",
    "InvalidCredentialsError",
    "InvalidOrExpiredCodeError",
    "NoContactOnFileError",
    "RequestMeta",
]


class AuthState(str, Enum):
    ANONYMOUS = "anonymous"
    CREDENTIAL_CHECKED = "credential_checked"
    MFA_PENDING = "mfa_pending"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"


class InvalidCredentialsError(ValueError):
    pass


class InvalidOrExpiredCodeError(ValueError):
    pass


class NoContactOnFileError(ValueError):
    pass


@dataclass(frozen=True)
class RequestMeta:
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class AuthOutcome:
    state: AuthState
    user_id: int
    user: UserResponse | None = None
    token: str | None = None
    session_id: str | None = None
    mfa_channel: str | None = None


class AuthOrchestrator:
    def __init__(
        self,
        users: UserStore,
        hasher: PasswordHasher,
        ledger: VerificationLedger,
        dispatcher: CodeDispatcher,
        sessions: SessionStore,
        tokens: TokenIssuer,
        audit: AuditLog,
    ) -> None:
        self._users = users
        self._hasher = hasher
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._sessions = sessions
        self._tokens = tokens
        self._audit = audit
        # Checked against when the email is unknown, at the configured bcrypt cost.
        self._dummy_password_hash = hasher.hash(secrets.token_urlsafe(16))

    def register(
        self, payload: RegisterRequest, meta: RequestMeta
    ) -> tuple[UserResponse, str]:
        password_hash = self._hasher.hash(payload.password)
        user = self._users.create_user(payload, password_hash)

        self._dispatch_best_effort(user.id, "email", user.email)
        if user.phone_number:
            self._dispatch_best_effort(user.id, "sms", user.phone_number)

        token = self._tokens.issue_token(user)
        self._audit.append(
            user.id,
            "user_registered",
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            details={"method": "local"},
        )
        return user, token

    def login(
        self, email: str, password: str, meta: RequestMeta, mfa_channel: str = "email"
    ) -> AuthOutcome:
        credentials = self._users.get_credentials_by_email(email)
        if credentials is None:
            self._hasher.verify(self._dummy_password_hash, password)
            raise InvalidCredentialsError("Invalid credentials")
        if not self._hasher.verify(credentials.password_hash, password):
            raise InvalidCredentialsError("Invalid credentials")
        if not credentials.is_active:
            raise InvalidCredentialsError("Invalid credentials")

        if credentials.mfa_enabled:
            channel = self._start_mfa_challenge(credentials.user_id, mfa_channel)
            return AuthOutcome(
                state=AuthState.MFA_PENDING,
                user_id=credentials.user_id,
                mfa_channel=channel,
            )

        return self._complete_login(
            credentials.user_id, "login", meta, {"method": "local"}
        )

    def verify_mfa(
        self, user_id: int, code: str, channel: str, meta: RequestMeta
    ) -> AuthOutcome:
        self._require_active(user_id)
        try:
            self._ledger.redeem(user_id, code, channel, purpose="mfa")
        except CodeRedemptionError as exc:
            LOGGER.info(
                "MFA code rejected user_id=%s channel=%s reason=%s",
                user_id,
                channel,
                exc.reason.value,
            )
            raise InvalidOrExpiredCodeError("Invalid or expired verification code") from exc
        self._users.mark_channel_verified(user_id, channel)
        return self._complete_login(user_id, "mfa_verified", meta, {"type": channel})

    def logout(self, session_id: str | None, meta: RequestMeta) -> bool:
        if not session_id:
            return False
        user_id = self._sessions.get_user_id(session_id)
        if user_id is None:
            return False
        self._audit.append(
            user_id,
            "logout",
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        return self._sessions.revoke_session(session_id)

    def request_verification(self, user_id: int, channel: str) -> int:
        user = self._users.get_user(user_id)
        destination = None
        if user is not None:
            destination = user.email if channel == "email" else user.phone_number
        if not destination:
            raise NoContactOnFileError(
                "User email not found" if channel == "email" else "User phone number not found"
            )
        self._dispatcher.dispatch(user_id, channel, destination, purpose="verification")
        return self._ledger.ttl_seconds

    def confirm_contact(
        self, user_id: int, code: str, channel: str, meta: RequestMeta
    ) -> UserResponse:
        try:
            self._ledger.redeem(user_id, code, channel, purpose="verification")
        except CodeRedemptionError as exc:
            raise InvalidOrExpiredCodeError("Invalid or expired verification code") from exc
        user = self._users.mark_channel_verified(user_id, channel)
        self._audit.append(
            user_id,
            "email_verified" if channel == "email" else "phone_verified",
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        return user

    def set_mfa(self, user_id: int, enabled: bool, meta: RequestMeta) -> UserResponse:
        user = self._users.set_mfa_enabled(user_id, enabled)
        self._audit.append(
            user_id,
            "mfa_enabled" if enabled else "mfa_disabled",
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        return user

    def _start_mfa_challenge(self, user_id: int, requested_channel: str) -> str:
        user = self._users.get_user(user_id)
        channel = "email"
        destination = user.email if user else None
        if requested_channel == "sms" and user is not None and user.phone_number:
            channel, destination = "sms", user.phone_number
        if destination:
            self._dispatch_best_effort(user_id, channel, destination, purpose="mfa")
        return channel

    def _require_active(self, user_id: int) -> None:
        user = self._users.get_user(user_id)
        if user is None or not user.is_active:
            raise InvalidCredentialsError("Invalid credentials")

    def _complete_login(
        self, user_id: int, action: str, meta: RequestMeta, details: dict
    ) -> AuthOutcome:
        self._require_active(user_id)
        user = self._users.touch_last_login(user_id)
        self._audit.append(
            user_id,
            action,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            details=details,
        )
        session_id = self._sessions.create_session(
            user_id, ip_address=meta.ip_address, user_agent=meta.user_agent
        )
        return AuthOutcome(
            state=AuthState.AUTHENTICATED,
            user_id=user_id,
            user=user,
            token=self._tokens.issue_token(user),
            session_id=session_id,
        )

    def _dispatch_best_effort(
        self, user_id: int, channel: str, destination: str, purpose: str = "verification"
    ) -> None:
        try:
            self._dispatcher.dispatch(user_id, channel, destination, purpose=purpose)
        except DispatchError as exc:
            LOGGER.warning(
                "Failed to send %s %s code user_id=%s: %s",
                channel,
                purpose,
                user_id,
                exc,
            )
