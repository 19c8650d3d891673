from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError

from portal_auth.database import Database, as_utc
from portal_auth.models.user import UserEntry, UserRoleEntry
from portal_auth.schemas.users import RegisterRequest, UserResponse

DEFAULT_ROLE = "client"
DUPLICATE_IDENTITY_MESSAGE = "Username or email already exists"


class DuplicateIdentityError(ValueError):
    pass


class UserNotFoundError(ValueError):
    pass


@dataclass(frozen=True)
class StoredCredentials:
    user_id: int
    password_hash: str
    mfa_enabled: bool
    is_active: bool


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserStore:
    def __init__(self, database: Database) -> None:
        self._database = database

    def create_user(self, payload: RegisterRequest, password_hash: str) -> UserResponse:
        now = _utcnow()
        email = _normalize_email(payload.email)
        try:
            with self._database.session_scope() as session:
                existing = session.execute(
                    select(UserEntry.id)
                    .where(
                        or_(
                            UserEntry.username == payload.username,
                            UserEntry.email == email,
                        )
                    )
                    .limit(1)
                ).first()
                if existing:
                    raise DuplicateIdentityError(DUPLICATE_IDENTITY_MESSAGE)

                entry = UserEntry(
                    username=payload.username,
                    email=email,
                    password_hash=password_hash,
                    full_name=payload.full_name,
                    phone_number=payload.phone_number,
                    is_email_verified=False,
                    is_phone_verified=False,
                    mfa_enabled=False,
                    is_active=True,
                    created_at=now,
                    updated_at=now,
                )
                session.add(entry)
                session.flush()
                session.add(
                    UserRoleEntry(user_id=entry.id, role=DEFAULT_ROLE, created_at=now)
                )
                session.flush()
                return self._to_response(entry, [DEFAULT_ROLE])
        except IntegrityError as exc:
            # Lost a race against a concurrent registration.
            raise DuplicateIdentityError(DUPLICATE_IDENTITY_MESSAGE) from exc

    def get_credentials_by_email(self, email: str) -> StoredCredentials | None:
        with self._database.session_scope() as session:
            entry = session.execute(
                select(UserEntry).where(UserEntry.email == _normalize_email(email))
            ).scalar_one_or_none()
            if entry is None:
                return None
            return StoredCredentials(
                user_id=entry.id,
                password_hash=entry.password_hash,
                mfa_enabled=bool(entry.mfa_enabled),
                is_active=bool(entry.is_active),
            )

    def get_user(self, user_id: int) -> UserResponse | None:
        with self._database.session_scope() as session:
            entry = session.get(UserEntry, user_id)
            if entry is None:
                return None
            return self._to_response(entry, self._roles(session, user_id))

    def list_users(self) -> list[UserResponse]:
        with self._database.session_scope() as session:
            entries = session.execute(select(UserEntry).order_by(UserEntry.id)).scalars().all()
            return [
                self._to_response(entry, self._roles(session, entry.id))
                for entry in entries
            ]

    def get_roles(self, user_id: int) -> list[str]:
        with self._database.session_scope() as session:
            return self._roles(session, user_id)

    def add_role(self, user_id: int, role: str) -> list[str]:
        with self._database.session_scope() as session:
            if session.get(UserEntry, user_id) is None:
                raise UserNotFoundError("User not found")
            roles = self._roles(session, user_id)
            if role not in roles:
                session.add(UserRoleEntry(user_id=user_id, role=role, created_at=_utcnow()))
                roles.append(role)
            return sorted(roles)

    def touch_last_login(self, user_id: int) -> UserResponse:
        now = _utcnow()
        return self._update(user_id, last_login_at=now, updated_at=now)

    def mark_channel_verified(self, user_id: int, channel: str) -> UserResponse:
        if channel == "email":
            return self._update(user_id, is_email_verified=True, updated_at=_utcnow())
        if channel == "sms":
            return self._update(user_id, is_phone_verified=True, updated_at=_utcnow())
        raise ValueError(f"Unsupported verification channel: {channel}")

    def set_mfa_enabled(self, user_id: int, enabled: bool) -> UserResponse:
        return self._update(user_id, mfa_enabled=enabled, updated_at=_utcnow())

    def set_active(self, user_id: int, active: bool) -> UserResponse:
        return self._update(user_id, is_active=active, updated_at=_utcnow())

    def set_membership(
        self, user_id: int, level: str | None, expires: datetime | None
    ) -> UserResponse:
        return self._update(
            user_id,
            membership_level=level,
            membership_expires=expires,
            updated_at=_utcnow(),
        )

    def _update(self, user_id: int, **values) -> UserResponse:
        with self._database.session_scope() as session:
            entry = session.get(UserEntry, user_id)
            if entry is None:
                raise UserNotFoundError("User not found")
            for field, value in values.items():
                setattr(entry, field, value)
            session.flush()
            return self._to_response(entry, self._roles(session, user_id))

    def _roles(self, session, user_id: int) -> list[str]:
        result = session.execute(
            select(UserRoleEntry.role)
            .where(UserRoleEntry.user_id == user_id)
            .order_by(UserRoleEntry.role)
        )
        return list(result.scalars().all())

    def _to_response(self, entry: UserEntry, roles: list[str]) -> UserResponse:
        return UserResponse(
            id=entry.id,
            username=entry.username,
            email=entry.email,
            full_name=entry.full_name,
            phone_number=entry.phone_number,
            is_email_verified=bool(entry.is_email_verified),
            is_phone_verified=bool(entry.is_phone_verified),
            mfa_enabled=bool(entry.mfa_enabled),
            is_active=bool(entry.is_active),
            membership_level=entry.membership_level,
            membership_expires=as_utc(entry.membership_expires),
            last_login_at=as_utc(entry.last_login_at),
            roles=roles,
            created_at=as_utc(entry.created_at),
        )
