from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from portal_auth.config import Settings
from portal_auth.context import build_context
from portal_auth.database import Database
from portal_auth.main import create_app
from portal_auth.schemas.users import RegisterRequest
from portal_auth.services.email import EmailSendError
from portal_auth.services.sms import SmsSendError
from portal_auth.services.users import UserStore

JWT_SECRET = "test-jwt-secret-0123456789abcdefghijklmnop"
PASSWORD = "Password1!"


class RecordingSender:
    def __init__(self, error_cls):
        self.error_cls = error_cls
        self.sent: list[tuple[str, str]] = []
        self.fail = False

    def send_code(self, recipient: str, code: str) -> None:
        if self.fail:
            raise self.error_cls("provider unavailable")
        self.sent.append((recipient, code))

    def last_code(self, recipient: str) -> str:
        codes = [code for sent_to, code in self.sent if sent_to == recipient]
        assert codes, f"no code sent to {recipient}"
        return codes[-1]


class FrozenClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        database_url="sqlite://",
        jwt_secret=JWT_SECRET,
        session_secret="test-session-secret",
        password_hash_rounds=4,
        log_level="WARNING",
    )


@pytest.fixture
def database(settings):
    db = Database(settings.database_url)
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def email_sender() -> RecordingSender:
    return RecordingSender(EmailSendError)


@pytest.fixture
def sms_sender() -> RecordingSender:
    return RecordingSender(SmsSendError)


@pytest.fixture
def context(settings, database, email_sender, sms_sender):
    return build_context(
        settings,
        database=database,
        email_sender=email_sender,
        sms_sender=sms_sender,
    )


@pytest.fixture
def client(context):
    app = create_app(context=context)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(database):
    store = UserStore(database)

    def _make(username: str = "carol", phone_number: str | None = None) -> int:
        payload = RegisterRequest(
            username=username,
            email=f"{username}@example.com",
            password=PASSWORD,
            full_name=username.title(),
            phone_number=phone_number,
        )
        return store.create_user(payload, "not-a-real-hash").id

    return _make


def register(client, username: str, password: str = PASSWORD, phone_number=None):
    body = {
        "username": username,
        "email": f"{username}@example.com",
        "password": password,
        "fullName": f"{username.title()} Example",
    }
    if phone_number:
        body["phoneNumber"] = phone_number
    return client.post("/auth/register", json=body)


def login(client, username: str, password: str = PASSWORD, **extra):
    return client.post(
        "/auth/login",
        json={"email": f"{username}@example.com", "password": password, **extra},
    )
