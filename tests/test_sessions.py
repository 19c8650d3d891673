from portal_auth.config import Settings
from portal_auth.services.sessions import SessionStore, resolve_session_secret


def test_session_lifecycle(database, make_user):
    store = SessionStore(database, "secret", ttl_days=7)
    user_id = make_user()

    session_id = store.create_session(user_id)
    assert store.get_user_id(session_id) == user_id
    assert store.ttl_seconds == 7 * 86400

    assert store.revoke_session(session_id) is True
    assert store.get_user_id(session_id) is None
    assert store.revoke_session(session_id) is False


def test_cookie_signature(database):
    store = SessionStore(database, "secret")
    other = SessionStore(database, "different-secret")

    cookie = store.sign("abc123")
    assert store.unsign(cookie) == "abc123"
    assert other.unsign(cookie) is None
    assert store.unsign("abc123.deadbeef") is None
    assert store.unsign("") is None
    assert store.unsign(None) is None


def test_missing_session_secret_falls_back_to_random():
    secret = resolve_session_secret(Settings(session_secret=""))
    assert len(secret) == 64
    assert resolve_session_secret(Settings(session_secret="configured")) == "configured"
