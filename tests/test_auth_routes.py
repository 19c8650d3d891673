from http.client import RemoteDisconnected

import pytest

from portal_auth.services.passwords import PasswordHasher

from conftest import PASSWORD, login, register


def _enable_mfa(client, context, username):
    user_id = register(client, username).json()["user"]["id"]
    context.users.set_mfa_enabled(user_id, True)
    client.cookies.clear()
    return user_id


def test_register_then_login_without_mfa(client):
    response = register(client, "alice")

    assert response.status_code == 201
    body = response.json()
    assert body["token"]
    assert body["user"]["username"] == "alice"
    assert body["user"]["email"] == "alice@example.com"
    assert body["user"]["mfaEnabled"] is False
    assert body["user"]["roles"] == ["client"]
    assert "password" not in body["user"]
    assert "passwordHash" not in body["user"]

    response = login(client, "alice")

    assert response.status_code == 200
    body = response.json()
    assert body["token"]
    assert body["user"]["lastLoginAt"] is not None
    assert "requiresMfa" not in body
    assert client.get("/auth/me").status_code == 200


def test_register_dispatches_email_and_sms_codes(client, context, email_sender, sms_sender):
    response = register(client, "erin", phone_number="+1 555 555 0100")

    assert response.status_code == 201
    user_id = response.json()["user"]["id"]
    assert [to for to, _ in email_sender.sent] == ["erin@example.com"]
    assert [to for to, _ in sms_sender.sent] == ["+15555550100"]
    assert len(context.ledger.history(user_id)) == 2


def test_registration_survives_dispatch_failure(client, email_sender):
    email_sender.fail = True

    response = register(client, "frank")

    assert response.status_code == 201
    assert response.json()["user"]["isEmailVerified"] is False


TRANSPORT_ERRORS = [TimeoutError, ConnectionError, RemoteDisconnected]


@pytest.mark.parametrize("error_cls", TRANSPORT_ERRORS)
def test_registration_survives_provider_transport_errors(client, context, email_sender, error_cls):
    email_sender.error_cls = error_cls
    email_sender.fail = True

    response = register(client, "frank")

    assert response.status_code == 201
    user_id = response.json()["user"]["id"]
    assert len(context.ledger.history(user_id, "email")) == 1
    assert context.audit.count("user_registered") == 1


@pytest.mark.parametrize("error_cls", TRANSPORT_ERRORS)
def test_mfa_login_survives_provider_transport_errors(client, context, email_sender, error_cls):
    bob_id = _enable_mfa(client, context, "bob")
    email_sender.error_cls = error_cls
    email_sender.fail = True

    response = login(client, "bob")

    assert response.status_code == 200
    assert response.json()["requiresMfa"] is True
    assert response.json()["userId"] == bob_id
    assert client.get("/auth/me").status_code == 401


def test_duplicate_email_is_rejected_without_side_effects(client, context):
    assert register(client, "alice").status_code == 201

    response = client.post(
        "/auth/register",
        json={
            "username": "alice2",
            "email": "ALICE@example.com",
            "password": PASSWORD,
            "fullName": "Alice Again",
        },
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Username or email already exists"
    assert len(context.users.list_users()) == 1
    assert context.audit.count("user_registered") == 1


def test_duplicate_username_gets_the_same_generic_error(client):
    assert register(client, "alice").status_code == 201

    response = client.post(
        "/auth/register",
        json={
            "username": "alice",
            "email": "other@example.com",
            "password": PASSWORD,
            "fullName": "Other Alice",
        },
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Username or email already exists"


def test_bad_credentials_are_indistinguishable(client):
    register(client, "alice")
    client.cookies.clear()

    wrong_password = login(client, "alice", password="WrongPass1!")
    unknown_user = login(client, "nobody")

    assert wrong_password.status_code == unknown_user.status_code == 401
    assert wrong_password.json() == unknown_user.json() == {"detail": "Invalid credentials"}


def test_mfa_login_requires_code_before_session(client, context, email_sender):
    bob_id = _enable_mfa(client, context, "bob")
    email_sender.sent.clear()

    response = login(client, "bob")

    assert response.status_code == 200
    body = response.json()
    assert body["requiresMfa"] is True
    assert body["userId"] == bob_id
    assert body["channel"] == "email"
    assert "token" not in body
    assert client.get("/auth/me").status_code == 401

    code = email_sender.last_code("bob@example.com")
    wrong = "000000" if code != "000000" else "111111"
    response = client.post(
        "/auth/verify-mfa", json={"userId": bob_id, "code": wrong, "type": "email"}
    )
    assert response.status_code == 400
    assert client.get("/auth/me").status_code == 401

    response = client.post(
        "/auth/verify-mfa", json={"userId": bob_id, "code": code, "type": "email"}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["token"]
    assert body["user"]["isEmailVerified"] is True
    assert client.get("/auth/me").json()["id"] == bob_id
    assert context.audit.count("mfa_verified") == 1


def test_mfa_code_cannot_be_reused(client, context, email_sender):
    bob_id = _enable_mfa(client, context, "bob")
    login(client, "bob")
    code = email_sender.last_code("bob@example.com")
    payload = {"userId": bob_id, "code": code, "type": "email"}

    assert client.post("/auth/verify-mfa", json=payload).status_code == 200
    assert client.post("/auth/verify-mfa", json=payload).status_code == 400


def test_mfa_over_sms_when_phone_on_file(client, context, sms_sender):
    user_id = register(client, "gina", phone_number="5555550123").json()["user"]["id"]
    context.users.set_mfa_enabled(user_id, True)
    client.cookies.clear()

    response = login(client, "gina", mfaChannel="sms")

    assert response.json()["channel"] == "sms"
    code = sms_sender.last_code("5555550123")
    response = client.post(
        "/auth/verify-mfa", json={"userId": user_id, "code": code, "type": "sms"}
    )
    assert response.status_code == 200
    assert response.json()["user"]["isPhoneVerified"] is True


def test_registration_code_cannot_complete_an_mfa_login(client, context, email_sender):
    bob_id = _enable_mfa(client, context, "bob")
    registration_code = email_sender.last_code("bob@example.com")

    response = client.post(
        "/auth/verify-mfa",
        json={"userId": bob_id, "code": registration_code, "type": "email"},
    )

    assert response.status_code == 400


def test_deactivated_account_cannot_complete_mfa(client, context, email_sender):
    bob_id = _enable_mfa(client, context, "bob")
    login(client, "bob")
    code = email_sender.last_code("bob@example.com")
    context.users.set_active(bob_id, False)

    response = client.post(
        "/auth/verify-mfa", json={"userId": bob_id, "code": code, "type": "email"}
    )

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"
    assert client.get("/auth/me").status_code == 401
    assert context.audit.count("mfa_verified") == 0


def test_deactivated_account_loses_authenticated_routes(client, context):
    user_id = register(client, "alice").json()["user"]["id"]
    login(client, "alice")
    context.users.set_active(user_id, False)

    assert client.post("/auth/mfa", json={"enabled": True}).status_code == 401
    assert client.post("/auth/request-email-verification").status_code == 401
    assert client.post(
        "/auth/verify-contact", json={"code": "123456", "type": "email"}
    ).status_code == 401
    assert context.users.get_user(user_id).mfa_enabled is False


def test_unknown_email_checks_a_hash_at_the_configured_cost(client, monkeypatch):
    checked = []

    def recording_verify(self, hashed_password, password):
        checked.append(hashed_password)
        return False

    monkeypatch.setattr(PasswordHasher, "verify", recording_verify)

    response = login(client, "nobody")

    assert response.status_code == 401
    assert len(checked) == 1
    assert checked[0].startswith("$2b$04$")


def test_logout_is_idempotent(client, context):
    register(client, "alice")
    login(client, "alice")
    assert client.get("/auth/me").status_code == 200

    first = client.post("/auth/logout")
    second = client.post("/auth/logout")

    assert first.status_code == second.status_code == 200
    assert client.get("/auth/me").status_code == 401
    assert context.audit.count("logout") == 1


def test_bearer_token_authenticates(client):
    token = register(client, "alice").json()["token"]
    client.cookies.clear()

    response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json()["username"] == "alice"


def test_invalid_bearer_token_is_rejected(client):
    response = client.get("/auth/me", headers={"Authorization": "Bearer nope"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired token"


def test_me_requires_authentication(client):
    assert client.get("/auth/me").status_code == 401


def test_tampered_session_cookie_is_ignored(client, context):
    register(client, "alice")
    login(client, "alice")
    cookie_name = context.settings.session_cookie_name
    session_id = context.sessions.unsign(client.cookies.get(cookie_name))
    client.cookies.clear()
    client.cookies.set(cookie_name, f"{session_id}.forged")

    assert client.get("/auth/me").status_code == 401


def test_request_email_verification_and_confirm(client, context, email_sender):
    register(client, "alice")
    login(client, "alice")
    email_sender.sent.clear()

    response = client.post("/auth/request-email-verification")

    assert response.status_code == 200
    assert response.json() == {"message": "Verification email sent", "expiresInSeconds": 600}
    code = email_sender.last_code("alice@example.com")

    response = client.post("/auth/verify-contact", json={"code": code, "type": "email"})
    assert response.status_code == 200
    assert response.json()["isEmailVerified"] is True
    assert context.audit.count("email_verified") == 1


def test_request_sms_verification_without_phone(client):
    register(client, "alice")
    login(client, "alice")

    response = client.post("/auth/request-sms-verification")

    assert response.status_code == 400
    assert response.json()["detail"] == "User phone number not found"


def test_request_verification_surfaces_dispatch_failure(client, email_sender):
    register(client, "alice")
    login(client, "alice")
    email_sender.fail = True

    response = client.post("/auth/request-email-verification")

    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to send verification email"


def test_request_verification_requires_authentication(client):
    assert client.post("/auth/request-email-verification").status_code == 401


def test_toggle_mfa_is_audited(client, context):
    register(client, "alice")
    login(client, "alice")

    response = client.post("/auth/mfa", json={"enabled": True})

    assert response.status_code == 200
    assert response.json()["mfaEnabled"] is True
    assert context.audit.count("mfa_enabled") == 1


def test_validation_errors_return_400_with_field_details(client):
    response = client.post(
        "/auth/register",
        json={"username": "al", "email": "not-an-email", "password": "short", "fullName": "A"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "Validation failed"
    fields = {error["loc"][-1] for error in body["errors"]}
    assert {"username", "email", "password", "fullName"} <= fields


def test_routes_are_also_served_under_api_prefix(client):
    response = client.post(
        "/api/auth/register",
        json={
            "username": "henry",
            "email": "henry@example.com",
            "password": PASSWORD,
            "fullName": "Henry Example",
        },
    )

    assert response.status_code == 201
