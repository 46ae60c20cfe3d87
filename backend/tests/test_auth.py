from escala.core.config import settings
from escala.models.log import SecurityLog
from escala.models.user import User

from conftest import auth_headers


def login(client, email, password):
    return client.post("/api/login", data={"username": email, "password": password})


def test_login_returns_token_and_user(client, alice):
    response = login(client, "alice@example.com", "secret123")
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["email"] == "alice@example.com"
    assert body["user"]["allow_late_submission"] is False


def test_failed_login_reports_remaining_attempts(client, alice):
    response = login(client, "alice@example.com", "wrong")
    assert response.status_code == 401
    assert response.json()["detail"]["remaining_attempts"] == settings.MAX_FAILED_LOGIN_ATTEMPTS - 1

    response = login(client, "alice@example.com", "wrong")
    assert response.json()["detail"]["remaining_attempts"] == settings.MAX_FAILED_LOGIN_ATTEMPTS - 2


def test_fifth_failure_locks_account_even_for_correct_password(client, db, alice, admin):
    for _ in range(settings.MAX_FAILED_LOGIN_ATTEMPTS - 1):
        assert login(client, "alice@example.com", "wrong").status_code == 401

    response = login(client, "alice@example.com", "wrong")
    assert response.status_code == 423
    assert response.json()["detail"]["remaining_attempts"] == 0

    response = login(client, "alice@example.com", "secret123")
    assert response.status_code == 423

    db.expire_all()
    user = db.query(User).filter(User.email == "alice@example.com").one()
    assert user.active is False
    assert user.locked_at is not None
    events = {log.event_type for log in db.query(SecurityLog).all()}
    assert {"failed_login", "account_locked", "suspicious_activity"} <= events


def test_successful_login_resets_counter(client, db, alice):
    login(client, "alice@example.com", "wrong")
    login(client, "alice@example.com", "wrong")
    assert login(client, "alice@example.com", "secret123").status_code == 200

    db.expire_all()
    user = db.query(User).filter(User.email == "alice@example.com").one()
    assert user.failed_login_attempts == 0
    assert user.last_login_time is not None


def test_admin_unlock_restores_login(client, db, alice, admin):
    for _ in range(settings.MAX_FAILED_LOGIN_ATTEMPTS):
        login(client, "alice@example.com", "wrong")

    response = client.post(f"/api/users/{alice.id}/unlock", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["active"] is True
    assert login(client, "alice@example.com", "secret123").status_code == 200


def test_legacy_plaintext_password_is_rehashed(client, db, make_user):
    user = make_user("legacy@example.com")
    user.hashed_password = "plainpass"
    db.commit()

    assert login(client, "legacy@example.com", "plainpass").status_code == 200
    db.expire_all()
    stored = db.query(User).filter(User.email == "legacy@example.com").one().hashed_password
    assert stored.startswith("$2")


def test_admin_routes_ignore_role_claim_in_token(client, alice):
    forged = auth_headers(alice, role="admin")
    response = client.get("/api/users", headers=forged)
    assert response.status_code == 403


def test_session_info_and_refresh(client, alice):
    headers = auth_headers(alice)
    response = client.get("/api/session", headers=headers)
    assert response.status_code == 200
    assert response.json()["email"] == "alice@example.com"
    assert 0 < response.json()["minutes_remaining"] <= 30

    response = client.post("/api/session/refresh", headers=headers)
    assert response.status_code == 200
    assert response.json()["access_token"]


def test_invalid_token_rejected(client):
    response = client.get("/api/users/me", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_change_password(client, alice):
    headers = auth_headers(alice)
    response = client.post("/api/users/me/password", headers=headers,
                           json={"current_password": "wrong", "new_password": "newpass1"})
    assert response.status_code == 400

    response = client.post("/api/users/me/password", headers=headers,
                           json={"current_password": "secret123", "new_password": "newpass1"})
    assert response.status_code == 200
    assert login(client, "alice@example.com", "newpass1").status_code == 200


def test_password_reset_flow(client, db, alice, admin):
    response = client.post("/api/password-reset-requests", json={"email": "alice@example.com"})
    assert response.status_code == 202
    # 未知帳號同樣回覆成功
    assert client.post("/api/password-reset-requests", json={"email": "ghost@example.com"}).status_code == 202

    pending = client.get("/api/password-reset-requests", headers=auth_headers(admin)).json()
    assert [r["email"] for r in pending] == ["alice@example.com"]

    response = client.post("/api/password-reset-requests/alice@example.com/fulfil", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["needs_password_change"] is True
    assert login(client, "alice@example.com", settings.DEFAULT_USER_PASSWORD).status_code == 200
    assert client.get("/api/password-reset-requests", headers=auth_headers(admin)).json() == []
