"""
Tests for the API endpoints.

This module tests the HTTP surface: status codes, response bodies and the
headers the error handler adds.
"""
from conftest import OTHER_PASSWORD, TEST_EMAIL, TEST_PASSWORD, auth_headers

PREFIX = "/api/auth"


def _login(client, password=TEST_PASSWORD, **extra):
    return client.post(
        f"{PREFIX}/login",
        json={"email": TEST_EMAIL, "password": password, **extra},
        headers={"User-Agent": "pytest-client"},
    )


def test_login_success(client, test_user):
    """Test successful login."""
    response = _login(client)

    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "Bearer"
    assert data["expires_in"] == 3600
    assert data["access_token"]
    assert data["refresh_token"]
    assert data["session_id"]
    assert data["user"]["email"] == TEST_EMAIL
    assert data["user"]["roles"] == ["user"]
    assert data["requires_password_change"] is False


def test_login_invalid_password(client, test_user):
    """Test login with a wrong password."""
    response = _login(client, password="Wr0ng!Pass")

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_login_unknown_user(client):
    response = client.post(
        f"{PREFIX}/login", json={"email": "nobody@court.org", "password": TEST_PASSWORD}
    )

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"


def test_login_account_locked(client, test_user):
    """Test that a locked account answers 423 with the remaining minutes."""
    for _ in range(5):
        assert _login(client, password="Wr0ng!Pass").status_code == 401

    response = _login(client)

    assert response.status_code == 423
    assert response.json()["minutes_remaining"] == 30


def test_login_rate_limited(client, test_user):
    for i in range(10):
        client.post(f"{PREFIX}/login", json={"email": f"nobody{i}@court.org", "password": "x"})

    response = _login(client)

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "60"


def test_login_session_limit(client, test_user):
    """Test the concurrent session limit and forced login."""
    for _ in range(3):
        assert _login(client).status_code == 200

    response = _login(client)
    assert response.status_code == 409
    assert "3" in response.json()["detail"]

    assert _login(client, force_login=True).status_code == 200


def test_login_requires_mfa(client, coordinator, make_user):
    make_user(mfa_enabled=True)
    coordinator.mfa_enabled = True

    response = _login(client)

    assert response.status_code == 200
    assert response.json()["requires_mfa"] is True
    assert "access_token" not in response.json()


def test_login_missing_fields(client):
    response = client.post(f"{PREFIX}/login", json={"email": TEST_EMAIL})
    assert response.status_code == 422


def test_login_records_forwarded_ip(client, coordinator, test_user):
    """Test that the first X-Forwarded-For entry is taken as the client IP."""
    response = client.post(
        f"{PREFIX}/login",
        json={"email": TEST_EMAIL, "password": TEST_PASSWORD},
        headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
    )

    session = coordinator.sessions.get(response.json()["session_id"])
    assert session.ip_address == "203.0.113.7"


def test_logout(client, logged_in):
    """Test logout revokes the access token."""
    response = client.post(f"{PREFIX}/logout", headers=auth_headers(logged_in.access_token))

    assert response.status_code == 200
    assert response.json()["success"] is True

    response = client.get(f"{PREFIX}/validate", headers=auth_headers(logged_in.access_token))
    assert response.json()["valid"] is False


def test_logout_always_succeeds(client):
    """Test that logout answers success without a usable token."""
    assert client.post(f"{PREFIX}/logout").json()["success"] is True

    response = client.post(f"{PREFIX}/logout", headers=auth_headers("not-a-token"))
    assert response.status_code == 200
    assert response.json()["success"] is True


def test_refresh_token(client, logged_in):
    """Test refreshing the access token."""
    response = client.post(f"{PREFIX}/refresh", json={"refresh_token": logged_in.refresh_token})

    assert response.status_code == 200
    data = response.json()
    assert data["access_token"] != logged_in.access_token
    assert data["refresh_token"] == logged_in.refresh_token
    assert data["token_type"] == "Bearer"


def test_refresh_invalid_token(client):
    response = client.post(f"{PREFIX}/refresh", json={"refresh_token": "invalid"})

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_validate_token(client, logged_in):
    """Test token validation."""
    response = client.get(f"{PREFIX}/validate", headers=auth_headers(logged_in.access_token))

    assert response.status_code == 200
    data = response.json()
    assert data["valid"] is True
    assert data["email"] == TEST_EMAIL
    assert data["roles"] == ["user"]
    assert data["expiration"]


def test_validate_invalid_token(client):
    """Test validation of an invalid token reports valid=false."""
    response = client.get(f"{PREFIX}/validate", headers=auth_headers("invalid.token.here"))

    assert response.status_code == 200
    assert response.json()["valid"] is False
    assert response.json()["message"]


def test_forgot_password_answers_alike(client, test_user, notifications):
    """Test that registered and unknown emails get the same answer."""
    known = client.post(f"{PREFIX}/forgot-password", json={"email": TEST_EMAIL})
    unknown = client.post(f"{PREFIX}/forgot-password", json={"email": "nobody@court.org"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
    assert len(notifications.messages) == 1


def test_reset_password(client, test_user, credentials):
    client.post(f"{PREFIX}/forgot-password", json={"email": TEST_EMAIL})
    token = credentials.find_by_email(TEST_EMAIL).password_reset_token

    response = client.post(
        f"{PREFIX}/reset-password",
        json={"token": token, "new_password": OTHER_PASSWORD, "confirm_password": OTHER_PASSWORD},
    )

    assert response.status_code == 200
    assert _login(client, password=OTHER_PASSWORD).status_code == 200


def test_reset_password_weak(client, test_user, credentials):
    """Test that a weak password is rejected with the policy errors."""
    client.post(f"{PREFIX}/forgot-password", json={"email": TEST_EMAIL})
    token = credentials.find_by_email(TEST_EMAIL).password_reset_token

    response = client.post(
        f"{PREFIX}/reset-password",
        json={"token": token, "new_password": "weak", "confirm_password": "weak"},
    )

    assert response.status_code == 400
    assert response.json()["errors"]


def test_reset_password_bad_token(client):
    response = client.post(
        f"{PREFIX}/reset-password",
        json={"token": "bad", "new_password": OTHER_PASSWORD, "confirm_password": OTHER_PASSWORD},
    )
    assert response.status_code == 401


def test_change_password(client, logged_in):
    """Test changing the password signs the caller out."""
    headers = auth_headers(logged_in.access_token)
    response = client.post(
        f"{PREFIX}/change-password",
        json={
            "current_password": TEST_PASSWORD,
            "new_password": OTHER_PASSWORD,
            "confirm_password": OTHER_PASSWORD,
        },
        headers=headers,
    )

    assert response.status_code == 200
    assert client.get(f"{PREFIX}/sessions", headers=headers).status_code == 401


def test_change_password_invalid_current(client, logged_in):
    response = client.post(
        f"{PREFIX}/change-password",
        json={
            "current_password": "Wr0ng!Pass",
            "new_password": OTHER_PASSWORD,
            "confirm_password": OTHER_PASSWORD,
        },
        headers=auth_headers(logged_in.access_token),
    )

    assert response.status_code == 401
    assert response.json()["detail"] == "Current password is incorrect"


def test_change_password_no_auth(client):
    """Test password change without authentication."""
    response = client.post(
        f"{PREFIX}/change-password",
        json={
            "current_password": TEST_PASSWORD,
            "new_password": OTHER_PASSWORD,
            "confirm_password": OTHER_PASSWORD,
        },
    )

    assert response.status_code == 401


def test_current_session(client, logged_in):
    response = client.get(f"{PREFIX}/session", headers=auth_headers(logged_in.access_token))

    assert response.status_code == 200
    data = response.json()
    assert data["session_id"] == logged_in.session_id
    assert data["ip_address"] == "10.0.0.1"
    assert data["current"] is True


def test_list_sessions(client, test_user):
    first = _login(client).json()
    _login(client)

    response = client.get(f"{PREFIX}/sessions", headers=auth_headers(first["access_token"]))

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert [s["current"] for s in data["sessions"]].count(True) == 1


def test_delete_session(client, test_user):
    """Test ending another session of the same user."""
    first = _login(client).json()
    second = _login(client).json()

    response = client.delete(
        f"{PREFIX}/sessions/{second['session_id']}", headers=auth_headers(first["access_token"])
    )

    assert response.status_code == 200
    response = client.get(f"{PREFIX}/validate", headers=auth_headers(second["access_token"]))
    assert response.json()["valid"] is False


def test_delete_unknown_session(client, logged_in):
    response = client.delete(
        f"{PREFIX}/sessions/does-not-exist", headers=auth_headers(logged_in.access_token)
    )
    assert response.status_code == 404


def test_delete_other_users_session(client, coordinator, logged_in, make_user):
    """Test that a regular user cannot end someone else's session."""
    make_user(email="other@court.org")
    other = coordinator.login("other@court.org", TEST_PASSWORD, ip_address="10.0.0.2")

    response = client.delete(
        f"{PREFIX}/sessions/{logged_in.session_id}", headers=auth_headers(other.access_token)
    )

    assert response.status_code == 403


def test_admin_deletes_other_users_session(client, coordinator, logged_in, admin_user):
    admin = coordinator.login(admin_user.email, TEST_PASSWORD, ip_address="10.0.0.3")

    response = client.delete(
        f"{PREFIX}/sessions/{logged_in.session_id}", headers=auth_headers(admin.access_token)
    )

    assert response.status_code == 200


def test_health_check(client):
    """Test health check endpoint."""
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
