from conftest import DEFAULT_PASSWORD, auth_headers, register, register_and_token


def test_register_returns_user_and_token(client):
    res = register(client, name="John Doe", email="John@Example.com", age=30)
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["success"] is True
    assert body["message"] == "User registered successfully"
    user = body["data"]["user"]
    assert user["name"] == "John Doe"
    assert user["email"] == "john@example.com"
    assert user["age"] == 30
    assert user["role"] == "user"
    assert user["isActive"] is True
    assert "password" not in user and "password_hash" not in user
    assert body["data"]["token"]


def test_register_ignores_role_escalation(client):
    res = register(client, role="admin")
    assert res.status_code == 201, res.text
    assert res.json()["data"]["user"]["role"] == "user"


def test_duplicate_email_rejected(client):
    assert register(client).status_code == 201
    res = register(client, name="Jane Doe", email="JOHN@example.com")
    assert res.status_code == 400
    body = res.json()
    assert body["success"] is False
    assert body["message"] == "User with this email already exists"


def test_register_non_ascii_local_part_is_a_validation_error(client):
    res = register(client, email="jürgen@example.com")
    assert res.status_code == 400
    body = res.json()
    assert body["message"] == "Validation error"
    messages = {e["field"]: e["message"] for e in body["errors"]}
    assert messages["email"] == "Please provide a valid email address"


def test_register_validation_lists_every_field(client):
    res = client.post(
        "/api/auth/register",
        json={"name": "J", "email": "not-an-email", "password": "short", "age": 200},
    )
    assert res.status_code == 400
    body = res.json()
    assert body["message"] == "Validation error"
    messages = {e["field"]: e["message"] for e in body["errors"]}
    assert messages["name"] == "Name must be between 2 and 50 characters"
    assert messages["email"] == "Please provide a valid email address"
    assert messages["password"] == "Password must be at least 6 characters long"
    assert messages["age"] == "Age must be a number between 0 and 150"
    password_error = next(e for e in body["errors"] if e["field"] == "password")
    assert "value" not in password_error


def test_register_password_complexity_and_name_charset(client):
    res = register(client, name="John 3rd", password="alllowercase1")
    assert res.status_code == 400
    messages = {e["field"]: e["message"] for e in res.json()["errors"]}
    assert messages["name"] == "Name can only contain letters and spaces"
    assert messages["password"] == (
        "Password must contain at least one uppercase letter, one lowercase letter, and one number"
    )


def test_register_missing_fields(client):
    res = client.post("/api/auth/register", json={})
    assert res.status_code == 400
    messages = {e["field"]: e["message"] for e in res.json()["errors"]}
    assert messages["password"] == "Password is required"
    assert set(messages) == {"name", "email", "password"}


def test_login_success_stamps_last_login(client):
    user, _ = register_and_token(client)
    assert user["lastLogin"] is None

    res = client.post("/api/auth/login", json={"email": "john@example.com", "password": DEFAULT_PASSWORD})
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["message"] == "Login successful"
    assert body["data"]["token"]
    assert body["data"]["user"]["lastLogin"] is not None


def test_login_wrong_password_and_unknown_email_look_the_same(client):
    register(client)
    wrong = client.post("/api/auth/login", json={"email": "john@example.com", "password": "Wrong12345"})
    unknown = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": DEFAULT_PASSWORD})
    assert wrong.status_code == 401
    assert unknown.status_code == 401
    assert wrong.json() == unknown.json() == {"success": False, "message": "Invalid email or password"}


def test_deactivated_user_cannot_login_and_token_is_rejected(client):
    from userforge.models.user import User

    _, token = register_and_token(client)
    User.objects(email="john@example.com").update(set__is_active=False)

    res = client.post("/api/auth/login", json={"email": "john@example.com", "password": DEFAULT_PASSWORD})
    assert res.status_code == 401
    assert res.json()["message"] == "Your account has been deactivated"

    res_me = client.get("/api/auth/me", headers=auth_headers(token))
    assert res_me.status_code == 401
    assert res_me.json()["message"] == "Your account has been deactivated"


def test_me_requires_token(client):
    res = client.get("/api/auth/me")
    assert res.status_code == 401
    assert res.json()["message"] == "Access denied. No token provided."

    res = client.get("/api/auth/me", headers={"Authorization": "Basic abc"})
    assert res.status_code == 401
    assert res.json()["message"] == "Access denied. No token provided."


def test_me_returns_current_user(client):
    user, token = register_and_token(client)
    res = client.get("/api/auth/me", headers=auth_headers(token))
    assert res.status_code == 200
    assert res.json()["data"]["user"]["id"] == user["id"]


def test_forged_and_expired_tokens_look_the_same(client, settings):
    import time

    from userforge.auth.tokens import TokenService
    from userforge.utils.config import AuthSettings

    user, _ = register_and_token(client)
    forged = TokenService(AuthSettings(jwt_secret="attacker-secret-attacker-secret-0000")).issue(user["id"])
    expired = TokenService(settings.auth).issue(user["id"], now=time.time() - 30 * 24 * 60 * 60)

    bodies = []
    for token in (forged, expired, "garbage"):
        res = client.get("/api/auth/me", headers=auth_headers(token))
        assert res.status_code == 401
        bodies.append(res.json())
    assert bodies[0] == bodies[1] == bodies[2] == {"success": False, "message": "Invalid token."}


def test_token_for_deleted_user(client, settings):
    from userforge.auth.tokens import TokenService

    tokens = TokenService(settings.auth)
    for subject in ("65f0c0ffee0000000000abcd", "not-an-object-id"):
        res = client.get("/api/auth/me", headers=auth_headers(tokens.issue(subject)))
        assert res.status_code == 401
        assert res.json()["message"] == "Invalid token. User not found."


def test_update_password_flow(client):
    _, token = register_and_token(client)
    headers = auth_headers(token)

    res = client.patch(
        "/api/auth/update-password",
        json={"currentPassword": "Wrong12345", "newPassword": "NewPassword1"},
        headers=headers,
    )
    assert res.status_code == 400
    assert res.json()["message"] == "Current password is incorrect"

    res = client.patch(
        "/api/auth/update-password",
        json={"currentPassword": DEFAULT_PASSWORD, "newPassword": DEFAULT_PASSWORD},
        headers=headers,
    )
    assert res.status_code == 400

    res = client.patch(
        "/api/auth/update-password",
        json={"currentPassword": DEFAULT_PASSWORD, "newPassword": "weak"},
        headers=headers,
    )
    assert res.status_code == 400
    assert res.json()["errors"][0]["message"] == "New password must be at least 6 characters long"

    res = client.patch(
        "/api/auth/update-password",
        json={"currentPassword": DEFAULT_PASSWORD, "newPassword": "NewPassword1"},
        headers=headers,
    )
    assert res.status_code == 200, res.text
    assert res.json()["data"]["token"]

    old_login = client.post("/api/auth/login", json={"email": "john@example.com", "password": DEFAULT_PASSWORD})
    new_login = client.post("/api/auth/login", json={"email": "john@example.com", "password": "NewPassword1"})
    assert old_login.status_code == 401
    assert new_login.status_code == 200
