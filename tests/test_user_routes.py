import pytest

from conftest import auth_headers, make_admin, register_and_token


@pytest.fixture
def admin(client):
    return make_admin(client)


@pytest.fixture
def seeded(client, admin):
    """Admin plus four regular users with ages 20, 30, 40, 50"""
    people = [
        ("Alice Smith", "alice@example.com", 20),
        ("Bob Jones", "bob@example.com", 30),
        ("Carol White", "carol@example.com", 40),
        ("Dave Brown", "dave@example.com", 50),
    ]
    users = {}
    for name, email, age in people:
        user, token = register_and_token(client, name=name, email=email, age=age)
        users[email] = (user, token)
    return users


def test_list_requires_auth(client):
    res = client.get("/api/users")
    assert res.status_code == 401


def test_list_with_pagination(client, admin, seeded):
    _, token = admin
    res = client.get("/api/users", params={"limit": 1}, headers=auth_headers(token))
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["success"] is True
    assert body["results"] == 1
    assert len(body["data"]["users"]) == 1
    assert body["pagination"] == {"page": 1, "limit": 1, "total": 5, "pages": 5}


def test_list_limit_clamped(client, admin):
    _, token = admin
    res = client.get("/api/users", params={"limit": 500}, headers=auth_headers(token))
    assert res.status_code == 200
    assert res.json()["pagination"]["limit"] == 100


def test_list_filters_sort_and_fields(client, admin, seeded):
    _, token = admin
    res = client.get(
        "/api/users",
        params={"age[gte]": 30, "sort": "-age", "fields": "name,age"},
        headers=auth_headers(token),
    )
    assert res.status_code == 200, res.text
    users = res.json()["data"]["users"]
    assert [u["age"] for u in users] == [50, 40, 30]
    assert set(users[0]) == {"id", "name", "age"}
    assert res.json()["pagination"]["total"] == 3


def test_list_search_counts_matches(client, admin, seeded):
    _, token = admin
    res = client.get("/api/users", params={"search": "ALICE"}, headers=auth_headers(token))
    body = res.json()
    assert [u["email"] for u in body["data"]["users"]] == ["alice@example.com"]
    assert body["pagination"]["total"] == 1

    # Regex metacharacters are matched literally
    res = client.get("/api/users", params={"search": ".*"}, headers=auth_headers(token))
    assert res.json()["pagination"]["total"] == 0


def test_list_rejects_unknown_parameters(client, admin):
    _, token = admin
    res = client.get(
        "/api/users",
        params={"password": "x", "email[ne]": "a@b.co", "sort": "passwordHash"},
        headers=auth_headers(token),
    )
    assert res.status_code == 400
    body = res.json()
    assert body["message"] == "Invalid query parameters"
    assert {e["field"] for e in body["errors"]} == {"password", "email[ne]", "sort"}


def test_get_user(client, seeded):
    user, token = seeded["bob@example.com"]
    res = client.get(f"/api/users/{user['id']}", headers=auth_headers(token))
    assert res.status_code == 200
    assert res.json()["data"]["user"]["email"] == "bob@example.com"


def test_get_user_bad_id_and_missing(client, admin):
    _, token = admin
    res = client.get("/api/users/not-an-id", headers=auth_headers(token))
    assert res.status_code == 400
    assert res.json()["message"] == "Invalid user ID format"

    res = client.get("/api/users/65f0c0ffee0000000000abcd", headers=auth_headers(token))
    assert res.status_code == 404
    assert res.json()["message"] == "User not found"


def test_admin_creates_user(client, admin):
    _, token = admin
    res = client.post(
        "/api/users",
        json={"name": "New Admin", "email": "second@example.com", "password": "Password123", "role": "admin"},
        headers=auth_headers(token),
    )
    assert res.status_code == 201, res.text
    user = res.json()["data"]["user"]
    assert user["role"] == "admin"
    assert user["isActive"] is True


def test_non_admin_cannot_create(client, seeded):
    _, token = seeded["alice@example.com"]
    res = client.post(
        "/api/users",
        json={"name": "Sneaky User", "email": "sneaky@example.com", "password": "Password123"},
        headers=auth_headers(token),
    )
    assert res.status_code == 403
    assert res.json()["message"] == "You do not have permission to perform this action"


def test_self_update_strips_role_and_password(client, seeded):
    from userforge.auth.passwords import verify_password
    from userforge.models.user import User

    user, token = seeded["alice@example.com"]
    res = client.patch(
        f"/api/users/{user['id']}",
        json={"name": "Alice Cooper", "role": "admin", "password": "Hacked123"},
        headers=auth_headers(token),
    )
    assert res.status_code == 200, res.text
    updated = res.json()["data"]["user"]
    assert updated["name"] == "Alice Cooper"
    assert updated["role"] == "user"

    stored = User.objects(email="alice@example.com").first()
    assert not verify_password("Hacked123", stored.password_hash)


def test_user_cannot_change_own_active_flag_or_unknown_fields(client, seeded):
    user, token = seeded["alice@example.com"]
    res = client.patch(
        f"/api/users/{user['id']}",
        json={"isActive": False, "nickname": "ally"},
        headers=auth_headers(token),
    )
    assert res.status_code == 400
    assert {e["field"] for e in res.json()["errors"]} == {"isActive", "nickname"}


def test_user_cannot_update_someone_else(client, seeded):
    _, token = seeded["alice@example.com"]
    bob, _ = seeded["bob@example.com"]
    res = client.patch(f"/api/users/{bob['id']}", json={"name": "Bobby"}, headers=auth_headers(token))
    assert res.status_code == 403
    assert res.json()["message"] == "You can only update your own profile"


def test_update_to_taken_email(client, seeded):
    user, token = seeded["alice@example.com"]
    res = client.patch(
        f"/api/users/{user['id']}",
        json={"email": "BOB@example.com"},
        headers=auth_headers(token),
    )
    assert res.status_code == 400
    assert res.json()["message"] == "User with this email already exists"


def test_admin_updates_active_flag(client, admin, seeded):
    _, token = admin
    dave, _ = seeded["dave@example.com"]
    res = client.patch(f"/api/users/{dave['id']}", json={"isActive": False}, headers=auth_headers(token))
    assert res.status_code == 200
    assert res.json()["data"]["user"]["isActive"] is False


def test_non_admin_delete_forbidden(client, seeded):
    _, token = seeded["alice@example.com"]
    bob, _ = seeded["bob@example.com"]
    res = client.delete(f"/api/users/{bob['id']}", headers=auth_headers(token))
    assert res.status_code == 403


def test_admin_delete(client, admin, seeded):
    admin_user, token = admin
    bob, bob_token = seeded["bob@example.com"]

    res = client.delete(f"/api/users/{bob['id']}", headers=auth_headers(token))
    assert res.status_code == 204
    assert res.content == b""

    res = client.delete(f"/api/users/{bob['id']}", headers=auth_headers(token))
    assert res.status_code == 404

    # Existing tokens for a deleted user stop working
    res = client.get("/api/auth/me", headers=auth_headers(bob_token))
    assert res.status_code == 401

    res = client.delete(f"/api/users/{admin_user['id']}", headers=auth_headers(token))
    assert res.status_code == 400


def test_admin_deactivate(client, admin, seeded):
    admin_user, token = admin
    carol, carol_token = seeded["carol@example.com"]

    res = client.patch(f"/api/users/{carol['id']}/deactivate", headers=auth_headers(token))
    assert res.status_code == 200
    assert res.json()["data"]["user"]["isActive"] is False

    res = client.get("/api/auth/me", headers=auth_headers(carol_token))
    assert res.status_code == 401

    res = client.patch(f"/api/users/{admin_user['id']}/deactivate", headers=auth_headers(token))
    assert res.status_code == 400


def test_non_admin_cannot_delete_self_either(client, seeded):
    alice, token = seeded["alice@example.com"]
    res = client.delete(f"/api/users/{alice['id']}", headers=auth_headers(token))
    assert res.status_code == 403
