from auth.auth_manager import auth_manager


def _create_customer(client, headers, name, **extra):
    response = client.post("/api/customers", json={"name": name, **extra}, headers=headers)
    assert response.status_code == 201, response.json()
    return response.json()


# ==================== USERS ====================

def test_user_role_can_read_users(client, make_actor):
    user_id, headers = make_actor("user")

    response = client.get("/api/users", headers=headers)
    assert response.status_code == 200
    assert user_id in [user["id"] for user in response.json()]

    response = client.get(f"/api/users/{user_id}", headers=headers)
    assert response.status_code == 200
    assert response.json()["role"] == "user"


def test_user_role_cannot_write_users(client, make_actor):
    user_id, headers = make_actor("user")

    response = client.post("/api/users", json={"email": "new@example.com", "name": "New"}, headers=headers)
    assert response.status_code == 403
    assert response.json()["action"] == "create"

    assert client.put(f"/api/users/{user_id}", json={"name": "Renamed"}, headers=headers).status_code == 403
    assert client.delete(f"/api/users/{user_id}", headers=headers).status_code == 403


def test_admin_manages_users(client, make_actor):
    _, headers = make_actor("admin")

    response = client.post(
        "/api/users",
        json={"email": "managed@example.com", "name": "Managed", "role_name": "user"},
        headers=headers,
    )
    assert response.status_code == 201
    created = response.json()
    assert created["role"] == "user"

    response = client.put(f"/api/users/{created['id']}", json={"name": "Renamed"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["name"] == "Renamed"

    assert client.delete(f"/api/users/{created['id']}", headers=headers).status_code == 200
    assert client.get(f"/api/users/{created['id']}", headers=headers).status_code == 404


def test_field_level_denial_on_update(client, make_actor):
    target_id, _ = make_actor("user")
    _, headers = make_actor("admin")
    auth_manager.add_ability("admin", {
        "action": "update",
        "subject": "User",
        "fields": ["is_active"],
        "inverted": True,
    })

    response = client.put(f"/api/users/{target_id}", json={"is_active": False}, headers=headers)
    assert response.status_code == 403
    assert response.json()["error"] == "Forbidden"

    response = client.put(f"/api/users/{target_id}", json={"name": "Still Editable"}, headers=headers)
    assert response.status_code == 200


def test_unknown_role_on_create_is_not_found(client, make_actor):
    _, headers = make_actor("admin")
    response = client.post(
        "/api/users",
        json={"email": "ghost@example.com", "name": "Ghost", "role_name": "owner"},
        headers=headers,
    )
    assert response.status_code == 404


def test_duplicate_email_is_a_conflict(client, make_actor):
    _, headers = make_actor("admin", email="admin@example.com")
    response = client.post("/api/users", json={"email": "admin@example.com", "name": "Dup"}, headers=headers)
    assert response.status_code == 409
    assert response.json() == {"error": "Conflict"}


def test_invalid_body_is_a_validation_error(client, make_actor):
    _, headers = make_actor("admin")
    response = client.post("/api/users", json={"email": "not-an-email", "name": ""}, headers=headers)
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation error"
    assert len(body["details"]) == 2


def test_missing_user_is_not_found(client, make_actor):
    _, headers = make_actor("admin")
    response = client.get("/api/users/does-not-exist", headers=headers)
    assert response.status_code == 404
    assert response.json() == {"error": "Not found"}


# ==================== SETTINGS ====================

def test_settings_defaults(client, make_actor):
    _, headers = make_actor("user")
    response = client.get("/api/settings", headers=headers)
    assert response.status_code == 200
    assert response.json()["site_name"] == "My Application"
    assert response.json()["theme"] == "system"


def test_admin_updates_settings(client, make_actor):
    _, admin_headers = make_actor("admin")
    _, user_headers = make_actor("user")

    response = client.put("/api/settings", json={"site_name": "Acme Admin", "theme": "dark"}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["theme"] == "dark"

    response = client.get("/api/settings", headers=user_headers)
    assert response.json()["site_name"] == "Acme Admin"

    response = client.put("/api/settings", json={"site_name": "Mine"}, headers=user_headers)
    assert response.status_code == 403


def test_settings_theme_is_validated(client, make_actor):
    _, headers = make_actor("admin")
    response = client.put("/api/settings", json={"site_name": "X", "theme": "neon"}, headers=headers)
    assert response.status_code == 400


# ==================== CUSTOMERS ====================

def test_users_only_see_their_own_customers(client, make_actor):
    alice_id, alice = make_actor("user")
    _, bob = make_actor("user")
    _, admin = make_actor("admin")

    acme = _create_customer(client, alice, "Acme", email="")
    globex = _create_customer(client, bob, "Globex")

    assert acme["owner_id"] == alice_id
    assert acme["email"] is None

    names = [customer["name"] for customer in client.get("/api/customers", headers=alice).json()]
    assert names == ["Acme"]

    names = sorted(customer["name"] for customer in client.get("/api/customers", headers=admin).json())
    assert names == ["Acme", "Globex"]

    assert client.get(f"/api/customers/{globex['id']}", headers=alice).status_code == 404
    assert client.get(f"/api/customers/{globex['id']}", headers=admin).status_code == 200


def test_users_cannot_touch_other_customers(client, make_actor):
    _, alice = make_actor("user")
    _, bob = make_actor("user")
    globex = _create_customer(client, bob, "Globex")

    response = client.put(f"/api/customers/{globex['id']}", json={"name": "Stolen"}, headers=alice)
    assert response.status_code == 404
    assert client.delete(f"/api/customers/{globex['id']}", headers=alice).status_code == 404

    response = client.put(f"/api/customers/{globex['id']}", json={"name": "Globex Corp"}, headers=bob)
    assert response.status_code == 200
    assert response.json()["name"] == "Globex Corp"
    assert client.delete(f"/api/customers/{globex['id']}", headers=bob).status_code == 200


def test_super_admin_customer_crud(client, make_actor):
    _, headers = make_actor("super_admin")
    customer = _create_customer(client, headers, "Initech", city="Austin")

    response = client.get(f"/api/customers/{customer['id']}", headers=headers)
    assert response.json()["city"] == "Austin"
    assert client.delete(f"/api/customers/{customer['id']}", headers=headers).status_code == 200
    assert client.get(f"/api/customers/{customer['id']}", headers=headers).status_code == 404


# ==================== MISC ====================

def test_root_and_health(client):
    assert client.get("/").json()["status"] == "running"
    assert client.get("/api/health").json()["database"] == "connected"
