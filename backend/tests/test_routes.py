"""HTTP surface: status codes, error bodies and auth wiring."""

from conftest import ADMIN_PASSWORD, MEMBER_PASSWORD, login


def test_root(client):
    assert client.get("/").status_code == 200


def test_login_returns_token_and_profile(client):
    response = client.post("/auth/login", json={"identifier": "root", "password": ADMIN_PASSWORD})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["token_type"] == "bearer"
    assert body["user"]["role"] == "admin"


def test_bad_login_is_401_with_code(client):
    response = client.post("/auth/login", json={"identifier": "root", "password": "Wrong#Pass1"})

    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Invalid credentials", "code": "INVALID_CREDENTIALS"}


def test_locked_login_is_423(client, member_account):
    for _ in range(5):
        client.post("/auth/login", json={"identifier": "carol", "password": "Wrong#Pass1"})

    response = client.post("/auth/login", json={"identifier": "carol", "password": MEMBER_PASSWORD})

    assert response.status_code == 423
    assert response.json()["code"] == "ACCOUNT_LOCKED"
    assert "lockedUntil" in response.json()


def test_me_requires_token(client):
    assert client.get("/auth/me").status_code in (401, 403)


def test_member_self_service(client, member_account):
    headers = login(client, "carol", MEMBER_PASSWORD)

    me = client.get("/auth/me", headers=headers)
    assert me.status_code == 200 and me.json()["first_login"] is True

    changed = client.post("/auth/change-password", headers=headers, json={"new_password": "N3w!Secret"})
    assert changed.status_code == 200

    renamed = client.post("/auth/change-username", headers=headers, json={"new_username": "carol_d"})
    assert renamed.status_code == 200
    again = client.post("/auth/change-username", headers=headers, json={"new_username": "carol_x"})
    assert again.status_code == 409
    assert again.json()["code"] == "USERNAME_ALREADY_CHANGED"

    # The token is keyed by account id and survives the rename
    settings = client.put("/auth/settings", headers=headers, json={"theme": "dark"})
    assert settings.status_code == 200
    assert settings.json()["settings"]["theme"] == "dark"


def test_profile_update(client, member_account):
    headers = login(client, "carol", MEMBER_PASSWORD)

    updated = client.put("/auth/profile", headers=headers, json={"name": "Carol Ruiz"})
    assert updated.status_code == 200
    assert updated.json()["name"] == "Carol Ruiz"
    assert updated.json()["email"] == "carol@example.org"

    taken = client.put("/auth/profile", headers=headers, json={"email": "root@example.org"})
    assert taken.status_code == 409
    assert taken.json()["code"] == "EMAIL_TAKEN"

    invalid = client.put("/auth/profile", headers=headers, json={"email": "not-an-email"})
    assert invalid.status_code == 422


def test_account_listing_pages(client, member_account):
    headers = login(client, "root", ADMIN_PASSWORD)

    first = client.get("/admin/accounts", headers=headers, params={"page_size": 1, "sort_by": "username"})
    assert first.status_code == 200
    assert first.json()["total"] == 2
    assert [a["username"] for a in first.json()["items"]] == ["carol"]

    second = client.get("/admin/accounts", headers=headers,
                        params={"page": 2, "page_size": 1, "sort_by": "username"})
    assert [a["username"] for a in second.json()["items"]] == ["root"]

    admins = client.get("/admin/accounts", headers=headers, params={"role": "ADMIN"})
    assert admins.json()["total"] == 1
    assert admins.json()["items"][0]["username"] == "root"


def test_weak_password_reports_unmet_requirements(client, member_account):
    headers = login(client, "carol", MEMBER_PASSWORD)

    response = client.post("/auth/change-password", headers=headers, json={"new_password": "abc"})

    assert response.status_code == 400
    assert response.json()["code"] == "WEAK_PASSWORD"
    assert "Password must be at least 8 characters long" in response.json()["unmetRequirements"]


def test_availability_checks(client, member_account):
    assert client.get("/auth/check-username", params={"username": "carol"}).json() == {"available": False}
    assert client.get("/auth/check-username", params={"username": "nobody"}).json() == {"available": True}
    assert client.get("/auth/check-email", params={"email": "carol@example.org"}).json() == {"available": False}


def test_password_strength_endpoint(client):
    body = client.post("/auth/password-strength", json={"password": "Abc123!@"}).json()

    assert body["valid"] is True
    assert body["strength"] == "Strong"


def test_admin_routes_reject_members(client, member_account):
    headers = login(client, "carol", MEMBER_PASSWORD)

    response = client.get("/admin/accounts", headers=headers)

    assert response.status_code == 403
    assert response.json()["code"] == "UNAUTHORIZED"
    assert client.get("/system/health", headers=headers).status_code == 403


def test_member_lifecycle_through_api(client):
    headers = login(client, "root", ADMIN_PASSWORD)

    created = client.post("/members", headers=headers, json={
        "name": "Bob Stone", "email": "bob@example.org", "branch": "Robotics", "skills": ["Rust"],
    })
    assert created.status_code == 201
    account_id = created.json()["account_id"]
    member_id = created.json()["member_id"]

    blocked = client.delete(f"/members/{member_id}", headers=headers)
    assert blocked.status_code == 409
    assert blocked.json()["hasAccount"] is True

    listing = client.get("/admin/accounts", headers=headers, params={"q": "bob"})
    assert listing.json()["total"] == 1

    deleted = client.delete(f"/admin/accounts/{account_id}", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json()["consistencyCheck"]["status"] == "PASSED"
    assert deleted.json()["lookupsRemoved"]["branches_removed"] == 1

    assert client.get(f"/members/{member_id}", headers=headers).status_code == 404


def test_admin_cannot_delete_self(client, admin):
    headers = login(client, "root", ADMIN_PASSWORD)

    response = client.delete(f"/admin/accounts/{admin.account_id}", headers=headers)

    assert response.status_code == 400
    assert response.json()["code"] == "CANNOT_DELETE_SELF"


def test_admin_reset_and_token_flow(client, member_account):
    headers = login(client, "root", ADMIN_PASSWORD)

    reset = client.post(f"/admin/accounts/{member_account.account_id}/reset-password", headers=headers, json={})
    assert reset.status_code == 200
    login(client, "carol", reset.json()["temporaryPassword"])

    issued = client.post(f"/admin/accounts/{member_account.account_id}/reset-token", headers=headers)
    assert issued.status_code == 200
    token = issued.json()["token"]

    confirmed = client.post("/auth/password-reset/confirm", json={"token": token, "new_password": "T0ken!Reset"})
    assert confirmed.status_code == 200
    login(client, "carol", "T0ken!Reset")

    reused = client.post("/auth/password-reset/confirm", json={"token": token, "new_password": "Ag4in!Reset"})
    assert reused.status_code == 400


def test_system_endpoints(client):
    headers = login(client, "root", ADMIN_PASSWORD)

    assert client.get("/system/consistency-check", headers=headers).json()["status"] == "PASSED"
    assert client.get("/system/health", headers=headers).status_code == 200

    preview = client.post("/system/cleanup", headers=headers, params={"dry_run": True})
    assert preview.status_code == 200
    assert preview.json()["dry_run"] is True


def test_security_log_pages(client, member_account):
    login(client, "carol", MEMBER_PASSWORD)
    headers = login(client, "root", ADMIN_PASSWORD)

    page = client.get("/logs", headers=headers, params={"event_type": "login"})
    assert page.status_code == 200
    assert page.json()["total"] == 2

    per_account = client.get(f"/logs/accounts/{member_account.account_id}", headers=headers)
    assert {e["event_type"] for e in per_account.json()} >= {"login", "account_created"}
