from conftest import PASSWORD, auth_headers


def registration(**overrides):
    body = {
        "name": "Asha Patel",
        "email": "asha@example.org",
        "password": "Secret123",
        "role": "NGO",
        "organization": "Seva Trust",
        "state": "Gujarat",
    }
    body.update(overrides)
    return body


async def test_register_ngo_is_pending(client):
    response = await client.post("/api/auth/register", json=registration())
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["message"].endswith("Your account is pending approval.")
    user = body["data"]["user"]
    assert user["isApproved"] is False
    assert user["role"] == "NGO"
    assert user["permissions"]["canCreateTraining"] is True
    assert user["permissions"]["canApproveTraining"] is False
    assert "passwordHash" not in user
    assert body["data"]["token"]


async def test_register_volunteer_is_approved(client):
    response = await client.post(
        "/api/auth/register", json=registration(role="Volunteer", state=None, email="vol@example.org")
    )
    assert response.status_code == 201
    assert response.json()["message"] == "User registered successfully"
    assert response.json()["data"]["user"]["isApproved"] is True


async def test_register_requires_state_for_ngo(client):
    response = await client.post("/api/auth/register", json=registration(state=None))
    assert response.status_code == 422
    assert response.json()["errors"][0]["field"] == "state"


async def test_register_superadmin_forbidden(client):
    response = await client.post("/api/auth/register", json=registration(role="SuperAdmin"))
    assert response.status_code == 403


async def test_register_duplicate_email(client):
    await client.post("/api/auth/register", json=registration())
    response = await client.post("/api/auth/register", json=registration(email="ASHA@example.org"))
    assert response.status_code == 409
    assert response.json()["message"] == "User with this email already exists"


async def test_register_weak_password(client):
    response = await client.post("/api/auth/register", json=registration(password="alllowercase"))
    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["errors"][0]["field"] == "password"


async def test_login(client, make_user):
    user = await make_user("Volunteer", email="ravi@example.org")
    response = await client.post("/api/auth/login", json={"email": "Ravi@Example.org", "password": PASSWORD})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["user"]["id"] == user.id

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
    assert me.json()["data"]["email"] == "ravi@example.org"


async def test_login_wrong_password(client, make_user):
    await make_user("Volunteer", email="ravi@example.org")
    response = await client.post("/api/auth/login", json={"email": "ravi@example.org", "password": "nope"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid credentials"


async def test_login_pending_account(client, make_user):
    await make_user("ATI", state="Odisha", approved=False, email="ati@example.org")
    response = await client.post("/api/auth/login", json={"email": "ati@example.org", "password": PASSWORD})
    assert response.status_code == 403


async def test_login_deactivated_account(client, make_user):
    await make_user("Volunteer", active=False, email="gone@example.org")
    response = await client.post("/api/auth/login", json={"email": "gone@example.org", "password": PASSWORD})
    assert response.status_code == 401
    assert "deactivated" in response.json()["message"]


async def test_update_profile_and_change_password(client, make_user):
    user = await make_user("Volunteer", email="meera@example.org")
    headers = auth_headers(user)

    response = await client.put("/api/auth/profile", json={"phone": "9876543210"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["phone"] == "9876543210"

    wrong = await client.put(
        "/api/auth/change-password",
        json={"currentPassword": "wrong", "newPassword": "Another123"},
        headers=headers,
    )
    assert wrong.status_code == 401

    ok = await client.put(
        "/api/auth/change-password",
        json={"currentPassword": PASSWORD, "newPassword": "Another123"},
        headers=headers,
    )
    assert ok.status_code == 200

    login = await client.post("/api/auth/login", json={"email": "meera@example.org", "password": "Another123"})
    assert login.status_code == 200


async def test_pending_users_scoped_to_admin_state(client, make_user):
    admin = await make_user("Admin", state="Gujarat")
    local = await make_user("NGO", state="Gujarat", approved=False)
    await make_user("NGO", state="Kerala", approved=False)
    await make_user("Admin", state="Gujarat", approved=False)

    response = await client.get("/api/auth/pending-users", headers=auth_headers(admin))
    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    assert [u["id"] for u in body["data"]] == [local.id]


async def test_superadmin_sees_all_pending(client, make_user):
    root = await make_user("SuperAdmin")
    await make_user("NGO", state="Gujarat", approved=False)
    await make_user("Admin", state="Kerala", approved=False)

    response = await client.get("/api/auth/pending-users", headers=auth_headers(root))
    assert response.json()["count"] == 2


async def test_approve_user(client, make_user):
    admin = await make_user("Admin", state="Gujarat")
    ngo = await make_user("NGO", state="Gujarat", approved=False)

    response = await client.put(f"/api/auth/approve-user/{ngo.id}", json={"approve": True}, headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["data"] == {"userId": ngo.id, "approved": True, "approvedBy": admin.id}

    me = await client.get("/api/auth/me", headers=auth_headers(ngo))
    assert me.status_code == 200
    assert me.json()["data"]["approvedBy"] == admin.id


async def test_reject_user_deactivates(client, make_user):
    admin = await make_user("Admin", state="Gujarat")
    ngo = await make_user("NGO", state="Gujarat", approved=False)

    response = await client.put(
        f"/api/auth/approve-user/{ngo.id}",
        json={"approve": False, "reason": "Unverified organization"},
        headers=auth_headers(admin),
    )
    assert response.status_code == 200
    assert response.json()["message"] == "User rejected successfully"

    me = await client.get("/api/auth/me", headers=auth_headers(ngo))
    assert me.status_code == 401


async def test_admin_cannot_approve_other_state(client, make_user):
    admin = await make_user("Admin", state="Karnataka")
    ngo = await make_user("NGO", state="Kerala", approved=False)
    response = await client.put(f"/api/auth/approve-user/{ngo.id}", json={"approve": True}, headers=auth_headers(admin))
    assert response.status_code == 403
    assert response.json()["message"] == "You can only approve users from your assigned state"


async def test_admin_cannot_approve_peer_admin(client, make_user):
    admin = await make_user("Admin", state="Gujarat")
    other = await make_user("Admin", state="Gujarat", approved=False)
    response = await client.put(f"/api/auth/approve-user/{other.id}", json={"approve": True}, headers=auth_headers(admin))
    assert response.status_code == 403


async def test_approve_unknown_user(client, make_user):
    admin = await make_user("SuperAdmin")
    response = await client.put("/api/auth/approve-user/4242", json={"approve": True}, headers=auth_headers(admin))
    assert response.status_code == 404
    assert response.json()["message"] == "User not found"


async def test_list_users_filters_and_state_scope(client, make_user):
    admin = await make_user("Admin", state="Delhi")
    await make_user("NGO", state="Delhi", approved=False)
    await make_user("ATI", state="Delhi")
    await make_user("NGO", state="Punjab")

    response = await client.get("/api/auth/users", params={"state": "Punjab"}, headers=auth_headers(admin))
    data = response.json()["data"]
    assert {u["state"] for u in data["users"]} == {"Delhi"}
    assert data["pagination"]["totalUsers"] == 3

    pending = await client.get("/api/auth/users", params={"status": "pending"}, headers=auth_headers(admin))
    assert pending.json()["data"]["pagination"]["totalUsers"] == 1

    bad = await client.get("/api/auth/users", params={"status": "weird"}, headers=auth_headers(admin))
    assert bad.status_code == 422


async def test_list_users_pagination(client, make_user):
    root = await make_user("SuperAdmin")
    for _ in range(4):
        await make_user("Volunteer")

    response = await client.get("/api/auth/users", params={"limit": 2, "page": 2}, headers=auth_headers(root))
    pagination = response.json()["data"]["pagination"]
    assert len(response.json()["data"]["users"]) == 2
    assert pagination == {"currentPage": 2, "totalPages": 3, "totalUsers": 5, "hasNext": True, "hasPrev": True}


async def test_superadmin_changes_role(client, make_user):
    root = await make_user("SuperAdmin")
    volunteer = await make_user("Volunteer")

    response = await client.put(
        f"/api/auth/users/{volunteer.id}",
        json={"role": "ATI", "state": "Bihar"},
        headers=auth_headers(root),
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["role"] == "ATI"
    assert data["state"] == "Bihar"
    assert data["permissions"]["canCreateTraining"] is True
    assert data["permissions"]["canGenerateReports"] is True
    assert data["permissions"]["canManageUsers"] is False


async def test_superadmin_cannot_demote_self(client, make_user):
    root = await make_user("SuperAdmin")
    response = await client.put(
        f"/api/auth/users/{root.id}", json={"role": "Admin", "state": "Goa"}, headers=auth_headers(root)
    )
    assert response.status_code == 422


async def test_superadmin_cannot_deactivate_self(client, make_user):
    root = await make_user("SuperAdmin")
    response = await client.put(
        f"/api/auth/users/{root.id}", json={"isActive": False}, headers=auth_headers(root)
    )
    assert response.status_code == 422
    assert (await client.get("/api/auth/me", headers=auth_headers(root))).status_code == 200


async def test_superadmin_cannot_manage_peer_superadmin(client, make_user):
    root = await make_user("SuperAdmin")
    peer = await make_user("SuperAdmin")
    url = f"/api/auth/users/{peer.id}"

    deactivate = await client.put(url, json={"isActive": False}, headers=auth_headers(root))
    assert deactivate.status_code == 403
    demote = await client.put(url, json={"role": "Volunteer"}, headers=auth_headers(root))
    assert demote.status_code == 403

    me = (await client.get("/api/auth/me", headers=auth_headers(peer))).json()["data"]
    assert me["role"] == "SuperAdmin"
    assert me["isActive"] is True


async def test_user_stats(client, make_user):
    admin = await make_user("Admin", state="Goa")
    await make_user("NGO", state="Goa", approved=False)
    await make_user("Volunteer")

    response = await client.get("/api/auth/user-stats", headers=auth_headers(admin))
    data = response.json()["data"]
    assert data["total"] == 3
    assert data["pending"] == 1
    assert data["byRole"]["NGO"] == {"count": 1, "approved": 0, "active": 1}
