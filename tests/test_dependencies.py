import pytest
from sqlalchemy import select

from disaster_training.dependencies import TrainingScope, has_state_access
from disaster_training.exceptions import Forbidden
from disaster_training.models.database_models import Training
from disaster_training.security import create_access_token

from conftest import auth_headers


async def test_missing_token(client):
    response = await client.get("/api/auth/me")
    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Access denied. No token provided."}


async def test_invalid_token(client):
    response = await client.get("/api/auth/me", headers={"Authorization": "Bearer nonsense"})
    assert response.status_code == 401
    assert response.json()["success"] is False


async def test_token_for_deleted_user(client):
    response = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {create_access_token(999)}"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid token. User not found."


async def test_deactivated_user(client, make_user):
    user = await make_user("Volunteer", active=False)
    response = await client.get("/api/auth/me", headers=auth_headers(user))
    assert response.status_code == 401


async def test_pending_user_is_forbidden(client, make_user):
    user = await make_user("NGO", state="Gujarat", approved=False)
    response = await client.get("/api/auth/me", headers=auth_headers(user))
    assert response.status_code == 403
    assert response.json()["message"] == "Account pending approval."


async def test_unapproved_volunteer_still_passes(client, make_user):
    user = await make_user("Volunteer", approved=False)
    response = await client.get("/api/auth/me", headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json()["data"]["id"] == user.id


async def test_permission_guard(client, make_user):
    volunteer = await make_user("Volunteer")
    response = await client.get("/api/auth/users", headers=auth_headers(volunteer))
    assert response.status_code == 403
    assert "canManageUsers" in response.json()["message"]


async def test_role_guard(client, make_user):
    admin = await make_user("Admin", state="Delhi")
    target = await make_user("Volunteer")
    response = await client.put(f"/api/auth/users/{target.id}", json={"isActive": False}, headers=auth_headers(admin))
    assert response.status_code == 403
    assert "SuperAdmin" in response.json()["message"]


async def test_state_access(make_user):
    admin = await make_user("Admin", state="Karnataka")
    super_admin = await make_user("SuperAdmin")
    assert has_state_access(admin, "Karnataka")
    assert not has_state_access(admin, "Kerala")
    assert has_state_access(admin, None)
    assert has_state_access(super_admin, "Kerala")


@pytest.mark.parametrize("role,state,expected", [
    ("Admin", "Delhi", TrainingScope(state="Delhi")),
    ("SuperAdmin", None, TrainingScope()),
    ("Volunteer", None, TrainingScope(read_only=True)),
])
async def test_training_scope_for_user(make_user, role, state, expected):
    user = await make_user(role, state=state)
    assert TrainingScope.for_user(user) == expected


async def test_training_scope_for_organizers(make_user):
    ngo = await make_user("NGO", state="Assam")
    ati = await make_user("ATI", state="Assam")
    assert TrainingScope.for_user(ngo) == TrainingScope(organizer_id=ngo.id)
    assert TrainingScope.for_user(ati) == TrainingScope(organizer_id=ati.id)
    assert TrainingScope.for_user(None) == TrainingScope()


def test_scope_apply_adds_filters():
    query = TrainingScope(state="Delhi", organizer_id=7).apply(select(Training))
    sql = str(query)
    assert "trainings.state" in sql
    assert "trainings.organizer_id" in sql


def test_forbidden_renders_envelope():
    assert Forbidden().to_envelope() == {
        "success": False,
        "message": "Access denied. Insufficient permissions.",
    }
