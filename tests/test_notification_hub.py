from datetime import timedelta

import pytest

from disaster_training.hubs.registry import LiveSessionRegistry
from disaster_training.models.database_models import utcnow


async def login(sio, sid, user_id, role, state=None, name=None):
    await sio.connect(sid)
    await sio.trigger("authenticate", sid, {
        "userId": user_id, "name": name or f"user-{user_id}", "role": role, "state": state,
    })


def delhi_training(**overrides):
    training = {"id": 11, "title": "Earthquake Drill", "state": "Delhi", "approvalStatus": "Auto-Approved"}
    training.update(overrides)
    return training


async def test_training_added_fans_out_by_state_and_role(sio, hub):
    await login(sio, "a", "1", "Volunteer", "Delhi")
    await login(sio, "b", "2", "Admin", "Delhi")
    await login(sio, "p", "3", "Volunteer", "Punjab")
    sio.clear()

    await hub.training_added(delhi_training())

    assert len(sio.events("b", "trainingAdded")) == 1
    assert len(sio.events("a", "trainingAdded")) == 1
    assert sio.events("p", "trainingAdded") == []


async def test_admins_of_every_state_and_superadmins_hear_new_trainings(sio, hub):
    await login(sio, "punjab-admin", "4", "Admin", "Punjab")
    await login(sio, "root", "5", "SuperAdmin", "All")
    sio.clear()

    await hub.training_added(delhi_training())

    assert len(sio.events("punjab-admin", "trainingAdded")) == 1
    assert len(sio.events("root", "trainingAdded")) == 1


async def test_pending_training_goes_to_same_state_admins(sio, hub):
    await login(sio, "delhi-admin", "2", "Admin", "Delhi")
    await login(sio, "punjab-admin", "4", "Admin", "Punjab")
    await login(sio, "delhi-ngo", "6", "NGO", "Delhi")
    sio.clear()

    await hub.training_added(delhi_training(approvalStatus="Pending", organizer={"id": 6}), skip_sid="delhi-ngo")

    pending = sio.events("delhi-admin", "trainingPendingApproval")
    assert len(pending) == 1
    assert pending[0]["trainingId"] == "11"
    assert sio.events("punjab-admin", "trainingPendingApproval") == []
    assert sio.deliveries["delhi-ngo"] == []


async def test_relay_requires_authentication_and_skips_sender(sio, hub):
    await sio.connect("anon")
    await login(sio, "a", "1", "NGO", "Delhi")
    await login(sio, "b", "2", "Admin", "Delhi")
    sio.clear()

    await sio.trigger("newTraining", "anon", delhi_training())
    assert sio.events("b", "trainingAdded") == []

    await sio.trigger("newTraining", "a", delhi_training())
    assert len(sio.events("b", "trainingAdded")) == 1
    assert sio.events("a", "trainingAdded") == []


async def test_malformed_payloads_are_ignored(sio, hub):
    await login(sio, "a", "1", "NGO", "Delhi")
    await login(sio, "b", "2", "Admin", "Delhi")
    sio.clear()

    await sio.trigger("newTraining", "a", {"title": "no state"})
    await sio.trigger("newTraining", "a", None)
    await sio.trigger("markAttendance", "a", {"status": "Attended"})
    await sio.trigger("userRegistered", "a", "not-a-dict")

    assert sio.deliveries["b"] == []


async def test_authenticate_requires_user_id_and_valid_role(sio, hub):
    await sio.connect("x")
    await sio.trigger("authenticate", "x", {"role": "Admin", "state": "Delhi"})
    await sio.trigger("authenticate", "x", {"userId": "9", "role": "Emperor"})
    await sio.trigger("authenticate", "x", None)
    assert "x" not in hub.connections


async def test_online_presence_within_state(sio, hub):
    await login(sio, "a", "1", "Volunteer", "Delhi")
    await login(sio, "b", "2", "Admin", "Delhi", name="Bina")

    online = sio.events("a", "userOnline")
    assert online == [{"userId": "2", "name": "Bina", "role": "Admin"}]
    assert sio.events("b", "userOnline") == []

    await sio.disconnect("b")
    assert sio.events("a", "userOffline") == [{"userId": "2", "name": "Bina", "role": "Admin"}]
    assert "b" not in hub.connections


async def test_superadmin_joins_no_state_room(sio, hub):
    await login(sio, "root", "5", "SuperAdmin", "All")
    assert "root" not in sio.rooms["state:All"]
    assert "root" in sio.rooms["role:SuperAdmin"]
    assert "root" in sio.rooms["user:5"]


async def test_reauthenticate_switches_rooms(sio, hub):
    await login(sio, "s1", "7", "NGO", "Delhi")
    await sio.trigger("authenticate", "s1", {"userId": "8", "name": "Ravi", "role": "Volunteer", "state": "Punjab"})
    sio.clear()

    await hub.approval_decision(11, "Earthquake Drill", 7, "Approved", "Bina")
    await hub.training_added(delhi_training())
    assert sio.names("s1") == []

    await hub.training_added(delhi_training(state="Punjab"))
    assert sio.names("s1") == ["trainingAdded"]
    assert "s1" not in sio.rooms["user:7"]
    assert "s1" not in sio.rooms["role:NGO"]
    assert "s1" in sio.rooms["user:8"]
    assert hub.connections.get("s1").user_id == "8"


async def test_training_updated_reaches_registrants(sio, hub):
    await login(sio, "v", "7", "Volunteer", "Punjab")
    await login(sio, "other", "8", "Volunteer", "Punjab")
    sio.clear()

    await hub.training_updated(delhi_training(), registrant_ids=[7])

    assert len(sio.events("v", "trainingUpdated")) == 1
    assert sio.events("other", "trainingUpdated") == []


async def test_training_updated_relay_reads_registrations(sio, hub):
    await login(sio, "org", "1", "NGO", "Delhi")
    await login(sio, "v", "7", "Volunteer", "Punjab")
    sio.clear()

    await sio.trigger("updateTraining", "org", delhi_training(registrations=[{"user": {"id": 7}}, {"user": 8}]))
    assert len(sio.events("v", "trainingUpdated")) == 1


async def test_training_deleted_is_broadcast(sio, hub):
    await login(sio, "a", "1", "Volunteer", "Delhi")
    await sio.connect("anon")
    sio.clear()

    await hub.training_deleted(11)
    assert sio.events("a", "trainingDeleted") == [{"id": "11"}]
    assert sio.events("anon", "trainingDeleted") == [{"id": "11"}]


async def test_live_session_join_leave_and_counts(sio, hub):
    await login(sio, "org", "1", "NGO", "Delhi")
    await login(sio, "v", "7", "Volunteer", "Delhi", name="Vik")
    await login(sio, "w", "8", "Volunteer", "Delhi")

    await sio.trigger("joinTrainingSession", "org", "11")
    sio.clear()
    await sio.trigger("joinTrainingSession", "v", "11")

    joined = sio.events("org", "participantJoined")
    assert joined[0]["totalParticipants"] == 2
    assert joined[0]["participant"]["name"] == "Vik"
    assert sio.events("v", "participantJoined") == []
    assert sio.events("w", "participantJoined") == []

    # Joining twice keeps one participant entry
    await sio.trigger("joinTrainingSession", "v", "11")
    assert len(hub.sessions.get("11").participants) == 2

    sio.clear()
    await hub.user_registered(11, 1, "Vik", "vik@example.org", 3, 20)
    assert sio.events("org", "newRegistration")[0]["userName"] == "Vik"
    assert sio.events("v", "participantCountUpdated") == [
        {"trainingId": "11", "newCount": 3, "maxParticipants": 20}
    ]
    assert sio.events("w", "participantCountUpdated") == []

    sio.clear()
    await sio.trigger("leaveTrainingSession", "v", "11")
    assert sio.events("org", "participantLeft")[0]["totalParticipants"] == 1


async def test_attendance_marked_updates_live_session(sio, hub):
    await login(sio, "org", "1", "NGO", "Delhi", name="Organizer")
    await login(sio, "v", "7", "Volunteer", "Delhi")
    await sio.trigger("joinTrainingSession", "org", "11")
    await sio.trigger("joinTrainingSession", "v", "11")
    sio.clear()

    await sio.trigger("markAttendance", "org", {"trainingId": "11", "userId": "7", "status": "Attended"})

    event = sio.events("v", "attendanceMarked")[0]
    assert event["status"] == "Attended"
    assert event["markedBy"] == "Organizer"
    assert sio.events("org", "attendanceMarked") == []
    assert hub.sessions.get("11").find("7").attendance_status == "Attended"


async def test_disconnect_leaves_sessions_and_prunes(sio, hub):
    await login(sio, "org", "1", "NGO", "Delhi")
    await login(sio, "v", "7", "Volunteer", "Delhi")
    await sio.trigger("joinTrainingSession", "org", "11")
    await sio.trigger("joinTrainingSession", "v", "11")
    sio.clear()

    await sio.disconnect("v")
    assert sio.events("org", "participantLeft")[0]["userId"] == "7"
    assert hub.sessions.get("11").find("7") is None

    await sio.disconnect("org")
    assert len(hub.connections) == 0
    # Empty but not yet idle past the timeout
    assert "11" in hub.sessions
    assert hub.prune_idle_sessions(now=utcnow() + timedelta(hours=5)) == ["11"]
    assert "11" not in hub.sessions


async def test_unknown_disconnect_is_harmless(sio, hub):
    await sio.connect("anon")
    await sio.disconnect("anon")
    assert hub.stats() == {"connectedClients": 0, "liveSessions": 0}


async def test_approval_decision(sio, hub):
    await login(sio, "org", "6", "NGO", "Delhi")
    await login(sio, "v", "7", "Volunteer", "Delhi")
    sio.clear()

    await hub.approval_decision(11, "Earthquake Drill", 6, "Rejected", "Bina", "Incomplete", registrant_ids=[7])
    assert sio.events("org", "trainingApprovalUpdate")[0]["status"] == "Rejected"
    assert sio.events("v", "trainingApproved") == []

    await hub.approval_decision(11, "Earthquake Drill", 6, "Approved", "Bina", registrant_ids=[7])
    approved = sio.events("v", "trainingApproved")
    assert approved[0]["trainingTitle"] == "Earthquake Drill"


async def test_system_notification_only_from_superadmin(sio, hub):
    await login(sio, "admin", "2", "Admin", "Delhi")
    await login(sio, "root", "5", "SuperAdmin", "All")
    sio.clear()

    await sio.trigger("systemNotification", "admin", {"message": "Evacuate", "type": "warning"})
    assert sio.events("root", "systemAlert") == []

    await sio.trigger("systemNotification", "root", {"message": ""})
    assert sio.events("admin", "systemAlert") == []

    await sio.trigger("systemNotification", "root", {"message": "Cyclone warning", "type": "warning"})
    alert = sio.events("admin", "systemAlert")[0]
    assert alert["message"] == "Cyclone warning"
    assert alert["from"] == "System Administrator"
    assert len(sio.events("root", "systemAlert")) == 1


@pytest.mark.parametrize("role,expected", [("Admin", 1), ("SuperAdmin", 1), ("NGO", 0), ("Volunteer", 0)])
async def test_analytics_refresh_request(sio, hub, role, expected):
    await login(sio, "s", "1", role, "Delhi" if role != "SuperAdmin" else "All")
    sio.clear()
    await sio.trigger("requestAnalyticsUpdate", "s", {"state": "Delhi"})
    assert len(sio.events("s", "refreshAnalytics")) == expected


async def test_ping(sio, hub):
    await sio.connect("anon")
    await sio.trigger("ping", "anon")
    assert sio.names("anon") == ["pong"]


def test_live_session_registry_idle_rules():
    registry = LiveSessionRegistry(idle_timeout_sec=60)
    start = utcnow()
    registry.join("t1", "u1", "One", now=start)

    # Occupied sessions never expire
    assert registry.prune(now=start + timedelta(hours=1)) == []

    registry.leave("t1", "u1", now=start)
    assert registry.prune(now=start + timedelta(seconds=30)) == []
    assert registry.prune(now=start + timedelta(seconds=60)) == ["t1"]
    assert registry.leave("t1", "u1") is None
    assert registry.mark_attendance("t1", "u1", "Attended") is False
