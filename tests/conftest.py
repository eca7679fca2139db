"""
Shared fixtures: a throwaway SQLite database, an in-memory Socket.IO server
stand-in for the hub, an HTTP client over the ASGI app and user factories.
"""
import os
import tempfile
from collections import defaultdict
from datetime import timedelta

# Must be set before disaster_training.config is imported
_DB_DIR = tempfile.mkdtemp(prefix="disaster-training-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-secret-key"
os.environ["REDIS_URL"] = "redis://127.0.0.1:6399/0"
os.environ["APP_ENV"] = "test"

import httpx  # noqa: E402
import pytest  # noqa: E402

from disaster_training.database import Base, async_session_maker, engine, init_db  # noqa: E402
from disaster_training.hubs import NotificationHub  # noqa: E402
from disaster_training.main import app  # noqa: E402
from disaster_training.models.database_models import User, utcnow  # noqa: E402
from disaster_training.security import create_access_token, hash_password  # noqa: E402

PASSWORD = "Password123"
PASSWORD_HASH = hash_password(PASSWORD)


class FakeSocketServer:
    """
    In-memory stand-in for socketio.AsyncServer.

    Implements the room semantics the hub relies on (a socket is always in
    its own sid room, emitting to a list of rooms reaches the union once,
    to=None broadcasts, skip_sid excludes) and records every delivery per sid.
    """

    def __init__(self):
        self.handlers = {}
        self.rooms = defaultdict(set)
        self.sockets = set()
        self.deliveries = defaultdict(list)

    def on(self, event, handler=None, namespace=None):
        self.handlers[event] = handler

    async def enter_room(self, sid, room, namespace=None):
        self.rooms[room].add(sid)

    async def leave_room(self, sid, room, namespace=None):
        self.rooms[room].discard(sid)

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None, namespace=None):
        target = to if to is not None else room
        if target is None:
            recipients = set(self.sockets)
        else:
            names = [target] if isinstance(target, str) else list(target)
            recipients = set()
            for name in names:
                recipients |= self.rooms.get(name, set())

        if skip_sid is None:
            skipped = set()
        elif isinstance(skip_sid, str):
            skipped = {skip_sid}
        else:
            skipped = set(skip_sid)

        for sid in recipients - skipped:
            self.deliveries[sid].append((event, data))

    # Client-side simulation

    async def connect(self, sid):
        self.sockets.add(sid)
        self.rooms[sid].add(sid)
        await self.handlers["connect"](sid, {})

    async def disconnect(self, sid):
        await self.handlers["disconnect"](sid)
        for members in self.rooms.values():
            members.discard(sid)
        self.sockets.discard(sid)

    async def trigger(self, event, sid, *args):
        return await self.handlers[event](sid, *args)

    def events(self, sid, name=None):
        return [data for event, data in self.deliveries[sid] if name is None or event == name]

    def names(self, sid):
        return [event for event, _ in self.deliveries[sid]]

    def clear(self):
        self.deliveries.clear()


@pytest.fixture(autouse=True)
async def database():
    """Fresh schema for every test."""
    await init_db()
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def sio():
    return FakeSocketServer()


@pytest.fixture
def hub(sio):
    hub = NotificationHub(sio)
    app.state.hub = hub
    return hub


@pytest.fixture
async def client(hub):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def make_user():
    """Insert a user directly; approved unless told otherwise."""
    counter = {"n": 0}

    async def factory(role="Volunteer", state=None, approved=True, active=True, email=None, name=None):
        counter["n"] += 1
        n = counter["n"]
        user = User.create_with_role(
            name=name or f"{role} User {chr(ord('A') + n % 26)}",
            email=email or f"{role.lower()}{n}@example.org",
            password_hash=PASSWORD_HASH,
            role=role,
            state=state,
            organization=f"{role} Org",
        )
        user.is_approved = approved
        user.is_active = active
        async with async_session_maker() as session:
            session.add(user)
            await session.commit()
            await session.refresh(user)
        return user

    return factory


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def training_payload(**overrides) -> dict:
    """A valid training body (camelCase wire format)."""
    date = utcnow() + timedelta(days=14)
    payload = {
        "title": "Flood Response Workshop",
        "description": "Hands-on flood preparedness training.",
        "date": date.isoformat(),
        "theme": "Flood Management",
        "state": "Gujarat",
        "district": "Ahmedabad",
        "trainer": {"name": "Dr. Mehta", "qualification": "PhD", "organization": "GSDMA"},
        "institution": "Gujarat Institute of Disaster Management",
        "participants": {"planned": 50, "actual": 0, "male": 0, "female": 0},
        "duration": {"hours": 6, "days": 1},
        "location": {
            "type": "Point",
            "coordinates": [72.5714, 23.0225],
            "name": "Town Hall",
            "address": "Ashram Road, Ahmedabad",
            "pincode": "380009",
        },
        "trainingType": "Workshop",
        "targetAudience": "Community Members",
        "isPublic": True,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def create_training(client):
    """POST a training as `user` and return the response data."""
    async def factory(user, **overrides):
        response = await client.post("/api/trainings", json=training_payload(**overrides), headers=auth_headers(user))
        assert response.status_code == 201, response.text
        return response.json()["data"]

    return factory
