"""
Process-local bookkeeping for the real-time hub.

ConnectionRegistry maps socket ids to the user that authenticated on them;
LiveSessionRegistry tracks who is present in a live training session. Both
are owned by a NotificationHub and only touched from the event loop, so no
locking is needed. Neither is shared across server processes.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional, Tuple

from disaster_training.models.database_models import utcnow


@dataclass
class ConnectedUser:
    user_id: str
    name: str
    role: str
    state: Optional[str] = None
    email: Optional[str] = None

    def to_payload(self) -> dict:
        return {
            "userId": self.user_id,
            "name": self.name,
            "role": self.role,
            "state": self.state,
            "email": self.email,
        }


class ConnectionRegistry:
    """socket id -> ConnectedUser"""

    def __init__(self):
        self._clients: Dict[str, ConnectedUser] = {}

    def register(self, sid: str, user: ConnectedUser) -> None:
        self._clients[sid] = user

    def get(self, sid: str) -> Optional[ConnectedUser]:
        return self._clients.get(sid)

    def remove(self, sid: str) -> Optional[ConnectedUser]:
        return self._clients.pop(sid, None)

    def sids_matching(self, role: Optional[str] = None, state: Optional[str] = None) -> List[str]:
        return [
            sid for sid, user in self._clients.items()
            if (role is None or user.role == role) and (state is None or user.state == state)
        ]

    def __contains__(self, sid: str) -> bool:
        return sid in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    def __iter__(self) -> Iterator[Tuple[str, ConnectedUser]]:
        return iter(list(self._clients.items()))


@dataclass
class LiveParticipant:
    user_id: str
    name: str
    join_time: datetime
    attendance_status: Optional[str] = None
    attendance_time: Optional[datetime] = None

    def to_payload(self) -> dict:
        return {
            "userId": self.user_id,
            "name": self.name,
            "joinTime": self.join_time.isoformat(),
            "attendanceStatus": self.attendance_status,
            "attendanceTime": self.attendance_time.isoformat() if self.attendance_time else None,
        }


@dataclass
class LiveSession:
    training_id: str
    start_time: datetime
    status: str = "active"
    participants: List[LiveParticipant] = field(default_factory=list)
    last_activity: Optional[datetime] = None

    def find(self, user_id: str) -> Optional[LiveParticipant]:
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        return None

    def is_idle(self, now: datetime, idle_timeout: timedelta) -> bool:
        if self.participants:
            return False
        return now - (self.last_activity or self.start_time) >= idle_timeout


class LiveSessionRegistry:
    """training id -> LiveSession, with idle expiry."""

    def __init__(self, idle_timeout_sec: int = 4 * 60 * 60):
        self.idle_timeout = timedelta(seconds=idle_timeout_sec)
        self._sessions: Dict[str, LiveSession] = {}

    def get(self, training_id: str) -> Optional[LiveSession]:
        return self._sessions.get(training_id)

    def join(self, training_id: str, user_id: str, name: str, now: Optional[datetime] = None) -> LiveSession:
        """Add a participant, creating the session on first join."""
        now = now or utcnow()
        session = self._sessions.get(training_id)
        if session is None:
            session = LiveSession(training_id=training_id, start_time=now)
            self._sessions[training_id] = session
        if session.find(user_id) is None:
            session.participants.append(LiveParticipant(user_id=user_id, name=name, join_time=now))
        session.last_activity = now
        return session

    def leave(self, training_id: str, user_id: str, now: Optional[datetime] = None) -> Optional[LiveSession]:
        """Remove a participant; returns the session if they were in it."""
        session = self._sessions.get(training_id)
        if session is None:
            return None
        participant = session.find(user_id)
        if participant is None:
            return None
        session.participants.remove(participant)
        session.last_activity = now or utcnow()
        return session

    def leave_all(self, user_id: str, now: Optional[datetime] = None) -> List[LiveSession]:
        """Remove a user from every session they are in."""
        left = []
        for training_id in list(self._sessions):
            session = self.leave(training_id, user_id, now=now)
            if session is not None:
                left.append(session)
        return left

    def mark_attendance(
        self,
        training_id: str,
        user_id: str,
        status: Optional[str],
        when: Optional[datetime] = None
    ) -> bool:
        session = self._sessions.get(training_id)
        if session is None:
            return False
        participant = session.find(user_id)
        if participant is None:
            return False
        participant.attendance_status = status
        participant.attendance_time = when or utcnow()
        session.last_activity = participant.attendance_time
        return True

    def prune(self, now: Optional[datetime] = None) -> List[str]:
        """Drop empty sessions idle past the timeout; returns their ids."""
        now = now or utcnow()
        expired = [
            training_id for training_id, session in self._sessions.items()
            if session.is_idle(now, self.idle_timeout)
        ]
        for training_id in expired:
            del self._sessions[training_id]
        return expired

    def __contains__(self, training_id: str) -> bool:
        return training_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
