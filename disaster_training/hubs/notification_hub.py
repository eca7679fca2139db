"""
Notification Hub - Socket.IO fan-out for training events.

Sockets authenticate once and are placed in rooms; every event is then
addressed to a set of rooms and each socket in the union gets one copy.

Rooms:
- user:<id>        one user's sockets
- role:<role>      every socket of a role
- state:<state>    every socket scoped to a state (not joined for "All")
- training:<id>    participants of a live training session

Events arrive two ways: relayed from a client socket (the sender is
skipped) or published by the HTTP layer after a committed mutation.
Malformed or unauthenticated socket payloads are dropped without a reply.
"""
import asyncio
import functools
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

import socketio

from disaster_training.hubs.registry import (
    ConnectedUser, ConnectionRegistry, LiveSessionRegistry,
)
from disaster_training.models.database_models import utcnow
from disaster_training.models.roles import ALL_STATES, ApprovalStatus, Role

logger = logging.getLogger(__name__)

ANALYTICS_ROLES = (Role.ADMIN.value, Role.SUPER_ADMIN.value)


def user_room(user_id: Any) -> str:
    return f"user:{user_id}"


def role_room(role: str) -> str:
    return f"role:{role}"


def state_room(state: str) -> str:
    return f"state:{state}"


def training_room(training_id: Any) -> str:
    return f"training:{training_id}"


def _timestamp(value: Optional[datetime] = None) -> str:
    return (value or utcnow()).isoformat()


def _id_of(document: Dict[str, Any]) -> str:
    """id of a training/user payload; raises KeyError when absent."""
    value = document.get("id", document.get("_id"))
    if value is None or value == "":
        raise KeyError("id")
    return str(value)


def _ref_id(ref: Any) -> Optional[str]:
    """A reference that is either a bare id or a populated {id: ...} object."""
    if ref is None:
        return None
    if isinstance(ref, dict):
        ref = ref.get("id", ref.get("_id"))
        if ref is None:
            return None
    return str(ref)


def _registrant_ids(training: Dict[str, Any]) -> List[str]:
    ids = []
    for registration in training.get("registrations") or []:
        ref = registration.get("user") if isinstance(registration, dict) else registration
        user_id = _ref_id(ref)
        if user_id is not None:
            ids.append(user_id)
    return ids


def _ignore_malformed(handler):
    """Drop a socket event whose payload does not have the expected shape."""
    @functools.wraps(handler)
    async def wrapper(self, sid, *args):
        try:
            return await handler(self, sid, *args)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Ignored malformed '{handler.__name__}' event from {sid}: {e}")
            return None
    return wrapper


class NotificationHub:
    """
    Owns the connection and live-session registries and routes every
    real-time event to its rooms.
    """

    def __init__(
        self,
        sio: socketio.AsyncServer,
        connections: Optional[ConnectionRegistry] = None,
        sessions: Optional[LiveSessionRegistry] = None
    ):
        self.sio = sio
        self.connections = connections if connections is not None else ConnectionRegistry()
        self.sessions = sessions if sessions is not None else LiveSessionRegistry()
        self._register_handlers()
        logger.info("NotificationHub initialized")

    def _register_handlers(self):
        """Register Socket.IO event handlers"""
        handlers = {
            "connect": self.handle_connect,
            "disconnect": self.handle_disconnect,
            "authenticate": self.handle_authenticate,
            "newTraining": self.handle_new_training,
            "updateTraining": self.handle_update_training,
            "userRegistered": self.handle_user_registered,
            "joinTrainingSession": self.handle_join_training_session,
            "leaveTrainingSession": self.handle_leave_training_session,
            "markAttendance": self.handle_mark_attendance,
            "trainingApproved": self.handle_training_approved,
            "requestAnalyticsUpdate": self.handle_request_analytics_update,
            "systemNotification": self.handle_system_notification,
            "ping": self.handle_ping,
        }
        for event, handler in handlers.items():
            self.sio.on(event, handler)

    async def _emit(
        self,
        event: str,
        data: Any,
        to: Union[str, Iterable[str], None] = None,
        skip_sid: Optional[str] = None
    ) -> None:
        """Emit to one room, the union of several rooms, or everyone (to=None)."""
        if to is not None and not isinstance(to, str):
            to = list(dict.fromkeys(to))
            if not to:
                return
        await self.sio.emit(event, data, to=to, skip_sid=skip_sid)

    # ========== Connection Lifecycle ==========

    async def handle_connect(self, sid, environ, auth=None):
        logger.info(f"Client connected: {sid}")

    async def handle_disconnect(self, sid, reason=None):
        user = self.connections.remove(sid)
        if user is None:
            logger.info(f"Unknown client disconnected: {sid}")
            return

        logger.info(f"User {user.name} ({user.role}) disconnected")
        if user.state and user.state != ALL_STATES:
            await self._emit(
                "userOffline",
                {"userId": user.user_id, "name": user.name, "role": user.role},
                to=state_room(user.state),
                skip_sid=sid,
            )

        for session in self.sessions.leave_all(user.user_id):
            await self._emit(
                "participantLeft",
                {
                    "userId": user.user_id,
                    "name": user.name,
                    "totalParticipants": len(session.participants),
                },
                to=training_room(session.training_id),
                skip_sid=sid,
            )
        self.prune_idle_sessions()

    @_ignore_malformed
    async def handle_authenticate(self, sid, data=None):
        """Register the socket's user and join its user/role/state rooms."""
        user_id = data.get("userId")
        role = data.get("role")
        if user_id in (None, "") or role not in {r.value for r in Role}:
            logger.debug(f"Ignored authenticate from {sid} without a user id or valid role")
            return

        user = ConnectedUser(
            user_id=str(user_id),
            name=str(data.get("name") or ""),
            role=role,
            state=data.get("state") or None,
            email=data.get("email"),
        )
        previous = self.connections.get(sid)
        if previous is not None:
            await self._leave_identity_rooms(sid, previous)
        self.connections.register(sid, user)

        await self.sio.enter_room(sid, user_room(user.user_id))
        await self.sio.enter_room(sid, role_room(user.role))
        if user.state and user.state != ALL_STATES:
            await self.sio.enter_room(sid, state_room(user.state))
            await self._emit(
                "userOnline",
                {"userId": user.user_id, "name": user.name, "role": user.role},
                to=state_room(user.state),
                skip_sid=sid,
            )

        logger.info(f"User {user.name} ({user.role}) authenticated on {sid}")

    async def _leave_identity_rooms(self, sid: str, user: ConnectedUser) -> None:
        """Drop a re-authenticating socket out of its previous identity's rooms."""
        await self.sio.leave_room(sid, user_room(user.user_id))
        await self.sio.leave_room(sid, role_room(user.role))
        if user.state and user.state != ALL_STATES:
            await self.sio.leave_room(sid, state_room(user.state))
        logger.debug(f"Socket {sid} left rooms of user {user.user_id}")

    def _sender(self, sid: str) -> Optional[ConnectedUser]:
        user = self.connections.get(sid)
        if user is None:
            logger.debug(f"Ignored event from unauthenticated socket {sid}")
        return user

    # ========== Training Events ==========

    async def training_added(self, training: Dict[str, Any], skip_sid: Optional[str] = None) -> None:
        """
        New training: its state room plus every Admin and SuperAdmin.
        Pending trainings also go to Admins scoped to the training's state.
        """
        state = training["state"]
        await self._emit(
            "trainingAdded",
            training,
            to=[state_room(state), role_room(Role.ADMIN.value), role_room(Role.SUPER_ADMIN.value)],
            skip_sid=skip_sid,
        )

        if training.get("approvalStatus") == ApprovalStatus.PENDING.value:
            approvers = [
                sid for sid in self.connections.sids_matching(role=Role.ADMIN.value, state=state)
                if sid != skip_sid
            ]
            await self._emit(
                "trainingPendingApproval",
                {
                    "trainingId": _id_of(training),
                    "title": training.get("title"),
                    "organizer": training.get("organizer"),
                    "state": state,
                },
                to=approvers,
            )
        logger.info(f"Fan-out trainingAdded for {training.get('title')} ({state})")

    async def training_updated(
        self,
        training: Dict[str, Any],
        registrant_ids: Optional[Iterable[Any]] = None,
        skip_sid: Optional[str] = None
    ) -> None:
        """Registrants, the state room, Admins and SuperAdmins."""
        if registrant_ids is None:
            registrant_ids = _registrant_ids(training)
        rooms = [user_room(user_id) for user_id in registrant_ids]
        rooms += [
            state_room(training["state"]),
            role_room(Role.ADMIN.value),
            role_room(Role.SUPER_ADMIN.value),
        ]
        await self._emit("trainingUpdated", training, to=rooms, skip_sid=skip_sid)
        logger.info(f"Fan-out trainingUpdated for {training.get('title')}")

    async def training_deleted(self, training_id: Any) -> None:
        await self._emit("trainingDeleted", {"id": str(training_id)})
        logger.info(f"Broadcast trainingDeleted for {training_id}")

    async def user_registered(
        self,
        training_id: Any,
        organizer_id: Any,
        user_name: Optional[str],
        user_email: Optional[str],
        new_count: Optional[int],
        max_participants: Optional[int],
        skip_sid: Optional[str] = None
    ) -> None:
        if organizer_id is not None:
            await self._emit(
                "newRegistration",
                {
                    "trainingId": str(training_id),
                    "userName": user_name,
                    "userEmail": user_email,
                    "registeredAt": _timestamp(),
                },
                to=user_room(organizer_id),
                skip_sid=skip_sid,
            )
        await self._emit(
            "participantCountUpdated",
            {
                "trainingId": str(training_id),
                "newCount": new_count,
                "maxParticipants": max_participants,
            },
            to=training_room(training_id),
            skip_sid=skip_sid,
        )

    async def attendance_marked(
        self,
        training_id: Any,
        user_id: Any,
        status: Optional[str],
        timestamp: Optional[datetime] = None,
        marked_by: Optional[str] = None,
        skip_sid: Optional[str] = None
    ) -> None:
        when = timestamp or utcnow()
        self.sessions.mark_attendance(str(training_id), str(user_id), status, when)
        await self._emit(
            "attendanceMarked",
            {
                "userId": str(user_id),
                "status": status,
                "timestamp": _timestamp(when),
                "markedBy": marked_by,
            },
            to=training_room(training_id),
            skip_sid=skip_sid,
        )

    async def approval_decision(
        self,
        training_id: Any,
        title: Optional[str],
        organizer_id: Any,
        status: str,
        approved_by: Optional[str],
        reason: Optional[str] = None,
        registrant_ids: Iterable[Any] = (),
        skip_sid: Optional[str] = None
    ) -> None:
        """Organizer always hears the decision; registrants only on approval."""
        if organizer_id is not None:
            await self._emit(
                "trainingApprovalUpdate",
                {
                    "trainingId": str(training_id),
                    "status": status,
                    "approvedBy": approved_by,
                    "reason": reason,
                    "timestamp": _timestamp(),
                },
                to=user_room(organizer_id),
                skip_sid=skip_sid,
            )

        if status == ApprovalStatus.APPROVED.value:
            await self._emit(
                "trainingApproved",
                {
                    "trainingId": str(training_id),
                    "trainingTitle": title,
                    "message": "Your registered training has been approved!",
                },
                to=[user_room(user_id) for user_id in registrant_ids],
                skip_sid=skip_sid,
            )
        logger.info(f"Fan-out approval decision {status} for training {training_id}")

    async def system_alert(self, message: str, alert_type: Optional[str] = None) -> None:
        await self._emit(
            "systemAlert",
            {
                "message": message,
                "type": alert_type,
                "timestamp": _timestamp(),
                "from": "System Administrator",
            },
        )

    # ========== Socket Relays ==========

    @_ignore_malformed
    async def handle_new_training(self, sid, training=None):
        if self._sender(sid) is None:
            return
        await self.training_added(training, skip_sid=sid)

    @_ignore_malformed
    async def handle_update_training(self, sid, training=None):
        if self._sender(sid) is None:
            return
        await self.training_updated(training, skip_sid=sid)

    @_ignore_malformed
    async def handle_user_registered(self, sid, data=None):
        if self._sender(sid) is None:
            return
        await self.user_registered(
            training_id=data["trainingId"],
            organizer_id=_ref_id(data.get("organizer")),
            user_name=data.get("userName"),
            user_email=data.get("userEmail"),
            new_count=data.get("newCount"),
            max_participants=data.get("maxParticipants"),
            skip_sid=sid,
        )

    @_ignore_malformed
    async def handle_mark_attendance(self, sid, data=None):
        sender = self._sender(sid)
        if sender is None:
            return
        timestamp = data.get("timestamp")
        await self.attendance_marked(
            training_id=data["trainingId"],
            user_id=data["userId"],
            status=data.get("status"),
            timestamp=datetime.fromisoformat(timestamp.replace("Z", "+00:00")).replace(tzinfo=None)
            if timestamp else None,
            marked_by=sender.name,
            skip_sid=sid,
        )

    @_ignore_malformed
    async def handle_training_approved(self, sid, data=None):
        if self._sender(sid) is None:
            return
        approved_by = data.get("approvedBy")
        await self.approval_decision(
            training_id=data["trainingId"],
            title=data.get("title"),
            organizer_id=_ref_id(data.get("organizer")),
            status=data["status"],
            approved_by=approved_by.get("name") if isinstance(approved_by, dict) else approved_by,
            reason=data.get("reason"),
            registrant_ids=_registrant_ids(data),
            skip_sid=sid,
        )

    # ========== Live Sessions ==========

    @_ignore_malformed
    async def handle_join_training_session(self, sid, training_id=None):
        user = self._sender(sid)
        if user is None or training_id in (None, ""):
            return
        training_id = str(training_id)

        await self.sio.enter_room(sid, training_room(training_id))
        session = self.sessions.join(training_id, user.user_id, user.name)
        await self._emit(
            "participantJoined",
            {"participant": user.to_payload(), "totalParticipants": len(session.participants)},
            to=training_room(training_id),
            skip_sid=sid,
        )
        logger.debug(f"{user.name} joined live session {training_id}")

    @_ignore_malformed
    async def handle_leave_training_session(self, sid, training_id=None):
        user = self._sender(sid)
        if user is None or training_id in (None, ""):
            return
        training_id = str(training_id)

        await self.sio.leave_room(sid, training_room(training_id))
        session = self.sessions.leave(training_id, user.user_id)
        if session is not None:
            await self._emit(
                "participantLeft",
                {
                    "userId": user.user_id,
                    "name": user.name,
                    "totalParticipants": len(session.participants),
                },
                to=training_room(training_id),
                skip_sid=sid,
            )
        self.prune_idle_sessions()

    def prune_idle_sessions(self, now: Optional[datetime] = None) -> List[str]:
        expired = self.sessions.prune(now)
        if expired:
            logger.info(f"Pruned {len(expired)} idle live session(s): {', '.join(expired)}")
        return expired

    async def run_session_sweeper(self, interval_sec: float) -> None:
        """Prune idle live sessions forever; cancelled on shutdown."""
        while True:
            await asyncio.sleep(interval_sec)
            self.prune_idle_sessions()

    # ========== Requests ==========

    @_ignore_malformed
    async def handle_request_analytics_update(self, sid, filters=None):
        user = self._sender(sid)
        if user is None or user.role not in ANALYTICS_ROLES:
            return
        await self._emit("refreshAnalytics", {"filters": filters, "timestamp": _timestamp()}, to=sid)

    @_ignore_malformed
    async def handle_system_notification(self, sid, notification=None):
        user = self._sender(sid)
        if user is None or user.role != Role.SUPER_ADMIN.value:
            logger.warning(f"Rejected system notification from non-SuperAdmin socket {sid}")
            return
        message = notification["message"]
        if not isinstance(message, str) or not message:
            raise ValueError("message must be a non-empty string")
        await self.system_alert(message, notification.get("type"))
        logger.info(f"System alert broadcast by {user.name}")

    async def handle_ping(self, sid, data=None):
        await self._emit("pong", None, to=sid)

    def stats(self) -> Dict[str, int]:
        return {
            "connectedClients": len(self.connections),
            "liveSessions": len(self.sessions),
        }
