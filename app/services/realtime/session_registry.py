"""
Realtime session registry.

Owns the authenticated socket sessions and the user -> socket index, and is
the only path through which the rest of the backend pushes events to
clients. Room membership itself lives in the transport (python-socketio);
the registry mirrors it per session so disconnects and presence queries stay
accurate.

Emits are fire-and-forget: with no transport bound (startup, tests, shutdown)
or a transport error, the event is dropped and logged, never raised.
"""

import asyncio
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from app.auth.verify import AuthenticationError, TokenClaims, verify_access_token
from app.infrastructure.observability.logging import get_logger
from app.models.domain.realtime_domain import ServerEvent, SocketSession, task_room, user_room
from app.repositories.directory import UserDirectory

logger = get_logger(__name__)


class RealtimeTransport(Protocol):
    """The subset of `socketio.AsyncServer` the registry relies on."""

    async def enter_room(self, sid: str, room: str, namespace: str | None = None) -> None: ...

    async def leave_room(self, sid: str, room: str, namespace: str | None = None) -> None: ...

    async def emit(self, event: str, data: Any = None, to: str | None = None, **kwargs) -> None: ...


class RealtimeSessionRegistry:
    def __init__(
        self,
        users: UserDirectory,
        verify_token: Callable[[str | None], TokenClaims] = verify_access_token,
    ):
        self._users = users
        self._verify_token = verify_token
        self._transport: RealtimeTransport | None = None
        self._sessions: dict[str, SocketSession] = {}
        self._user_sockets: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()

    # Lifecycle
    def bind(self, transport: RealtimeTransport) -> None:
        self._transport = transport
        logger.info("Realtime transport bound")

    def unbind(self) -> None:
        self._transport = None
        self._sessions.clear()
        self._user_sockets.clear()
        logger.info("Realtime transport unbound")

    @property
    def bound(self) -> bool:
        return self._transport is not None

    # Connection handling
    async def connect(self, sid: str, token: str | None) -> SocketSession:
        """
        Authenticate a connection attempt and register its session.

        Raises:
            AuthenticationError: missing/invalid/expired token or unknown user;
                no state is mutated in that case
        """
        claims = self._verify_token(token)

        try:
            exists = await self._users.user_exists(claims.user_id)
        except Exception as e:
            logger.error("User lookup failed during socket auth", user_id=claims.user_id, error=str(e))
            raise AuthenticationError("Invalid authentication token") from e

        if not exists:
            raise AuthenticationError("User not found")

        session = SocketSession(sid=sid, user_id=claims.user_id, email=claims.email)
        async with self._lock:
            self._sessions[sid] = session
            self._user_sockets.setdefault(claims.user_id, set()).add(sid)

        await self._enter(session, user_room(claims.user_id))
        logger.info("User connected", user_id=claims.user_id, sid=sid)
        return session

    async def disconnect(self, sid: str) -> None:
        async with self._lock:
            session = self._sessions.pop(sid, None)
            if session is None:
                return
            sockets = self._user_sockets.get(session.user_id)
            if sockets is not None:
                sockets.discard(sid)
                if not sockets:
                    del self._user_sockets[session.user_id]

        logger.info("User disconnected", user_id=session.user_id, sid=sid)

    async def join_task_room(self, sid: str, task_id: Any) -> bool:
        session = self._sessions.get(sid)
        if session is None:
            return False
        if not isinstance(task_id, str) or not task_id.strip():
            logger.warning("Rejected task room join with invalid id", sid=sid, user_id=session.user_id)
            return False

        await self._enter(session, task_room(task_id.strip()))
        logger.info("User joined task room", user_id=session.user_id, task_id=task_id)
        return True

    async def leave_task_room(self, sid: str, task_id: Any) -> bool:
        session = self._sessions.get(sid)
        if session is None or not isinstance(task_id, str):
            return False

        room = task_room(task_id.strip())
        if room not in session.rooms:
            return True

        session.rooms.discard(room)
        if self._transport is not None:
            try:
                await self._transport.leave_room(sid, room)
            except Exception as e:
                logger.warning("Failed to leave room", sid=sid, room=room, error=str(e))
        logger.info("User left task room", user_id=session.user_id, task_id=task_id)
        return True

    async def _enter(self, session: SocketSession, room: str) -> None:
        session.rooms.add(room)
        if self._transport is None:
            return
        try:
            await self._transport.enter_room(session.sid, room)
        except Exception as e:
            logger.warning("Failed to enter room", sid=session.sid, room=room, error=str(e))

    # Delivery
    async def _emit(self, event: ServerEvent, payload: Any, room: str | None = None) -> None:
        if self._transport is None:
            logger.debug("Realtime transport not bound, skipping emit", event_name=event.value)
            return
        try:
            if room is None:
                await self._transport.emit(event.value, payload)
            else:
                await self._transport.emit(event.value, payload, to=room)
        except Exception as e:
            logger.warning("Realtime emit failed", event_name=event.value, room=room, error=str(e))

    async def emit_to_user(self, user_id: str, event: ServerEvent, payload: Any) -> None:
        await self._emit(event, payload, user_room(user_id))

    async def emit_to_users(self, user_ids: Iterable[str], event: ServerEvent, payload: Any) -> None:
        for user_id in dict.fromkeys(user_ids):
            await self._emit(event, payload, user_room(user_id))

    async def emit_to_task(self, task_id: str, event: ServerEvent, payload: Any) -> None:
        await self._emit(event, payload, task_room(task_id))

    async def broadcast(self, event: ServerEvent, payload: Any) -> None:
        await self._emit(event, payload)

    # Presence
    def is_online(self, user_id: str) -> bool:
        return user_id in self._user_sockets

    def online_count(self) -> int:
        return len(self._user_sockets)

    def session(self, sid: str) -> SocketSession | None:
        return self._sessions.get(sid)

    def sockets_for(self, user_id: str) -> set[str]:
        return set(self._user_sockets.get(user_id, ()))
