"""Socket.IO server wiring for the realtime session registry."""

from typing import Any

import socketio
from socketio.exceptions import ConnectionRefusedError

from app.auth.verify import AuthenticationError
from app.config import settings
from app.infrastructure.observability.logging import bind_log_context, clear_log_context, get_logger
from app.models.domain.realtime_domain import ClientEvent
from app.services.realtime.session_registry import RealtimeSessionRegistry

logger = get_logger(__name__)


def extract_token(auth: Any, environ: dict[str, Any] | None) -> str | None:
    """Token from the handshake auth payload, else from a Bearer header."""
    if isinstance(auth, dict):
        token = auth.get("token")
        if token:
            return str(token)

    header = (environ or {}).get("HTTP_AUTHORIZATION") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


def create_socket_server(registry: RealtimeSessionRegistry) -> socketio.AsyncServer:
    """Build the server and route its events to the registry; binding happens at startup."""
    sio = socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins=[settings.CORS_ORIGIN],
        cors_credentials=True,
        logger=False,
        engineio_logger=False,
    )

    @sio.event
    async def connect(sid: str, environ: dict[str, Any], auth: Any = None) -> None:
        token = extract_token(auth, environ)
        bind_log_context(sid=sid)
        try:
            await registry.connect(sid, token)
        except AuthenticationError as e:
            logger.info("Socket connection rejected", reason=e.message)
            raise ConnectionRefusedError(e.message) from e
        finally:
            clear_log_context("sid")

    @sio.on(ClientEvent.JOIN_TASK.value)
    async def join_task(sid: str, task_id: Any) -> None:
        await registry.join_task_room(sid, task_id)

    @sio.on(ClientEvent.LEAVE_TASK.value)
    async def leave_task(sid: str, task_id: Any) -> None:
        await registry.leave_task_room(sid, task_id)

    @sio.event
    async def disconnect(sid: str, *args: Any) -> None:
        await registry.disconnect(sid)

    logger.info("Socket.IO initialized", cors_origin=settings.CORS_ORIGIN)
    return sio
