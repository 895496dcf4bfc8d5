import jwt
import pytest

from app.auth.verify import AuthenticationError
from app.models.domain.realtime_domain import ServerEvent
from app.services.realtime.session_registry import RealtimeSessionRegistry

OTHER_SECRET = "other-secret-" + "y" * 64


@pytest.mark.asyncio
async def test_connect_joins_user_room(registry, socket_transport, alice, make_token):
    session = await registry.connect("sid-1", make_token(alice.id, alice.email))

    assert session.user_id == alice.id
    assert session.email == alice.email
    assert "user:user-a" in session.rooms
    assert socket_transport.rooms["user:user-a"] == {"sid-1"}
    assert registry.is_online(alice.id)
    assert registry.sockets_for(alice.id) == {"sid-1"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "case, message",
    [
        ("missing", "Authentication token required"),
        ("garbage", "Invalid authentication token"),
        ("expired", "Invalid authentication token"),
        ("wrong_secret", "Invalid authentication token"),
        ("unknown_user", "User not found"),
    ],
)
async def test_rejected_connection_leaves_no_state(
    registry, socket_transport, make_token, case, message
):
    token = {
        "missing": None,
        "garbage": "not-a-jwt",
        "expired": make_token("user-a", expires_in=-60),
        "wrong_secret": jwt.encode({"userId": "user-a", "exp": 9999999999}, OTHER_SECRET),
        "unknown_user": make_token("ghost"),
    }[case]

    with pytest.raises(AuthenticationError) as exc:
        await registry.connect("sid-x", token)

    assert exc.value.message == message
    assert registry.session("sid-x") is None
    assert registry.online_count() == 0
    assert socket_transport.rooms == {}


@pytest.mark.asyncio
async def test_user_lookup_failure_rejects_connection(registry, directory, alice, make_token):
    directory.fail_lookups = True

    with pytest.raises(AuthenticationError):
        await registry.connect("sid-1", make_token(alice.id))

    assert not registry.is_online(alice.id)


@pytest.mark.asyncio
async def test_user_index_tracks_multiple_sockets(registry, alice, make_token):
    token = make_token(alice.id)
    await registry.connect("sid-1", token)
    await registry.connect("sid-2", token)

    assert registry.sockets_for(alice.id) == {"sid-1", "sid-2"}
    assert registry.online_count() == 1

    await registry.disconnect("sid-1")
    assert registry.is_online(alice.id)

    await registry.disconnect("sid-2")
    assert not registry.is_online(alice.id)
    assert registry.sockets_for(alice.id) == set()


@pytest.mark.asyncio
async def test_disconnect_unknown_socket_is_noop(registry):
    await registry.disconnect("never-connected")
    assert registry.online_count() == 0


@pytest.mark.asyncio
async def test_task_events_only_reach_members(registry, socket_transport, alice, bob, make_token):
    await registry.connect("sid-a", make_token(alice.id))
    await registry.connect("sid-b", make_token(bob.id))

    assert await registry.join_task_room("sid-a", "T1")
    await registry.emit_to_task("T1", ServerEvent.TASK_UPDATED, {"id": "T1"})

    assert socket_transport.received("sid-a") == ["task:updated"]
    assert socket_transport.received("sid-b") == []


@pytest.mark.asyncio
async def test_leave_task_room_is_idempotent(registry, socket_transport, alice, make_token):
    await registry.connect("sid-a", make_token(alice.id))
    await registry.join_task_room("sid-a", "T1")

    assert await registry.leave_task_room("sid-a", "T1")
    assert await registry.leave_task_room("sid-a", "T1")
    await registry.emit_to_task("T1", ServerEvent.COMMENT_ADDED, {})

    assert socket_transport.received("sid-a") == []
    assert "task:T1" not in registry.session("sid-a").rooms


@pytest.mark.asyncio
@pytest.mark.parametrize("task_id", ["", "   ", None, 42, {"id": "T1"}])
async def test_join_rejects_malformed_task_ids(registry, alice, task_id, make_token):
    await registry.connect("sid-a", make_token(alice.id))

    assert await registry.join_task_room("sid-a", task_id) is False
    assert registry.session("sid-a").rooms == {"user:user-a"}


@pytest.mark.asyncio
async def test_join_requires_a_session(registry):
    assert await registry.join_task_room("unknown", "T1") is False


@pytest.mark.asyncio
async def test_broadcast_reaches_everyone(registry, socket_transport, alice, bob, make_token):
    await registry.connect("sid-a", make_token(alice.id))
    await registry.connect("sid-b", make_token(bob.id))

    await registry.broadcast(ServerEvent.TASK_CREATED, {"id": "T1"})

    assert socket_transport.received("sid-a") == ["task:created"]
    assert socket_transport.received("sid-b") == ["task:created"]


@pytest.mark.asyncio
async def test_emit_to_users_dedupes(registry, socket_transport, alice, bob, make_token):
    await registry.connect("sid-a", make_token(alice.id))
    await registry.connect("sid-b", make_token(bob.id))

    await registry.emit_to_users([alice.id, alice.id, bob.id], ServerEvent.TASK_UPDATED, {})

    assert socket_transport.received("sid-a") == ["task:updated"]
    assert socket_transport.received("sid-b") == ["task:updated"]


@pytest.mark.asyncio
async def test_emit_without_transport_is_dropped(directory):
    registry = RealtimeSessionRegistry(directory)

    await registry.broadcast(ServerEvent.TASK_DELETED, {"taskId": "T1"})
    await registry.emit_to_task("T1", ServerEvent.TASK_UPDATED, {})
    await registry.emit_to_user("user-a", ServerEvent.TASK_UPDATED, {})

    assert not registry.bound


@pytest.mark.asyncio
async def test_transport_errors_do_not_propagate(registry, socket_transport, alice, make_token):
    await registry.connect("sid-a", make_token(alice.id))
    socket_transport.fail_emits = True

    await registry.broadcast(ServerEvent.TASK_CREATED, {"id": "T1"})

    assert socket_transport.emitted == []


@pytest.mark.asyncio
async def test_unbind_clears_sessions(registry, alice, make_token):
    await registry.connect("sid-a", make_token(alice.id))

    registry.unbind()

    assert not registry.bound
    assert registry.online_count() == 0
