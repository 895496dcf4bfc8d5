import fnmatch
import os
import time
from datetime import UTC, datetime, timedelta

# Settings are read at import time; keep tests independent of the host env
os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret-" + "x" * 64)
for _name in ("REDIS_URL", "DATABASE_URL", "SMTP_HOST", "SMTP_USER", "SMTP_PASS"):
    os.environ.pop(_name, None)

import jwt  # noqa: E402
import pytest  # noqa: E402

from app.auth.verify import TokenClaims, auth_dependency  # noqa: E402
from app.config import settings  # noqa: E402
from app.models.domain.notification_domain import JobPolicy  # noqa: E402
from app.models.domain.task_domain import TaskRecord, UserRef  # noqa: E402
from app.services.cache_service import CacheService  # noqa: E402
from app.services.email_service import EmailService  # noqa: E402
from app.services.infrastructure.redis_client import FastRedisClient  # noqa: E402
from app.services.mail_transport import MailTransportError  # noqa: E402
from app.services.mutation_dispatcher import MutationEventDispatcher  # noqa: E402
from app.services.notification_queue import NotificationQueues  # noqa: E402
from app.services.realtime.session_registry import RealtimeSessionRegistry  # noqa: E402


@pytest.fixture
def auth_override():
    def _override():
        return TokenClaims(user_id="user-123", email="user@example.com")

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply


class FakePipeline:
    """Buffers commands and replays them against FakeRedis on execute()."""

    def __init__(self, redis):
        self._redis = redis
        self._commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self._commands.clear()
        return False

    def __getattr__(self, name):
        def _queue(*args, **kwargs):
            self._commands.append((name, args, kwargs))
            return self

        return _queue

    async def execute(self):
        self._redis._check()
        results = []
        for name, args, kwargs in self._commands:
            results.append(await getattr(self._redis, name)(*args, **kwargs))
        self._commands.clear()
        return results


class FakeRedis:
    """In-memory stand-in for the subset of redis.asyncio.Redis we use."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.broken = False

    def _check(self):
        if self.broken:
            raise ConnectionError("redis unavailable")

    async def ping(self):
        self._check()
        return True

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def set(self, key, value):
        self._check()
        self.store[key] = value
        return True

    async def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            for bucket in (self.store, self.zsets):
                if key in bucket:
                    del bucket[key]
                    removed += 1
        return removed

    async def keys(self, pattern):
        self._check()
        every = list(self.store) + list(self.zsets)
        return [k for k in every if fnmatch.fnmatchcase(k, pattern)]

    async def exists(self, key):
        self._check()
        return int(key in self.store)

    async def expire(self, key, ttl):
        self._check()
        if key not in self.store:
            return False
        self.ttls[key] = ttl
        return True

    async def incr(self, key):
        self._check()
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value)
        return value

    async def flushall(self):
        self._check()
        self.store.clear()
        self.zsets.clear()
        return True

    async def zadd(self, key, mapping):
        self._check()
        self.zsets.setdefault(key, {}).update({str(m): float(s) for m, s in mapping.items()})
        return len(mapping)

    async def zrem(self, key, member):
        self._check()
        return int(self.zsets.get(key, {}).pop(str(member), None) is not None)

    async def zrangebyscore(self, key, min_score, max_score, start=None, num=None):
        self._check()
        low = float(min_score)
        high = float(max_score)
        members = sorted(
            (score, member)
            for member, score in self.zsets.get(key, {}).items()
            if low <= score <= high
        )
        ordered = [member for _, member in members]
        if start is not None and num is not None:
            ordered = ordered[start : start + num]
        return ordered

    async def zrange(self, key, start, end):
        self._check()
        ordered = [m for _, m in sorted((s, m) for m, s in self.zsets.get(key, {}).items())]
        return ordered[start : None if end == -1 else end + 1]

    async def zcard(self, key):
        self._check()
        return len(self.zsets.get(key, {}))

    def pipeline(self, transaction=True):
        return FakePipeline(self)


class FakeClock:
    def __init__(self, start: float | None = None):
        self.now = start if start is not None else float(int(time.time()))

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingMailTransport:
    """Mail transport that records sends and can be told to fail."""

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.sent: list[dict] = []
        self.failures_remaining = 0
        self.always_fail = False

    async def send(self, to, subject, html, text=None):
        if not self.configured:
            raise MailTransportError("SMTP transport not configured", recipient=to)
        if self.always_fail or self.failures_remaining > 0:
            self.failures_remaining = max(self.failures_remaining - 1, 0)
            raise MailTransportError("SMTP server rejected message", recipient=to)
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})


class InMemoryDirectory:
    """User and task lookups backed by dicts."""

    def __init__(self, users=(), tasks=()):
        self.users = {u.id: u for u in users}
        self.tasks = {t.id: t for t in tasks}
        self.fail_lookups = False

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def user_exists(self, user_id):
        if self.fail_lookups:
            raise RuntimeError("lookup failed")
        return user_id in self.users

    async def get_task(self, task_id):
        return self.tasks.get(task_id)


class FakeSocketTransport:
    """Records room membership and which sockets each emit reached."""

    def __init__(self):
        self.rooms: dict[str, set[str]] = {}
        self.connected: set[str] = set()
        self.emitted: list[tuple[str, object, str | None, frozenset]] = []
        self.fail_emits = False

    async def enter_room(self, sid, room, namespace=None):
        self.connected.add(sid)
        self.rooms.setdefault(room, set()).add(sid)

    async def leave_room(self, sid, room, namespace=None):
        self.rooms.get(room, set()).discard(sid)

    async def emit(self, event, data=None, to=None, **kwargs):
        if self.fail_emits:
            raise RuntimeError("transport down")
        recipients = self.connected if to is None else self.rooms.get(to, set())
        self.emitted.append((event, data, to, frozenset(recipients)))

    def disconnect(self, sid):
        self.connected.discard(sid)
        for members in self.rooms.values():
            members.discard(sid)

    def received(self, sid) -> list[str]:
        return [event for event, _, _, recipients in self.emitted if sid in recipients]


def _encode_token(user_id: str, email: str | None = None, expires_in: int = 3600, **extra) -> str:
    claims = {"userId": user_id, "exp": datetime.now(UTC) + timedelta(seconds=expires_in), **extra}
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.JWT_ACCESS_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def make_token():
    return _encode_token


@pytest.fixture
def alice():
    return UserRef(id="user-a", name="Alice", email="alice@example.com")


@pytest.fixture
def bob():
    return UserRef(id="user-b", name="Bob", email="bob@example.com")


@pytest.fixture
def carol():
    return UserRef(id="user-c", name="Carol", email="carol@example.com")


@pytest.fixture
def make_task(alice):
    def _make(**overrides) -> TaskRecord:
        fields = {"id": "task-1", "title": "Ship release", "created_by": alice}
        fields.update(overrides)
        return TaskRecord(**fields)

    return _make


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_client(fake_redis):
    return FastRedisClient(name="test", client=fake_redis)


@pytest.fixture
def disabled_redis_client():
    return FastRedisClient(None, name="disabled")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queues(redis_client, clock):
    return NotificationQueues(redis_client, JobPolicy(), clock=clock)


@pytest.fixture
def cache(redis_client):
    return CacheService(redis_client)


@pytest.fixture
def mail_transport():
    return RecordingMailTransport()


@pytest.fixture
def directory(alice, bob, carol):
    return InMemoryDirectory(users=[alice, bob, carol])


@pytest.fixture
def socket_transport():
    return FakeSocketTransport()


@pytest.fixture
def registry(directory, socket_transport):
    registry = RealtimeSessionRegistry(directory)
    registry.bind(socket_transport)
    return registry


@pytest.fixture
def email_service(queues, mail_transport):
    return EmailService(queues, mail_transport)


@pytest.fixture
def dispatcher(cache, email_service, registry):
    return MutationEventDispatcher(cache, email_service, registry)
