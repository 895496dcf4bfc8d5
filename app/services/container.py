"""Long-lived services shared by the API process."""

from dataclasses import dataclass, field

from fastapi import HTTPException, Request, status

from app.config import settings
from app.jobs.notification_worker import NotificationWorker
from app.repositories.directory import (
    PostgresTaskDirectory,
    PostgresUserDirectory,
    TaskDirectory,
    UserDirectory,
)
from app.services.cache_service import CacheService
from app.services.email_service import EmailService
from app.services.infrastructure.redis_client import FastRedisClient
from app.services.mail_transport import SmtpMailTransport
from app.services.mutation_dispatcher import MutationEventDispatcher
from app.services.notification_queue import NotificationQueues
from app.services.realtime.session_registry import RealtimeSessionRegistry


@dataclass(slots=True)
class AppServices:
    """Bundle long-lived application services."""

    cache: CacheService
    queues: NotificationQueues
    transport: SmtpMailTransport
    email_service: EmailService
    users: UserDirectory
    tasks: TaskDirectory
    realtime: RealtimeSessionRegistry
    dispatcher: MutationEventDispatcher
    workers: list[NotificationWorker] = field(default_factory=list)

    @classmethod
    def create(cls) -> "AppServices":
        # Separate connections so queue polling never contends with cache reads
        cache = CacheService(FastRedisClient(settings.REDIS_URL, name="cache"))
        queues = NotificationQueues(FastRedisClient(settings.REDIS_URL, name="queue"))
        transport = SmtpMailTransport()
        email_service = EmailService(queues, transport)
        users = PostgresUserDirectory()
        tasks = PostgresTaskDirectory()
        realtime = RealtimeSessionRegistry(users)
        dispatcher = MutationEventDispatcher(cache, email_service, realtime)
        return cls(
            cache=cache,
            queues=queues,
            transport=transport,
            email_service=email_service,
            users=users,
            tasks=tasks,
            realtime=realtime,
            dispatcher=dispatcher,
        )


def get_services(request: Request) -> AppServices:
    """FastAPI dependency returning the services built during startup."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Services not initialized"
        )
    return services
