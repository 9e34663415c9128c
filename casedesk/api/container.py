"""
Service wiring for the casedesk API.

One Container per application instance; nothing is shared through module
globals, so tests build as many isolated instances as they like.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from ..config import Settings
from ..db import Database
from ..repositories import (
    CaseRepositories,
    EvaluationConfigRepository,
    NotificationRepository,
    PersonDirectory,
    UserDirectory,
)
from ..services import (
    CaseLifecycleService,
    CatalogCache,
    ChannelWorker,
    EvaluationCatalog,
    NotificationDispatcher,
    NotificationInbox,
    StaleCaseMonitor,
    TelegramChannel,
)

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    database: Database

    case_repos: CaseRepositories
    people: PersonDirectory
    users: UserDirectory

    catalog: EvaluationCatalog
    inbox: NotificationInbox
    channel: TelegramChannel
    channel_worker: ChannelWorker
    dispatcher: NotificationDispatcher
    lifecycle: CaseLifecycleService
    monitor: StaleCaseMonitor

    @classmethod
    def build(
        cls,
        settings: Settings,
        people: Optional[PersonDirectory] = None,
        users: Optional[UserDirectory] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        database: Optional[Database] = None
    ) -> "Container":
        if database is None:
            database = Database(settings.database_url, echo=settings.database_echo)
        database.create_all()

        case_repos = CaseRepositories(database)
        people = people or PersonDirectory()
        users = users or UserDirectory()

        catalog = EvaluationCatalog(
            EvaluationConfigRepository(database),
            cache=CatalogCache(ttl_seconds=settings.catalog_cache_ttl_seconds)
        )
        inbox = NotificationInbox(NotificationRepository(database))
        channel = TelegramChannel(
            bot_token=settings.telegram_bot_token,
            chat_id=settings.telegram_chat_id,
            api_base=settings.telegram_api_base,
            timeout=settings.telegram_timeout_seconds,
            transport=transport
        )
        channel_worker = ChannelWorker(channel, maxsize=settings.channel_queue_maxsize)
        dispatcher = NotificationDispatcher(
            inbox,
            users,
            channel_worker=channel_worker,
            dashboard_url=settings.dashboard_url,
            stale_threshold_hours=settings.stale_threshold_hours,
            timezone_name=settings.display_timezone
        )
        lifecycle = CaseLifecycleService(
            case_repos,
            people,
            catalog,
            dispatcher,
            default_requester_id=settings.default_requester_id
        )
        monitor = StaleCaseMonitor(
            case_repos,
            people,
            inbox,
            dispatcher,
            threshold_hours=settings.stale_threshold_hours,
            interval_seconds=settings.stale_monitor_interval_seconds
        )

        return cls(
            settings=settings,
            database=database,
            case_repos=case_repos,
            people=people,
            users=users,
            catalog=catalog,
            inbox=inbox,
            channel=channel,
            channel_worker=channel_worker,
            dispatcher=dispatcher,
            lifecycle=lifecycle,
            monitor=monitor,
        )

    async def startup(self) -> None:
        if not self.channel.is_configured:
            logger.warning("Telegram channel not configured; external notifications disabled")
        await self.channel_worker.start()
        if self.settings.stale_monitor_enabled:
            await self.monitor.start()

    async def shutdown(self) -> None:
        await self.monitor.stop()
        await self.channel_worker.stop()
