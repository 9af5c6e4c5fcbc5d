"""Cadence application factory: wires settings into a runnable worker."""

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncEngine

from cadence.config import Settings
from cadence.db import create_engine_from_settings, create_session_factory
from cadence.integrations import (
    AnthropicCompletionClient,
    HttpWebScraper,
    SMTPEmailSender,
)
from cadence.services import (
    ActionDependencies,
    ActionExecutor,
    CronScheduleResolver,
    SchedulerWorker,
    TaskEngine,
)
from cadence.store import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class Application:
    settings: Settings
    db_engine: AsyncEngine
    store: TaskStore
    engine: TaskEngine
    worker: SchedulerWorker

    async def close(self) -> None:
        await self.db_engine.dispose()
        logger.info("Database connection closed")


def build_dependencies(settings: Settings) -> ActionDependencies:
    """Construct the collaborators the settings provide credentials for."""
    deps = ActionDependencies(web_scraper=HttpWebScraper())

    if settings.anthropic_api_key:
        deps.completion = AnthropicCompletionClient(api_key=settings.anthropic_api_key)
    else:
        logger.warning("CADENCE_ANTHROPIC_API_KEY not set, AI actions will fail")

    if settings.smtp_host:
        deps.email_sender = SMTPEmailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            from_addr=settings.smtp_from,
            starttls=settings.smtp_starttls,
        )

    return deps


def create_application(
    settings: Settings | None = None,
    deps: ActionDependencies | None = None,
) -> Application:
    settings = settings or Settings()

    db_engine = create_engine_from_settings(settings)
    session_factory = create_session_factory(db_engine)
    logger.info(f"Database connection configured: {settings.database_url.split('@')[-1]}")

    store = TaskStore(
        session_factory,
        worker_id=settings.worker_id,
        claim_ttl=timedelta(seconds=settings.claim_ttl_seconds),
    )
    executor = ActionExecutor(
        deps if deps is not None else build_dependencies(settings),
        default_model=settings.default_model,
        max_tokens=settings.max_tokens,
        report_max_tokens=settings.report_max_tokens,
        timeout=settings.action_timeout_seconds,
    )
    engine = TaskEngine(
        store,
        executor,
        resolver=CronScheduleResolver(settings.scheduler_timezone),
    )
    worker = SchedulerWorker(
        store,
        engine,
        poll_interval_ms=settings.poll_interval_ms,
        batch_size=settings.batch_size,
        retention_days=settings.retention_days,
        history_per_task=settings.history_per_task,
    )
    return Application(
        settings=settings,
        db_engine=db_engine,
        store=store,
        engine=engine,
        worker=worker,
    )
