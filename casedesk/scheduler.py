from __future__ import annotations

import logging
from collections.abc import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from casedesk.auth import AgentSession
from casedesk.config import settings
from casedesk.services.sync_engine import SyncEngine
from casedesk.services.time_utils import utcnow

logger = logging.getLogger(__name__)

SYNC_JOB_ID = 'casedesk-periodic-sync'


class SyncScheduler:
    """Runs a push+pull cycle on a fixed interval for whoever is signed in."""

    def __init__(
        self,
        engine: SyncEngine,
        session_provider: Callable[[], AgentSession | None],
        *,
        interval_seconds: int | None = None,
    ) -> None:
        self.engine = engine
        self.session_provider = session_provider
        self.interval_seconds = interval_seconds or settings.sync_interval_seconds
        self.scheduler = BackgroundScheduler(timezone='UTC')

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def tick(self) -> None:
        session = self.session_provider()
        if session is None:
            logger.debug('Periodic sync skipped: nobody is signed in')
            return
        pushed, pulled = self.engine.run_cycle(session)
        logger.info('Periodic sync: %s', pushed.message)
        if pulled is not None:
            logger.info('Periodic download: %s', pulled.message)

    def start(self) -> None:
        if self.scheduler.running:
            return
        self.scheduler.add_job(
            self.tick,
            IntervalTrigger(seconds=self.interval_seconds),
            id=SYNC_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            next_run_time=utcnow(),
        )
        self.scheduler.start()
        logger.info('Sync scheduler started (every %ss)', self.interval_seconds)

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info('Sync scheduler stopped')
