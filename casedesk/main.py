from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from casedesk.config import settings
from casedesk.db import init_db
from casedesk.log_config import configure_logging
from casedesk.routers import attendance, cases, session, sync
from casedesk.scheduler import SyncScheduler
from casedesk.services.sync_engine import SyncEngine


def create_app(*, sync_engine: SyncEngine | None = None, start_scheduler: bool | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        init_db()
        scheduler = SyncScheduler(app.state.sync_engine, lambda: app.state.agent_session)
        app.state.sync_scheduler = scheduler
        if settings.sync_enabled if start_scheduler is None else start_scheduler:
            scheduler.start()
        try:
            yield
        finally:
            scheduler.shutdown()

    app = FastAPI(title='Case Desk', lifespan=lifespan)
    app.state.agent_session = None
    app.state.sync_engine = sync_engine or SyncEngine()

    app.include_router(session.router)
    app.include_router(cases.router)
    app.include_router(attendance.router)
    app.include_router(sync.router)

    @app.get('/health')
    def health() -> dict:
        return {'status': 'ok'}

    return app


app = create_app()
