from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from casedesk.dependencies import get_sync_engine
from casedesk.schemas import ImportSummaryRead, SyncStatusRead, SyncSummaryRead
from casedesk.services.sync_engine import SyncEngine

router = APIRouter(prefix='/sync', tags=['sync'])


def _agent_session(request: Request):
    # No 401 here: the engine reports a missing session as an unauthenticated summary.
    return getattr(request.app.state, 'agent_session', None)


@router.post('/now', response_model=SyncSummaryRead)
def sync_now(request: Request, engine: SyncEngine = Depends(get_sync_engine)):
    return SyncSummaryRead.model_validate(engine.sync_now(_agent_session(request)))


@router.post('/import', response_model=ImportSummaryRead)
def import_from_server(request: Request, engine: SyncEngine = Depends(get_sync_engine)):
    return ImportSummaryRead.model_validate(engine.download_from_server(_agent_session(request)))


@router.get('/status', response_model=SyncStatusRead)
def sync_status(engine: SyncEngine = Depends(get_sync_engine)):
    return SyncStatusRead.model_validate(engine.get_status())


@router.post('/retry-failed')
def retry_failed(engine: SyncEngine = Depends(get_sync_engine)) -> dict:
    return {'reset': engine.retry_failed()}
