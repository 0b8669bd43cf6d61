from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from casedesk.models import CaseHistory, SyncOperation, SyncTable
from casedesk.services.sync_store import enqueue_sync


def log_case_history(
    db: Session,
    *,
    case_id: int,
    user_id: int | None,
    action: str,
    notes: str | None = None,
) -> CaseHistory:
    entry = CaseHistory(
        case_id=case_id,
        user_id=user_id,
        action=action,
        notes=notes,
    )
    db.add(entry)
    db.flush()
    enqueue_sync(db, SyncTable.CASE_HISTORY, entry.id, SyncOperation.CREATE)
    return entry


def list_case_history(db: Session, *, case_id: int) -> list[CaseHistory]:
    return db.execute(
        select(CaseHistory).where(CaseHistory.case_id == case_id).order_by(CaseHistory.id.asc())
    ).scalars().all()
