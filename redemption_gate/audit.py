import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from .db import ReadSessionLocal, SessionLocal
from .models import AuditLog

log = logging.getLogger(__name__)


def record_decision(
    decision_id: str,
    action: str,
    status: str,
    reason_code: str,
    ticket_id: str | None = None,
    actor_id: str | None = None,
    ip: str = "unknown",
    user_agent: str = "",
) -> None:
    """Append one audit row. A failed write is logged, never raised: the
    decision it describes has already been made."""
    try:
        with SessionLocal() as db:
            db.add(AuditLog(
                decision_id=decision_id,
                action=action,
                actor_id=actor_id,
                ticket_id=ticket_id,
                status=status,
                reason_code=reason_code,
                ip=ip,
                user_agent=user_agent[:255],
            ))
            db.commit()
    except SQLAlchemyError:
        log.exception("audit write failed decision_id=%s ticket_id=%s", decision_id, ticket_id)


def recent_decisions(limit: int = 80, ticket_id: str | None = None) -> list[AuditLog]:
    q = select(AuditLog)
    if ticket_id:
        q = q.where(AuditLog.ticket_id == ticket_id)
    q = q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
    with ReadSessionLocal() as db:
        return list(db.execute(q).scalars().all())
