"""
Audit logging. Security-relevant events only; no secrets, signatures, tokens or request bodies.
Rows older than AUDIT_RETENTION_DAYS are pruned every AUDIT_PRUNE_EVERY writes and at startup.
"""
import itertools
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete
from sqlalchemy.orm import Session

from wboard_connector.config import AUDIT_PRUNE_EVERY, AUDIT_RETENTION_DAYS
from wboard_connector.models import AuditLog

logger = logging.getLogger(__name__)

EVENT_REQUEST_REJECTED = "request_rejected"
EVENT_AUTOLOGIN_ISSUED = "autologin_issued"
EVENT_AUTOLOGIN_DENIED = "autologin_denied"
EVENT_AUTOLOGIN_REDEEMED = "autologin_redeemed"
EVENT_AUTOLOGIN_REJECTED = "autologin_rejected"
EVENT_KEY_ROTATED = "key_rotated"

OUTCOME_SUCCESS = "success"
OUTCOME_FAIL = "fail"

_writes = itertools.count(1)


def log_audit(
    db: Session,
    event_type: str,
    *,
    user_id: int | None = None,
    ip: str | None = None,
    outcome: str = OUTCOME_SUCCESS,
    reason: str | None = None,
) -> None:
    """Append one audit record."""
    db.add(
        AuditLog(
            event_type=event_type,
            user_id=user_id,
            ip=ip,
            outcome=outcome,
            reason=reason,
        )
    )
    db.commit()
    if AUDIT_PRUNE_EVERY > 0 and next(_writes) % AUDIT_PRUNE_EVERY == 0:
        prune_audit_logs(db)


def query_audit_logs(
    db: Session,
    *,
    limit: int = 100,
    event_type: str | None = None,
    outcome: str | None = None,
) -> list[dict]:
    """Audit events with optional filters. Most recent first."""
    q = db.query(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    if event_type:
        q = q.filter(AuditLog.event_type == event_type)
    if outcome:
        q = q.filter(AuditLog.outcome == outcome)
    rows = q.limit(min(max(1, limit), 500)).all()
    return [
        {
            "created_at": r.created_at.isoformat() if r.created_at else None,
            "event_type": r.event_type,
            "user_id": r.user_id,
            "ip": r.ip,
            "outcome": r.outcome,
            "reason": r.reason,
        }
        for r in rows
    ]


def prune_audit_logs(db: Session, *, max_age_days: int = AUDIT_RETENTION_DAYS) -> int:
    """Delete audit rows older than max_age_days. Returns the number removed."""
    if max_age_days <= 0:
        return 0
    # Stored naive in UTC (SQLite drops the offset)
    cutoff = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=max_age_days)
    result = db.execute(
        delete(AuditLog).where(AuditLog.created_at < cutoff).execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.info("Pruned %s audit rows older than %s days", result.rowcount, max_age_days)
    return result.rowcount
