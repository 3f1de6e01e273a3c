"""
Security audit trail: logins, registrations, code and token issuance, revocations, client changes.
Rows never carry tokens, secrets or passwords.
"""
import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from pizza_api.database import get_db
from pizza_api.middleware import RequireAdmin
from pizza_api.models import AuditLog

logger = logging.getLogger(__name__)

EVENT_LOGIN_OK = "login_ok"
EVENT_LOGIN_FAIL = "login_fail"
EVENT_REGISTER = "register"
EVENT_CODE_ISSUED = "code_issued"
EVENT_TOKEN_ISSUED = "token_issued"
EVENT_TOKEN_DENIED = "token_denied"
EVENT_TOKEN_REVOKED = "token_revoked"
EVENT_CLIENT_CREATED = "client_created"
EVENT_CLIENT_DELETED = "client_deleted"

OUTCOME_SUCCESS = "success"
OUTCOME_FAIL = "fail"


def get_client_ip(request: Request | None) -> str | None:
    # Peer address only; X-Forwarded-For is spoofable
    if request is None or request.client is None:
        return None
    return request.client.host


def log_audit(
    db: Session,
    event_type: str,
    *,
    client_id: str | None = None,
    user_id: int | None = None,
    ip: str | None = None,
    outcome: str = OUTCOME_SUCCESS,
) -> None:
    db.add(AuditLog(event_type=event_type, client_id=client_id, user_id=user_id, ip=ip, outcome=outcome))
    db.commit()
    logger.debug("audit %s outcome=%s client_id=%s user_id=%s", event_type, outcome, client_id, user_id)


router = APIRouter(tags=["audit"])


@router.get("/api/v1/protected/admin/audit", dependencies=[RequireAdmin])
def list_audit_logs(
    limit: int = Query(100, ge=1, le=500),
    event_type: str | None = None,
    outcome: str | None = None,
    client_id: str | None = None,
    user_id: int | None = None,
    db: Session = Depends(get_db),
):
    """Recent audit events, newest first, optionally filtered."""
    stmt = select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    filters = (
        (AuditLog.event_type, event_type),
        (AuditLog.outcome, outcome),
        (AuditLog.client_id, client_id),
        (AuditLog.user_id, user_id),
    )
    for column, value in filters:
        if value not in (None, ""):
            stmt = stmt.where(column == value)
    return [row.to_dict() for row in db.scalars(stmt.limit(limit))]
