"""
api/routes/v1/audit.py -- Read-only view of the audit trail (admin only).
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import AuditEntryResponse, ok
from auth.dependencies import require_admin
from auth.models import User

router = APIRouter()


@router.get("/audit-logs")
def list_audit_logs(
    request: Request,
    entity: Optional[str] = Query(None, max_length=40),
    entity_id: Optional[str] = Query(None, alias="entityId", max_length=36),
    user_id: Optional[str] = Query(None, alias="userId", max_length=36),
    limit: int = Query(100, ge=1, le=500),
    _admin: User = Depends(require_admin),
) -> dict:
    entries = request.app.state.audit_store.list_entries(
        entity=entity, entity_id=entity_id, user_id=user_id, limit=limit
    )
    return ok([AuditEntryResponse.from_domain(e) for e in entries])
