from typing import List
from uuid import UUID
from fastapi import APIRouter, Depends, Query

from app.core.dependencies import get_current_user, get_audit_service
from app.core.permissions import Action, check_permission
from app.db.schema import User
from app.models.audit import AuditLogRead
from app.services.audit import AuditService

router = APIRouter()


@router.get(
    "/",
    response_model=List[AuditLogRead],
    summary="List Audit Log",
    tags=["Audit"]
)
def list_audit_logs(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    current_user: User = Depends(get_current_user),
    service: AuditService = Depends(get_audit_service)
):
    """
    Newest first. Restricted to auditors, compliance managers and admins.
    """
    return service.list_logs(current_user, limit=limit, offset=offset)


@router.get(
    "/entity/{entity_id}",
    response_model=List[AuditLogRead],
    summary="Audit Trail of an Entity",
    tags=["Audit"]
)
def list_entity_logs(
    entity_id: str,
    current_user: User = Depends(get_current_user),
    service: AuditService = Depends(get_audit_service)
):
    check_permission(current_user, Action.AUDIT_READ)
    return service.list_for_entity(entity_id)


@router.get(
    "/user/{user_id}",
    response_model=List[AuditLogRead],
    summary="Audit Trail of a User",
    tags=["Audit"]
)
def list_user_logs(
    user_id: str,
    current_user: User = Depends(get_current_user),
    service: AuditService = Depends(get_audit_service)
):
    check_permission(current_user, Action.AUDIT_READ)
    return service.list_for_user(user_id)


@router.get(
    "/{log_id}",
    response_model=AuditLogRead,
    summary="Get Audit Entry",
    tags=["Audit"]
)
def get_audit_log(
    log_id: UUID,
    current_user: User = Depends(get_current_user),
    service: AuditService = Depends(get_audit_service)
):
    check_permission(current_user, Action.AUDIT_READ)
    return service.get_log_or_404(log_id)
