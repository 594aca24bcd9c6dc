"""
Audit trail viewer: /api/v1/audit-log
Read-only access to the change log.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker.database import get_session
from ssdf_tracker.middleware.context import ActorContext, get_actor_context
from ssdf_tracker.models import AuditAction, AuditLog
from ssdf_tracker.schemas.audit import AuditLogOut, AuditLogPage

router = APIRouter(prefix="/api/v1/audit-log", tags=["Audit Trail"])


@router.get("", response_model=AuditLogPage, summary="Browse the change log")
async def list_audit_logs(
    entity_type: str | None = Query(None, description="Assessment, AssessmentTaskResult, Mapping, ..."),
    entity_id: str | None = Query(None),
    action: AuditAction | None = Query(None),
    success: bool | None = Query(None, description="Only successful / only rejected attempts"),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    filters = []
    if entity_type:
        filters.append(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        filters.append(AuditLog.entity_id == entity_id)
    if action is not None:
        filters.append(AuditLog.action == action)
    if success is not None:
        filters.append(AuditLog.success == success)
    # Non-admins only see entries of their own organizations
    if not ctx.is_admin:
        filters.append(AuditLog.organization_id.in_(ctx.organization_ids or frozenset()))

    total = (await s.execute(select(func.count()).select_from(AuditLog).where(*filters))).scalar() or 0

    q = (
        select(AuditLog)
        .where(*filters)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    rows = (await s.execute(q)).scalars().all()
    return AuditLogPage(
        items=[AuditLogOut.model_validate(r) for r in rows],
        total=total, page=page, per_page=per_page,
    )
