"""
Assessment lifecycle and task result editing.

Creating an assessment seeds one task result per SSDF task and the first DRAFT
release, then derives every mapped CIS target. Editing a task result goes
through the editing gate, re-derives the task's CIS targets in every assessment
holding it, and records task history plus field-level audit entries.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker.errors import NotFoundError, ValidationError
from ssdf_tracker.middleware.audit import log_audit_event, log_field_changes, log_task_history
from ssdf_tracker.middleware.context import ActorContext
from ssdf_tracker.models import (
    Assessment,
    AssessmentCisResult,
    AssessmentTaskHistory,
    AssessmentTaskResult,
    AssessmentSnapshot,
    AuditAction,
    Role,
    SnapshotType,
    SsdfStatus,
    SsdfTask,
)
from ssdf_tracker.models.base import utcnow
from ssdf_tracker.repositories import get_assessment, get_organization, get_task_result
from ssdf_tracker.schemas.assessment import AssessmentCreate, AssessmentUpdate, TaskResultUpdate
from ssdf_tracker.schemas.snapshot import AssessmentSnapshotData, SnapshotComparison, SnapshotCreate
from ssdf_tracker.services import cis_derivation, snapshot, ssdf_scoring
from ssdf_tracker.services.ssdf_scoring import TaskScore
from ssdf_tracker.services.release import (
    create_release,
    ensure_can_edit,
    ensure_organization_access,
    ensure_organization_id_access,
    ensure_role,
    log_editing_override,
)

logger = logging.getLogger(__name__)

EDITOR_ROLES = frozenset({Role.ADMIN, Role.ASSESSOR})

ASSESSMENT_FIELDS = [
    "name", "unit", "scope", "assessment_owner", "start_date", "review_date", "notes",
]

TASK_AUDIT_FIELDS = [
    "status", "maturity_level", "target_level", "weight", "owner", "team",
    "due_date", "last_review", "evidence_text", "evidence_links", "comments",
]
# History additionally tracks the derived applicable flag
TASK_HISTORY_FIELDS = [
    "status", "applicable", "maturity_level", "target_level", "weight", "owner",
    "due_date", "comments", "team", "last_review", "evidence_text", "evidence_links",
]


def _snapshot_fields(obj, fields: list[str]) -> dict[str, Any]:
    return {f: getattr(obj, f) for f in fields}


# ═══════════════════════════════════════════════════════════════
# ASSESSMENTS
# ═══════════════════════════════════════════════════════════════

async def create_assessment(
    s: AsyncSession,
    data: AssessmentCreate,
    actor: ActorContext,
    *,
    default_target_level: int = 2,
    default_task_weight: int = 3,
) -> Assessment:
    org = await get_organization(s, data.organization_id)
    ensure_role(
        actor, EDITOR_ROLES,
        entity_type="Assessment", entity_id=None, organization_id=org.id,
        message="Only admins and assessors may create assessments",
    )
    ensure_organization_id_access(actor, org.id)

    now = utcnow()
    assessment = Assessment(
        **data.model_dump(),
        created_by_id=actor.actor_id,
        created_at=now,
        updated_at=now,
    )
    s.add(assessment)
    await s.flush()

    await create_release(s, assessment.id, actor.actor_id)

    task_ids = (await s.execute(select(SsdfTask.id).order_by(SsdfTask.order_id, SsdfTask.id))).scalars().all()
    for task_id in task_ids:
        s.add(AssessmentTaskResult(
            assessment_id=assessment.id,
            ssdf_task_id=task_id,
            applicable=True,
            status=SsdfStatus.NOT_STARTED,
            maturity_level=0,
            target_level=default_target_level,
            weight=default_task_weight,
            evidence_links=[],
        ))
    await s.flush()

    await cis_derivation.recalculate_for_assessment(s, assessment.id, actor.actor_id)

    await log_audit_event(
        s,
        action=AuditAction.CREATE,
        entity_type="Assessment",
        entity_id=assessment.id,
        field_name="name",
        new_value=assessment.name,
        organization_id=org.id,
        actor=actor,
        metadata={"task_results": len(task_ids)},
    )
    logger.info(
        "Created assessment %s (%s) with %d task results", assessment.id, assessment.name, len(task_ids),
    )
    return assessment


async def update_assessment(
    s: AsyncSession, assessment_id: int, data: AssessmentUpdate, actor: ActorContext,
) -> Assessment:
    assessment = await get_assessment(s, assessment_id)
    grant = await ensure_can_edit(s, assessment, actor)

    before = _snapshot_fields(assessment, ASSESSMENT_FIELDS)
    for field, value in data.model_dump(exclude_unset=True).items():
        if field == "name" and not value:
            raise ValidationError("Assessment name cannot be empty")
        setattr(assessment, field, value)
    after = _snapshot_fields(assessment, ASSESSMENT_FIELDS)

    if grant.override:
        await log_editing_override(s, assessment, grant, actor)
    await log_field_changes(
        s,
        action=AuditAction.UPDATE,
        entity_type="Assessment",
        entity_id=assessment.id,
        organization_id=assessment.organization_id,
        actor=actor,
        before=before,
        after=after,
        fields=ASSESSMENT_FIELDS,
    )
    return assessment


async def delete_assessment(s: AsyncSession, assessment_id: int, actor: ActorContext) -> Assessment:
    """Soft delete. The assessment disappears from reads and from recalculation fan-out."""
    assessment = await get_assessment(s, assessment_id)
    ensure_organization_access(actor, assessment)
    ensure_role(
        actor, frozenset({Role.ADMIN}),
        entity_type="Assessment", entity_id=assessment.id,
        organization_id=assessment.organization_id, field_name="deletedAt",
        message="Only admins may delete assessments",
    )
    task_results = (await s.execute(
        select(func.count()).select_from(AssessmentTaskResult)
        .where(AssessmentTaskResult.assessment_id == assessment.id)
    )).scalar() or 0
    cis_results = (await s.execute(
        select(func.count()).select_from(AssessmentCisResult)
        .where(AssessmentCisResult.assessment_id == assessment.id)
    )).scalar() or 0

    assessment.deleted_at = utcnow()
    await log_audit_event(
        s,
        action=AuditAction.DELETE,
        entity_type="Assessment",
        entity_id=assessment.id,
        field_name="deletedAt",
        new_value=assessment.deleted_at,
        organization_id=assessment.organization_id,
        actor=actor,
        metadata={
            "assessment_name": assessment.name,
            "counts": {"task_results": task_results, "cis_results": cis_results},
        },
    )
    logger.info("Soft-deleted assessment %s", assessment.id)
    return assessment


# ═══════════════════════════════════════════════════════════════
# TASK RESULTS
# ═══════════════════════════════════════════════════════════════

def _validate_levels(values: dict[str, Any]) -> None:
    for field in ("maturity_level", "target_level"):
        value = values.get(field)
        if value is not None and not 0 <= value <= ssdf_scoring.MAX_MATURITY_LEVEL:
            raise ValidationError(
                f"{field} must be between 0 and {ssdf_scoring.MAX_MATURITY_LEVEL}",
                details={"field": field, "value": value},
            )
    weight = values.get("weight")
    if weight is not None and not ssdf_scoring.MIN_TASK_WEIGHT <= weight <= ssdf_scoring.MAX_TASK_WEIGHT:
        raise ValidationError(
            f"weight must be between {ssdf_scoring.MIN_TASK_WEIGHT} and {ssdf_scoring.MAX_TASK_WEIGHT}",
            details={"field": "weight", "value": weight},
        )


async def update_task_result(
    s: AsyncSession,
    assessment_id: int,
    task_id: str,
    data: TaskResultUpdate,
    actor: ActorContext,
) -> AssessmentTaskResult:
    values = data.model_dump(exclude_unset=True)
    reason = values.pop("reason", None)
    for field in ("maturity_level", "target_level", "weight", "status"):
        if field in values and values[field] is None:
            del values[field]
    _validate_levels(values)

    assessment = await get_assessment(s, assessment_id)
    row = await get_task_result(s, assessment.id, task_id)
    grant = await ensure_can_edit(s, assessment, actor)

    before = _snapshot_fields(row, TASK_HISTORY_FIELDS)

    status = ssdf_scoring.normalize_status(values.pop("applicable", None), values.pop("status", row.status))
    if "evidence_links" in values:
        values["evidence_links"] = ssdf_scoring.parse_evidence_links(values["evidence_links"])
    for field in ("owner", "team", "evidence_text", "comments"):
        if field in values and not values[field]:
            values[field] = None
    for field, value in values.items():
        setattr(row, field, value)
    row.status = status
    row.applicable = ssdf_scoring.is_applicable(status)
    row.updated_by_id = actor.actor_id
    await s.flush()

    after = _snapshot_fields(row, TASK_HISTORY_FIELDS)

    if grant.override:
        await log_editing_override(s, assessment, grant, actor, reason)

    await cis_derivation.recalculate_task_everywhere(s, task_id, actor.actor_id)

    await log_task_history(
        s,
        task_result_id=row.id,
        actor=actor,
        reason=reason,
        metadata={"override": True, "release_status": grant.release_status} if grant.override else None,
        before=before,
        after=after,
        fields=TASK_HISTORY_FIELDS,
    )
    await log_field_changes(
        s,
        action=AuditAction.UPDATE,
        entity_type="AssessmentTaskResult",
        entity_id=row.id,
        organization_id=assessment.organization_id,
        actor=actor,
        before=before,
        after=after,
        fields=TASK_AUDIT_FIELDS,
    )
    return row


async def list_task_history(
    s: AsyncSession, assessment_id: int, task_id: str, actor: ActorContext,
) -> list[AssessmentTaskHistory]:
    assessment = await get_assessment(s, assessment_id)
    ensure_organization_access(actor, assessment)
    row = await get_task_result(s, assessment.id, task_id)
    return list((await s.execute(
        select(AssessmentTaskHistory)
        .where(AssessmentTaskHistory.task_result_id == row.id)
        .order_by(AssessmentTaskHistory.created_at.desc(), AssessmentTaskHistory.id.desc())
    )).scalars().all())


# ═══════════════════════════════════════════════════════════════
# STATS / SNAPSHOTS
# ═══════════════════════════════════════════════════════════════

async def live_snapshot(s: AsyncSession, assessment_id: int, actor: ActorContext) -> AssessmentSnapshotData:
    """Current (draft) aggregates of an assessment."""
    assessment = await get_assessment(s, assessment_id)
    ensure_organization_access(actor, assessment)
    return await snapshot.build_assessment_snapshot(s, assessment.id)


async def roadmap(
    s: AsyncSession, assessment_id: int, actor: ActorContext, limit: int | None = None,
) -> list[TaskScore]:
    assessment = await get_assessment(s, assessment_id)
    ensure_organization_access(actor, assessment)
    rows = [score for _, score in await snapshot.load_task_scores(s, assessment.id)]
    return ssdf_scoring.rank_by_priority(rows, limit)


async def take_snapshot(
    s: AsyncSession, assessment_id: int, data: SnapshotCreate, actor: ActorContext,
) -> AssessmentSnapshot:
    assessment = await get_assessment(s, assessment_id)
    ensure_organization_access(actor, assessment)
    ensure_role(
        actor, EDITOR_ROLES,
        entity_type="AssessmentSnapshot", entity_id=None,
        organization_id=assessment.organization_id,
        message="Only admins and assessors may take snapshots",
    )
    if data.type == SnapshotType.APPROVED:
        raise ValidationError("APPROVED snapshots are only created by approving a release")
    row = await snapshot.create_assessment_snapshot(
        s, assessment.id, data.type, label=data.label, actor_id=actor.actor_id,
    )
    await log_audit_event(
        s,
        action=AuditAction.CREATE,
        entity_type="AssessmentSnapshot",
        entity_id=row.id,
        field_name="type",
        new_value=row.type,
        organization_id=assessment.organization_id,
        actor=actor,
        metadata={"label": row.label} if row.label else None,
    )
    return row


async def list_snapshots(s: AsyncSession, assessment_id: int, actor: ActorContext) -> list[AssessmentSnapshot]:
    assessment = await get_assessment(s, assessment_id)
    ensure_organization_access(actor, assessment)
    return await snapshot.list_assessment_snapshots(s, assessment.id)


async def get_snapshot(
    s: AsyncSession, assessment_id: int, snapshot_id: int, actor: ActorContext,
) -> AssessmentSnapshot:
    assessment = await get_assessment(s, assessment_id)
    ensure_organization_access(actor, assessment)
    row = await s.get(AssessmentSnapshot, snapshot_id)
    if row is None or row.assessment_id != assessment.id:
        raise NotFoundError("Snapshot", snapshot_id)
    return row


async def trend(s: AsyncSession, assessment_id: int, actor: ActorContext) -> SnapshotComparison:
    """Latest approved snapshot compared with the live draft."""
    assessment = await get_assessment(s, assessment_id)
    ensure_organization_access(actor, assessment)
    base = await snapshot.latest_approved_snapshot(s, assessment.id)
    if base is None:
        raise NotFoundError("Approved snapshot for assessment", assessment.id)
    current = await snapshot.build_assessment_snapshot(s, assessment.id)
    return snapshot.compare_snapshots(base.snapshot, current)
