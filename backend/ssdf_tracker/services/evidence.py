"""
Evidence records attached to task results.

Every create, edit and delete goes through the same editing gate as task
results: assessors are locked out while a release is in review or approved or
while an admin holds the lock, and admin edits made past that lock are flagged
with an editingOverride audit entry. Each change is written to the evidence's
own field history and, per field, to the audit log.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker.errors import NotFoundError, ValidationError
from ssdf_tracker.middleware.audit import log_audit_event, log_evidence_history, log_field_changes
from ssdf_tracker.middleware.context import ActorContext
from ssdf_tracker.models import (
    Assessment,
    AssessmentTaskResult,
    AuditAction,
    Evidence,
    EvidenceHistory,
)
from ssdf_tracker.models.base import utcnow
from ssdf_tracker.repositories import get_assessment, get_task_result
from ssdf_tracker.schemas.evidence import EvidenceCreate, EvidenceUpdate
from ssdf_tracker.services.release import (
    EditGrant,
    ensure_can_edit,
    ensure_organization_access,
    log_editing_override,
)

logger = logging.getLogger(__name__)

EVIDENCE_FIELDS = [
    "type", "link", "valid_until", "owner", "review_status", "description", "notes", "evidence_date",
]
OPTIONAL_TEXT_FIELDS = ("link", "owner", "notes")


def _fields(evidence: Evidence | None) -> dict[str, Any]:
    if evidence is None:
        return {f: None for f in EVIDENCE_FIELDS}
    return {f: getattr(evidence, f) for f in EVIDENCE_FIELDS}


def _clean(values: dict[str, Any]) -> dict[str, Any]:
    if "description" in values:
        description = (values["description"] or "").strip()
        if not description:
            raise ValidationError("Evidence description cannot be empty")
        values["description"] = description
    for field in OPTIONAL_TEXT_FIELDS:
        if field in values:
            values[field] = (values[field] or "").strip() or None
    for field in ("type", "review_status"):
        if field in values and values[field] is None:
            del values[field]
    return values


def _history_metadata(grant: EditGrant, action: str | None = None) -> dict[str, Any] | None:
    meta: dict[str, Any] = {"action": action} if action else {}
    if grant.override:
        meta.update(override=True, release_status=grant.release_status)
    return meta or None


async def _load(s: AsyncSession, evidence_id: int) -> tuple[Evidence, Assessment]:
    row = (await s.execute(
        select(Evidence, Assessment)
        .join(AssessmentTaskResult, AssessmentTaskResult.id == Evidence.task_result_id)
        .join(Assessment, Assessment.id == AssessmentTaskResult.assessment_id)
        .where(
            Evidence.id == evidence_id,
            Evidence.deleted_at.is_(None),
            Assessment.deleted_at.is_(None),
        )
    )).first()
    if row is None:
        raise NotFoundError("Evidence", evidence_id)
    return row[0], row[1]


# ═══════════════════════════════════════════════════════════════
# READS
# ═══════════════════════════════════════════════════════════════

async def get_evidence(s: AsyncSession, evidence_id: int, actor: ActorContext) -> Evidence:
    evidence, assessment = await _load(s, evidence_id)
    ensure_organization_access(actor, assessment)
    return evidence


async def list_evidences(
    s: AsyncSession, assessment_id: int, actor: ActorContext, task_id: str | None = None,
) -> list[Evidence]:
    assessment = await get_assessment(s, assessment_id)
    ensure_organization_access(actor, assessment)
    q = (
        select(Evidence)
        .join(AssessmentTaskResult, AssessmentTaskResult.id == Evidence.task_result_id)
        .where(
            AssessmentTaskResult.assessment_id == assessment.id,
            Evidence.deleted_at.is_(None),
        )
    )
    if task_id:
        q = q.where(AssessmentTaskResult.ssdf_task_id == task_id)
    return list((await s.execute(q.order_by(Evidence.id))).scalars().all())


async def list_evidence_history(
    s: AsyncSession,
    evidence_id: int,
    actor: ActorContext,
    *,
    field: str | None = None,
    user: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[EvidenceHistory]:
    """History of one evidence row, newest first. ``date_to`` includes the whole day."""
    await get_evidence(s, evidence_id, actor)
    q = select(EvidenceHistory).where(EvidenceHistory.evidence_id == evidence_id)
    if field:
        q = q.where(EvidenceHistory.field_name == field)
    if user:
        q = q.where(EvidenceHistory.changed_by_id == user)
    if date_from:
        q = q.where(EvidenceHistory.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        q = q.where(EvidenceHistory.created_at < datetime.combine(date_to + timedelta(days=1), time.min))
    return list((await s.execute(
        q.order_by(EvidenceHistory.created_at.desc(), EvidenceHistory.id.desc())
    )).scalars().all())


# ═══════════════════════════════════════════════════════════════
# MUTATIONS
# ═══════════════════════════════════════════════════════════════

async def create_evidence(
    s: AsyncSession, assessment_id: int, task_id: str, data: EvidenceCreate, actor: ActorContext,
) -> Evidence:
    values = _clean(data.model_dump())
    reason = values.pop("reason", None)

    assessment = await get_assessment(s, assessment_id)
    task_result = await get_task_result(s, assessment.id, task_id)
    grant = await ensure_can_edit(s, assessment, actor)

    evidence = Evidence(
        task_result_id=task_result.id,
        **values,
        created_by_id=actor.actor_id,
        updated_by_id=actor.actor_id,
        created_at=utcnow(),
        updated_at=utcnow(),
    )
    s.add(evidence)
    await s.flush()

    if grant.override:
        await log_editing_override(s, assessment, grant, actor, reason)
    await log_evidence_history(
        s,
        evidence_id=evidence.id,
        actor=actor,
        reason=reason,
        metadata=_history_metadata(grant, "create"),
        before=_fields(None),
        after=_fields(evidence),
        fields=EVIDENCE_FIELDS,
    )
    await log_audit_event(
        s,
        action=AuditAction.CREATE,
        entity_type="Evidence",
        entity_id=evidence.id,
        field_name="description",
        new_value=evidence.description,
        organization_id=assessment.organization_id,
        actor=actor,
        metadata={
            "type": evidence.type,
            "task_result_id": task_result.id,
            "link": evidence.link,
            **({"override": True} if grant.override else {}),
        },
    )
    logger.info("Added %s evidence %s to task %s of assessment %s",
                evidence.type.value, evidence.id, task_id, assessment.id)
    return evidence


async def update_evidence(
    s: AsyncSession, evidence_id: int, data: EvidenceUpdate, actor: ActorContext,
) -> Evidence:
    values = _clean(data.model_dump(exclude_unset=True))
    reason = values.pop("reason", None)

    evidence, assessment = await _load(s, evidence_id)
    grant = await ensure_can_edit(s, assessment, actor)

    before = _fields(evidence)
    for field, value in values.items():
        setattr(evidence, field, value)
    evidence.updated_by_id = actor.actor_id
    await s.flush()
    after = _fields(evidence)

    if grant.override:
        await log_editing_override(s, assessment, grant, actor, reason)
    await log_evidence_history(
        s,
        evidence_id=evidence.id,
        actor=actor,
        reason=reason,
        metadata=_history_metadata(grant),
        before=before,
        after=after,
        fields=EVIDENCE_FIELDS,
    )
    await log_field_changes(
        s,
        action=AuditAction.UPDATE,
        entity_type="Evidence",
        entity_id=evidence.id,
        organization_id=assessment.organization_id,
        actor=actor,
        before=before,
        after=after,
        fields=EVIDENCE_FIELDS,
        metadata={"override": True, "reason": reason} if grant.override else None,
    )
    return evidence


async def delete_evidence(
    s: AsyncSession, evidence_id: int, actor: ActorContext, reason: str | None = None,
) -> Evidence:
    """Soft delete. The row and its history stay; it no longer counts for the task."""
    evidence, assessment = await _load(s, evidence_id)
    grant = await ensure_can_edit(s, assessment, actor)

    evidence.deleted_at = utcnow()
    evidence.updated_by_id = actor.actor_id

    if grant.override:
        await log_editing_override(s, assessment, grant, actor, reason)
    await log_evidence_history(
        s,
        evidence_id=evidence.id,
        actor=actor,
        reason=reason,
        metadata=_history_metadata(grant, "delete"),
        before={"deleted_at": None},
        after={"deleted_at": evidence.deleted_at},
        fields=["deleted_at"],
    )
    await log_audit_event(
        s,
        action=AuditAction.DELETE,
        entity_type="Evidence",
        entity_id=evidence.id,
        field_name="deletedAt",
        new_value=evidence.deleted_at,
        organization_id=assessment.organization_id,
        actor=actor,
        metadata={
            "description": evidence.description,
            "task_result_id": evidence.task_result_id,
            **({"override": True} if grant.override else {}),
        },
    )
    logger.info("Deleted evidence %s of assessment %s", evidence.id, assessment.id)
    return evidence
