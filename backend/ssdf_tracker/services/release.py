"""
Release state machine and editing gate.

Release states:  DRAFT ──submit──▶ IN_REVIEW ──approve──▶ APPROVED
                   ▲                  │                      │
                   └──────reject──────┘                      │
                   └───────────── unlock (new release) ──────┘

Approved releases are never changed in place; unlocking an approved assessment
opens a new DRAFT release that references it through ``base_release_id``.

The editing mode on the assessment is a second gate, set by admins only.
Permission is re-derived from the latest release and the assessment on every
mutation attempt; nothing is cached.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker.errors import ConflictError, PermissionDenied
from ssdf_tracker.middleware.audit import log_audit_event
from ssdf_tracker.middleware.context import ActorContext
from ssdf_tracker.models import (
    Assessment,
    AssessmentCisResult,
    AssessmentRelease,
    AssessmentTaskResult,
    AuditAction,
    EditingMode,
    ReleaseAction,
    ReleaseStatus,
    Role,
    SnapshotType,
)
from ssdf_tracker.models.base import utcnow
from ssdf_tracker.repositories import get_assessment, get_latest_release
from ssdf_tracker.services.snapshot import build_assessment_snapshot, create_assessment_snapshot

logger = logging.getLogger(__name__)

# action -> (roles allowed, required current status, next status)
TRANSITIONS: dict[ReleaseAction, tuple[frozenset[Role], ReleaseStatus, ReleaseStatus]] = {
    ReleaseAction.submit: (frozenset({Role.ADMIN, Role.ASSESSOR}), ReleaseStatus.DRAFT, ReleaseStatus.IN_REVIEW),
    ReleaseAction.approve: (frozenset({Role.ADMIN}), ReleaseStatus.IN_REVIEW, ReleaseStatus.APPROVED),
    ReleaseAction.reject: (frozenset({Role.ADMIN}), ReleaseStatus.IN_REVIEW, ReleaseStatus.DRAFT),
}


# ═══════════════════════════════════════════════════════════════
# PREDICATES
# ═══════════════════════════════════════════════════════════════

def can_edit(
    role: Role | None,
    release_status: ReleaseStatus | None,
    editing_mode: EditingMode | None,
) -> bool:
    """May this role mutate task results, evidence and overrides right now?

    A missing release counts as DRAFT and a missing editing mode as unlocked.
    """
    if role == Role.ADMIN:
        return True
    if role != Role.ASSESSOR:
        return False
    if (editing_mode or EditingMode.UNLOCKED_FOR_ASSESSORS) != EditingMode.UNLOCKED_FOR_ASSESSORS:
        return False
    return (release_status or ReleaseStatus.DRAFT) == ReleaseStatus.DRAFT


def is_release_locked(status: ReleaseStatus | None) -> bool:
    return status in (ReleaseStatus.IN_REVIEW, ReleaseStatus.APPROVED)


def is_admin_override(
    role: Role | None,
    release_status: ReleaseStatus | None,
    editing_mode: EditingMode | None,
) -> bool:
    """An admin edit that an assessor would not have been allowed to make."""
    return role == Role.ADMIN and (
        is_release_locked(release_status) or editing_mode == EditingMode.LOCKED_ADMIN_ONLY
    )


# ═══════════════════════════════════════════════════════════════
# GATES
# ═══════════════════════════════════════════════════════════════

def ensure_organization_id_access(
    actor: ActorContext,
    organization_id: int,
    *,
    entity_type: str = "Assessment",
    entity_id=None,
) -> None:
    if actor.can_access_organization(organization_id):
        return
    raise PermissionDenied(
        "No access to organization",
        failed_event={
            "action": AuditAction.OTHER,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "field_name": "organizationId",
            "organization_id": organization_id,
            "actor": actor,
            "error_message": "No access to organization",
        },
    )


def ensure_organization_access(actor: ActorContext, assessment: Assessment) -> None:
    ensure_organization_id_access(actor, assessment.organization_id, entity_id=assessment.id)


def ensure_role(
    actor: ActorContext,
    allowed: frozenset[Role],
    *,
    entity_type: str,
    entity_id,
    organization_id: int | None,
    field_name: str | None = None,
    message: str = "Not allowed",
) -> None:
    if actor.actor_role in allowed:
        return
    raise PermissionDenied(
        message,
        failed_event={
            "action": AuditAction.OTHER,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "field_name": field_name,
            "organization_id": organization_id,
            "actor": actor,
            "error_message": message,
        },
    )


@dataclass(frozen=True)
class EditGrant:
    release: AssessmentRelease | None
    override: bool

    @property
    def release_status(self) -> ReleaseStatus | None:
        return self.release.status if self.release else None


async def ensure_can_edit(s: AsyncSession, assessment: Assessment, actor: ActorContext) -> EditGrant:
    """Check the editing gate for one mutation attempt.

    Raises PermissionDenied carrying a failed "Editing locked" audit event.
    """
    ensure_organization_access(actor, assessment)
    release = await get_latest_release(s, assessment.id)
    release_status = release.status if release else None
    if not can_edit(actor.actor_role, release_status, assessment.editing_mode):
        raise PermissionDenied(
            "Assessment is locked for editing",
            failed_event={
                "action": AuditAction.OTHER,
                "entity_type": "Assessment",
                "entity_id": assessment.id,
                "field_name": "editingMode",
                "old_value": assessment.editing_mode,
                "new_value": assessment.editing_mode,
                "organization_id": assessment.organization_id,
                "actor": actor,
                "error_message": "Editing locked",
                "metadata": {"release_status": release_status},
            },
        )
    return EditGrant(
        release=release,
        override=is_admin_override(actor.actor_role, release_status, assessment.editing_mode),
    )


async def log_editing_override(
    s: AsyncSession,
    assessment: Assessment,
    grant: EditGrant,
    actor: ActorContext,
    reason: str | None = None,
) -> None:
    """Flag an admin edit that bypassed the assessor lock."""
    await log_audit_event(
        s,
        action=AuditAction.UPDATE,
        entity_type="Assessment",
        entity_id=assessment.id,
        field_name="editingOverride",
        old_value=grant.release_status,
        new_value="OVERRIDE",
        organization_id=assessment.organization_id,
        actor=actor,
        metadata={"override": True, "reason": reason} if reason else {"override": True},
    )


# ═══════════════════════════════════════════════════════════════
# RELEASE TRANSITIONS
# ═══════════════════════════════════════════════════════════════

async def create_release(
    s: AsyncSession,
    assessment_id: int,
    actor_id: str | None,
    *,
    notes: str | None = None,
    base_release_id: int | None = None,
) -> AssessmentRelease:
    release = AssessmentRelease(
        assessment_id=assessment_id,
        status=ReleaseStatus.DRAFT,
        notes=notes,
        base_release_id=base_release_id,
        created_by_id=actor_id,
        created_at=utcnow(),
    )
    s.add(release)
    await s.flush()
    return release


async def apply_release_action(
    s: AsyncSession,
    assessment_id: int,
    action: ReleaseAction,
    actor: ActorContext,
    notes: str | None = None,
) -> AssessmentRelease:
    """Run submit / approve / reject on the latest release.

    A DRAFT release is created first when the assessment has none.
    """
    assessment = await get_assessment(s, assessment_id)
    ensure_organization_access(actor, assessment)

    release = await get_latest_release(s, assessment.id)
    allowed, required, next_status = TRANSITIONS[ReleaseAction(action)]
    ensure_role(
        actor, allowed,
        entity_type="AssessmentRelease",
        entity_id=release.id if release else None,
        organization_id=assessment.organization_id,
        field_name="status",
        message=f"Role may not {action.value} a release",
    )
    if release is None:
        release = await create_release(s, assessment.id, actor.actor_id)

    if release.status != required:
        raise ConflictError(
            f"Cannot {action.value}: release is {release.status.value}, expected {required.value}",
            expected=required,
            actual=release.status,
        )

    previous = release.status
    release.status = next_status
    release.notes = notes or None
    if next_status == ReleaseStatus.APPROVED:
        data = await build_assessment_snapshot(s, assessment.id)
        release.snapshot = data.model_dump(mode="json")
        release.approved_at = utcnow()
        release.approved_by_id = actor.actor_id
        await create_assessment_snapshot(
            s, assessment.id, SnapshotType.APPROVED,
            actor_id=actor.actor_id, release_id=release.id, data=data,
        )
    elif next_status == ReleaseStatus.DRAFT:
        release.approved_at = None
        release.approved_by_id = None

    await log_audit_event(
        s,
        action=AuditAction.UPDATE,
        entity_type="AssessmentRelease",
        entity_id=release.id,
        field_name="status",
        old_value=previous,
        new_value=release.status,
        organization_id=assessment.organization_id,
        actor=actor,
        metadata={"notes": notes} if notes else None,
    )
    logger.info(
        "Release %s of assessment %s: %s -> %s by %s",
        release.id, assessment.id, previous.value, release.status.value, actor.actor_id,
    )
    return release


@dataclass(frozen=True)
class UnlockResult:
    release: AssessmentRelease
    outcome: str  # "created" | "reopened" | "existing"
    editing_mode: EditingMode


async def unlock_editing(
    s: AsyncSession,
    assessment_id: int,
    actor: ActorContext,
    note: str | None = None,
) -> UnlockResult:
    """Return the assessment to an editable DRAFT and unlock it for assessors."""
    assessment = await get_assessment(s, assessment_id)
    ensure_organization_access(actor, assessment)
    ensure_role(
        actor, frozenset({Role.ADMIN}),
        entity_type="Assessment",
        entity_id=assessment.id,
        organization_id=assessment.organization_id,
        field_name="editingMode",
        message="Only admins may unlock editing",
    )
    note = note or None
    latest = await get_latest_release(s, assessment.id)

    release = latest
    outcome = "existing"
    base_release_id = None
    previous_status = latest.status if latest else ReleaseStatus.DRAFT

    if latest is None:
        release = await create_release(s, assessment.id, actor.actor_id, notes=note)
        outcome = "created"
    elif latest.status == ReleaseStatus.APPROVED:
        base_release_id = latest.id
        release = await create_release(
            s, assessment.id, actor.actor_id, notes=note, base_release_id=base_release_id,
        )
        outcome = "created"
    elif latest.status == ReleaseStatus.IN_REVIEW:
        latest.status = ReleaseStatus.DRAFT
        latest.notes = note
        outcome = "reopened"

    if outcome == "created":
        task_results = (await s.execute(
            select(func.count()).select_from(AssessmentTaskResult)
            .where(AssessmentTaskResult.assessment_id == assessment.id)
        )).scalar() or 0
        cis_results = (await s.execute(
            select(func.count()).select_from(AssessmentCisResult)
            .where(AssessmentCisResult.assessment_id == assessment.id)
        )).scalar() or 0
        await log_audit_event(
            s,
            action=AuditAction.CREATE,
            entity_type="AssessmentRelease",
            entity_id=release.id,
            field_name="status",
            old_value=None,
            new_value=release.status,
            organization_id=assessment.organization_id,
            actor=actor,
            metadata={
                "note": note,
                "base_release_id": base_release_id,
                "copied_counts": {"task_results": task_results, "cis_results": cis_results},
            },
        )
    elif outcome == "reopened":
        await log_audit_event(
            s,
            action=AuditAction.UPDATE,
            entity_type="AssessmentRelease",
            entity_id=release.id,
            field_name="status",
            old_value=previous_status,
            new_value=release.status,
            organization_id=assessment.organization_id,
            actor=actor,
            metadata={"note": note} if note else None,
        )

    previous_mode = assessment.editing_mode
    assessment.editing_mode = EditingMode.UNLOCKED_FOR_ASSESSORS
    assessment.editing_locked_by_id = None
    assessment.editing_locked_at = None
    assessment.editing_lock_note = None
    if previous_mode != assessment.editing_mode:
        await log_audit_event(
            s,
            action=AuditAction.UPDATE,
            entity_type="Assessment",
            entity_id=assessment.id,
            field_name="editingMode",
            old_value=previous_mode,
            new_value=assessment.editing_mode,
            organization_id=assessment.organization_id,
            actor=actor,
            metadata={"note": note, "release_id": release.id},
        )

    logger.info(
        "Unlocked assessment %s for editing (release %s %s)", assessment.id, release.id, outcome,
    )
    return UnlockResult(release=release, outcome=outcome, editing_mode=assessment.editing_mode)


async def set_editing_mode(
    s: AsyncSession,
    assessment_id: int,
    mode: EditingMode,
    actor: ActorContext,
    note: str | None = None,
) -> Assessment:
    """Admin lock / unlock. Assessors can only be unlocked into a DRAFT release."""
    assessment = await get_assessment(s, assessment_id)
    ensure_organization_access(actor, assessment)
    ensure_role(
        actor, frozenset({Role.ADMIN}),
        entity_type="Assessment",
        entity_id=assessment.id,
        organization_id=assessment.organization_id,
        field_name="editingMode",
        message="Only admins may change the editing mode",
    )
    mode = EditingMode(mode)
    release = await get_latest_release(s, assessment.id)
    release_status = release.status if release else ReleaseStatus.DRAFT
    if mode == EditingMode.UNLOCKED_FOR_ASSESSORS and release_status != ReleaseStatus.DRAFT:
        raise ConflictError(
            "Assessment is in review or approved; unlock editing to open a new draft",
            expected=ReleaseStatus.DRAFT,
            actual=release_status,
        )

    previous = assessment.editing_mode
    locked = mode == EditingMode.LOCKED_ADMIN_ONLY
    assessment.editing_mode = mode
    assessment.editing_locked_by_id = actor.actor_id if locked else None
    assessment.editing_locked_at = utcnow() if locked else None
    assessment.editing_lock_note = (note or None) if locked else None

    await log_audit_event(
        s,
        action=AuditAction.UPDATE,
        entity_type="Assessment",
        entity_id=assessment.id,
        field_name="editingMode",
        old_value=previous,
        new_value=mode,
        organization_id=assessment.organization_id,
        actor=actor,
        metadata={
            "note": note or None,
            "locked_by": assessment.editing_locked_by_id,
            "locked_at": assessment.editing_locked_at,
        },
    )
    logger.info("Editing mode of assessment %s: %s -> %s", assessment.id, previous.value, mode.value)
    return assessment
