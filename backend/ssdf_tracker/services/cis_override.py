"""
Manual override of derived CIS results.

Overrides live next to the derived values on the same row and never modify
them; the next recalculation keeps updating the derived columns while the
manual ones stay as entered.
"""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker.errors import NotFoundError, ValidationError
from ssdf_tracker.middleware.audit import log_field_changes
from ssdf_tracker.middleware.context import ActorContext
from ssdf_tracker.models import AssessmentCisResult, AuditAction, CisControl, CisSafeguard
from ssdf_tracker.repositories import get_assessment
from ssdf_tracker.schemas.cis import CisOverrideUpdate
from ssdf_tracker.services.cis_derivation import SafeguardTarget, target_of
from ssdf_tracker.services.release import ensure_can_edit, log_editing_override
from ssdf_tracker.services.snapshot import natural_key
from ssdf_tracker.services.ssdf_scoring import MAX_MATURITY_LEVEL

logger = logging.getLogger(__name__)

OVERRIDE_FIELDS = ["manual_override", "manual_status", "manual_maturity_level"]


def _validate(data: CisOverrideUpdate) -> None:
    if not data.manual_override:
        return
    if data.manual_status is None or data.manual_maturity_level is None:
        raise ValidationError(
            "manual_status and manual_maturity_level are both required to set an override",
        )
    if not 0 <= data.manual_maturity_level <= MAX_MATURITY_LEVEL:
        raise ValidationError(f"manual_maturity_level must be between 0 and {MAX_MATURITY_LEVEL}")


async def set_cis_override(
    s: AsyncSession,
    assessment_id: int,
    data: CisOverrideUpdate,
    actor: ActorContext,
) -> AssessmentCisResult:
    _validate(data)
    reason = data.reason
    assessment = await get_assessment(s, assessment_id)
    grant = await ensure_can_edit(s, assessment, actor)

    target = target_of(data.cis_control_id, data.cis_safeguard_id)
    if isinstance(target, SafeguardTarget):
        safeguard = await s.get(CisSafeguard, target.safeguard_id)
        if safeguard is None:
            raise NotFoundError("CIS safeguard", target.safeguard_id)
        control_id, safeguard_id = safeguard.control_id, safeguard.id
    else:
        if await s.get(CisControl, target.control_id) is None:
            raise NotFoundError("CIS control", target.control_id)
        control_id, safeguard_id = target.control_id, None

    row = (await s.execute(
        select(AssessmentCisResult).where(
            AssessmentCisResult.assessment_id == assessment.id,
            AssessmentCisResult.target_key == target.key,
        )
    )).scalar_one_or_none()

    if row is None:
        before = {"manual_override": False, "manual_status": None, "manual_maturity_level": None}
        row = AssessmentCisResult(
            assessment_id=assessment.id,
            target_key=target.key,
            cis_control_id=control_id,
            cis_safeguard_id=safeguard_id,
            derived_from_task_ids=[],
            derived_from_ssdf=False,
        )
        s.add(row)
    else:
        before = {f: getattr(row, f) for f in OVERRIDE_FIELDS}

    row.manual_override = data.manual_override
    row.manual_status = data.manual_status if data.manual_override else None
    row.manual_maturity_level = data.manual_maturity_level if data.manual_override else None
    row.updated_by_id = actor.actor_id
    await s.flush()

    after = {f: getattr(row, f) for f in OVERRIDE_FIELDS}
    metadata = None
    if grant.override:
        metadata = {"override": True, "reason": reason} if reason else {"override": True}
    await log_field_changes(
        s,
        action=AuditAction.UPDATE,
        entity_type="AssessmentCisResult",
        entity_id=row.id,
        organization_id=assessment.organization_id,
        actor=actor,
        before=before,
        after=after,
        fields=OVERRIDE_FIELDS,
        metadata=metadata,
    )
    if grant.override:
        await log_editing_override(s, assessment, grant, actor, reason)

    logger.info(
        "CIS override on %s of assessment %s set to %s", target.key, assessment.id, data.manual_override,
    )
    return row


async def list_cis_results(s: AsyncSession, assessment_id: int) -> list[AssessmentCisResult]:
    rows = (await s.execute(
        select(AssessmentCisResult).where(AssessmentCisResult.assessment_id == assessment_id)
    )).scalars().all()
    return sorted(rows, key=lambda r: (
        natural_key(r.cis_control_id),
        r.cis_safeguard_id is not None,
        natural_key(r.cis_safeguard_id or "0"),
    ))
