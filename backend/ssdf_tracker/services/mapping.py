"""
SSDF→CIS mapping management (admin only).

Every change re-derives the CIS targets reachable from the old and the new task
reference, plus the old and new CIS references themselves, in every assessment
holding a result for either task.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker.errors import NotFoundError, ValidationError
from ssdf_tracker.middleware.audit import log_audit_event, log_field_changes
from ssdf_tracker.middleware.context import ActorContext
from ssdf_tracker.models import (
    AuditAction,
    CisControl,
    CisSafeguard,
    MappingType,
    Role,
    SsdfCisMapping,
    SsdfTask,
)
from ssdf_tracker.schemas.mapping import MappingCreate, MappingUpdate
from ssdf_tracker.services import cis_derivation
from ssdf_tracker.services.release import ensure_role

logger = logging.getLogger(__name__)

MAPPING_FIELDS = ["ssdf_task_id", "cis_control_id", "cis_safeguard_id", "mapping_type", "weight", "notes"]


def _fields(mapping: SsdfCisMapping) -> dict[str, Any]:
    return {f: getattr(mapping, f) for f in MAPPING_FIELDS}


def _require_admin(actor: ActorContext, entity_id=None) -> None:
    ensure_role(
        actor, frozenset({Role.ADMIN}),
        entity_type="Mapping", entity_id=entity_id, organization_id=None,
        message="Only admins may manage mappings",
    )


async def validate_mapping(s: AsyncSession, values: dict[str, Any]) -> dict[str, Any]:
    """Normalize and check one mapping's values; raises ValidationError / NotFoundError."""
    control_id = (values.get("cis_control_id") or "").strip() or None
    safeguard_id = (values.get("cis_safeguard_id") or "").strip() or None
    if control_id is None and safeguard_id is None:
        raise ValidationError("A mapping must reference a CIS control or a CIS safeguard")
    if control_id is not None and safeguard_id is not None:
        raise ValidationError("A mapping must reference either a CIS control or a CIS safeguard, not both")

    weight = values.get("weight")
    if weight is None or not 0 <= float(weight) <= 1:
        raise ValidationError("weight must be between 0 and 1", details={"value": weight})

    task_id = (values.get("ssdf_task_id") or "").strip()
    if await s.get(SsdfTask, task_id) is None:
        raise NotFoundError("SSDF task", task_id)
    if control_id and await s.get(CisControl, control_id) is None:
        raise NotFoundError("CIS control", control_id)
    if safeguard_id and await s.get(CisSafeguard, safeguard_id) is None:
        raise NotFoundError("CIS safeguard", safeguard_id)

    return {
        "ssdf_task_id": task_id,
        "cis_control_id": control_id,
        "cis_safeguard_id": safeguard_id,
        "mapping_type": MappingType(values["mapping_type"]),
        "weight": float(weight),
        "notes": values.get("notes") or None,
    }


async def get_mapping(s: AsyncSession, mapping_id: int) -> SsdfCisMapping:
    mapping = await s.get(SsdfCisMapping, mapping_id)
    if mapping is None:
        raise NotFoundError("Mapping", mapping_id)
    return mapping


async def list_mappings(
    s: AsyncSession,
    task_id: str | None = None,
    control_id: str | None = None,
    safeguard_id: str | None = None,
) -> list[SsdfCisMapping]:
    q = select(SsdfCisMapping)
    if task_id:
        q = q.where(SsdfCisMapping.ssdf_task_id == task_id)
    if control_id:
        q = q.where(SsdfCisMapping.cis_control_id == control_id)
    if safeguard_id:
        q = q.where(SsdfCisMapping.cis_safeguard_id == safeguard_id)
    return list((await s.execute(q.order_by(SsdfCisMapping.ssdf_task_id, SsdfCisMapping.id))).scalars().all())


async def create_mapping(s: AsyncSession, data: MappingCreate, actor: ActorContext) -> SsdfCisMapping:
    _require_admin(actor)
    values = await validate_mapping(s, data.model_dump())

    mapping = SsdfCisMapping(**values)
    s.add(mapping)
    await s.flush()

    await log_audit_event(
        s,
        action=AuditAction.CREATE,
        entity_type="Mapping",
        entity_id=mapping.id,
        field_name="ssdf_task_id",
        new_value=mapping.ssdf_task_id,
        actor=actor,
        metadata={
            "cis_control_id": mapping.cis_control_id,
            "cis_safeguard_id": mapping.cis_safeguard_id,
            "mapping_type": mapping.mapping_type,
            "weight": mapping.weight,
        },
    )
    await cis_derivation.recalculate_for_mapping_change(
        s,
        [mapping.ssdf_task_id],
        [cis_derivation.target_of(mapping.cis_control_id, mapping.cis_safeguard_id)],
        actor.actor_id,
    )
    logger.info("Created mapping %s: %s -> %s", mapping.id, mapping.ssdf_task_id,
                mapping.cis_safeguard_id or mapping.cis_control_id)
    return mapping


async def update_mapping(
    s: AsyncSession, mapping_id: int, data: MappingUpdate, actor: ActorContext,
) -> SsdfCisMapping:
    _require_admin(actor, mapping_id)
    mapping = await get_mapping(s, mapping_id)
    before = _fields(mapping)

    merged = {**before, **data.model_dump(exclude_unset=True)}
    # Switching the target kind clears the other reference
    if data.cis_control_id and "cis_safeguard_id" not in data.model_fields_set:
        merged["cis_safeguard_id"] = None
    if data.cis_safeguard_id and "cis_control_id" not in data.model_fields_set:
        merged["cis_control_id"] = None
    values = await validate_mapping(s, merged)

    for field, value in values.items():
        setattr(mapping, field, value)
    await s.flush()
    after = _fields(mapping)

    await log_field_changes(
        s,
        action=AuditAction.UPDATE,
        entity_type="Mapping",
        entity_id=mapping.id,
        actor=actor,
        before=before,
        after=after,
        fields=MAPPING_FIELDS,
    )
    await cis_derivation.recalculate_for_mapping_change(
        s,
        [before["ssdf_task_id"], after["ssdf_task_id"]],
        [
            cis_derivation.target_of(before["cis_control_id"], before["cis_safeguard_id"]),
            cis_derivation.target_of(after["cis_control_id"], after["cis_safeguard_id"]),
        ],
        actor.actor_id,
    )
    return mapping


async def delete_mapping(s: AsyncSession, mapping_id: int, actor: ActorContext) -> None:
    _require_admin(actor, mapping_id)
    mapping = await get_mapping(s, mapping_id)
    before = _fields(mapping)
    await s.delete(mapping)
    await s.flush()

    await log_audit_event(
        s,
        action=AuditAction.DELETE,
        entity_type="Mapping",
        entity_id=mapping_id,
        field_name="ssdf_task_id",
        old_value=before["ssdf_task_id"],
        actor=actor,
        metadata={
            "cis_control_id": before["cis_control_id"],
            "cis_safeguard_id": before["cis_safeguard_id"],
            "mapping_type": before["mapping_type"],
            "weight": before["weight"],
        },
    )
    await cis_derivation.recalculate_for_mapping_change(
        s,
        [before["ssdf_task_id"]],
        [cis_derivation.target_of(before["cis_control_id"], before["cis_safeguard_id"])],
        actor.actor_id,
    )
    logger.info("Deleted mapping %s", mapping_id)
