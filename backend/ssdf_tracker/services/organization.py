"""
Organization (tenant) administration.

Only admins create, rename or delete organizations. Deletion is soft: the
organization and its assessments stop showing up in reads, the rows stay.
"""
from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker.errors import ValidationError
from ssdf_tracker.middleware.audit import log_audit_event, log_field_changes
from ssdf_tracker.middleware.context import ActorContext
from ssdf_tracker.models import Assessment, AuditAction, Organization, Role
from ssdf_tracker.models.base import utcnow
from ssdf_tracker.repositories import get_organization
from ssdf_tracker.schemas.organization import OrganizationCreate, OrganizationUpdate
from ssdf_tracker.services.release import ensure_organization_id_access, ensure_role

logger = logging.getLogger(__name__)

ORGANIZATION_FIELDS = ["name", "description"]


def _require_admin(actor: ActorContext, organization_id: int | None = None, field_name: str | None = None) -> None:
    ensure_role(
        actor, frozenset({Role.ADMIN}),
        entity_type="Organization", entity_id=organization_id, organization_id=organization_id,
        field_name=field_name,
        message="Only admins may manage organizations",
    )


async def _ensure_unique_name(s: AsyncSession, name: str, exclude_id: int | None = None) -> None:
    q = select(Organization.id).where(
        Organization.deleted_at.is_(None),
        func.lower(Organization.name) == name.lower(),
    )
    if exclude_id is not None:
        q = q.where(Organization.id != exclude_id)
    if (await s.execute(q)).first() is not None:
        raise ValidationError("An organization with this name already exists", details={"name": name})


async def count_assessments(s: AsyncSession, organization_id: int) -> int:
    return (await s.execute(
        select(func.count()).select_from(Assessment).where(
            Assessment.organization_id == organization_id,
            Assessment.deleted_at.is_(None),
        )
    )).scalar() or 0


async def list_organizations(s: AsyncSession, actor: ActorContext) -> list[Organization]:
    q = select(Organization).where(Organization.deleted_at.is_(None))
    if not actor.is_admin and actor.organization_ids is not None:
        q = q.where(Organization.id.in_(actor.organization_ids))
    return list((await s.execute(q.order_by(Organization.name, Organization.id))).scalars().all())


async def read_organization(s: AsyncSession, organization_id: int, actor: ActorContext) -> Organization:
    org = await get_organization(s, organization_id)
    ensure_organization_id_access(actor, org.id, entity_type="Organization", entity_id=org.id)
    return org


async def create_organization(s: AsyncSession, data: OrganizationCreate, actor: ActorContext) -> Organization:
    _require_admin(actor)
    name = data.name.strip()
    if len(name) < 3:
        raise ValidationError("Organization name must have at least 3 characters")
    await _ensure_unique_name(s, name)

    org = Organization(name=name, description=(data.description or "").strip() or None, created_at=utcnow())
    s.add(org)
    await s.flush()

    await log_audit_event(
        s,
        action=AuditAction.CREATE,
        entity_type="Organization",
        entity_id=org.id,
        field_name="name",
        new_value=org.name,
        organization_id=org.id,
        actor=actor,
    )
    logger.info("Created organization %s (%s)", org.id, org.name)
    return org


async def update_organization(
    s: AsyncSession, organization_id: int, data: OrganizationUpdate, actor: ActorContext,
) -> Organization:
    _require_admin(actor, organization_id)
    org = await get_organization(s, organization_id)
    before = {f: getattr(org, f) for f in ORGANIZATION_FIELDS}

    values = data.model_dump(exclude_unset=True)
    if "name" in values:
        name = (values["name"] or "").strip()
        if len(name) < 3:
            raise ValidationError("Organization name must have at least 3 characters")
        await _ensure_unique_name(s, name, exclude_id=org.id)
        org.name = name
    if "description" in values:
        org.description = (values["description"] or "").strip() or None

    await log_field_changes(
        s,
        action=AuditAction.UPDATE,
        entity_type="Organization",
        entity_id=org.id,
        organization_id=org.id,
        actor=actor,
        before=before,
        after={f: getattr(org, f) for f in ORGANIZATION_FIELDS},
        fields=ORGANIZATION_FIELDS,
    )
    return org


async def delete_organization(s: AsyncSession, organization_id: int, actor: ActorContext) -> Organization:
    """Soft delete. Assessments of the organization are soft-deleted with it."""
    _require_admin(actor, organization_id, field_name="deletedAt")
    org = await get_organization(s, organization_id)

    now = utcnow()
    assessments = (await s.execute(
        select(Assessment).where(
            Assessment.organization_id == org.id,
            Assessment.deleted_at.is_(None),
        )
    )).scalars().all()
    for assessment in assessments:
        assessment.deleted_at = now
    org.deleted_at = now

    await log_audit_event(
        s,
        action=AuditAction.DELETE,
        entity_type="Organization",
        entity_id=org.id,
        field_name="deletedAt",
        new_value=now,
        organization_id=org.id,
        actor=actor,
        metadata={
            "organization_name": org.name,
            "assessment_ids": [a.id for a in assessments],
        },
    )
    logger.info("Soft-deleted organization %s with %d assessments", org.id, len(assessments))
    return org
