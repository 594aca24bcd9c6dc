"""
CIS Controls module: /api/v1/cis

Controls with safeguards (reference, read-only) + per-assessment derived
results and their manual overrides.
"""
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ssdf_tracker.database import get_session
from ssdf_tracker.errors import NotFoundError
from ssdf_tracker.middleware.context import ActorContext, get_actor_context
from ssdf_tracker.models import CisControl
from ssdf_tracker.repositories import get_assessment
from ssdf_tracker.schemas.cis import CisControlOut, CisOverrideUpdate, CisResultOut, CisSafeguardOut
from ssdf_tracker.services.boundary import run_mutation
from ssdf_tracker.services.cis_override import list_cis_results, set_cis_override
from ssdf_tracker.services.release import ensure_organization_access
from ssdf_tracker.services.snapshot import natural_key

router = APIRouter(prefix="/api/v1/cis", tags=["CIS Controls"])


def _control_out(c: CisControl) -> CisControlOut:
    safeguards = sorted(c.safeguards, key=lambda sg: natural_key(sg.id))
    return CisControlOut(
        id=c.id, name=c.name,
        safeguards=[CisSafeguardOut.model_validate(sg) for sg in safeguards],
    )


# ═══ Reference data ═══════════════════════════════════════════

@router.get("/controls", response_model=list[CisControlOut], summary="CIS controls with safeguards")
async def list_controls(s: AsyncSession = Depends(get_session)):
    q = select(CisControl).options(selectinload(CisControl.safeguards))
    controls = (await s.execute(q)).scalars().all()
    return [_control_out(c) for c in sorted(controls, key=lambda c: natural_key(c.id))]


@router.get("/controls/{control_id}", response_model=CisControlOut)
async def get_control(control_id: str, s: AsyncSession = Depends(get_session)):
    q = select(CisControl).where(CisControl.id == control_id).options(selectinload(CisControl.safeguards))
    control = (await s.execute(q)).scalar_one_or_none()
    if control is None:
        raise NotFoundError("CIS control", control_id)
    return _control_out(control)


# ═══ Per-assessment results ═══════════════════════════════════

@router.get("/assessments/{assessment_id}/results", response_model=list[CisResultOut])
async def assessment_results(
    assessment_id: int,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    assessment = await get_assessment(s, assessment_id)
    ensure_organization_access(ctx, assessment)
    return await list_cis_results(s, assessment.id)


@router.patch("/assessments/{assessment_id}/results", response_model=CisResultOut)
async def override_result(
    assessment_id: int,
    body: CisOverrideUpdate,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    """Set or clear the manual override of one CIS target. Derived values are untouched."""
    row = await run_mutation(s, set_cis_override, assessment_id, body, ctx)
    await s.refresh(row)
    return row
