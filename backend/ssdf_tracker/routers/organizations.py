"""
Organizations (tenants): /api/v1/organizations

Everyone sees the organizations they belong to; admins create, rename and
soft-delete them.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker.database import get_session
from ssdf_tracker.middleware.context import ActorContext, get_actor_context
from ssdf_tracker.schemas.organization import (
    OrganizationCreate,
    OrganizationDetailOut,
    OrganizationOut,
    OrganizationUpdate,
)
from ssdf_tracker.services import organization as organization_svc
from ssdf_tracker.services.boundary import run_mutation

router = APIRouter(prefix="/api/v1/organizations", tags=["Organizations"])


@router.get("", response_model=list[OrganizationOut], summary="List organizations")
async def list_organizations(
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    return await organization_svc.list_organizations(s, ctx)


@router.get("/{organization_id}", response_model=OrganizationDetailOut)
async def get_organization(
    organization_id: int,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    org = await organization_svc.read_organization(s, organization_id, ctx)
    return OrganizationDetailOut(
        **OrganizationOut.model_validate(org).model_dump(),
        assessment_count=await organization_svc.count_assessments(s, org.id),
    )


@router.post("", response_model=OrganizationOut, status_code=201)
async def create_organization(
    body: OrganizationCreate,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    org = await run_mutation(s, organization_svc.create_organization, body, ctx)
    await s.refresh(org)
    return org


@router.patch("/{organization_id}", response_model=OrganizationOut)
async def update_organization(
    organization_id: int,
    body: OrganizationUpdate,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    org = await run_mutation(s, organization_svc.update_organization, organization_id, body, ctx)
    await s.refresh(org)
    return org


@router.delete("/{organization_id}", status_code=204)
async def delete_organization(
    organization_id: int,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    await run_mutation(s, organization_svc.delete_organization, organization_id, ctx)
