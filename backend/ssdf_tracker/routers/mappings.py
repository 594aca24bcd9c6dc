"""
SSDF → CIS mappings: /api/v1/mappings

Admin CRUD. Every change re-derives the affected CIS targets.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker.database import get_session
from ssdf_tracker.middleware.context import ActorContext, get_actor_context
from ssdf_tracker.schemas.mapping import MappingCreate, MappingOut, MappingUpdate
from ssdf_tracker.services import mapping as mapping_svc
from ssdf_tracker.services.boundary import run_mutation

router = APIRouter(prefix="/api/v1/mappings", tags=["SSDF-CIS Mappings"])


@router.get("", response_model=list[MappingOut], summary="List mappings")
async def list_mappings(
    task_id: str | None = Query(None, description="Filter by SSDF task"),
    control_id: str | None = Query(None),
    safeguard_id: str | None = Query(None),
    s: AsyncSession = Depends(get_session),
):
    return await mapping_svc.list_mappings(s, task_id, control_id, safeguard_id)


@router.get("/{mapping_id}", response_model=MappingOut)
async def get_mapping(mapping_id: int, s: AsyncSession = Depends(get_session)):
    return await mapping_svc.get_mapping(s, mapping_id)


@router.post("", response_model=MappingOut, status_code=201)
async def create_mapping(
    body: MappingCreate,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    mapping = await run_mutation(s, mapping_svc.create_mapping, body, ctx)
    await s.refresh(mapping)
    return mapping


@router.patch("/{mapping_id}", response_model=MappingOut)
async def update_mapping(
    mapping_id: int,
    body: MappingUpdate,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    mapping = await run_mutation(s, mapping_svc.update_mapping, mapping_id, body, ctx)
    await s.refresh(mapping)
    return mapping


@router.delete("/{mapping_id}", status_code=204)
async def delete_mapping(
    mapping_id: int,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    await run_mutation(s, mapping_svc.delete_mapping, mapping_id, ctx)
