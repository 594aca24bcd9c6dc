"""
Evidence records: /api/v1/assessments/{id}/evidences and /api/v1/evidences/{id}

Evidence rows hang off a task result and follow the assessment's editing gate.
"""
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker.database import get_session
from ssdf_tracker.middleware.context import ActorContext, get_actor_context
from ssdf_tracker.schemas.evidence import EvidenceCreate, EvidenceHistoryOut, EvidenceOut, EvidenceUpdate
from ssdf_tracker.services import evidence as evidence_svc
from ssdf_tracker.services.boundary import run_mutation

router = APIRouter(prefix="/api/v1", tags=["Evidence"])


@router.get("/assessments/{assessment_id}/evidences", response_model=list[EvidenceOut])
async def list_evidences(
    assessment_id: int,
    task_id: str | None = Query(None, description="Filter by SSDF task"),
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    return await evidence_svc.list_evidences(s, assessment_id, ctx, task_id)


@router.post("/assessments/{assessment_id}/tasks/{task_id}/evidences", response_model=EvidenceOut, status_code=201)
async def create_evidence(
    assessment_id: int,
    task_id: str,
    body: EvidenceCreate,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    evidence = await run_mutation(s, evidence_svc.create_evidence, assessment_id, task_id, body, ctx)
    await s.refresh(evidence)
    return evidence


@router.get("/evidences/{evidence_id}", response_model=EvidenceOut)
async def get_evidence(
    evidence_id: int,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    return await evidence_svc.get_evidence(s, evidence_id, ctx)


@router.patch("/evidences/{evidence_id}", response_model=EvidenceOut)
async def update_evidence(
    evidence_id: int,
    body: EvidenceUpdate,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    evidence = await run_mutation(s, evidence_svc.update_evidence, evidence_id, body, ctx)
    await s.refresh(evidence)
    return evidence


@router.delete("/evidences/{evidence_id}", status_code=204)
async def delete_evidence(
    evidence_id: int,
    reason: str | None = Query(None),
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    await run_mutation(s, evidence_svc.delete_evidence, evidence_id, ctx, reason)


@router.get("/evidences/{evidence_id}/history", response_model=list[EvidenceHistoryOut])
async def evidence_history(
    evidence_id: int,
    field: str | None = Query(None, description="Only changes of this field"),
    user: str | None = Query(None, description="Only changes by this user id"),
    date_from: date | None = Query(None, alias="from"),
    date_to: date | None = Query(None, alias="to"),
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    return await evidence_svc.list_evidence_history(
        s, evidence_id, ctx, field=field, user=user, date_from=date_from, date_to=date_to,
    )
