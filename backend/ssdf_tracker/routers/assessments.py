"""
SSDF assessments: /api/v1/assessments

Assessment CRUD, task results, release workflow, editing lock, snapshots and
derived statistics. Mutations go through run_mutation so a rejected call leaves
no partial writes behind.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker.config import Settings
from ssdf_tracker.database import get_session
from ssdf_tracker.middleware.context import ActorContext, get_actor_context, get_request_settings
from ssdf_tracker.models import Assessment, AssessmentSnapshot
from ssdf_tracker.repositories import (
    get_assessment,
    get_latest_release,
    list_assessments,
    list_releases,
    list_task_results,
)
from ssdf_tracker.schemas.assessment import (
    AssessmentCreate,
    AssessmentDetailOut,
    AssessmentOut,
    AssessmentUpdate,
    EditingModeUpdate,
    ReleaseActionIn,
    ReleaseOut,
    RoadmapItemOut,
    TaskResultOut,
    TaskResultUpdate,
    UnlockEditingIn,
    UnlockEditingOut,
)
from ssdf_tracker.schemas.audit import TaskHistoryOut
from ssdf_tracker.schemas.snapshot import (
    AssessmentSnapshotData,
    SnapshotComparison,
    SnapshotCreate,
    SnapshotOut,
    SnapshotSummaryOut,
)
from ssdf_tracker.services import assessment as assessment_svc
from ssdf_tracker.services import release as release_svc
from ssdf_tracker.services import ssdf_scoring
from ssdf_tracker.services.boundary import run_mutation
from ssdf_tracker.services.snapshot import normalize_snapshot

router = APIRouter(prefix="/api/v1/assessments", tags=["SSDF Assessments"])


# ── helpers ──

async def _detail(s: AsyncSession, a: Assessment, ctx: ActorContext) -> AssessmentDetailOut:
    release = await get_latest_release(s, a.id)
    release_status = release.status if release else None
    return AssessmentDetailOut(
        **AssessmentOut.model_validate(a).model_dump(),
        release_status=release_status,
        release_id=release.id if release else None,
        can_edit=(
            ctx.can_access_organization(a.organization_id)
            and release_svc.can_edit(ctx.actor_role, release_status, a.editing_mode)
        ),
    )


def _snapshot_out(row: AssessmentSnapshot) -> SnapshotOut:
    return SnapshotOut(
        id=row.id,
        assessment_id=row.assessment_id,
        release_id=row.release_id,
        type=row.type,
        label=row.label,
        created_by_id=row.created_by_id,
        created_at=row.created_at,
        snapshot=normalize_snapshot(row.snapshot),
    )


async def _visible_assessment(s: AsyncSession, assessment_id: int, ctx: ActorContext) -> Assessment:
    a = await get_assessment(s, assessment_id)
    release_svc.ensure_organization_access(ctx, a)
    return a


# ═══ Assessments ══════════════════════════════════════════════

@router.get("", response_model=list[AssessmentOut], summary="List assessments")
async def list_all(
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    org_ids = None if ctx.is_admin else ctx.organization_ids
    return await list_assessments(s, org_ids)


@router.post("", response_model=AssessmentDetailOut, status_code=201)
async def create(
    body: AssessmentCreate,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
    settings: Settings = Depends(get_request_settings),
):
    a = await run_mutation(
        s, assessment_svc.create_assessment, body, ctx,
        default_target_level=settings.DEFAULT_TARGET_LEVEL,
        default_task_weight=settings.DEFAULT_TASK_WEIGHT,
    )
    await s.refresh(a)
    return await _detail(s, a, ctx)


@router.get("/{assessment_id}", response_model=AssessmentDetailOut)
async def get_one(
    assessment_id: int,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    a = await _visible_assessment(s, assessment_id, ctx)
    return await _detail(s, a, ctx)


@router.patch("/{assessment_id}", response_model=AssessmentDetailOut)
async def update(
    assessment_id: int,
    body: AssessmentUpdate,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    a = await run_mutation(s, assessment_svc.update_assessment, assessment_id, body, ctx)
    await s.refresh(a)
    return await _detail(s, a, ctx)


@router.delete("/{assessment_id}", status_code=204)
async def delete(
    assessment_id: int,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    await run_mutation(s, assessment_svc.delete_assessment, assessment_id, ctx)


# ═══ Task results ═════════════════════════════════════════════

@router.get("/{assessment_id}/tasks", response_model=list[TaskResultOut])
async def list_tasks(
    assessment_id: int,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    a = await _visible_assessment(s, assessment_id, ctx)
    return await list_task_results(s, a.id)


@router.patch("/{assessment_id}/tasks/{task_id}", response_model=TaskResultOut)
async def update_task(
    assessment_id: int,
    task_id: str,
    body: TaskResultUpdate,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    row = await run_mutation(s, assessment_svc.update_task_result, assessment_id, task_id, body, ctx)
    await s.refresh(row)
    return row


@router.get("/{assessment_id}/tasks/{task_id}/history", response_model=list[TaskHistoryOut])
async def task_history(
    assessment_id: int,
    task_id: str,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    return await assessment_svc.list_task_history(s, assessment_id, task_id, ctx)


# ═══ Release workflow / editing lock ══════════════════════════

@router.get("/{assessment_id}/releases", response_model=list[ReleaseOut])
async def releases(
    assessment_id: int,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    a = await _visible_assessment(s, assessment_id, ctx)
    return await list_releases(s, a.id)


@router.post("/{assessment_id}/releases", response_model=ReleaseOut)
async def release_action(
    assessment_id: int,
    body: ReleaseActionIn,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    """submit (Admin/Assessor), approve or reject (Admin)."""
    return await run_mutation(
        s, release_svc.apply_release_action, assessment_id, body.action, ctx, body.notes,
    )


@router.patch("/{assessment_id}/editing-mode", response_model=AssessmentDetailOut)
async def editing_mode(
    assessment_id: int,
    body: EditingModeUpdate,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    a = await run_mutation(
        s, release_svc.set_editing_mode, assessment_id, body.editing_mode, ctx, body.note,
    )
    return await _detail(s, a, ctx)


@router.post("/{assessment_id}/unlock-editing", response_model=UnlockEditingOut)
async def unlock_editing(
    assessment_id: int,
    body: UnlockEditingIn | None = None,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    result = await run_mutation(
        s, release_svc.unlock_editing, assessment_id, ctx, body.note if body else None,
    )
    return UnlockEditingOut(
        release=ReleaseOut.model_validate(result.release),
        outcome=result.outcome,
        editing_mode=result.editing_mode,
    )


# ═══ Statistics / snapshots ═══════════════════════════════════

@router.get("/{assessment_id}/stats", response_model=AssessmentSnapshotData)
async def stats(
    assessment_id: int,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    """Live group, practice, CIS and IG aggregates."""
    return await assessment_svc.live_snapshot(s, assessment_id, ctx)


@router.get("/{assessment_id}/roadmap", response_model=list[RoadmapItemOut])
async def roadmap(
    assessment_id: int,
    limit: int | None = Query(None, ge=1, le=500),
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    rows = await assessment_svc.roadmap(s, assessment_id, ctx, limit)
    return [
        RoadmapItemOut(
            task_id=r.task_id, task_name=r.task_name,
            practice_id=r.practice_id, group_id=r.group_id,
            status=r.status, maturity_level=r.maturity_level,
            target_level=r.target_level, weight=r.weight,
            gap=ssdf_scoring.gap(r), priority=ssdf_scoring.priority(r),
        )
        for r in rows
    ]


@router.get("/{assessment_id}/snapshots", response_model=list[SnapshotSummaryOut])
async def snapshots(
    assessment_id: int,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    return await assessment_svc.list_snapshots(s, assessment_id, ctx)


@router.post("/{assessment_id}/snapshots", response_model=SnapshotOut, status_code=201)
async def take_snapshot(
    assessment_id: int,
    body: SnapshotCreate,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    row = await run_mutation(s, assessment_svc.take_snapshot, assessment_id, body, ctx)
    return _snapshot_out(row)


@router.get("/{assessment_id}/snapshots/{snapshot_id}", response_model=SnapshotOut)
async def get_snapshot(
    assessment_id: int,
    snapshot_id: int,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    return _snapshot_out(await assessment_svc.get_snapshot(s, assessment_id, snapshot_id, ctx))


@router.get("/{assessment_id}/trend", response_model=SnapshotComparison)
async def trend(
    assessment_id: int,
    s: AsyncSession = Depends(get_session),
    ctx: ActorContext = Depends(get_actor_context),
):
    """Latest approved snapshot vs. the live draft."""
    return await assessment_svc.trend(s, assessment_id, ctx)
