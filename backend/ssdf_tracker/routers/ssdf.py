"""
SSDF reference data: /api/v1/ssdf

Read-only tree of groups, practices and tasks.
"""
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ssdf_tracker.database import get_session
from ssdf_tracker.errors import NotFoundError
from ssdf_tracker.models import GROUP_ORDER, SsdfGroup, SsdfPractice, SsdfTask
from ssdf_tracker.schemas.ssdf import SsdfGroupOut, SsdfPracticeOut, SsdfTaskOut
from ssdf_tracker.services.snapshot import natural_key

router = APIRouter(prefix="/api/v1/ssdf", tags=["SSDF"])


def _group_rank(group_id: str) -> tuple:
    if group_id in GROUP_ORDER:
        return (0, GROUP_ORDER.index(group_id), group_id)
    return (1, 0, group_id)


def _practice_out(p: SsdfPractice) -> SsdfPracticeOut:
    tasks = sorted(p.tasks, key=lambda t: (t.order_id, natural_key(t.id)))
    return SsdfPracticeOut(
        id=p.id, group_id=p.group_id, name=p.name,
        tasks=[SsdfTaskOut.model_validate(t) for t in tasks],
    )


@router.get("/tree", response_model=list[SsdfGroupOut], summary="SSDF groups, practices and tasks")
async def ssdf_tree(s: AsyncSession = Depends(get_session)):
    q = select(SsdfGroup).options(selectinload(SsdfGroup.practices).selectinload(SsdfPractice.tasks))
    groups = (await s.execute(q)).scalars().all()
    out = []
    for g in sorted(groups, key=lambda g: _group_rank(g.id)):
        practices = sorted(g.practices, key=lambda p: natural_key(p.id))
        out.append(SsdfGroupOut(id=g.id, name=g.name, practices=[_practice_out(p) for p in practices]))
    return out


@router.get("/tasks/{task_id}", response_model=SsdfTaskOut)
async def get_task(task_id: str, s: AsyncSession = Depends(get_session)):
    task = await s.get(SsdfTask, task_id)
    if task is None:
        raise NotFoundError("SSDF task", task_id)
    return task
