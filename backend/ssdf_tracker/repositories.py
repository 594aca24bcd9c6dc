"""
Storage-facing reads shared by the services.

Organization and Assessment reads go through here so that soft-deleted rows are
excluded in one place.
"""
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker.errors import NotFoundError
from ssdf_tracker.models import (
    Assessment,
    AssessmentRelease,
    AssessmentTaskResult,
    Evidence,
    Organization,
    SsdfTask,
)


async def get_organization(s: AsyncSession, organization_id: int) -> Organization:
    org = (await s.execute(
        select(Organization).where(
            Organization.id == organization_id,
            Organization.deleted_at.is_(None),
        )
    )).scalar_one_or_none()
    if org is None:
        raise NotFoundError("Organization", organization_id)
    return org


async def get_assessment(s: AsyncSession, assessment_id: int) -> Assessment:
    assessment = (await s.execute(
        select(Assessment).where(
            Assessment.id == assessment_id,
            Assessment.deleted_at.is_(None),
        )
    )).scalar_one_or_none()
    if assessment is None:
        raise NotFoundError("Assessment", assessment_id)
    return assessment


async def list_assessments(s: AsyncSession, organization_ids: frozenset[int] | None = None) -> list[Assessment]:
    q = select(Assessment).where(Assessment.deleted_at.is_(None))
    if organization_ids is not None:
        q = q.where(Assessment.organization_id.in_(organization_ids))
    return list((await s.execute(q.order_by(Assessment.id))).scalars().all())


async def active_assessment_ids(s: AsyncSession) -> list[int]:
    return list((await s.execute(
        select(Assessment.id).where(Assessment.deleted_at.is_(None)).order_by(Assessment.id)
    )).scalars().all())


async def assessment_ids_with_task_result(s: AsyncSession, task_id: str) -> list[int]:
    """Non-deleted assessments holding a result row for the task."""
    q = (
        select(AssessmentTaskResult.assessment_id)
        .join(Assessment, Assessment.id == AssessmentTaskResult.assessment_id)
        .where(
            AssessmentTaskResult.ssdf_task_id == task_id,
            Assessment.deleted_at.is_(None),
        )
        .distinct()
        .order_by(AssessmentTaskResult.assessment_id)
    )
    return list((await s.execute(q)).scalars().all())


async def get_task_result(s: AsyncSession, assessment_id: int, task_id: str) -> AssessmentTaskResult:
    row = (await s.execute(
        select(AssessmentTaskResult).where(
            AssessmentTaskResult.assessment_id == assessment_id,
            AssessmentTaskResult.ssdf_task_id == task_id,
        )
    )).scalar_one_or_none()
    if row is None:
        raise NotFoundError("Task result", f"{assessment_id}/{task_id}")
    return row


async def list_task_results(s: AsyncSession, assessment_id: int) -> list[AssessmentTaskResult]:
    q = (
        select(AssessmentTaskResult)
        .join(SsdfTask, SsdfTask.id == AssessmentTaskResult.ssdf_task_id)
        .where(AssessmentTaskResult.assessment_id == assessment_id)
        .order_by(SsdfTask.order_id, SsdfTask.id)
    )
    return list((await s.execute(q)).scalars().all())


async def get_latest_release(s: AsyncSession, assessment_id: int) -> AssessmentRelease | None:
    """Most recent release; ties on created_at fall back to the higher id."""
    return (await s.execute(
        select(AssessmentRelease)
        .where(AssessmentRelease.assessment_id == assessment_id)
        .order_by(AssessmentRelease.created_at.desc(), AssessmentRelease.id.desc())
        .limit(1)
    )).scalar_one_or_none()


async def list_releases(s: AsyncSession, assessment_id: int) -> list[AssessmentRelease]:
    return list((await s.execute(
        select(AssessmentRelease)
        .where(AssessmentRelease.assessment_id == assessment_id)
        .order_by(AssessmentRelease.created_at.desc(), AssessmentRelease.id.desc())
    )).scalars().all())


async def evidence_counts(s: AsyncSession, assessment_id: int) -> dict[int, int]:
    """Live evidence rows per task result id."""
    rows = (await s.execute(
        select(Evidence.task_result_id, func.count(Evidence.id))
        .join(AssessmentTaskResult, AssessmentTaskResult.id == Evidence.task_result_id)
        .where(
            AssessmentTaskResult.assessment_id == assessment_id,
            Evidence.deleted_at.is_(None),
        )
        .group_by(Evidence.task_result_id)
    )).all()
    return {task_result_id: count for task_result_id, count in rows}
