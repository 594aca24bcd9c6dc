"""
CIS derivation engine.

Translates SSDF task results into CIS control / safeguard coverage through the
weighted SSDF→CIS mapping table:

  derive_cis_result()        pure computation for one target
  recalculate_target()       load inputs and upsert one AssessmentCisResult row
  recalculate_for_task()     every target mapped to a task, in one assessment
  recalculate_task_everywhere()
                             the same across all assessments holding the task
  recalculate_for_mapping_change()
                             old and new references of an edited mapping
  recalculate_for_assessment()
                             every mapped target, used after assessment creation

Recalculation is idempotent: an unchanged derivation writes nothing, so calling
any trigger redundantly leaves the result rows byte-identical.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker.models import (
    AssessmentCisResult,
    AssessmentTaskResult,
    CisSafeguard,
    CisStatus,
    MappingType,
    SsdfCisMapping,
    SsdfStatus,
)
from ssdf_tracker.repositories import assessment_ids_with_task_result
from ssdf_tracker.services.ssdf_scoring import MAX_MATURITY_LEVEL

logger = logging.getLogger(__name__)

TYPE_FACTORS: dict[MappingType, float] = {
    MappingType.DIRECT: 1.0,
    MappingType.PARTIAL: 0.7,
    MappingType.SUPPORTS: 0.4,
}


@dataclass(frozen=True)
class MappingInput:
    task_id: str
    mapping_type: MappingType
    weight: float


@dataclass(frozen=True)
class TaskResultInput:
    task_id: str
    status: SsdfStatus
    maturity_level: int


@dataclass(frozen=True)
class DerivedCisResult:
    status: CisStatus
    maturity_level: int
    coverage_score: float
    derived_from_task_ids: tuple[str, ...]


# ═══════════════════════════════════════════════════════════════
# STATUS RULES
# ═══════════════════════════════════════════════════════════════

StatusRule = tuple[Callable[[Sequence[SsdfStatus]], bool], CisStatus]

# Evaluated top to bottom, first match wins; the conditions overlap.
STATUS_RULES: tuple[StatusRule, ...] = (
    (lambda statuses: SsdfStatus.NOT_STARTED in statuses, CisStatus.NOT_STARTED),
    (lambda statuses: SsdfStatus.IN_PROGRESS in statuses, CisStatus.IN_PROGRESS),
    (lambda statuses: SsdfStatus.NOT_APPLICABLE in statuses, CisStatus.NOT_APPLICABLE),
    (lambda statuses: True, CisStatus.IMPLEMENTED),
)


def evaluate_status(statuses: Sequence[SsdfStatus], rules: Sequence[StatusRule] = STATUS_RULES) -> CisStatus:
    for predicate, result in rules:
        if predicate(statuses):
            return result
    return CisStatus.IMPLEMENTED


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def derive_cis_result(
    mappings: Iterable[MappingInput], results: Iterable[TaskResultInput],
) -> DerivedCisResult:
    """Derive status, maturity and coverage of one CIS target."""
    mappings = list(mappings)
    by_task = {r.task_id: r for r in results}

    contributing = tuple(sorted({m.task_id for m in mappings if m.task_id in by_task}))

    applicable = [
        m for m in mappings
        if m.task_id in by_task and by_task[m.task_id].status != SsdfStatus.NOT_APPLICABLE
    ]
    if not applicable:
        return DerivedCisResult(CisStatus.NOT_APPLICABLE, 0, 0.0, contributing)

    status = evaluate_status([by_task[m.task_id].status for m in applicable])

    weight_sum = 0.0
    weighted_maturity = 0.0
    for m in applicable:
        effective_weight = m.weight * TYPE_FACTORS[MappingType(m.mapping_type)]
        weight_sum += effective_weight
        weighted_maturity += by_task[m.task_id].maturity_level * effective_weight

    # Zero-weight mappings only
    if weight_sum <= 0:
        return DerivedCisResult(status, 0, 0.0, contributing)

    maturity = max(0, min(MAX_MATURITY_LEVEL, _round_half_up(weighted_maturity / weight_sum)))
    coverage = round(weighted_maturity / (MAX_MATURITY_LEVEL * weight_sum) * 100, 2)
    return DerivedCisResult(status, maturity, coverage, contributing)


# ═══════════════════════════════════════════════════════════════
# TARGETS
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ControlTarget:
    control_id: str

    @property
    def key(self) -> str:
        return f"c:{self.control_id}"


@dataclass(frozen=True)
class SafeguardTarget:
    safeguard_id: str

    @property
    def key(self) -> str:
        return f"s:{self.safeguard_id}"


CisTarget = Union[ControlTarget, SafeguardTarget]


def target_of(cis_control_id: str | None, cis_safeguard_id: str | None) -> CisTarget:
    if cis_safeguard_id:
        return SafeguardTarget(cis_safeguard_id)
    if cis_control_id:
        return ControlTarget(cis_control_id)
    raise ValueError("mapping references neither a control nor a safeguard")


def _unique_targets(targets: Iterable[CisTarget]) -> list[CisTarget]:
    seen: dict[str, CisTarget] = {}
    for t in targets:
        seen.setdefault(t.key, t)
    return list(seen.values())


async def _targets_for_tasks(s: AsyncSession, task_ids: Iterable[str]) -> list[CisTarget]:
    rows = (await s.execute(
        select(SsdfCisMapping.cis_control_id, SsdfCisMapping.cis_safeguard_id)
        .where(SsdfCisMapping.ssdf_task_id.in_(list(task_ids)))
        .order_by(SsdfCisMapping.id)
    )).all()
    return _unique_targets(target_of(c, sg) for c, sg in rows)


async def _all_targets(s: AsyncSession) -> list[CisTarget]:
    rows = (await s.execute(
        select(SsdfCisMapping.cis_control_id, SsdfCisMapping.cis_safeguard_id)
        .order_by(SsdfCisMapping.id)
    )).all()
    return _unique_targets(target_of(c, sg) for c, sg in rows)


# ═══════════════════════════════════════════════════════════════
# RECALCULATION
# ═══════════════════════════════════════════════════════════════

async def recalculate_target(
    s: AsyncSession,
    assessment_id: int,
    target: CisTarget,
    actor_id: str | None = None,
) -> AssessmentCisResult | None:
    """Recompute and upsert the result row of one target.

    A target that lost all of its mappings keeps its row, reset to the empty
    derivation. A target with neither mappings nor a row is left alone.
    """
    if isinstance(target, SafeguardTarget):
        safeguard = await s.get(CisSafeguard, target.safeguard_id)
        if safeguard is None:
            return None
        control_id = safeguard.control_id
        safeguard_id = target.safeguard_id
        mapping_filter = SsdfCisMapping.cis_safeguard_id == safeguard_id
    else:
        control_id = target.control_id
        safeguard_id = None
        mapping_filter = SsdfCisMapping.cis_control_id == control_id

    mappings = (await s.execute(select(SsdfCisMapping).where(mapping_filter))).scalars().all()
    existing = (await s.execute(
        select(AssessmentCisResult).where(
            AssessmentCisResult.assessment_id == assessment_id,
            AssessmentCisResult.target_key == target.key,
        )
    )).scalar_one_or_none()

    if not mappings and existing is None:
        return None

    task_ids = {m.ssdf_task_id for m in mappings}
    results = []
    if task_ids:
        results = (await s.execute(
            select(
                AssessmentTaskResult.ssdf_task_id,
                AssessmentTaskResult.status,
                AssessmentTaskResult.maturity_level,
            ).where(
                AssessmentTaskResult.assessment_id == assessment_id,
                AssessmentTaskResult.ssdf_task_id.in_(task_ids),
            )
        )).all()

    derived = derive_cis_result(
        [MappingInput(m.ssdf_task_id, m.mapping_type, m.weight) for m in mappings],
        [TaskResultInput(task_id, status, maturity) for task_id, status, maturity in results],
    )
    values = {
        "cis_control_id": control_id,
        "cis_safeguard_id": safeguard_id,
        "derived_status": derived.status,
        "derived_maturity_level": derived.maturity_level,
        "derived_coverage_score": derived.coverage_score,
        "derived_from_task_ids": list(derived.derived_from_task_ids),
        "derived_from_ssdf": bool(mappings),
    }

    if existing is None:
        row = AssessmentCisResult(
            assessment_id=assessment_id,
            target_key=target.key,
            updated_by_id=actor_id,
            **values,
        )
        s.add(row)
        logger.debug("Created CIS result %s for assessment %s", target.key, assessment_id)
        return row

    changed = False
    for attr, value in values.items():
        if getattr(existing, attr) != value:
            setattr(existing, attr, value)
            changed = True
    if changed:
        existing.updated_by_id = actor_id
        logger.debug("Updated CIS result %s for assessment %s", target.key, assessment_id)
    return existing


async def recalculate_targets(
    s: AsyncSession,
    assessment_id: int,
    targets: Iterable[CisTarget],
    actor_id: str | None = None,
) -> list[AssessmentCisResult]:
    rows = []
    for target in targets:
        row = await recalculate_target(s, assessment_id, target, actor_id)
        if row is not None:
            rows.append(row)
    return rows


async def recalculate_for_task(
    s: AsyncSession, assessment_id: int, task_id: str, actor_id: str | None = None,
) -> list[AssessmentCisResult]:
    targets = await _targets_for_tasks(s, [task_id])
    return await recalculate_targets(s, assessment_id, targets, actor_id)


async def recalculate_task_everywhere(
    s: AsyncSession, task_id: str, actor_id: str | None = None,
) -> int:
    """Recompute the task's targets in every non-deleted assessment that has a result row for it."""
    targets = await _targets_for_tasks(s, [task_id])
    assessment_ids = await assessment_ids_with_task_result(s, task_id)
    for assessment_id in assessment_ids:
        await recalculate_targets(s, assessment_id, targets, actor_id)
    logger.debug(
        "Recalculated %d CIS targets of task %s in %d assessments",
        len(targets), task_id, len(assessment_ids),
    )
    return len(assessment_ids)


async def recalculate_for_mapping_change(
    s: AsyncSession,
    task_ids: Iterable[str],
    extra_targets: Iterable[CisTarget] = (),
    actor_id: str | None = None,
) -> None:
    """Fan-out after a mapping was created, edited or deleted.

    ``task_ids`` are the old and new task references; ``extra_targets`` the old
    and new CIS references, which may no longer be reachable from any task.
    """
    task_ids = sorted(set(task_ids))
    targets = _unique_targets([*await _targets_for_tasks(s, task_ids), *extra_targets])

    assessment_ids: set[int] = set()
    for task_id in task_ids:
        assessment_ids.update(await assessment_ids_with_task_result(s, task_id))

    for assessment_id in sorted(assessment_ids):
        await recalculate_targets(s, assessment_id, targets, actor_id)


async def recalculate_for_assessment(
    s: AsyncSession, assessment_id: int, actor_id: str | None = None,
) -> list[AssessmentCisResult]:
    targets = await _all_targets(s)
    return await recalculate_targets(s, assessment_id, targets, actor_id)
