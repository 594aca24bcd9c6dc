"""
Assessment snapshot service.

build_assessment_snapshot() computes group / practice / CIS / IG aggregates plus
per-task rows from the current state. The same structure backs the live draft
view and is frozen onto a release at approval time.

Frozen snapshots outlive code changes, so every stored snapshot goes through
normalize_snapshot() before it is compared with a newer one.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ssdf_tracker.errors import ValidationError
from ssdf_tracker.models import (
    GROUP_ORDER,
    AssessmentCisResult,
    AssessmentSnapshot,
    AssessmentTaskResult,
    CisControl,
    CisSafeguard,
    ImplementationGroup,
    SnapshotType,
    SsdfGroup,
    SsdfPractice,
    SsdfTask,
)
from ssdf_tracker.models.base import utcnow
from ssdf_tracker.repositories import evidence_counts
from ssdf_tracker.schemas.snapshot import (
    SNAPSHOT_VERSION,
    AssessmentSnapshotData,
    CisControlSnapshot,
    CisIgSnapshot,
    CisSnapshot,
    GroupDelta,
    IgDelta,
    MetricDelta,
    SnapshotComparison,
    SnapshotGroupStats,
    SnapshotPracticeStats,
    SnapshotTask,
    SnapshotTotals,
)
from ssdf_tracker.services import ssdf_scoring
from ssdf_tracker.services.ssdf_scoring import ScoreStats, TaskScore

logger = logging.getLogger(__name__)

MAX_LABEL_LENGTH = 80


def natural_key(value: str) -> tuple:
    """Sort "2" before "10" and "16.2" before "16.10"."""
    return tuple((0, int(p)) if p.isdigit() else (1, p) for p in value.split("."))


def _stats_fields(stats: ScoreStats) -> dict[str, Any]:
    return {
        "total": stats.total,
        "applicable": stats.applicable,
        "implemented": stats.implemented,
        "maturity_sum": stats.maturity_sum,
        "maturity_avg": stats.maturity_avg,
        "coverage_rate": stats.implemented_rate,
        "weighted_progress": stats.weighted_progress,
        "weight_sum": stats.weight_sum,
        "weighted_score": stats.score,
    }


async def load_task_scores(s: AsyncSession, assessment_id: int) -> list[tuple[AssessmentTaskResult, TaskScore]]:
    q = (
        select(AssessmentTaskResult, SsdfTask, SsdfPractice, SsdfGroup)
        .join(SsdfTask, SsdfTask.id == AssessmentTaskResult.ssdf_task_id)
        .join(SsdfPractice, SsdfPractice.id == SsdfTask.practice_id)
        .join(SsdfGroup, SsdfGroup.id == SsdfPractice.group_id)
        .where(AssessmentTaskResult.assessment_id == assessment_id)
        .order_by(SsdfTask.order_id, SsdfTask.id)
    )
    rows = []
    for result, task, practice, group in (await s.execute(q)).all():
        rows.append((result, TaskScore(
            task_id=task.id,
            practice_id=practice.id,
            group_id=group.id,
            status=result.status,
            maturity_level=result.maturity_level,
            target_level=result.target_level,
            weight=result.weight,
            task_name=task.name,
            practice_name=practice.name,
            group_name=group.name,
        )))
    return rows


async def _cis_section(s: AsyncSession, assessment_id: int) -> CisSnapshot:
    controls = (await s.execute(select(CisControl))).scalars().all()
    safeguards = (await s.execute(select(CisSafeguard))).scalars().all()
    results = (await s.execute(
        select(AssessmentCisResult).where(
            AssessmentCisResult.assessment_id == assessment_id,
            AssessmentCisResult.cis_safeguard_id.is_not(None),
        )
    )).scalars().all()

    result_by_safeguard = {r.cis_safeguard_id: r for r in results}
    safeguards = sorted(safeguards, key=lambda sg: natural_key(sg.id))
    by_control: dict[str, list[CisSafeguard]] = {}
    for sg in safeguards:
        by_control.setdefault(sg.control_id, []).append(sg)

    control_rows = []
    for control in sorted(controls, key=lambda c: natural_key(c.id)):
        control_safeguards = by_control.get(control.id, [])
        control_results = [
            result_by_safeguard[sg.id] for sg in control_safeguards if sg.id in result_by_safeguard
        ]
        n = len(control_results)
        control_rows.append(CisControlSnapshot(
            control_id=control.id,
            control_name=control.name,
            safeguards_total=len(control_safeguards),
            derived_count=n,
            manual_override_count=sum(1 for r in control_results if r.manual_override),
            gap_count=len(control_safeguards) - n,
            avg_maturity=sum(r.effective_maturity_level for r in control_results) / n if n else 0.0,
            avg_coverage=sum(r.derived_coverage_score for r in control_results) / n if n else 0.0,
        ))

    # Safeguards without a result count as zero coverage
    ig_rows = []
    for ig in ImplementationGroup:
        members = [sg for sg in safeguards if sg.implementation_group == ig]
        score_sum = sum(
            result_by_safeguard[sg.id].derived_coverage_score
            for sg in members if sg.id in result_by_safeguard
        )
        ig_rows.append(CisIgSnapshot(
            ig=ig.value,
            total=len(members),
            avg_coverage=score_sum / len(members) if members else 0.0,
        ))

    return CisSnapshot(controls=control_rows, ig_stats=ig_rows)


async def build_assessment_snapshot(s: AsyncSession, assessment_id: int) -> AssessmentSnapshotData:
    scored = await load_task_scores(s, assessment_id)
    counts = await evidence_counts(s, assessment_id)
    scores = [score for _, score in scored]

    groups = ssdf_scoring.group_stats(scores)
    practices = ssdf_scoring.practice_stats(scores)
    totals = ssdf_scoring.totals(groups)

    tasks = [
        SnapshotTask(
            id=result.id,
            task_id=score.task_id,
            task_name=score.task_name,
            group_id=score.group_id,
            group_name=score.group_name,
            practice_id=score.practice_id,
            practice_name=score.practice_name,
            status=score.status.value,
            maturity_level=score.maturity_level,
            target_level=score.target_level,
            gap=ssdf_scoring.gap(score),
            priority=ssdf_scoring.priority(score),
            weight=score.weight,
            owner=result.owner,
            team=result.team,
            due_date=result.due_date.isoformat() if result.due_date else None,
            evidence_count=counts.get(result.id, 0),
        )
        for result, score in scored
    ]

    return AssessmentSnapshotData(
        version=SNAPSHOT_VERSION,
        generated_at=utcnow().isoformat(),
        group_stats=[SnapshotGroupStats(id=g.id, name=g.name, **_stats_fields(g)) for g in groups],
        totals=SnapshotTotals(**_stats_fields(totals)),
        practice_stats=[
            SnapshotPracticeStats(id=p.id, name=p.name, group_id=p.group_id, **_stats_fields(p))
            for p in practices
        ],
        tasks=tasks,
        cis=await _cis_section(s, assessment_id),
    )


def _drop_nulls(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _drop_nulls(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_drop_nulls(v) for v in value if v is not None]
    return value


def normalize_snapshot(raw: dict[str, Any] | AssessmentSnapshotData | None) -> AssessmentSnapshotData:
    """Bring a stored snapshot of any version into the current shape.

    Missing or null sections and metrics get their defaults, the recorded
    version is kept, and task rows written before priority was stored get it
    recomputed from gap and weight.
    """
    if isinstance(raw, AssessmentSnapshotData):
        data = raw.model_copy(deep=True)
    else:
        raw = _drop_nulls(dict(raw or {}))
        if not isinstance(raw.get("version"), int):
            raw["version"] = 1
        if not isinstance(raw.get("totals"), dict):
            raw.pop("totals", None)
        data = AssessmentSnapshotData.model_validate(raw)
    for task in data.tasks:
        if task.priority is None:
            task.priority = task.gap * task.weight
    return data


# ═══════════════════════════════════════════════════════════════
# COMPARISON
# ═══════════════════════════════════════════════════════════════

def _delta(base: float, current: float) -> MetricDelta:
    return MetricDelta(base=base, current=current, delta=current - base)


def _group_delta(gid: str, name: str, base: SnapshotTotals, current: SnapshotTotals) -> GroupDelta:
    return GroupDelta(
        id=gid,
        name=name,
        weighted_score=_delta(base.weighted_score, current.weighted_score),
        coverage_rate=_delta(base.coverage_rate, current.coverage_rate),
        maturity_avg=_delta(base.maturity_avg, current.maturity_avg),
    )


def compare_snapshots(base_raw: Any, current_raw: Any) -> SnapshotComparison:
    """Per-group, total and per-IG deltas from ``base`` to ``current``."""
    base = normalize_snapshot(base_raw)
    current = normalize_snapshot(current_raw)

    base_groups = {g.id: g for g in base.group_stats}
    current_groups = {g.id: g for g in current.group_stats}
    extra = sorted((set(base_groups) | set(current_groups)) - set(GROUP_ORDER))
    groups = []
    for gid in [*GROUP_ORDER, *extra]:
        if gid not in base_groups and gid not in current_groups:
            continue
        b = base_groups.get(gid) or SnapshotGroupStats(id=gid)
        c = current_groups.get(gid) or SnapshotGroupStats(id=gid)
        groups.append(_group_delta(gid, c.name or b.name, b, c))

    base_igs = {i.ig: i for i in base.cis.ig_stats}
    current_igs = {i.ig: i for i in current.cis.ig_stats}
    igs = []
    for ig in [i.value for i in ImplementationGroup]:
        b_cov = base_igs[ig].avg_coverage if ig in base_igs else 0.0
        c_cov = current_igs[ig].avg_coverage if ig in current_igs else 0.0
        igs.append(IgDelta(ig=ig, avg_coverage=_delta(b_cov, c_cov)))

    return SnapshotComparison(
        base_version=base.version,
        current_version=current.version,
        base_generated_at=base.generated_at,
        current_generated_at=current.generated_at,
        groups=groups,
        totals=_group_delta("TOTAL", "Total", base.totals, current.totals),
        ig_stats=igs,
    )


# ═══════════════════════════════════════════════════════════════
# PERSISTED SNAPSHOTS
# ═══════════════════════════════════════════════════════════════

async def create_assessment_snapshot(
    s: AsyncSession,
    assessment_id: int,
    snapshot_type: SnapshotType,
    *,
    label: str | None = None,
    actor_id: str | None = None,
    release_id: int | None = None,
    data: AssessmentSnapshotData | None = None,
) -> AssessmentSnapshot:
    if label is not None:
        label = label.strip() or None
    if label and len(label) > MAX_LABEL_LENGTH:
        raise ValidationError(f"Snapshot label exceeds {MAX_LABEL_LENGTH} characters")
    if data is None:
        data = await build_assessment_snapshot(s, assessment_id)
    row = AssessmentSnapshot(
        assessment_id=assessment_id,
        release_id=release_id,
        type=snapshot_type,
        label=label,
        snapshot=data.model_dump(mode="json"),
        created_by_id=actor_id,
        created_at=utcnow(),
    )
    s.add(row)
    await s.flush()
    logger.info("Stored %s snapshot %s for assessment %s", snapshot_type.value, row.id, assessment_id)
    return row


async def list_assessment_snapshots(s: AsyncSession, assessment_id: int) -> list[AssessmentSnapshot]:
    return list((await s.execute(
        select(AssessmentSnapshot)
        .where(AssessmentSnapshot.assessment_id == assessment_id)
        .order_by(AssessmentSnapshot.created_at.desc(), AssessmentSnapshot.id.desc())
    )).scalars().all())


async def latest_approved_snapshot(s: AsyncSession, assessment_id: int) -> AssessmentSnapshot | None:
    return (await s.execute(
        select(AssessmentSnapshot)
        .where(
            AssessmentSnapshot.assessment_id == assessment_id,
            AssessmentSnapshot.type == SnapshotType.APPROVED,
        )
        .order_by(AssessmentSnapshot.created_at.desc(), AssessmentSnapshot.id.desc())
        .limit(1)
    )).scalar_one_or_none()
