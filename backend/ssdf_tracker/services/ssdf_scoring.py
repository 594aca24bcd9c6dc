"""
SSDF scoring service.

Per-task gap / priority / weighted progress, and aggregation of task results per
group, per practice and overall. Everything here is pure: callers load rows and
pass them in.

Rows are duck-typed: anything with ``status``, ``maturity_level``,
``target_level`` and ``weight`` (an ``AssessmentTaskResult`` or a ``TaskScore``).
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from ssdf_tracker.models import GROUP_ORDER, SsdfStatus

MAX_MATURITY_LEVEL = 3
MIN_TASK_WEIGHT = 1
MAX_TASK_WEIGHT = 5

_LINK_SPLIT = re.compile(r"[\n,;]+")


@dataclass(frozen=True)
class TaskScore:
    """A task result flattened with its place in the SSDF tree."""

    task_id: str
    practice_id: str
    group_id: str
    status: SsdfStatus
    maturity_level: int
    target_level: int
    weight: int
    task_name: str = ""
    practice_name: str = ""
    group_name: str = ""


# ── per-row ──────────────────────────────────────────────────

def gap(row) -> int:
    """Target minus maturity. Negative when a task exceeds its target."""
    return row.target_level - row.maturity_level


def priority(row) -> int:
    return gap(row) * row.weight


def progress_weighted(row) -> float:
    return (row.maturity_level / MAX_MATURITY_LEVEL) * row.weight


def is_applicable(status: SsdfStatus | str) -> bool:
    return SsdfStatus(status) != SsdfStatus.NOT_APPLICABLE


def normalize_status(applicable: bool | None, status: SsdfStatus) -> SsdfStatus:
    """Reconcile the applicable flag with the submitted status.

    applicable=False always wins and forces NOT_APPLICABLE. applicable=True with
    a NOT_APPLICABLE status resets to NOT_STARTED. None leaves the status as is.
    """
    if applicable is None:
        return status
    if not applicable:
        return SsdfStatus.NOT_APPLICABLE
    if status == SsdfStatus.NOT_APPLICABLE:
        return SsdfStatus.NOT_STARTED
    return status


def parse_evidence_links(value: str | list[str] | None) -> list[str]:
    """Split on newlines, commas and semicolons; trim and drop empties."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [item.strip() for item in value if item and item.strip()]
    return [item.strip() for item in _LINK_SPLIT.split(value) if item.strip()]


# ── aggregation ──────────────────────────────────────────────

@dataclass
class ScoreStats:
    id: str = ""
    name: str = ""
    group_id: str = ""
    total: int = 0
    applicable: int = 0
    implemented: int = 0
    maturity_sum: int = 0
    weighted_progress: float = 0.0
    weight_sum: int = 0

    def add(self, row) -> None:
        self.total += 1
        if not is_applicable(row.status):
            return
        self.applicable += 1
        if row.status == SsdfStatus.IMPLEMENTED:
            self.implemented += 1
        self.maturity_sum += row.maturity_level
        self.weighted_progress += progress_weighted(row)
        self.weight_sum += row.weight

    def merge(self, other: "ScoreStats") -> None:
        self.total += other.total
        self.applicable += other.applicable
        self.implemented += other.implemented
        self.maturity_sum += other.maturity_sum
        self.weighted_progress += other.weighted_progress
        self.weight_sum += other.weight_sum

    @property
    def score(self) -> float:
        return self.weighted_progress / self.weight_sum if self.weight_sum > 0 else 0.0

    @property
    def implemented_rate(self) -> float:
        return self.implemented / self.applicable if self.applicable > 0 else 0.0

    @property
    def maturity_avg(self) -> float:
        return self.maturity_sum / self.applicable if self.applicable > 0 else 0.0


def aggregate(rows: Iterable) -> ScoreStats:
    stats = ScoreStats()
    for row in rows:
        stats.add(row)
    return stats


def group_stats(rows: Iterable[TaskScore]) -> list[ScoreStats]:
    """Stats per SSDF group, in PO, PS, PW, RV order. Groups without rows are omitted."""
    by_group: dict[str, ScoreStats] = {}
    for row in rows:
        entry = by_group.setdefault(row.group_id, ScoreStats(id=row.group_id, name=row.group_name))
        entry.add(row)
    return [by_group[gid] for gid in GROUP_ORDER if gid in by_group]


def practice_stats(rows: Iterable[TaskScore]) -> list[ScoreStats]:
    by_practice: dict[str, ScoreStats] = {}
    for row in rows:
        entry = by_practice.setdefault(
            row.practice_id,
            ScoreStats(id=row.practice_id, name=row.practice_name, group_id=row.group_id),
        )
        entry.add(row)
    return sorted(by_practice.values(), key=lambda p: (p.group_id, p.id))


def totals(groups: Iterable[ScoreStats]) -> ScoreStats:
    """Grand total summed over the ordered group stats."""
    total = ScoreStats()
    for g in groups:
        total.merge(g)
    return total


def rank_by_priority(rows: Iterable[TaskScore], limit: int | None = None) -> list[TaskScore]:
    """Roadmap order: open applicable tasks by priority, then gap, then task id."""
    open_rows = [
        r for r in rows
        if is_applicable(r.status) and r.status != SsdfStatus.IMPLEMENTED
    ]
    ranked = sorted(open_rows, key=lambda r: (-priority(r), -gap(r), r.task_id))
    return ranked[:limit] if limit is not None else ranked
