"""
Shape of assessment snapshots (version 2) and of snapshot comparisons.

Every field has a default so that older, partial snapshots validate and come
out in the current shape.
"""
from datetime import datetime

from pydantic import BaseModel, Field

from ssdf_tracker.models.enums import SnapshotType

SNAPSHOT_VERSION = 2


class SnapshotTotals(BaseModel):
    total: int = 0
    applicable: int = 0
    implemented: int = 0
    maturity_sum: float = 0
    maturity_avg: float = 0.0
    coverage_rate: float = 0.0
    weighted_progress: float = 0.0
    weight_sum: float = 0
    weighted_score: float = 0.0


class SnapshotGroupStats(SnapshotTotals):
    id: str = ""
    name: str = ""


class SnapshotPracticeStats(SnapshotGroupStats):
    group_id: str = ""


class SnapshotTask(BaseModel):
    id: int | None = None
    task_id: str = ""
    task_name: str = ""
    group_id: str = ""
    group_name: str = ""
    practice_id: str = ""
    practice_name: str = ""
    status: str = "NOT_STARTED"
    maturity_level: int = 0
    target_level: int = 0
    gap: int = 0
    priority: int | None = None
    weight: int = 0
    owner: str | None = None
    team: str | None = None
    due_date: str | None = None
    evidence_count: int = 0


class CisControlSnapshot(BaseModel):
    control_id: str
    control_name: str = ""
    safeguards_total: int = 0
    derived_count: int = 0
    manual_override_count: int = 0
    gap_count: int = 0
    avg_maturity: float = 0.0
    avg_coverage: float = 0.0


class CisIgSnapshot(BaseModel):
    ig: str
    total: int = 0
    avg_coverage: float = 0.0


class CisSnapshot(BaseModel):
    controls: list[CisControlSnapshot] = Field(default_factory=list)
    ig_stats: list[CisIgSnapshot] = Field(default_factory=list)


class AssessmentSnapshotData(BaseModel):
    version: int = 1
    generated_at: str | None = None
    group_stats: list[SnapshotGroupStats] = Field(default_factory=list)
    totals: SnapshotTotals = Field(default_factory=SnapshotTotals)
    practice_stats: list[SnapshotPracticeStats] = Field(default_factory=list)
    tasks: list[SnapshotTask] = Field(default_factory=list)
    cis: CisSnapshot = Field(default_factory=CisSnapshot)


# ═══════════════════════════════════════════════════════════════
# COMPARISON
# ═══════════════════════════════════════════════════════════════

class MetricDelta(BaseModel):
    base: float
    current: float
    delta: float


class GroupDelta(BaseModel):
    id: str
    name: str = ""
    weighted_score: MetricDelta
    coverage_rate: MetricDelta
    maturity_avg: MetricDelta


class IgDelta(BaseModel):
    ig: str
    avg_coverage: MetricDelta


class SnapshotComparison(BaseModel):
    base_version: int
    current_version: int
    base_generated_at: str | None = None
    current_generated_at: str | None = None
    groups: list[GroupDelta]
    totals: GroupDelta
    ig_stats: list[IgDelta]


# ═══════════════════════════════════════════════════════════════
# API
# ═══════════════════════════════════════════════════════════════

class SnapshotCreate(BaseModel):
    type: SnapshotType = SnapshotType.MANUAL
    label: str | None = Field(None, max_length=80)


class SnapshotOut(BaseModel):
    id: int
    assessment_id: int
    release_id: int | None = None
    type: SnapshotType
    label: str | None = None
    created_by_id: str | None = None
    created_at: datetime
    snapshot: AssessmentSnapshotData

    model_config = {"from_attributes": True}


class SnapshotSummaryOut(BaseModel):
    id: int
    assessment_id: int
    release_id: int | None = None
    type: SnapshotType
    label: str | None = None
    created_by_id: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
