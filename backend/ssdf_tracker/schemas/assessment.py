from datetime import date, datetime

from pydantic import BaseModel, Field, computed_field

from ssdf_tracker.models.enums import EditingMode, ReleaseAction, ReleaseStatus, SsdfStatus
from ssdf_tracker.services import ssdf_scoring


# ═══════════════════════════════════════════════════════════════
# ASSESSMENT
# ═══════════════════════════════════════════════════════════════

class AssessmentCreate(BaseModel):
    organization_id: int
    name: str = Field(..., min_length=1, max_length=300)
    unit: str | None = Field(None, max_length=200)
    scope: str | None = None
    assessment_owner: str | None = Field(None, max_length=200)
    start_date: date | None = None
    review_date: date | None = None
    notes: str | None = None


class AssessmentUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=300)
    unit: str | None = Field(None, max_length=200)
    scope: str | None = None
    assessment_owner: str | None = Field(None, max_length=200)
    start_date: date | None = None
    review_date: date | None = None
    notes: str | None = None


class AssessmentOut(BaseModel):
    id: int
    organization_id: int
    name: str
    unit: str | None = None
    scope: str | None = None
    assessment_owner: str | None = None
    start_date: date | None = None
    review_date: date | None = None
    notes: str | None = None
    editing_mode: EditingMode
    editing_locked_by_id: str | None = None
    editing_locked_at: datetime | None = None
    editing_lock_note: str | None = None
    created_by_id: str | None = None
    created_at: datetime
    updated_at: datetime
    model_config = {"from_attributes": True}


class AssessmentDetailOut(AssessmentOut):
    release_status: ReleaseStatus | None = None
    release_id: int | None = None
    can_edit: bool = False


# ═══════════════════════════════════════════════════════════════
# TASK RESULTS
# ═══════════════════════════════════════════════════════════════

class TaskResultUpdate(BaseModel):
    """Partial update of one task result. Omitted fields keep their value."""
    applicable: bool | None = None
    status: SsdfStatus | None = None
    maturity_level: int | None = None
    target_level: int | None = None
    weight: int | None = None
    owner: str | None = Field(None, max_length=200)
    team: str | None = Field(None, max_length=200)
    due_date: date | None = None
    last_review: date | None = None
    evidence_text: str | None = None
    evidence_links: str | list[str] | None = None
    comments: str | None = None
    reason: str | None = None


class TaskResultOut(BaseModel):
    id: int
    assessment_id: int
    ssdf_task_id: str
    applicable: bool
    status: SsdfStatus
    maturity_level: int
    target_level: int
    weight: int
    owner: str | None = None
    team: str | None = None
    due_date: date | None = None
    last_review: date | None = None
    evidence_text: str | None = None
    evidence_links: list[str] | None = None
    comments: str | None = None
    updated_by_id: str | None = None
    updated_at: datetime
    model_config = {"from_attributes": True}

    @computed_field
    @property
    def gap(self) -> int:
        return ssdf_scoring.gap(self)

    @computed_field
    @property
    def priority(self) -> int:
        return ssdf_scoring.priority(self)

    @computed_field
    @property
    def progress_weighted(self) -> float:
        return ssdf_scoring.progress_weighted(self)


class RoadmapItemOut(BaseModel):
    task_id: str
    task_name: str
    practice_id: str
    group_id: str
    status: SsdfStatus
    maturity_level: int
    target_level: int
    weight: int
    gap: int
    priority: int


# ═══════════════════════════════════════════════════════════════
# RELEASE / EDITING
# ═══════════════════════════════════════════════════════════════

class ReleaseActionIn(BaseModel):
    action: ReleaseAction
    notes: str | None = None


class ReleaseOut(BaseModel):
    id: int
    assessment_id: int
    status: ReleaseStatus
    notes: str | None = None
    base_release_id: int | None = None
    created_by_id: str | None = None
    approved_by_id: str | None = None
    approved_at: datetime | None = None
    created_at: datetime
    model_config = {"from_attributes": True}


class EditingModeUpdate(BaseModel):
    editing_mode: EditingMode
    note: str | None = None


class UnlockEditingIn(BaseModel):
    note: str | None = None


class UnlockEditingOut(BaseModel):
    release: ReleaseOut
    outcome: str
    editing_mode: EditingMode
