from datetime import date, datetime

from pydantic import BaseModel, Field

from ssdf_tracker.models.enums import EvidenceReviewStatus, EvidenceType


class EvidenceCreate(BaseModel):
    type: EvidenceType
    description: str = Field(..., min_length=1)
    review_status: EvidenceReviewStatus = EvidenceReviewStatus.PENDING
    link: str | None = Field(None, max_length=2000)
    owner: str | None = Field(None, max_length=200)
    evidence_date: date | None = None
    valid_until: date | None = None
    notes: str | None = None
    reason: str | None = None


class EvidenceUpdate(BaseModel):
    """Partial update of one evidence row. Omitted fields keep their value."""
    type: EvidenceType | None = None
    description: str | None = Field(None, min_length=1)
    review_status: EvidenceReviewStatus | None = None
    link: str | None = Field(None, max_length=2000)
    owner: str | None = Field(None, max_length=200)
    evidence_date: date | None = None
    valid_until: date | None = None
    notes: str | None = None
    reason: str | None = None


class EvidenceOut(BaseModel):
    id: int
    task_result_id: int
    type: EvidenceType
    review_status: EvidenceReviewStatus
    description: str
    link: str | None = None
    owner: str | None = None
    evidence_date: date | None = None
    valid_until: date | None = None
    notes: str | None = None
    created_by_id: str | None = None
    updated_by_id: str | None = None
    created_at: datetime
    updated_at: datetime
    model_config = {"from_attributes": True}


class EvidenceHistoryOut(BaseModel):
    id: int
    evidence_id: int
    changed_by_id: str | None = None
    field_name: str
    old_value: str | None = None
    new_value: str | None = None
    reason: str | None = None
    metadata: dict | None = Field(None, validation_alias="meta")
    created_at: datetime
    model_config = {"from_attributes": True}
