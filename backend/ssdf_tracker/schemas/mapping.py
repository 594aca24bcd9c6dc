from datetime import datetime

from pydantic import BaseModel, Field

from ssdf_tracker.models.enums import MappingType


class MappingOut(BaseModel):
    id: int
    ssdf_task_id: str
    cis_control_id: str | None = None
    cis_safeguard_id: str | None = None
    mapping_type: MappingType
    weight: float
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
    model_config = {"from_attributes": True}


class MappingCreate(BaseModel):
    ssdf_task_id: str = Field(..., min_length=1)
    cis_control_id: str | None = None
    cis_safeguard_id: str | None = None
    mapping_type: MappingType
    weight: float = 1.0
    notes: str | None = None


class MappingUpdate(BaseModel):
    ssdf_task_id: str | None = Field(None, min_length=1)
    cis_control_id: str | None = None
    cis_safeguard_id: str | None = None
    mapping_type: MappingType | None = None
    weight: float | None = None
    notes: str | None = None
