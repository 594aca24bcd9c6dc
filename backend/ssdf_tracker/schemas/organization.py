from datetime import datetime

from pydantic import BaseModel, Field


class OrganizationOut(BaseModel):
    id: int
    name: str
    description: str | None = None
    created_at: datetime
    model_config = {"from_attributes": True}


class OrganizationDetailOut(OrganizationOut):
    assessment_count: int = 0


class OrganizationCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    description: str | None = None


class OrganizationUpdate(BaseModel):
    name: str | None = Field(None, min_length=3, max_length=100)
    description: str | None = None
