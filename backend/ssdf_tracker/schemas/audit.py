from datetime import datetime

from pydantic import BaseModel, Field

from ssdf_tracker.models.enums import AuditAction


class AuditLogOut(BaseModel):
    id: int
    action: AuditAction
    entity_type: str
    entity_id: str | None = None
    field_name: str | None = None
    old_value: str | None = None
    new_value: str | None = None
    organization_id: int | None = None
    actor_user_id: str | None = None
    actor_email: str | None = None
    actor_role: str | None = None
    success: bool
    error_message: str | None = None
    request_id: str | None = None
    metadata: dict | None = Field(None, validation_alias="meta")
    created_at: datetime
    model_config = {"from_attributes": True}


class AuditLogPage(BaseModel):
    items: list[AuditLogOut]
    total: int
    page: int
    per_page: int


class TaskHistoryOut(BaseModel):
    id: int
    task_result_id: int
    changed_by_id: str | None = None
    field_name: str
    old_value: str | None = None
    new_value: str | None = None
    reason: str | None = None
    request_id: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    metadata: dict | None = Field(None, validation_alias="meta")
    created_at: datetime
    model_config = {"from_attributes": True}
