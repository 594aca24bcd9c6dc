from pydantic import BaseModel


# ── Reference data (read-only) ──

class SsdfTaskOut(BaseModel):
    id: str
    practice_id: str
    name: str
    examples: str | None = None
    references: str | None = None
    model_config = {"from_attributes": True}


class SsdfPracticeOut(BaseModel):
    id: str
    group_id: str
    name: str
    tasks: list[SsdfTaskOut] = []
    model_config = {"from_attributes": True}


class SsdfGroupOut(BaseModel):
    id: str
    name: str
    practices: list[SsdfPracticeOut] = []
    model_config = {"from_attributes": True}
