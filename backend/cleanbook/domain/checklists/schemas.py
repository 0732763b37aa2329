from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ChecklistItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    item_id: int
    position: int
    room: str
    task_name: str
    minutes: int
    is_priority: bool
    is_completed: bool
    completed_at: datetime | None = None
    notes: str | None = None


class ChecklistResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    checklist_id: str
    job_id: str
    total_tasks: int
    total_minutes: int
    effort_hours: float
    items: list[ChecklistItemResponse] = Field(default_factory=list)


class ChecklistItemPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_completed: bool = True
    notes: str | None = Field(None, max_length=2000)


class CompletionSummary(BaseModel):
    total_tasks: int
    completed_tasks: int
    progress: int
    estimated_minutes: int
    remaining_minutes: int
    remaining_tasks: list[str]
