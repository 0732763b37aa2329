from pydantic import BaseModel, ConfigDict, Field


class TaskCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    room_type: str = Field(min_length=1, max_length=64)
    effort_minutes: int = Field(gt=0)
    default_order: int = 0
    is_priority: bool = False


class TaskUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    room_type: str | None = Field(None, min_length=1, max_length=64)
    effort_minutes: int | None = Field(None, gt=0)
    default_order: int | None = None
    is_priority: bool | None = None
    is_active: bool | None = None


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    task_id: str
    name: str
    description: str | None
    room_type: str
    effort_minutes: int
    default_order: int
    is_priority: bool
    is_active: bool


class TaskStats(BaseModel):
    total_tasks: int
    tasks_by_room_type: dict[str, int]
    total_effort_minutes: int
    average_effort_minutes: float
