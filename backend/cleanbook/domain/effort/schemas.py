from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ModifierType(str, Enum):
    rush = "rush"
    deep_clean = "deep_clean"
    eco_friendly = "eco_friendly"
    pet_friendly = "pet_friendly"
    custom = "custom"


class EffortModifier(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: ModifierType
    multiplier: Optional[float] = Field(None, gt=0)
    additional_minutes: Optional[float] = None

    @model_validator(mode="after")
    def require_effect(self) -> "EffortModifier":
        if self.multiplier is None and self.additional_minutes is None:
            raise ValueError("modifier needs a multiplier or additional_minutes")
        return self


class RoomSelection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    room_type: str = Field(min_length=1)
    quantity: int = Field(1, ge=1, le=50)
    task_ids: Optional[List[str]] = None


class TaskEffort(BaseModel):
    task_id: str
    name: str
    effort_minutes: int


class RoomEffort(BaseModel):
    room_type: str
    quantity: int
    minutes_per_room: int
    total_minutes: int
    tasks: List[TaskEffort] = Field(default_factory=list)


class ModifierEffect(BaseModel):
    type: ModifierType
    multiplier: Optional[float] = None
    additional_minutes: Optional[float] = None
    effect_minutes: int


class EffortResult(BaseModel):
    base_minutes: int
    modified_minutes: int
    breakdown: List[RoomEffort] = Field(default_factory=list)
    modifiers: List[ModifierEffect] = Field(default_factory=list)
    dropped_task_ids: List[str] = Field(default_factory=list)

    @property
    def hours(self) -> float:
        return effort_hours(self.modified_minutes)


def effort_hours(minutes: int) -> float:
    return round(minutes / 60, 2)
