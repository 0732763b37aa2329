from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SettingValueType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"


class SettingResponse(BaseModel):
    key: str
    value: Any
    value_type: SettingValueType
    category: str
    description: str | None = None


class SettingUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    value: str = Field(min_length=1)
