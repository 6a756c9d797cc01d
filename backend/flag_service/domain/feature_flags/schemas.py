from __future__ import annotations

import json
from datetime import datetime
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
)


def _containers_as_text(value: Any) -> Any:
    if isinstance(value, (list, dict)):
        return json.dumps(value, separators=(",", ":"), sort_keys=True)
    return value


# Any JSON value is accepted and kept as-is; normalize_identifier applies str().
IdentifierValue = Annotated[
    StrictStr | StrictInt | StrictFloat | StrictBool | None,
    BeforeValidator(_containers_as_text),
]


class FeatureFlagParams(BaseModel):
    """Writable flag fields; only keys the caller sent are applied on update."""

    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    global_default_state: bool | None = None
    description: str | None = None

    def present(self) -> dict[str, object]:
        return self.model_dump(include=self.model_fields_set)


class EvaluationParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: IdentifierValue = None
    group_id: IdentifierValue = None
    region: IdentifierValue = None
    metadata: bool = False


class OverrideParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str | None = None
    identifier: IdentifierValue = None
    enabled: bool | None = None


class FeatureFlagResponse(BaseModel):
    id: int
    name: str
    global_default_state: bool
    description: str | None
    created_at: datetime
    updated_at: datetime


class OverrideResponse(BaseModel):
    id: int
    feature_flag_id: int
    type: str
    identifier: str
    enabled: bool
    created_at: datetime
    updated_at: datetime


class OverrideListResponse(BaseModel):
    user_overrides: list[OverrideResponse] = Field(default_factory=list)
    group_overrides: list[OverrideResponse] = Field(default_factory=list)
    region_overrides: list[OverrideResponse] = Field(default_factory=list)


class EvaluationResponse(BaseModel):
    enabled: bool
    source: str | None = None
    feature_flag_name: str
