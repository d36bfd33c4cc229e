"""
Pydantic schemas for the tracker API.
"""

from __future__ import annotations

import math
from typing import Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    field_validator,
    model_validator,
)


def _contains_non_finite(value: Any) -> bool:
    if isinstance(value, float):
        return not math.isfinite(value)
    if isinstance(value, dict):
        return any(_contains_non_finite(v) for v in value.values())
    if isinstance(value, list):
        return any(_contains_non_finite(v) for v in value)
    return False


class SnapshotPayload(BaseModel):
    """A snapshot as submitted by a client.

    Only ``date`` and ``netWorth`` are checked; any other fields (category
    breakdowns and the like) are kept as given.
    """

    model_config = ConfigDict(extra="allow")

    date: StrictStr = Field(..., min_length=1)
    netWorth: Union[StrictInt, StrictFloat]

    @field_validator("date")
    @classmethod
    def _date_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("date must not be blank")
        return value

    @field_validator("netWorth")
    @classmethod
    def _net_worth_finite(cls, value: int | float) -> int | float:
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError("netWorth must be finite")
        return value

    @model_validator(mode="after")
    def _extras_finite(self) -> "SnapshotPayload":
        # NaN and Infinity have no JSON form.
        for key, value in (self.model_extra or {}).items():
            if _contains_non_finite(value):
                raise ValueError(f"{key} must not contain NaN or Infinity")
        return self


class SnapshotListResponse(BaseModel):
    snapshots: list[dict]


class MeResponse(BaseModel):
    sub: str


class OkResponse(BaseModel):
    ok: Literal[True] = True


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
