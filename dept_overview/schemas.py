from __future__ import annotations

from pydantic import BaseModel, Field


class DepartmentCreate(BaseModel):
    name: str = Field(max_length=255)
    positions: list[str] = Field(default_factory=list)


class DepartmentRead(BaseModel):
    id: str | None = None
    name: str
    positions: list[str] | None = None


class DepartmentSummaryRead(DepartmentRead):
    employee_count: int = Field(ge=0)
    attendance_rate: int = Field(ge=0, le=100)


class DepartmentOverviewRead(BaseModel):
    summaries: list[DepartmentSummaryRead]
    in_progress: bool
    last_error: str | None = None
