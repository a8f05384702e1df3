"""Assignment request/response schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..models.domain import (
    Assignee,
    AssignmentStatus,
    Recurrence,
    RecurrencePattern,
    RouteAssignment,
    assignee_from_record,
)

AssigneeType = Literal["user", "team"]


class RecurrenceModel(BaseModel):
    pattern: RecurrencePattern = RecurrencePattern.WEEKLY
    day_of_week: Optional[int] = Field(None, ge=0, le=6, description="0 = Monday ... 6 = Sunday")
    until: Optional[date] = None

    def to_domain(self) -> Recurrence:
        return Recurrence(pattern=self.pattern, day_of_week=self.day_of_week, until=self.until)


class AssignRequest(BaseModel):
    organization_id: str
    route_id: str
    assignee_type: AssigneeType
    assignee_id: str
    assigned_date: date
    assigned_by: Optional[str] = None
    notes: Optional[str] = None
    recurrence: Optional[RecurrenceModel] = None

    def assignee(self) -> Assignee:
        return assignee_from_record(self.assignee_type, self.assignee_id)


class TransferRequest(BaseModel):
    organization_id: str
    route_id: str
    new_assignee_type: AssigneeType
    new_assignee_id: str
    transfer_date: date
    assigned_by: Optional[str] = None
    reason: Optional[str] = None

    def assignee(self) -> Assignee:
        return assignee_from_record(self.new_assignee_type, self.new_assignee_id)


class AssignmentStatusRequest(BaseModel):
    organization_id: str
    status: AssignmentStatus
    completion_percentage: Optional[int] = Field(None, ge=0, le=100)


class GenerateOccurrencesRequest(BaseModel):
    organization_id: str
    as_of: date
    horizon_days: Optional[int] = Field(None, ge=0)


class AssignmentModel(BaseModel):
    id: str
    route_id: str
    assignee_type: AssigneeType
    assignee_id: str
    assigned_by: Optional[str] = None
    assigned_date: date
    status: AssignmentStatus
    completion_percentage: int
    is_recurring: bool
    day_of_week: Optional[int] = None
    recurrence_pattern: Optional[RecurrencePattern] = None
    recurring_until: Optional[date] = None
    notes: str = ""
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    performance_score: Optional[float] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, assignment: RouteAssignment) -> "AssignmentModel":
        return cls(**assignment.to_record())


class WeekViewResponse(BaseModel):
    week_start: date
    days: Dict[date, List[AssignmentModel]]
