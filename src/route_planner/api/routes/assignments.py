"""Route assignment endpoints."""

from __future__ import annotations

from datetime import date
from typing import List

from fastapi import APIRouter, Depends, Query, status

from ...exceptions import RoutePlanningError
from ...models.domain import assignee_from_record
from ...schemas.assignments import (
    AssigneeType,
    AssignmentModel,
    AssignmentStatusRequest,
    AssignRequest,
    GenerateOccurrencesRequest,
    TransferRequest,
    WeekViewResponse,
)
from ...services.assignments.recurrence import week_start
from ...services.assignments.scheduler import AssignmentScheduler
from ..dependencies import get_scheduler, to_http_exception

router = APIRouter(prefix="/assignments", tags=["assignments"])


@router.post("", response_model=AssignmentModel, status_code=status.HTTP_201_CREATED)
def assign_route(payload: AssignRequest, scheduler: AssignmentScheduler = Depends(get_scheduler)) -> AssignmentModel:
    try:
        assignment = scheduler.assign(
            payload.organization_id,
            payload.route_id,
            payload.assignee(),
            payload.assigned_date,
            assigned_by=payload.assigned_by,
            notes=payload.notes,
            recurrence=payload.recurrence.to_domain() if payload.recurrence else None,
        )
    except RoutePlanningError as exc:
        raise to_http_exception(exc) from exc
    return AssignmentModel.from_domain(assignment)


@router.post("/transfer", response_model=AssignmentModel, status_code=status.HTTP_201_CREATED)
def transfer_route(payload: TransferRequest, scheduler: AssignmentScheduler = Depends(get_scheduler)) -> AssignmentModel:
    """Hand the route's active assignment over to a new assignee."""
    try:
        assignment = scheduler.transfer(
            payload.organization_id,
            payload.route_id,
            payload.assignee(),
            payload.transfer_date,
            assigned_by=payload.assigned_by,
            reason=payload.reason,
        )
    except RoutePlanningError as exc:
        raise to_http_exception(exc) from exc
    return AssignmentModel.from_domain(assignment)


@router.patch("/{assignment_id}/status", response_model=AssignmentModel, status_code=status.HTTP_200_OK)
def update_assignment_status(
    assignment_id: str,
    payload: AssignmentStatusRequest,
    scheduler: AssignmentScheduler = Depends(get_scheduler),
) -> AssignmentModel:
    try:
        assignment = scheduler.update_status(
            payload.organization_id, assignment_id, payload.status, payload.completion_percentage
        )
    except RoutePlanningError as exc:
        raise to_http_exception(exc) from exc
    return AssignmentModel.from_domain(assignment)


@router.post("/recurring/generate", response_model=List[AssignmentModel], status_code=status.HTTP_200_OK)
def generate_recurring(
    payload: GenerateOccurrencesRequest,
    scheduler: AssignmentScheduler = Depends(get_scheduler),
) -> List[AssignmentModel]:
    created = scheduler.generate_recurring_occurrences(payload.organization_id, payload.as_of, payload.horizon_days)
    return [AssignmentModel.from_domain(item) for item in created]


@router.get("/week", response_model=WeekViewResponse, status_code=status.HTTP_200_OK)
def week_view(
    organization_id: str = Query(...),
    assignee_type: AssigneeType = Query(...),
    assignee_id: str = Query(...),
    week_of: date = Query(..., description="Any day inside the requested Monday-based week"),
    scheduler: AssignmentScheduler = Depends(get_scheduler),
) -> WeekViewResponse:
    week = scheduler.assignments_for_week(organization_id, assignee_from_record(assignee_type, assignee_id), week_of)
    return WeekViewResponse(
        week_start=week_start(week_of),
        days={day: [AssignmentModel.from_domain(item) for item in items] for day, items in week.items()},
    )


@router.get("/route/{route_id}/active", response_model=AssignmentModel | None, status_code=status.HTTP_200_OK)
def active_assignment(
    route_id: str,
    organization_id: str = Query(...),
    scheduler: AssignmentScheduler = Depends(get_scheduler),
):
    assignment = scheduler.active_assignment(organization_id, route_id)
    return AssignmentModel.from_domain(assignment) if assignment else None
