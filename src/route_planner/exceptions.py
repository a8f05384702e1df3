"""Error taxonomy for route planning and assignment scheduling."""

from __future__ import annotations

from typing import Iterable


class RoutePlanningError(Exception):
    """Base exception for the route planner."""

    def __init__(self, message: str | None = None):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


class ConfigurationError(RoutePlanningError):
    """Raised when a required setting is missing or invalid."""

    def __init__(self, message: str | None = None, setting: str | None = None):
        self.setting = setting
        super().__init__(message or f"Configuration error for setting: {setting}")


class RouteValidationError(RoutePlanningError, ValueError):
    """Raised when route input fails validation."""


class InsufficientStopsError(RoutePlanningError, ValueError):
    """Raised when fewer than two geocoded stops are available to optimize."""

    def __init__(self, geocoded: int, total: int | None = None):
        self.geocoded = geocoded
        self.total = total if total is not None else geocoded
        super().__init__(
            f"Route has fewer than 2 geocoded stops ({geocoded} of {self.total} stops have valid coordinates)."
        )


class RoutingProviderUnavailableError(RoutePlanningError):
    """Raised when the distance/duration provider fails, times out or returns incomplete data."""

    def __init__(self, message: str | None = None, provider: str | None = None):
        self.provider = provider
        super().__init__(message or f"Routing provider unavailable: {provider}")


class StopSetMismatchError(RoutePlanningError, ValueError):
    """Raised when an optimized route does not cover exactly the route's current stops."""

    def __init__(self, route_id: str, missing: Iterable[str] = (), unexpected: Iterable[str] = ()):
        self.route_id = route_id
        self.missing = sorted(missing)
        self.unexpected = sorted(unexpected)
        super().__init__(
            f"Optimized stops do not match route {route_id}: "
            f"missing={self.missing}, unexpected={self.unexpected}. Re-run optimization on current data."
        )


class DuplicateActiveAssignmentError(RoutePlanningError):
    """Raised when a route already has an assignment in a non-terminal status."""

    def __init__(self, route_id: str, assignment_id: str | None = None):
        self.route_id = route_id
        self.assignment_id = assignment_id
        super().__init__(
            f"Route {route_id} already has an active assignment"
            + (f" ({assignment_id})" if assignment_id else "")
            + "; transfer it instead of assigning again."
        )


class NoActiveAssignmentError(RoutePlanningError):
    """Raised when a transfer is requested for a route without an active assignment."""

    def __init__(self, route_id: str):
        self.route_id = route_id
        super().__init__(f"Route {route_id} has no active assignment to transfer.")


class RecordNotFoundError(RoutePlanningError, LookupError):
    """Raised when a referenced record does not exist in the organization scope."""

    def __init__(self, table: str, record_id: str):
        self.table = table
        self.record_id = record_id
        super().__init__(f"{table} record not found: {record_id}")


class OutletInUseError(RoutePlanningError):
    """Raised when deleting an outlet that route stops still reference."""

    def __init__(self, outlet_id: str, route_ids: Iterable[str]):
        self.outlet_id = outlet_id
        self.route_ids = sorted(set(route_ids))
        super().__init__(f"Outlet {outlet_id} is referenced by routes {self.route_ids}")


class InvalidStatusTransitionError(RoutePlanningError, ValueError):
    """Raised when a lifecycle transition is not allowed."""

    def __init__(self, entity: str, current: str, requested: str):
        self.entity = entity
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move {entity} from '{current}' to '{requested}'")


class UniqueConstraintError(RoutePlanningError):
    """Raised by a record store when a write violates a uniqueness constraint."""

    def __init__(self, table: str, columns: tuple[str, ...], values: tuple):
        self.table = table
        self.columns = columns
        self.values = values
        super().__init__(f"Duplicate value for {table}{columns}: {values}")
