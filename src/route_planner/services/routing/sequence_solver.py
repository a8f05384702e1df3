"""OR-Tools refinement of a single open route's visit sequence.

The heuristic order is loaded as the initial assignment and improved with
greedy descent, which converges to the same local optimum on every run.
Missing anchors are modelled as zero-cost dummy depots so the route stays open.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
from ortools.constraint_solver import pywrapcp, routing_enums_pb2

from ...config import settings

logger = logging.getLogger(__name__)

COST_SCALE = 1000


def _local_matrix(
    cost: np.ndarray,
    order: Sequence[int],
    start_index: int | None,
    end_index: int | None,
) -> list[list[int]]:
    """Integer cost matrix over [start, *stops, end]; dummy depots cost nothing."""
    nodes: list[int | None] = [start_index, *order, end_index]
    size = len(nodes)
    matrix = [[0] * size for _ in range(size)]
    for i, a in enumerate(nodes):
        for j, b in enumerate(nodes):
            if i == j or a is None or b is None:
                continue
            matrix[i][j] = int(round(float(cost[a][b]) * COST_SCALE))
    return matrix


def refine_sequence(
    cost: np.ndarray,
    order: Sequence[int],
    start_index: int | None = None,
    end_index: int | None = None,
    time_limit_seconds: int | None = None,
) -> list[int]:
    """Return an order at least as cheap as ``order`` (matrix node indices)."""
    if len(order) < 3:
        return list(order)

    matrix = _local_matrix(cost, order, start_index, end_index)
    size = len(matrix)
    manager = pywrapcp.RoutingIndexManager(size, 1, [0], [size - 1])
    routing = pywrapcp.RoutingModel(manager)

    def cost_callback(from_index: int, to_index: int) -> int:
        return matrix[manager.IndexToNode(from_index)][manager.IndexToNode(to_index)]

    transit_callback_index = routing.RegisterTransitCallback(cost_callback)
    routing.SetArcCostEvaluatorOfAllVehicles(transit_callback_index)

    search_parameters = pywrapcp.DefaultRoutingSearchParameters()
    search_parameters.local_search_metaheuristic = (
        routing_enums_pb2.LocalSearchMetaheuristic.GREEDY_DESCENT
    )
    search_parameters.time_limit.FromSeconds(time_limit_seconds or settings.solver_time_limit_seconds)
    routing.CloseModelWithParameters(search_parameters)

    initial_route = [manager.NodeToIndex(node) for node in range(1, len(order) + 1)]
    initial = routing.ReadAssignmentFromRoutes([initial_route], True)
    if initial is None:
        logger.warning("OR-Tools rejected the initial sequence; keeping heuristic order")
        return list(order)

    assignment = routing.SolveFromAssignmentWithParameters(initial, search_parameters)
    if assignment is None:
        logger.warning("OR-Tools found no solution; keeping heuristic order")
        return list(order)

    refined: list[int] = []
    index = assignment.Value(routing.NextVar(routing.Start(0)))
    while not routing.IsEnd(index):
        refined.append(order[manager.IndexToNode(index) - 1])
        index = assignment.Value(routing.NextVar(index))
    return refined
