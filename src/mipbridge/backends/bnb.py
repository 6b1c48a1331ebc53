from __future__ import annotations
import logging
import math
import time
from typing import Optional, Any

import numpy as np
import highspy
from highspy import HighsModelStatus

from ..callback import Event
from ..dispatch import EventDispatcher
from ..model import ModelData
from .base import BackendResult, ResultStatus, SolverBackend, SolverOptions, register_backend
from .highs import build_highs_lp, _check

logger = logging.getLogger("mipbridge.backends.bnb")

# name -> (type, default)
DEFAULT_PARAMETERS: dict[str, tuple[type, Any]] = {
    "node_limit": (int, -1),
    "time_limit": (float, -1.0),
    "integrality_tolerance": (float, 1e-6),
    "log_frequency": (int, 100),
}


def parse_parameters(parameters: str) -> dict[str, Any]:
    """
    Reads whitespace separated key=value pairs; unknown keys are ignored with a warning.

    Raises:
        ValueError: If a pair is malformed or a value has the wrong type.
    """
    params = {k: default for k, (_, default) in DEFAULT_PARAMETERS.items()}

    for token in parameters.split():
        key, sep, value = token.partition("=")
        if not sep or not key:
            raise ValueError(f"Malformed parameter {token!r}, expected key=value")

        key = key.lower()
        if key not in DEFAULT_PARAMETERS:
            logger.warning("Ignoring unknown branch-and-bound parameter %r", key)
            continue

        kind = DEFAULT_PARAMETERS[key][0]
        try:
            params[key] = kind(value)
        except ValueError:
            raise ValueError(f"Invalid value {value!r} for parameter {key!r}") from None

    return params


class _Node(object):
    __slots__ = ["lower", "upper", "bound", "depth"]

    def __init__(self, lower: np.ndarray, upper: np.ndarray, bound: float, depth: int):
        self.lower = lower
        self.upper = upper
        self.bound = bound
        self.depth = depth


@register_backend("BNB", "BNB_MIXED_INTEGER_PROGRAMMING", "BRANCH_AND_BOUND")
class BranchAndBoundBackend(SolverBackend):
    """
    Depth-first branch-and-bound over LP relaxations solved by HiGHS.

    Milestones:
        PRESOLVE      once, after integer bounds are rounded (no incumbent)
        MIP_NODE      after each node relaxation is solved
        MIP_SOLUTION  after each improving incumbent is committed
        MESSAGE       for each progress line, when output is enabled
    """

    def solve(self, model: ModelData, dispatcher: EventDispatcher, options: SolverOptions) -> BackendResult:
        params = parse_parameters(options.parameters)

        time_limit = options.time_limit
        if params["time_limit"] >= 0:
            time_limit = params["time_limit"]

        search = _Search(model, dispatcher, options.output, params, time_limit)
        return search.run()


class _Search(object):
    def __init__(self, model: ModelData, dispatcher: EventDispatcher, output: bool, params: dict[str, Any], time_limit: Optional[float]):
        self.model = model
        self.dispatcher = dispatcher
        self.output = output
        self.node_limit = params["node_limit"]
        self.tolerance = params["integrality_tolerance"]
        self.log_frequency = max(params["log_frequency"], 1)
        self.time_limit = time_limit

        # objective compared in minimization form
        self.sign = -1.0 if model.maximize else 1.0
        self.all_cols = np.arange(model.num_col, dtype=np.int32)
        self.int_cols = np.nonzero(model.integrality)[0]

        self.incumbent: Optional[np.ndarray] = None
        self.incumbent_value = math.inf
        self.nodes = 0
        self.stopped = False
        self.unbounded = False

        self.lp = highspy.Highs()
        self.lp.silent()
        _check(self.lp.passModel(build_highs_lp(model, relax=True)), "load the relaxation")

    def log(self, message: str):
        if not self.output:
            return

        logger.info(message)
        self.__fire(Event.MESSAGE, message=message)

    def __fire(self, event: Event, values: Optional[np.ndarray] = None, message: Optional[str] = None):
        if not self.dispatcher.fire(event, values, self.nodes, message):
            self.stopped = True

    def __limit_reached(self, start: float) -> bool:
        if self.stopped:
            return True

        if self.node_limit >= 0 and self.nodes >= self.node_limit:
            self.log(f"Node limit {self.node_limit} reached")
            return True

        if self.time_limit is not None and time.perf_counter() - start >= self.time_limit:
            self.log(f"Time limit {self.time_limit}s reached")
            return True

        return False

    def __presolve(self) -> Optional[_Node]:
        lower = self.model.col_lower.copy()
        upper = self.model.col_upper.copy()

        lower[self.int_cols] = np.ceil(lower[self.int_cols] - self.tolerance)
        upper[self.int_cols] = np.floor(upper[self.int_cols] + self.tolerance)

        self.__fire(Event.PRESOLVE)

        if (lower > upper).any():
            self.log("Integer bounds are inconsistent")
            return None

        return _Node(lower, upper, -math.inf, 0)

    def __relax(self, node: _Node):
        """
        Solves the node LP. Returns (model status, minimization-form bound, column values).
        """
        n = self.model.num_col
        _check(self.lp.changeColsBounds(n, self.all_cols, node.lower, node.upper), "change bounds")
        _check(self.lp.run(), "solve the relaxation")

        status = self.lp.getModelStatus()
        if status != HighsModelStatus.kOptimal:
            return status, math.inf, None

        col_value = np.array(self.lp.getSolution().col_value, dtype=np.float64)
        return status, self.sign * self.lp.getInfo().objective_function_value, col_value

    def __commit(self, col_value: np.ndarray) -> bool:
        candidate = col_value.copy()
        candidate[self.int_cols] = np.round(candidate[self.int_cols])
        value = self.sign * self.model.objective_value(candidate)

        if self.incumbent is not None and value >= self.incumbent_value:
            return False

        self.incumbent = candidate
        self.incumbent_value = value
        return True

    def __branch(self, node: _Node, col_value: np.ndarray, bound: float) -> list[_Node]:
        frac = np.abs(col_value[self.int_cols] - np.round(col_value[self.int_cols]))
        j = self.int_cols[int(np.argmax(frac))]
        x = col_value[j]

        down_upper = node.upper.copy()
        down_upper[j] = math.floor(x)
        down = _Node(node.lower, down_upper, bound, node.depth + 1)

        up_lower = node.lower.copy()
        up_lower[j] = math.ceil(x)
        up = _Node(up_lower, node.upper, bound, node.depth + 1)

        # the child nearest to x is popped first
        return [down, up] if x - math.floor(x) >= 0.5 else [up, down]

    def __fractional(self, col_value: np.ndarray) -> bool:
        if len(self.int_cols) == 0:
            return False
        frac = np.abs(col_value[self.int_cols] - np.round(col_value[self.int_cols]))
        return bool((frac > self.tolerance).any())

    def run(self) -> BackendResult:
        start = time.perf_counter()
        root = self.__presolve()
        stack = [root] if root is not None else []

        while stack and not self.__limit_reached(start):
            node = stack.pop()
            if node.bound >= self.incumbent_value:
                continue

            self.nodes += 1
            status, bound, col_value = self.__relax(node)

            self.__fire(Event.MIP_NODE)

            if status in (HighsModelStatus.kUnbounded, HighsModelStatus.kUnboundedOrInfeasible) and node.depth == 0:
                self.unbounded = status == HighsModelStatus.kUnbounded
                break

            if col_value is None or bound >= self.incumbent_value:
                continue

            if self.__fractional(col_value):
                stack.extend(self.__branch(node, col_value, bound))

            elif self.__commit(col_value):
                self.log(f"Node {self.nodes}: new incumbent {self.sign * self.incumbent_value:.6g}")
                self.__fire(Event.MIP_SOLUTION, self.incumbent)

            if self.nodes % self.log_frequency == 0:
                self.log(f"Node {self.nodes}: {len(stack)} open, incumbent {self.sign * self.incumbent_value:.6g}")

        return self.__result(stack)

    def __result(self, open_nodes: list[_Node]) -> BackendResult:
        exhausted = len(open_nodes) == 0

        if self.incumbent is None:
            if self.unbounded:
                status = ResultStatus.UNBOUNDED
            elif exhausted:
                status = ResultStatus.INFEASIBLE
            else:
                status = ResultStatus.NOT_SOLVED
            return BackendResult(status, nodes=self.nodes)

        if exhausted:
            status = ResultStatus.OPTIMAL
            best_bound = self.incumbent_value
        else:
            status = ResultStatus.FEASIBLE
            best_bound = min([n.bound for n in open_nodes] + [self.incumbent_value])

        self.log(f"Finished after {self.nodes} nodes: {status.name}")

        return BackendResult(
            status,
            self.incumbent.copy(),
            objective_value=self.model.objective_value(self.incumbent),
            best_bound=self.sign * best_bound,
            nodes=self.nodes,
        )
