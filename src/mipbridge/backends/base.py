from __future__ import annotations
import logging
from enum import IntEnum
from typing import Optional, Callable

import numpy as np

from ..dispatch import EventDispatcher, FailurePolicy
from ..model import ModelData

logger = logging.getLogger("mipbridge.backends")


class ResultStatus(IntEnum):
    OPTIMAL = 0
    FEASIBLE = 1
    INFEASIBLE = 2
    UNBOUNDED = 3
    ABNORMAL = 4
    MODEL_INVALID = 5
    NOT_SOLVED = 6


class SolverOptions(object):
    """
    Per-solve settings handed from the Solver to its backend.

    parameters is the solver specific string, passed through untouched.
    """

    __slots__ = ["time_limit", "output", "parameters", "failure_policy"]

    def __init__(
        self,
        time_limit: Optional[float] = None,
        output: bool = False,
        parameters: str = "",
        failure_policy: FailurePolicy = FailurePolicy.CONTINUE,
    ):
        self.time_limit = time_limit
        self.output = output
        self.parameters = parameters
        self.failure_policy = failure_policy


class BackendResult(object):
    __slots__ = ["status", "col_value", "objective_value", "best_bound", "nodes"]

    def __init__(
        self,
        status: ResultStatus,
        col_value: Optional[np.ndarray] = None,
        objective_value: float = 0.0,
        best_bound: float = 0.0,
        nodes: int = 0,
    ):
        self.status = status
        self.col_value = col_value
        self.objective_value = objective_value
        self.best_bound = best_bound
        self.nodes = nodes

    def __repr__(self):
        return f"BackendResult({self.status.name}, objective={self.objective_value}, nodes={self.nodes})"


class SolverBackend(object):
    """
    A search engine that reports its milestones through an EventDispatcher.
    """

    name: str = ""

    @classmethod
    def is_available(cls) -> bool:
        return True

    def solve(self, model: ModelData, dispatcher: EventDispatcher, options: SolverOptions) -> BackendResult:
        raise NotImplementedError


##
## Backend registry
##
_backends: dict[str, type[SolverBackend]] = {}


def register_backend(*names: str) -> Callable[[type[SolverBackend]], type[SolverBackend]]:
    """
    Decorator registering a backend class under one or more (case-insensitive) names.
    The first name is the backend's primary name.
    """

    def decorator(cls: type[SolverBackend]):
        cls.name = names[0].upper()
        for name in names:
            _backends[name.upper()] = cls
        return cls

    return decorator


def get_backend(kind: str) -> Optional[type[SolverBackend]]:
    return _backends.get(kind.upper())


def available_backends() -> list[str]:
    """
    Primary names of the registered backends that can currently be used.
    """
    return sorted({cls.name for cls in _backends.values() if cls.is_available()})
