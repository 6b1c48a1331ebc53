from __future__ import annotations
import logging
import math
import time
from numbers import Integral
from typing import Optional, Any, Union

import numpy as np

from .backends import ResultStatus, SolverOptions, BackendResult, get_backend, available_backends
from .dispatch import CallbackRegistry, EventDispatcher, FailurePolicy
from .errors import CallbackFailure, UnknownVariableError
from .model import Variable, Constraint, Objective, ModelData

logger = logging.getLogger("mipbridge.solver")


class Solver(object):
    """
    MIP solver facade: model building, one attachable callback, and a backend that runs the search.
    """

    ResultStatus = ResultStatus

    def __init__(self, name: str = "", kind: str = "BNB"):
        backend_cls = get_backend(kind)
        if backend_cls is None:
            raise ValueError(f"Unknown solver backend {kind!r}, available: {', '.join(available_backends())}")

        self.name = name
        self.__backend = backend_cls()
        self.__registry = CallbackRegistry()
        self.__variables: list[Variable] = []
        self.__constraints: list[Constraint] = []
        self.__names: dict[str, Variable] = {}
        self.__objective = Objective(self)

        self.__time_limit: Optional[float] = None
        self.__output = False
        self.__parameters = ""
        self.__failure_policy = FailurePolicy.CONTINUE

        self.__result: Optional[BackendResult] = None
        self.__failures: list[CallbackFailure] = []
        self.__wall_time = 0.0

    @staticmethod
    def createSolver(kind: str, name: str = "") -> Optional[Solver]:
        """
        Creates a solver for the given backend.

        Args:
            kind: Backend name, e.g. "HIGHS" or "BNB" (case-insensitive).
            name: Optional model name.

        Returns:
            A Solver, or None if the backend is unknown or not usable in this environment.
        """
        backend_cls = get_backend(kind)
        if backend_cls is None or not backend_cls.is_available():
            logger.warning("Solver backend %r is not available", kind)
            return None

        return Solver(name, kind)

    def backendName(self) -> str:
        return self.__backend.name

    def infinity(self) -> float:
        return math.inf

    ##
    ## Model building
    ##
    def makeVar(self, lb: float, ub: float, integer: bool, name: Optional[str] = None) -> Variable:
        """
        Adds a variable to the model.

        Args:
            lb: Lower bound (may be -infinity()).
            ub: Upper bound (may be infinity()).
            integer: Whether the variable must take integral values.
            name: Optional name; defaults to x<index>.

        Returns:
            The new Variable.
        """
        var = Variable(len(self.__variables), self, lb, ub, integer, name)
        self.__variables.append(var)
        self.__names[var.name] = var
        return var

    def makeIntVar(self, lb: float, ub: float, name: Optional[str] = None) -> Variable:
        return self.makeVar(lb, ub, True, name)

    def makeNumVar(self, lb: float, ub: float, name: Optional[str] = None) -> Variable:
        return self.makeVar(lb, ub, False, name)

    def makeBoolVar(self, name: Optional[str] = None) -> Variable:
        return self.makeVar(0.0, 1.0, True, name)

    def makeConstraint(self, lb: float = -math.inf, ub: float = math.inf, name: Optional[str] = None) -> Constraint:
        cons = Constraint(len(self.__constraints), self, lb, ub, name)
        self.__constraints.append(cons)
        return cons

    def objective(self) -> Objective:
        return self.__objective

    def numVariables(self) -> int:
        return len(self.__variables)

    def variable(self, i: int) -> Variable:
        return self.__variables[i]

    def variables(self) -> list[Variable]:
        return list(self.__variables)

    def lookupVariable(self, name: str) -> Optional[Variable]:
        return self.__names.get(name)

    def numConstraints(self) -> int:
        return len(self.__constraints)

    def constraint(self, i: int) -> Constraint:
        return self.__constraints[i]

    def constraints(self) -> list[Constraint]:
        return list(self.__constraints)

    def exportModel(self) -> ModelData:
        return ModelData(self.__variables, self.__constraints, self.__objective)

    ##
    ## Configuration
    ##
    def setTimeLimit(self, time_limit_ms: Optional[int]):
        """
        Limits the search time; None removes the limit.
        """
        self.__time_limit = None if time_limit_ms is None else time_limit_ms / 1000.0

    def timeLimit(self) -> Optional[int]:
        return None if self.__time_limit is None else int(self.__time_limit * 1000)

    def enableOutput(self):
        self.__output = True

    def suppressOutput(self):
        self.__output = False

    def outputIsEnabled(self) -> bool:
        return self.__output

    def setSolverSpecificParametersAsString(self, parameters: str) -> bool:
        """
        Stores a backend specific parameter string; it is handed to the backend untouched.
        """
        self.__parameters = parameters
        return True

    def solverSpecificParameters(self) -> str:
        return self.__parameters

    def setCallbackFailurePolicy(self, policy: FailurePolicy):
        self.__failure_policy = FailurePolicy(policy)

    ##
    ## Callback support
    ##
    def setCallback(self, callback: Optional[Any]):
        """
        Attaches the callback invoked during the next solves, replacing any previous one.
        None detaches it.

        Raises:
            InvalidStateError: If called while solve() is running.
        """
        self.__registry.attach(callback)

    def callback(self) -> Optional[Any]:
        return self.__registry.current()

    def isSolving(self) -> bool:
        return self.__registry.is_solving()

    def callbackFailed(self) -> bool:
        """
        Whether any callback invocation of the last solve failed.
        """
        return len(self.__failures) > 0

    def callbackFailures(self) -> list[CallbackFailure]:
        return list(self.__failures)

    def checkCallbackFailures(self):
        """
        Raises the first callback failure of the last solve, if any.

        Raises:
            CallbackFailure: The first contained failure, chained to the original exception.
        """
        if self.__failures:
            raise self.__failures[0]

    ##
    ## Solve
    ##
    def solve(self) -> ResultStatus:
        """
        Runs the backend on the current model.

        A failing callback never makes solve() raise; see callbackFailed().

        Returns:
            The ResultStatus of the solve.
        """
        with self.__registry.solving() as callback:
            self.__result = None
            self.__failures = []

            model = self.exportModel()
            problem = model.validate()
            if problem is not None:
                logger.warning("Invalid model: %s", problem)
                self.__result = BackendResult(ResultStatus.MODEL_INVALID)
                return self.__result.status

            options = SolverOptions(self.__time_limit, self.__output, self.__parameters, self.__failure_policy)
            dispatcher = EventDispatcher(callback, self.__failure_policy, owner=self)

            logger.debug("Solving %d variables, %d constraints with %s", model.num_col, model.num_row, self.__backend.name)
            start = time.perf_counter()
            try:
                self.__result = self.__backend.solve(model, dispatcher, options)
            finally:
                self.__wall_time = time.perf_counter() - start
                self.__failures = list(dispatcher.failures)

            if self.__failures:
                logger.warning("%d of %d callback invocations failed", len(self.__failures), dispatcher.invocations)

            logger.debug("Finished with %s in %.3fs", self.__result.status.name, self.__wall_time)
            return self.__result.status

    def __solution(self) -> np.ndarray:
        if self.__result is None or self.__result.col_value is None:
            raise Exception("No solution available, call solve() first.")
        return self.__result.col_value

    def solutionValue(self, var: Union[Variable, Integral]) -> float:
        if isinstance(var, Variable) and var.solver is not self:
            raise UnknownVariableError(f"{var!r} does not belong to this model")

        values = self.__solution()
        idx = int(var)
        if idx < 0 or idx >= len(values):
            raise UnknownVariableError(f"Variable index {idx} was not part of the last solve")
        return float(values[idx])

    def solutionValues(self) -> np.ndarray:
        return self.__solution().copy()

    def objectiveValue(self) -> float:
        self.__solution()
        return self.__result.objective_value

    def bestObjectiveBound(self) -> float:
        self.__solution()
        return self.__result.best_bound

    def nodes(self) -> int:
        return 0 if self.__result is None else self.__result.nodes

    def wallTime(self) -> int:
        """
        Duration of the last solve in milliseconds.
        """
        return int(self.__wall_time * 1000)
