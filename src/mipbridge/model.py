from __future__ import annotations
import math
import numpy as np
from numbers import Integral
from typing import Optional, Any, Union

from .errors import UnknownVariableError


# model variable
class Variable(object):
    """
    Decision variable of a Solver model
    """

    __slots__ = ["index", "solver", "lb", "ub", "integer", "__name"]

    def __init__(self, i: int, solver: Any, lb: float, ub: float, integer: bool, name: Optional[str] = None):
        self.index = i
        self.solver = solver
        self.lb = float(lb)
        self.ub = float(ub)
        self.integer = bool(integer)
        self.__name = name if name else f"x{i}"

    def __repr__(self):
        return f"Variable({self.index}, {self.__name!r})"

    @property
    def name(self):
        return self.__name

    def __int__(self):
        return int(self.index)

    def __hash__(self):
        return hash((self.index, id(self.solver)))

    def setBounds(self, lb: float, ub: float):
        self.lb = float(lb)
        self.ub = float(ub)

    def setInteger(self, integer: bool = True):
        self.integer = bool(integer)

    def solutionValue(self) -> float:
        """
        Value of the variable in the solution found by the last solve.
        """
        return self.solver.solutionValue(self)


def _owned_index(solver: Any, var: Union[Variable, Integral]) -> int:
    if isinstance(var, Variable):
        if var.solver is not solver:
            raise UnknownVariableError(f"{var!r} does not belong to this model")
        return var.index

    idx = int(var)
    if idx < 0 or idx >= solver.numVariables():
        raise UnknownVariableError(f"Variable index {idx} is out of range for this model")
    return idx


# model constraint
class Constraint(object):
    """
    Linear constraint lb <= sum(coeff * var) <= ub
    """

    __slots__ = ["index", "solver", "lb", "ub", "coefficients", "__name"]

    def __init__(self, i: int, solver: Any, lb: float, ub: float, name: Optional[str] = None):
        self.index = i
        self.solver = solver
        self.lb = float(lb)
        self.ub = float(ub)
        self.coefficients: dict[int, float] = {}
        self.__name = name if name else f"c{i}"

    def __repr__(self):
        return f"Constraint({self.index}, {self.__name!r})"

    @property
    def name(self):
        return self.__name

    def __int__(self):
        return int(self.index)

    def setBounds(self, lb: float, ub: float):
        self.lb = float(lb)
        self.ub = float(ub)

    def setCoefficient(self, var: Union[Variable, Integral], coeff: float):
        """
        Sets the coefficient of var in the constraint (replacing any previous value).

        Raises:
            UnknownVariableError: If var does not belong to the same model.
        """
        self.coefficients[_owned_index(self.solver, var)] = float(coeff)

    def getCoefficient(self, var: Union[Variable, Integral]) -> float:
        return self.coefficients.get(_owned_index(self.solver, var), 0.0)


# model objective
class Objective(object):
    """
    Linear objective of a Solver model
    """

    __slots__ = ["solver", "coefficients", "__offset", "__maximize"]

    def __init__(self, solver: Any):
        self.solver = solver
        self.coefficients: dict[int, float] = {}
        self.__offset = 0.0
        self.__maximize = False

    def clear(self):
        self.coefficients = {}
        self.__offset = 0.0

    def setCoefficient(self, var: Union[Variable, Integral], coeff: float):
        self.coefficients[_owned_index(self.solver, var)] = float(coeff)

    def getCoefficient(self, var: Union[Variable, Integral]) -> float:
        return self.coefficients.get(_owned_index(self.solver, var), 0.0)

    def setOffset(self, value: float):
        self.__offset = float(value)

    def offset(self) -> float:
        return self.__offset

    def setOptimizationDirection(self, maximize: bool):
        self.__maximize = bool(maximize)

    def setMaximization(self):
        self.setOptimizationDirection(True)

    def setMinimization(self):
        self.setOptimizationDirection(False)

    def maximization(self) -> bool:
        return self.__maximize

    def minimization(self) -> bool:
        return not self.__maximize

    def value(self) -> float:
        """
        Objective value of the solution found by the last solve.
        """
        return self.solver.objectiveValue()

    def bestBound(self) -> float:
        return self.solver.bestObjectiveBound()


class ModelData(object):
    """
    Column-wise array form of a model, as handed to a backend.
    """

    __slots__ = [
        "num_col",
        "num_row",
        "col_cost",
        "col_lower",
        "col_upper",
        "integrality",
        "row_lower",
        "row_upper",
        "a_start",
        "a_index",
        "a_value",
        "maximize",
        "offset",
        "col_names",
    ]

    def __init__(self, variables: list[Variable], constraints: list[Constraint], objective: Objective):
        self.num_col = len(variables)
        self.num_row = len(constraints)

        self.col_cost = np.zeros(self.num_col, dtype=np.float64)
        for idx, coeff in objective.coefficients.items():
            self.col_cost[idx] = coeff

        self.col_lower = np.array([v.lb for v in variables], dtype=np.float64)
        self.col_upper = np.array([v.ub for v in variables], dtype=np.float64)
        self.integrality = np.array([v.integer for v in variables], dtype=bool)
        self.col_names = [v.name for v in variables]

        self.row_lower = np.array([c.lb for c in constraints], dtype=np.float64)
        self.row_upper = np.array([c.ub for c in constraints], dtype=np.float64)

        # triplets sorted by column, then row
        rows, cols, vals = [], [], []
        for c in constraints:
            for idx, coeff in c.coefficients.items():
                if coeff != 0.0:
                    rows.append(c.index)
                    cols.append(idx)
                    vals.append(coeff)

        rows = np.asarray(rows, dtype=np.int32)
        cols = np.asarray(cols, dtype=np.int32)
        vals = np.asarray(vals, dtype=np.float64)
        order = np.lexsort((rows, cols))

        self.a_index = rows[order]
        self.a_value = vals[order]
        self.a_start = np.zeros(self.num_col + 1, dtype=np.int32)
        self.a_start[1:] = np.cumsum(np.bincount(cols, minlength=self.num_col))

        self.maximize = objective.maximization()
        self.offset = objective.offset()

    @property
    def num_nz(self):
        return len(self.a_index)

    def is_mip(self) -> bool:
        return bool(self.integrality.any())

    def objective_value(self, col_value: np.ndarray) -> float:
        return float(np.dot(self.col_cost, col_value)) + self.offset

    def validate(self) -> Optional[str]:
        """
        Returns a description of the first inconsistency found, or None.
        """
        for name, lower, upper in (("column", self.col_lower, self.col_upper), ("row", self.row_lower, self.row_upper)):
            bad = np.nonzero(lower > upper)[0]
            if len(bad) > 0:
                return f"{name} {bad[0]} has lower bound {lower[bad[0]]} > upper bound {upper[bad[0]]}"

            if np.isnan(lower).any() or np.isnan(upper).any():
                return f"{name} bounds contain NaN"

        if not np.isfinite(self.col_cost).all() or not np.isfinite(self.a_value).all() or not math.isfinite(self.offset):
            return "objective or constraint coefficients are not finite"

        return None
