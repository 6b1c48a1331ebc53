from __future__ import annotations
import logging
import os
import tempfile
from typing import Optional

import numpy as np
import highspy
from highspy import HighsModelStatus, HighsStatus, HighsVarType, ObjSense

from ..callback import Event
from ..dispatch import EventDispatcher
from ..model import ModelData
from .base import BackendResult, ResultStatus, SolverBackend, SolverOptions, register_backend

logger = logging.getLogger("mipbridge.backends.highs")

_STATUS_MAP = {
    HighsModelStatus.kOptimal: ResultStatus.OPTIMAL,
    HighsModelStatus.kModelEmpty: ResultStatus.OPTIMAL,
    HighsModelStatus.kInfeasible: ResultStatus.INFEASIBLE,
    HighsModelStatus.kUnboundedOrInfeasible: ResultStatus.INFEASIBLE,
    HighsModelStatus.kUnbounded: ResultStatus.UNBOUNDED,
    HighsModelStatus.kModelError: ResultStatus.MODEL_INVALID,
    HighsModelStatus.kLoadError: ResultStatus.MODEL_INVALID,
}

# stopped before proving optimality; FEASIBLE if a solution is available
_LIMIT_STATUSES = {
    HighsModelStatus.kObjectiveBound,
    HighsModelStatus.kObjectiveTarget,
    HighsModelStatus.kTimeLimit,
    HighsModelStatus.kIterationLimit,
    HighsModelStatus.kSolutionLimit,
    HighsModelStatus.kInterrupt,
    HighsModelStatus.kUnknown,
}


def _check(status: HighsStatus, what: str):
    if status not in (HighsStatus.kOk, HighsStatus.kWarning):
        raise Exception(f"HiGHS failed to {what}.")


def _incumbent(mip_solution, num_col: int) -> np.ndarray:
    if isinstance(mip_solution, np.ndarray):
        return mip_solution[:num_col]

    # older highspy hands out a read-only pointer wrapper that only supports indexing
    return np.fromiter((mip_solution[i] for i in range(num_col)), dtype=np.float64, count=num_col)


def build_highs_lp(model: ModelData, relax: bool = False) -> highspy.HighsLp:
    """
    Converts a ModelData into a HighsLp.

    Args:
        model: The column-wise model.
        relax: If True, integrality is dropped (LP relaxation).

    Returns:
        A HighsLp ready for Highs.passModel.
    """
    lp = highspy.HighsLp()
    lp.num_col_ = model.num_col
    lp.num_row_ = model.num_row
    lp.col_cost_ = model.col_cost
    lp.col_lower_ = model.col_lower
    lp.col_upper_ = model.col_upper
    lp.row_lower_ = model.row_lower
    lp.row_upper_ = model.row_upper
    lp.a_matrix_.num_col_ = model.num_col
    lp.a_matrix_.num_row_ = model.num_row
    lp.a_matrix_.start_ = model.a_start
    lp.a_matrix_.index_ = model.a_index
    lp.a_matrix_.value_ = model.a_value
    lp.offset_ = model.offset
    lp.sense_ = ObjSense.kMaximize if model.maximize else ObjSense.kMinimize

    if not relax and model.is_mip():
        lp.integrality_ = [HighsVarType.kInteger if i else HighsVarType.kContinuous for i in model.integrality]

    return lp


@register_backend("HIGHS", "HIGHS_MIXED_INTEGER_PROGRAMMING", "HIGHS_MIP")
class HighsBackend(SolverBackend):
    """
    HiGHS MIP solver; its native callbacks are routed to the dispatcher.

    kCallbackMipImprovingSolution -> Event.MIP_SOLUTION
    kCallbackLogging              -> Event.MESSAGE (only while output is enabled)
    kCallbackMipInterrupt         -> Event.MIP_NODE when the node count advances,
                                     and stop requests from the failure boundary

    Errors raised while preparing an event are contained by the dispatcher.
    """

    @classmethod
    def is_available(cls) -> bool:
        return hasattr(highspy.Highs, "cbMipImprovingSolution")

    @staticmethod
    def apply_parameters(h: highspy.Highs, parameters: str):
        """
        Hands the parameter string to HiGHS as the contents of an options file.
        """
        fd, path = tempfile.mkstemp(suffix=".opt", text=True)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(parameters)
                f.write("\n")

            _check(h.readOptions(path), "read solver specific parameters")
        finally:
            os.remove(path)

    def solve(self, model: ModelData, dispatcher: EventDispatcher, options: SolverOptions) -> BackendResult:
        h = highspy.Highs()
        h.silent(not options.output)

        if options.time_limit is not None:
            _check(h.setOptionValue("time_limit", float(options.time_limit)), "set time limit")

        if options.parameters:
            self.apply_parameters(h, options.parameters)

        _check(h.passModel(build_highs_lp(model)), "load the model")

        if dispatcher.active:
            self.__subscribe(h, model, dispatcher)

        logger.debug("Running HiGHS on %d columns, %d rows", model.num_col, model.num_row)
        _check(h.run(), "run")

        return self.__result(h, model)

    @staticmethod
    def __subscribe(h: highspy.Highs, model: ModelData, dispatcher: EventDispatcher):
        num_col = model.num_col
        last_node = [0]

        def guarded(event, handler):
            def on_event(e):
                try:
                    handler(e)
                except Exception as error:
                    dispatcher.contain(event, error)

            return on_event

        def on_improving_solution(e):
            values = _incumbent(e.data_out.mip_solution, num_col)
            dispatcher.fire(Event.MIP_SOLUTION, values, nodes=e.data_out.mip_node_count)

        def on_logging(e):
            dispatcher.fire(Event.MESSAGE, message=e.message.rstrip("\n"))

        # polled between nodes whatever the log settings; doubles as the node milestone
        def on_interrupt(e):
            nodes = int(e.data_out.mip_node_count)
            if nodes > last_node[0]:
                last_node[0] = nodes
                dispatcher.fire(Event.MIP_NODE, nodes=nodes)

            if dispatcher.should_stop and e.data_in is not None:
                e.data_in.user_interrupt = True

        h.cbMipImprovingSolution += guarded(Event.MIP_SOLUTION, on_improving_solution)
        h.cbLogging += guarded(Event.MESSAGE, on_logging)
        h.cbMipInterrupt += guarded(Event.MIP_NODE, on_interrupt)

    @staticmethod
    def __result(h: highspy.Highs, model: ModelData) -> BackendResult:
        model_status = h.getModelStatus()
        info = h.getInfo()
        solution = h.getSolution()
        logger.debug("HiGHS finished: %s", h.modelStatusToString(model_status))

        col_value: Optional[np.ndarray] = None
        if solution.value_valid:
            col_value = np.array(solution.col_value, dtype=np.float64)

        if model_status in _STATUS_MAP:
            status = _STATUS_MAP[model_status]
        elif model_status in _LIMIT_STATUSES:
            status = ResultStatus.FEASIBLE if col_value is not None else ResultStatus.NOT_SOLVED
        else:
            status = ResultStatus.ABNORMAL

        if status == ResultStatus.OPTIMAL and col_value is None and model.num_col == 0:
            col_value = np.zeros(0, dtype=np.float64)

        best_bound = info.mip_dual_bound if model.is_mip() else info.objective_function_value

        return BackendResult(
            status,
            col_value,
            objective_value=info.objective_function_value if col_value is not None else 0.0,
            best_bound=best_bound,
            nodes=max(int(info.mip_node_count), 0),
        )
