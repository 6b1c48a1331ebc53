from mipbridge.errors import \
    MPCallbackError, \
    InvalidStateError, \
    CapabilityError, \
    UnknownVariableError, \
    CallbackFailure

from mipbridge.callback import \
    Event, \
    MPCallback, \
    MPCallbackContext, \
    SolutionSnapshot

from mipbridge.dispatch import \
    CallbackRegistry, \
    EventDispatcher, \
    FailureBoundary, \
    FailurePolicy, \
    InvocationState

from mipbridge.model import \
    Variable, \
    Constraint, \
    Objective, \
    ModelData

from mipbridge.backends import \
    ResultStatus, \
    SolverOptions, \
    BackendResult, \
    SolverBackend, \
    register_backend, \
    available_backends

from .solver import Solver

__version__ = "0.3.0"

__all__ = ["__version__",
           "MPCallbackError",
           "InvalidStateError",
           "CapabilityError",
           "UnknownVariableError",
           "CallbackFailure",
           "Event",
           "MPCallback",
           "MPCallbackContext",
           "SolutionSnapshot",
           "CallbackRegistry",
           "EventDispatcher",
           "FailureBoundary",
           "FailurePolicy",
           "InvocationState",
           "Variable",
           "Constraint",
           "Objective",
           "ModelData",
           "ResultStatus",
           "SolverOptions",
           "BackendResult",
           "SolverBackend",
           "register_backend",
           "available_backends",
           "Solver",
           ]
