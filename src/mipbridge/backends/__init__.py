from .base import (
    ResultStatus,
    SolverOptions,
    BackendResult,
    SolverBackend,
    register_backend,
    get_backend,
    available_backends,
)
from .highs import HighsBackend, build_highs_lp
from .bnb import BranchAndBoundBackend

__all__ = [
    "ResultStatus",
    "SolverOptions",
    "BackendResult",
    "SolverBackend",
    "register_backend",
    "get_backend",
    "available_backends",
    "HighsBackend",
    "BranchAndBoundBackend",
    "build_highs_lp",
]
