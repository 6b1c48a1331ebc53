from __future__ import annotations
from typing import Optional, Any


class MPCallbackError(Exception):
    """
    Base class of all errors raised by the callback bridge
    """


class InvalidStateError(MPCallbackError):
    """
    Raised when the callback slot is changed during a solve, or when a callback
    context is queried after its invocation has returned.
    """


class CapabilityError(MPCallbackError, RuntimeError):
    """
    Raised when variable values are queried for an event that has no incumbent.
    """


class UnknownVariableError(MPCallbackError, ValueError):
    """
    Raised when a variable does not belong to the model being solved.
    """


class CallbackFailure(MPCallbackError):
    """
    A failure raised from inside callback code, captured at the failure boundary.

    The original exception is kept as ``__cause__``.
    """

    def __init__(self, message: str, event: Optional[Any] = None, invocation: int = 0):
        super().__init__(message)
        self.event = event
        self.invocation = invocation

    @property
    def original(self) -> Optional[BaseException]:
        return self.__cause__
