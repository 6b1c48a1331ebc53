from __future__ import annotations
import logging
from contextlib import contextmanager
from enum import Enum
from threading import Lock
from typing import Optional, Any, Sequence, Union

import numpy as np

from .callback import Event, MPCallbackContext, SolutionSnapshot
from .errors import CallbackFailure, InvalidStateError

logger = logging.getLogger("mipbridge.dispatch")


class FailurePolicy(Enum):
    """
    What the search does after a callback invocation fails.
    """

    CONTINUE = "continue"
    STOP = "stop"


class InvocationState(Enum):
    INVOKING = "invoking"
    COMPLETED = "completed"
    FAILED = "failed"


##
## Registration
##
class CallbackRegistry(object):
    """
    Single callback slot owned by one solver.

    The slot can only change while no solve is in progress.
    """

    __slots__ = ["__callback", "__solve_lock"]

    def __init__(self):
        self.__callback: Optional[Any] = None
        self.__solve_lock = Lock()

    def is_solving(self) -> bool:
        return self.__solve_lock.locked()

    def attach(self, callback: Optional[Any]):
        """
        Attaches a callback, replacing any previous one.

        Args:
            callback: An object with an onEvent(context) method, or None to detach.

        Raises:
            InvalidStateError: If a solve is in progress.
            TypeError: If callback has no callable onEvent.
        """
        if callback is None:
            return self.detach()

        if not callable(getattr(callback, "onEvent", None)):
            raise TypeError(f"{type(callback).__name__} has no callable onEvent(context) method")

        if self.is_solving():
            raise InvalidStateError("Cannot attach a callback while the solver is running")

        self.__callback = callback

    def detach(self):
        """
        Clears the slot. Does nothing if no callback is attached.

        Raises:
            InvalidStateError: If a solve is in progress.
        """
        if self.__callback is None:
            return

        if self.is_solving():
            raise InvalidStateError("Cannot detach the callback while the solver is running")

        self.__callback = None

    def current(self) -> Optional[Any]:
        return self.__callback

    @contextmanager
    def solving(self):
        """
        Marks the duration of one solve; the slot is frozen inside the block.

        Raises:
            InvalidStateError: If a solve is already in progress.
        """
        if not self.__solve_lock.acquire(False):
            raise InvalidStateError("Solver is already running.")

        try:
            yield self.__callback
        finally:
            self.__solve_lock.release()


##
## Failure containment
##
class InvocationOutcome(object):
    __slots__ = ["state", "failure", "stop"]

    def __init__(self, state: InvocationState, failure: Optional[CallbackFailure] = None, stop: bool = False):
        self.state = state
        self.failure = failure
        self.stop = stop

    def __repr__(self):
        return f"InvocationOutcome({self.state.name}, stop={self.stop})"


class FailureBoundary(object):
    """
    Runs one onEvent call and turns anything it raises into a CallbackFailure.

    Nothing raised by the callback unwinds past this point into the search loop.
    """

    __slots__ = ["policy"]

    def __init__(self, policy: FailurePolicy = FailurePolicy.CONTINUE):
        self.policy = policy

    def invoke(self, callback: Any, context: MPCallbackContext, invocation: int = 0) -> InvocationOutcome:
        outcome = InvocationOutcome(InvocationState.INVOKING)

        try:
            callback.onEvent(context)
            outcome.state = InvocationState.COMPLETED

        except Exception as e:
            outcome.state = InvocationState.FAILED
            outcome.failure = self.__capture(e, context, invocation)
            outcome.stop = self.policy == FailurePolicy.STOP

        except KeyboardInterrupt as e:
            outcome.state = InvocationState.FAILED
            outcome.failure = self.__capture(e, context, invocation)
            outcome.stop = True

        return outcome

    @staticmethod
    def __capture(e: BaseException, context: MPCallbackContext, invocation: int) -> CallbackFailure:
        event = context.event()
        failure = CallbackFailure(
            f"Callback raised {type(e).__name__} on {event.name} (invocation {invocation}): {e}",
            event,
            invocation,
        )
        failure.__cause__ = e
        logger.error("Contained callback failure on %s", event.name, exc_info=e)
        return failure


##
## Dispatch
##
class EventDispatcher(object):
    """
    Fires callback events from inside a search loop.

    One dispatcher serves exactly one solve. The callback is pinned when the dispatcher
    is created, so a solve never invokes two distinct callback objects.
    """

    def __init__(self, callback: Optional[Any] = None, policy: FailurePolicy = FailurePolicy.CONTINUE, owner: Optional[Any] = None):
        self.callback = callback
        self.boundary = FailureBoundary(policy)
        self.owner = owner
        self.invocations = 0
        self.failures: list[CallbackFailure] = []
        self.should_stop = False
        self.__dispatch_lock = Lock()

    @classmethod
    def from_registry(cls, registry: CallbackRegistry, policy: FailurePolicy = FailurePolicy.CONTINUE, owner: Optional[Any] = None):
        return cls(registry.current(), policy, owner)

    @property
    def active(self) -> bool:
        return self.callback is not None

    def fire(
        self,
        event: Event,
        values: Optional[Union[Sequence[float], np.ndarray]] = None,
        nodes: int = 0,
        message: Optional[str] = None,
    ) -> bool:
        """
        Invokes the callback once for a milestone, if one is attached.

        Callers must only fire once the incumbent (if any) is fully committed.

        Args:
            event: The milestone reached.
            values: The incumbent column values, required for Event.MIP_SOLUTION.
            nodes: Number of explored nodes so far.
            message: Log line for Event.MESSAGE.

        Returns:
            False if the search should stop, True otherwise. Once a stop has been
            requested the callback is not invoked again.
        """
        if self.callback is None:
            return True

        if self.should_stop:
            return False

        snapshot = None
        if event == Event.MIP_SOLUTION and values is not None:
            snapshot = SolutionSnapshot(values, self.owner)

        with self.__dispatch_lock:
            self.invocations += 1
            context = MPCallbackContext(event, snapshot, nodes, message)

            try:
                outcome = self.boundary.invoke(self.callback, context, self.invocations)
            finally:
                context.invalidate()

            if outcome.failure is not None:
                self.failures.append(outcome.failure)

            if outcome.stop and not self.should_stop:
                logger.warning("Stopping search after callback failure on %s", Event(event).name)
                self.should_stop = True

            return not self.should_stop

    def contain(self, event: Event, error: Exception):
        """
        Records an error raised while a backend was preparing an event.

        The callback never ran for that milestone. The error is kept with the callback
        failures and follows the same policy, so it never unwinds through the solver.
        """
        with self.__dispatch_lock:
            failure = CallbackFailure(
                f"Could not deliver {Event(event).name}: {type(error).__name__}: {error}",
                event,
                self.invocations,
            )
            failure.__cause__ = error
            logger.error("Failed to prepare %s event", Event(event).name, exc_info=error)
            self.failures.append(failure)

            if self.boundary.policy == FailurePolicy.STOP and not self.should_stop:
                logger.warning("Stopping search after failure on %s", Event(event).name)
                self.should_stop = True
