from __future__ import annotations
import numpy as np
from enum import IntEnum
from numbers import Integral
from typing import Optional, Any, Sequence, Union

from .errors import CapabilityError, InvalidStateError, UnknownVariableError


class Event(IntEnum):
    """
    Search milestones at which a callback may be invoked.
    """

    UNKNOWN = 0
    POLLING = 1
    PRESOLVE = 2
    SIMPLEX = 3
    MIP = 4
    MIP_SOLUTION = 5
    MIP_NODE = 6
    BARRIER = 7
    MESSAGE = 8
    MULTI_OBJ = 9


class MPCallback(object):
    """
    Base class for search-time callbacks.

    Subclasses override onEvent(context). Any object with an onEvent method can be
    attached to a solver; subclassing is only a convenience.
    """

    def __init__(self, might_add_cuts: bool = False, might_add_lazy_constraints: bool = False):
        self.__might_add_cuts = might_add_cuts
        self.__might_add_lazy_constraints = might_add_lazy_constraints

    def mightAddCuts(self) -> bool:
        return self.__might_add_cuts

    def mightAddLazyConstraints(self) -> bool:
        return self.__might_add_lazy_constraints

    def onEvent(self, context: MPCallbackContext) -> None:
        """
        Called synchronously on the search thread at each milestone.

        Args:
            context: A MPCallbackContext valid only for the duration of this call.
        """
        raise NotImplementedError


class SolutionSnapshot(object):
    """
    Read-only view of the variable values of the current incumbent.

    The values are copied once from the search buffer when the snapshot is taken,
    since native solution buffers are only valid while the solver is inside its callback.
    """

    __slots__ = ["values", "owner"]

    def __init__(self, values: Union[Sequence[float], np.ndarray], owner: Optional[Any] = None):
        self.values = np.array(values, dtype=np.float64)
        self.values.flags.writeable = False
        self.owner = owner

    def __len__(self):
        return len(self.values)

    def index_of(self, var: Any) -> int:
        """
        Maps a variable (or plain column index) to its position in the snapshot.

        Raises:
            UnknownVariableError: If the variable is not part of the owning model.
        """
        if isinstance(var, Integral) and not isinstance(var, bool):
            idx = int(var)
        else:
            idx = getattr(var, "index", None)
            if not isinstance(idx, Integral) or (self.owner is not None and getattr(var, "solver", None) is not self.owner):
                raise UnknownVariableError(f"{var!r} does not belong to this model")

        if idx < 0 or idx >= len(self.values):
            raise UnknownVariableError(f"Variable index {idx} is out of range for this model")

        return idx

    def value(self, var: Any) -> float:
        return float(self.values[self.index_of(var)])


class MPCallbackContext(object):
    """
    Per-invocation view handed to MPCallback.onEvent.

    The context is only valid while the callback runs; afterwards the query methods
    raise InvalidStateError. event() and canQueryVariableValues() stay available.
    """

    __slots__ = ["__event", "__snapshot", "__nodes", "__message", "__valid"]

    def __init__(
        self,
        event: Event,
        snapshot: Optional[SolutionSnapshot] = None,
        nodes: int = 0,
        message: Optional[str] = None,
    ):
        self.__event = Event(event)
        self.__snapshot = snapshot if self.__event == Event.MIP_SOLUTION else None
        self.__nodes = int(nodes)
        self.__message = message
        self.__valid = True

    def __repr__(self):
        return f"MPCallbackContext({self.__event.name}, valid={self.__valid})"

    def event(self) -> Event:
        return self.__event

    def canQueryVariableValues(self) -> bool:
        return self.__snapshot is not None

    def is_valid(self) -> bool:
        return self.__valid

    def invalidate(self):
        """
        Ends the validity window; called by the dispatcher when onEvent returns.
        """
        self.__valid = False
        self.__snapshot = None if self.__snapshot is None else _EXPIRED

    def __check_valid(self):
        if not self.__valid:
            raise InvalidStateError("Callback context used after its invocation returned")

    def variableValue(self, var: Any) -> float:
        """
        Gets the value of a variable in the incumbent that triggered this event.

        Args:
            var: A Variable of the model being solved (or its column index).

        Raises:
            InvalidStateError: If the invocation has already returned.
            CapabilityError: If this event carries no incumbent.
            UnknownVariableError: If var does not belong to the model.

        Returns:
            The value of the variable in the incumbent.
        """
        self.__check_valid()

        if self.__snapshot is None:
            raise CapabilityError(f"Variable values cannot be queried for event {self.__event.name}")

        return self.__snapshot.value(var)

    def variableValues(self, variables: Sequence[Any]) -> list[float]:
        """
        Gets the values of several variables, see variableValue.
        """
        return [self.variableValue(v) for v in variables]

    def numExploredNodes(self) -> int:
        self.__check_valid()
        return self.__nodes

    def message(self) -> Optional[str]:
        self.__check_valid()
        return self.__message


# placeholder that keeps canQueryVariableValues() stable after invalidation
# while dropping the reference to the search buffer
_EXPIRED = SolutionSnapshot([])
