import unittest
import numpy as np

import mipbridge
from mipbridge import Event, MPCallback, MPCallbackContext, SolutionSnapshot
from mipbridge import CapabilityError, InvalidStateError, UnknownVariableError


class TestCallbackContext(unittest.TestCase):
    def get_model(self):
        """
        Three integer variables in [0, 10]
        """
        solver = mipbridge.Solver("ctx", "BNB")
        x = [solver.makeIntVar(0, 10, f"x{i}") for i in range(3)]
        return solver, x

    def test_event_members(self):
        self.assertEqual(Event.MIP_SOLUTION, 5)
        self.assertEqual(Event.MIP_NODE, 6)
        self.assertEqual(Event.PRESOLVE, 2)
        self.assertEqual(len(Event), 10)

    def test_mip_solution_can_query(self):
        solver, x = self.get_model()
        ctx = MPCallbackContext(Event.MIP_SOLUTION, SolutionSnapshot([1.0, 2.0, 3.0], solver), nodes=7)

        self.assertEqual(ctx.event(), Event.MIP_SOLUTION)
        self.assertTrue(ctx.canQueryVariableValues())
        self.assertEqual(ctx.variableValue(x[0]), 1.0)
        self.assertEqual(ctx.variableValue(x[2]), 3.0)
        self.assertEqual(ctx.variableValue(1), 2.0)
        self.assertEqual(ctx.variableValues(x), [1.0, 2.0, 3.0])
        self.assertEqual(ctx.numExploredNodes(), 7)
        self.assertIsNone(ctx.message())

    def test_event_gating(self):
        solver, x = self.get_model()
        snapshot = SolutionSnapshot([1.0, 2.0, 3.0], solver)

        for event in Event:
            if event == Event.MIP_SOLUTION:
                continue

            # even if a snapshot is handed over, only MIP_SOLUTION exposes it
            ctx = MPCallbackContext(event, snapshot)
            self.assertFalse(ctx.canQueryVariableValues())
            self.assertRaises(CapabilityError, lambda: ctx.variableValue(x[0]))

        ctx = MPCallbackContext(Event.MIP_SOLUTION, None)
        self.assertFalse(ctx.canQueryVariableValues())
        self.assertRaises(CapabilityError, lambda: ctx.variableValue(x[0]))

    def test_unknown_variable(self):
        solver, x = self.get_model()
        other, y = self.get_model()
        ctx = MPCallbackContext(Event.MIP_SOLUTION, SolutionSnapshot([1.0, 2.0, 3.0], solver))

        self.assertRaises(UnknownVariableError, lambda: ctx.variableValue(y[0]))
        self.assertRaises(UnknownVariableError, lambda: ctx.variableValue(3))
        self.assertRaises(UnknownVariableError, lambda: ctx.variableValue(-1))
        self.assertRaises(UnknownVariableError, lambda: ctx.variableValue("x0"))

        # also a ValueError
        self.assertRaises(ValueError, lambda: ctx.variableValue(y[1]))

    def test_invalidated_context(self):
        solver, x = self.get_model()
        ctx = MPCallbackContext(Event.MIP_SOLUTION, SolutionSnapshot([1.0, 2.0, 3.0], solver), message="log")
        self.assertTrue(ctx.is_valid())

        ctx.invalidate()
        self.assertFalse(ctx.is_valid())
        self.assertEqual(ctx.event(), Event.MIP_SOLUTION)
        self.assertTrue(ctx.canQueryVariableValues())
        self.assertRaises(InvalidStateError, lambda: ctx.variableValue(x[0]))
        self.assertRaises(InvalidStateError, lambda: ctx.numExploredNodes())
        self.assertRaises(InvalidStateError, lambda: ctx.message())

        ctx = MPCallbackContext(Event.MIP_NODE)
        ctx.invalidate()
        self.assertFalse(ctx.canQueryVariableValues())

    def test_snapshot_is_read_only(self):
        values = np.array([1.0, 2.0])
        snapshot = SolutionSnapshot(values)
        values[0] = 42.0

        self.assertEqual(snapshot.value(0), 1.0)
        self.assertEqual(len(snapshot), 2)

        with self.assertRaises(ValueError):
            snapshot.values[0] = 5.0

    def test_mp_callback_flags(self):
        cb = MPCallback()
        self.assertFalse(cb.mightAddCuts())
        self.assertFalse(cb.mightAddLazyConstraints())

        cb = MPCallback(True, True)
        self.assertTrue(cb.mightAddCuts())
        self.assertTrue(cb.mightAddLazyConstraints())
        self.assertRaises(NotImplementedError, lambda: cb.onEvent(MPCallbackContext(Event.MIP)))
