import math
import unittest
import numpy as np

import mipbridge
from mipbridge import (
    CallbackFailure,
    CapabilityError,
    Event,
    FailurePolicy,
    InvalidStateError,
    MPCallback,
    ResultStatus,
    Solver,
    UnknownVariableError,
)
from mipbridge.backends.bnb import parse_parameters

NUM_TOLERANCE = 1e-5


class SolutionRecorder(MPCallback):
    """
    Counts MIP_SOLUTION events and keeps the values of the last one.
    """

    def __init__(self, solver, throw=False):
        super().__init__(False, False)
        self.solver = solver
        self.throw = throw
        self.n_solutions = 0
        self.last_values = None
        self.events = []
        self.gated = []

    def onEvent(self, context):
        self.events.append(context.event())
        if self.throw:
            raise RuntimeError("this is a test exception in a callback")

        if context.event() != Event.MIP_SOLUTION:
            try:
                context.variableValue(self.solver.variable(0))
            except CapabilityError:
                self.gated.append(context.event())
            return

        self.n_solutions += 1
        if not context.canQueryVariableValues():
            return

        self.last_values = [context.variableValue(v) for v in self.solver.variables()]


class TestSolver(unittest.TestCase):
    def get_knapsack(self, kind="BNB"):
        """
        max 8x1 + 5x2 + 3x3 + 11x4 + 7x5
        s.t. 4x1 + 3x2 + 1x3 + 5x4 + 4x5 <= 11
        x binary; optimum [1, 0, 1, 1, 0] with value 22
        """
        solver = Solver.createSolver(kind)
        x = [solver.makeBoolVar(f"x{i + 1}") for i in range(5)]

        capacity = solver.makeConstraint(-solver.infinity(), 11, "capacity")
        for xi, w in zip(x, [4, 3, 1, 5, 4]):
            capacity.setCoefficient(xi, w)

        objective = solver.objective()
        for xi, p in zip(x, [8, 5, 3, 11, 7]):
            objective.setCoefficient(xi, p)
        objective.setMaximization()

        return solver, x

    def get_random_model(self, kind="BNB", num_vars=8, seed=123):
        """
        Random bounded integer program, feasible at x = 0
        """
        rng = np.random.default_rng(seed)
        solver = Solver.createSolver(kind)
        solver.objective().setMaximization()

        for i in range(num_vars):
            x = solver.makeIntVar(-rng.random() * 20, rng.random() * 20, f"x_{i}")
            solver.objective().setCoefficient(x, rng.random() * 200 - 100)
            if i == 0:
                continue

            r1, r2 = -rng.random() * 200, rng.random() * 200
            cons = solver.makeConstraint(min(r1, r2), max(r1, r2))
            cons.setCoefficient(x, rng.random() * 200 - 100)
            for j in range(i):
                cons.setCoefficient(solver.variable(j), rng.random() * 200 - 100)

        return solver

    def test_create_solver(self):
        self.assertIsNone(Solver.createSolver("XPRESS_MIXED_INTEGER_PROGRAMMING"))
        self.assertIsNotNone(Solver.createSolver("bnb"))
        self.assertEqual(Solver.createSolver("BRANCH_AND_BOUND").backendName(), "BNB")
        self.assertIn("BNB", mipbridge.available_backends())
        self.assertRaises(ValueError, lambda: Solver("model", "NO_SUCH_BACKEND"))

    def test_model_building(self):
        solver = Solver.createSolver("BNB", "build")
        x = solver.makeIntVar(0, 4, "x")
        y = solver.makeNumVar(-1.5, solver.infinity(), "y")
        z = solver.makeBoolVar()

        self.assertEqual(solver.numVariables(), 3)
        self.assertIs(solver.variable(1), y)
        self.assertEqual(solver.variables(), [x, y, z])
        self.assertIs(solver.lookupVariable("x"), x)
        self.assertEqual(z.name, "x2")
        self.assertTrue(x.integer)
        self.assertFalse(y.integer)
        self.assertEqual((z.lb, z.ub), (0.0, 1.0))

        c = solver.makeConstraint(1, 5, "c")
        c.setCoefficient(x, 2)
        c.setCoefficient(y, -1)
        c.setCoefficient(x, 3)
        self.assertEqual(c.getCoefficient(x), 3.0)
        self.assertEqual(c.getCoefficient(z), 0.0)
        self.assertEqual(solver.numConstraints(), 1)
        self.assertIs(solver.constraint(0), c)

        other = Solver.createSolver("BNB")
        w = other.makeIntVar(0, 1, "w")
        self.assertRaises(UnknownVariableError, lambda: c.setCoefficient(w, 1))
        self.assertRaises(UnknownVariableError, lambda: solver.objective().setCoefficient(w, 1))
        self.assertRaises(UnknownVariableError, lambda: c.setCoefficient(7, 1))

        model = solver.exportModel()
        self.assertEqual(model.num_col, 3)
        self.assertEqual(model.num_row, 1)
        self.assertEqual(list(model.a_start), [0, 1, 2, 2])
        self.assertEqual(list(model.a_index), [0, 0])
        self.assertEqual(list(model.a_value), [3.0, -1.0])
        self.assertEqual(list(model.integrality), [True, False, True])

    def test_configuration(self):
        solver = Solver.createSolver("BNB")
        self.assertIsNone(solver.timeLimit())
        solver.setTimeLimit(2500)
        self.assertEqual(solver.timeLimit(), 2500)
        solver.setTimeLimit(None)
        self.assertIsNone(solver.timeLimit())

        self.assertFalse(solver.outputIsEnabled())
        solver.enableOutput()
        self.assertTrue(solver.outputIsEnabled())
        solver.suppressOutput()
        self.assertFalse(solver.outputIsEnabled())

        self.assertTrue(solver.setSolverSpecificParametersAsString("node_limit=10"))
        self.assertEqual(solver.solverSpecificParameters(), "node_limit=10")

    def test_parameters(self):
        params = parse_parameters("node_limit=10  integrality_tolerance=1e-4\nlog_frequency=5")
        self.assertEqual(params["node_limit"], 10)
        self.assertEqual(params["integrality_tolerance"], 1e-4)
        self.assertEqual(params["log_frequency"], 5)
        self.assertEqual(params["time_limit"], -1.0)

        with self.assertLogs("mipbridge.backends.bnb", level="WARNING"):
            params = parse_parameters("PRESOLVE=0")
        self.assertEqual(params["node_limit"], -1)

        self.assertRaises(ValueError, lambda: parse_parameters("node_limit"))
        self.assertRaises(ValueError, lambda: parse_parameters("node_limit=ten"))

    def test_solve_without_callback(self):
        solver, x = self.get_knapsack()
        self.assertEqual(solver.solve(), ResultStatus.OPTIMAL)
        self.assertAlmostEqual(solver.objective().value(), 22)
        self.assertAlmostEqual(solver.objective().bestBound(), 22)
        self.assertEqual([round(v.solutionValue()) for v in x], [1, 0, 1, 1, 0])
        self.assertGreater(solver.nodes(), 0)
        self.assertGreaterEqual(solver.wallTime(), 0)
        self.assertFalse(solver.callbackFailed())

    def test_solution_before_solve(self):
        solver, x = self.get_knapsack()
        self.assertRaises(Exception, lambda: x[0].solutionValue())
        self.assertRaises(Exception, lambda: solver.objective().value())
        self.assertEqual(solver.nodes(), 0)

    def test_new_mip_solution_callback(self):
        solver = self.get_random_model()
        cb = SolutionRecorder(solver)
        solver.setCallback(cb)

        status = solver.solve()
        self.assertEqual(status, ResultStatus.OPTIMAL)
        self.assertGreater(cb.n_solutions, 0)
        self.assertEqual(cb.events.count(Event.MIP_SOLUTION), cb.n_solutions)

        # the last intercepted solution is the retained optimal one
        self.assertIsNotNone(cb.last_values)
        for i in range(solver.numVariables()):
            self.assertAlmostEqual(solver.variable(i).solutionValue(), cb.last_values[i], delta=NUM_TOLERANCE)

    def test_event_gating(self):
        solver, x = self.get_knapsack()
        cb = SolutionRecorder(solver)
        solver.setCallback(cb)
        solver.solve()

        self.assertEqual(cb.events[0], Event.PRESOLVE)
        self.assertIn(Event.MIP_NODE, cb.events)
        non_solution = [e for e in cb.events if e != Event.MIP_SOLUTION]
        self.assertEqual(cb.gated, non_solution)
        self.assertEqual(solver.nodes(), cb.events.count(Event.MIP_NODE))

    def test_incumbents_improve(self):
        solver, x = self.get_knapsack()
        objective = []

        class Improving(MPCallback):
            def onEvent(self, context):
                if context.event() == Event.MIP_SOLUTION:
                    values = context.variableValues(x)
                    objective.append(np.dot(values, [8, 5, 3, 11, 7]))

        solver.setCallback(Improving())
        solver.solve()
        self.assertGreater(len(objective), 0)
        self.assertEqual(objective, sorted(objective))
        self.assertEqual(len(set(objective)), len(objective))
        self.assertAlmostEqual(objective[-1], 22)

    def test_callback_throws_exception(self):
        solver = self.get_random_model()
        cb = SolutionRecorder(solver, throw=True)
        solver.setCallback(cb)

        with self.assertLogs("mipbridge.dispatch", level="ERROR"):
            status = solver.solve()

        # the search is not affected by the failing callback
        self.assertEqual(status, ResultStatus.OPTIMAL)
        self.assertTrue(solver.callbackFailed())
        self.assertEqual(len(solver.callbackFailures()), len(cb.events))
        self.assertRaises(CallbackFailure, lambda: solver.checkCallbackFailures())

        reference = self.get_random_model()
        reference.solve()
        self.assertAlmostEqual(solver.objective().value(), reference.objective().value(), delta=NUM_TOLERANCE)

        # failures are reset by the next solve
        solver.setCallback(None)
        solver.solve()
        self.assertFalse(solver.callbackFailed())
        solver.checkCallbackFailures()

    def test_failure_policy_stop(self):
        solver, x = self.get_knapsack()
        cb = SolutionRecorder(solver, throw=True)
        solver.setCallback(cb)
        solver.setCallbackFailurePolicy(FailurePolicy.STOP)

        with self.assertLogs("mipbridge.dispatch", level="ERROR"):
            status = solver.solve()

        # stopped at presolve, before any node
        self.assertEqual(status, ResultStatus.NOT_SOLVED)
        self.assertEqual(cb.events, [Event.PRESOLVE])
        self.assertEqual(solver.nodes(), 0)
        self.assertTrue(solver.callbackFailed())

    def test_failure_policy_stop_on_last_node(self):
        class FailOnSolution(MPCallback):
            def __init__(self):
                super().__init__()
                self.events = []

            def onEvent(self, context):
                self.events.append(context.event())
                if context.event() == Event.MIP_SOLUTION:
                    raise RuntimeError("this is a test exception in a callback")

        # the root relaxation is integral, so the first incumbent ends the search
        solver = Solver.createSolver("BNB")
        x = solver.makeIntVar(0, 3, "x")
        solver.makeConstraint(-solver.infinity(), 2).setCoefficient(x, 1)
        solver.objective().setCoefficient(x, 1)
        solver.objective().setMaximization()

        cb = FailOnSolution()
        solver.setCallback(cb)
        solver.setCallbackFailurePolicy(FailurePolicy.STOP)

        with self.assertLogs("mipbridge.dispatch", level="ERROR"):
            status = solver.solve()

        self.assertEqual(status, ResultStatus.OPTIMAL)
        self.assertEqual(cb.events, [Event.PRESOLVE, Event.MIP_NODE, Event.MIP_SOLUTION])
        self.assertAlmostEqual(x.solutionValue(), 2)
        self.assertAlmostEqual(solver.bestObjectiveBound(), 2)
        self.assertEqual(len(solver.callbackFailures()), 1)

    def test_single_slot(self):
        solver, x = self.get_knapsack()
        first, second = SolutionRecorder(solver), SolutionRecorder(solver)
        solver.setCallback(first)
        solver.setCallback(second)
        self.assertIs(solver.callback(), second)

        solver.solve()
        self.assertEqual(first.events, [])
        self.assertGreater(len(second.events), 0)

    def test_set_callback_while_solving(self):
        solver, x = self.get_knapsack()
        errors = []

        class Meddling(MPCallback):
            def onEvent(self, context):
                self.assertSolving()
                for action in (lambda: solver.setCallback(None), lambda: solver.setCallback(self), solver.solve):
                    try:
                        action()
                    except InvalidStateError as e:
                        errors.append(e)

            def assertSolving(self):
                if not solver.isSolving():
                    raise AssertionError("callback invoked outside solve()")

        solver.setCallback(Meddling())
        solver.setSolverSpecificParametersAsString("node_limit=1")
        solver.solve()

        self.assertFalse(solver.callbackFailed())
        self.assertGreater(len(errors), 0)
        self.assertEqual(len(errors) % 3, 0)
        self.assertFalse(solver.isSolving())

    def test_node_limit(self):
        solver = self.get_random_model(num_vars=12)
        solver.setSolverSpecificParametersAsString("node_limit=1")
        status = solver.solve()
        self.assertIn(status, (ResultStatus.OPTIMAL, ResultStatus.FEASIBLE, ResultStatus.NOT_SOLVED))
        self.assertEqual(solver.nodes(), 1)

    def test_output_messages(self):
        solver, x = self.get_knapsack()
        messages = []

        class Messages(MPCallback):
            def onEvent(self, context):
                if context.event() == Event.MESSAGE:
                    messages.append(context.message())

        solver.setCallback(Messages())
        solver.enableOutput()
        with self.assertLogs("mipbridge.backends.bnb", level="INFO"):
            solver.solve()

        self.assertGreater(len(messages), 0)
        self.assertTrue(any("incumbent" in m for m in messages))

    def test_infeasible(self):
        solver = Solver.createSolver("BNB")
        x = solver.makeIntVar(0, 10, "x")
        c = solver.makeConstraint(2.2, 2.8)
        c.setCoefficient(x, 1)
        solver.objective().setCoefficient(x, 1)

        cb = SolutionRecorder(solver)
        solver.setCallback(cb)
        self.assertEqual(solver.solve(), ResultStatus.INFEASIBLE)
        self.assertEqual(cb.n_solutions, 0)
        self.assertRaises(Exception, lambda: x.solutionValue())

    def test_inconsistent_integer_bounds(self):
        solver = Solver.createSolver("BNB")
        solver.makeIntVar(0.2, 0.8, "x")
        self.assertEqual(solver.solve(), ResultStatus.INFEASIBLE)

    def test_unbounded(self):
        solver = Solver.createSolver("BNB")
        x = solver.makeIntVar(0, math.inf, "x")
        solver.objective().setCoefficient(x, 1)
        solver.objective().setMaximization()
        self.assertEqual(solver.solve(), ResultStatus.UNBOUNDED)

    def test_model_invalid(self):
        solver = Solver.createSolver("BNB")
        solver.makeIntVar(3, 1, "x")
        cb = SolutionRecorder(solver)
        solver.setCallback(cb)

        with self.assertLogs("mipbridge.solver", level="WARNING"):
            self.assertEqual(solver.solve(), ResultStatus.MODEL_INVALID)
        self.assertEqual(cb.events, [])

    def test_continuous_model(self):
        """
        min x + y s.t. x + 2y >= 3, 0 <= x, y <= 10
        """
        solver = Solver.createSolver("BNB")
        x = solver.makeNumVar(0, 10, "x")
        y = solver.makeNumVar(0, 10, "y")
        c = solver.makeConstraint(3, solver.infinity())
        c.setCoefficient(x, 1)
        c.setCoefficient(y, 2)
        solver.objective().setCoefficient(x, 1)
        solver.objective().setCoefficient(y, 1)
        solver.objective().setOffset(1)

        cb = SolutionRecorder(solver)
        solver.setCallback(cb)
        self.assertEqual(solver.solve(), ResultStatus.OPTIMAL)
        self.assertAlmostEqual(solver.objective().value(), 2.5)
        self.assertAlmostEqual(y.solutionValue(), 1.5)
        self.assertEqual(cb.n_solutions, 1)
