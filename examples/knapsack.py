# Simple knapsack example to illustrate callbacks on both backends
# max 8x1 + 5x2 + 3x3 + 11x4 + 7x5
#     4x1 + 3x2 + 1x3 +  5x4 + 4x5 <= 11

import mipbridge
from mipbridge import Event, MPCallback


class Trace(MPCallback):
    def __init__(self, x):
        super().__init__()
        self.x = x

    def onEvent(self, context):
        if context.canQueryVariableValues():
            print(f"{context.event().name}: {context.variableValues(self.x)}")
        elif context.event() == Event.MIP_NODE:
            print(f"{context.event().name}: {context.numExploredNodes()} nodes")


for kind in ("BNB", "HIGHS"):
    solver = mipbridge.Solver.createSolver(kind)
    if solver is None:
        print(f"{kind} is not available, skipping")
        continue

    x = [solver.makeBoolVar(f"x{i + 1}") for i in range(5)]

    c = solver.makeConstraint(-solver.infinity(), 11)
    for xi, w, p in zip(x, [4, 3, 1, 5, 4], [8, 5, 3, 11, 7]):
        c.setCoefficient(xi, w)
        solver.objective().setCoefficient(xi, p)
    solver.objective().setMaximization()

    solver.setCallback(Trace(x))
    status = solver.solve()

    # solution is [1, 0, 1, 1, 0]
    print(f"{kind} {status.name}: {[v.solutionValue() for v in x]}")
