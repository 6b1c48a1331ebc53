# An example of solving the Generalized Assignment Problem (GAP) with mipbridge
# Also demonstrates how to use a callback to print incumbents as they are found
import sys
import numpy as np
import mipbridge
from mipbridge import Event, MPCallback

#
# GAP instances can be taken from:
# http://people.brunel.ac.uk/~mastjjb/jeb/orlib/gapinfo.html
#
# Expected format:
# - number machines
# _ number jobs
# - cost of each job on each machine
# - size of each job on each machine
# - capacity of each machine

input_data = ''' 5 15
17 21 22 18 24 15 20 18 19 18 16 22 24 24 16
23 16 21 16 17 16 19 25 18 21 17 15 25 17 24
16 20 16 25 24 16 17 19 19 18 20 16 17 21 24
19 19 22 22 20 16 19 17 21 19 25 23 25 25 25
18 19 15 15 21 25 16 16 23 15 22 17 19 22 24
8 15 14 23 8 16 8 25 9 17 25 15 10 8 24
15 7 23 22 11 11 12 10 17 16 7 16 10 18 22
21 20 6 22 24 10 24 9 21 14 11 14 11 19 16
20 11 8 14 9 5 6 19 19 7 6 6 13 9 18
8 13 13 13 10 20 25 16 16 17 10 10 5 12 23
36 34 38 27 33
'''.split()

# parse input
M = int(input_data[0])
J = int(input_data[1])
idx = np.cumsum([2, M * J, M * J, M])
cost = np.array(input_data[idx[0]:idx[1]], dtype=np.float64).reshape((M, J))
size = np.array(input_data[idx[1]:idx[2]], dtype=np.float64).reshape((M, J))
capacity = np.array(input_data[idx[2]:idx[3]], dtype=np.float64)

# build model
solver = mipbridge.Solver.createSolver("HIGHS")
if solver is None:
    sys.exit("HiGHS backend is not available")

X = np.array([[solver.makeBoolVar(f"x_{m}_{j}") for j in range(J)] for m in range(M)])

# assign each job to exactly one machine
for j in range(J):
    c = solver.makeConstraint(1, 1)
    for m in range(M):
        c.setCoefficient(X[m, j], 1)

# each machine can only take jobs that fit
for m in range(M):
    c = solver.makeConstraint(-solver.infinity(), capacity[m])
    for j in range(J):
        c.setCoefficient(X[m, j], size[m, j])

# minimize total cost
for m in range(M):
    for j in range(J):
        solver.objective().setCoefficient(X[m, j], cost[m, j])


# print out the incumbents as we solve
class PrintIncumbents(MPCallback):
    def onEvent(self, context):
        if context.event() == Event.MIP_SOLUTION:
            values = np.array(context.variableValues(X.ravel())).reshape((M, J))
            print(f"incumbent after {context.numExploredNodes()} nodes: {(cost * values).sum()}")


solver.setCallback(PrintIncumbents())
solver.solve()

# print out solution (i.e., which jobs are assigned to which machines)
print(solver.objective().value())

for m in range(M):
    jobs_on_machine = [j for j in range(J) if X[m, j].solutionValue() > 0.5]
    print(jobs_on_machine)
