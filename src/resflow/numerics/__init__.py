from . import discretization, fv, linear_solvers
from .discretization import DiscreteOperators
from .linear_solvers import LinearSolver
