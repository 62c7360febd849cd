from . import convergence_check, solver_statistics
from .convergence_check import (
    CNVMBCriterion,
    ConvergenceStatus,
    InfinityNormCriterion,
    NanConvergenceCriterion,
)
from .nonlinear_solvers import NewtonSolver
from .solver_statistics import NonlinearReport, StepReport
