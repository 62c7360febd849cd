"""   resflow.

Fully implicit reservoir simulation with automatic differentiation. Contains the
following sub-packages:

ad: Forward mode automatic differentiation with block structured Jacobians.

grids: Cartesian grids.

numerics: Discrete operators, linear and nonlinear solvers, convergence checks.

params: Rock and fluid properties.

compositional: K-value phase equilibrium for hydrocarbon mixtures.

wells: Well descriptions and the standard well model.

models: Black-oil, compositional and thermal models, extensions and time stepping.

isort:skip_file

"""

__version__ = "0.1.0"

# ------------------------------------
# Simplified namespaces. Classes and modules that a user is exposed to have a
# shortcut here.

from resflow.utils.common_constants import *

from resflow.errors import (
    ResflowError,
    AssemblyError,
    ShapeMismatchError,
    LinearSolverFailure,
    ConvergenceFailure,
)

# AD
from resflow import ad
from resflow.ad.forward_mode import AdArray, initAdArrays

# Grids and discretization
from resflow.grids.structured import CartesianGrid
from resflow.numerics.fv.tpfa import tpfa_transmissibility
from resflow.numerics.discretization import DiscreteOperators

# Fluid and rock
from resflow.params.rock import Rock
from resflow.params.fluid import BlackOilFluid, CoreyRelperm
from resflow.params.water import ThermalWaterFluid
from resflow.compositional.fluid import CompositionalFluid

# Wells
from resflow.wells.well import Well, WellSolution
from resflow.wells.well_model import WellModel

# Solvers
from resflow.numerics.linear_solvers import LinearSolver
from resflow.numerics.nonlinear import (
    CNVMBCriterion,
    ConvergenceStatus,
    InfinityNormCriterion,
    NanConvergenceCriterion,
    NewtonSolver,
    NonlinearReport,
    StepReport,
)

# Models
from resflow.models.state import State
from resflow.models.driving_forces import DrivingForces, SourceTerm
from resflow.models.linearized_problem import LinearizedProblem
from resflow.models.black_oil import BlackOilModel
from resflow.models.eor_extensions import PolymerExtension, SurfactantExtension
from resflow.models.thermal import WaterThermalModel
from resflow.models.compositional_flow import CompositionalModel
from resflow.models.run_models import ModelKind, create_model, run_schedule
