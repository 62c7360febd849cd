"""Reservoir models, their state and the linearized problems they assemble."""
from .state import State
from .driving_forces import DrivingForces, SourceTerm
from .linearized_problem import LinearizedProblem
from .physical_model import PhysicalModel
from .reservoir_model import ReservoirModel
from .black_oil import BlackOilModel
from .eor_extensions import ModelExtension, PolymerExtension, SurfactantExtension
from .thermal import WaterThermalModel
from .compositional_flow import CompositionalModel
from .run_models import ModelKind, create_model, run_schedule
