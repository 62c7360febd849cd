from .fluid import PHASE_NAMES, BlackOilFluid, CoreyRelperm
from .rock import Rock
from .water import ThermalWaterFluid

__all__ = ["PHASE_NAMES", "BlackOilFluid", "CoreyRelperm", "Rock", "ThermalWaterFluid"]
