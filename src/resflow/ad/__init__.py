"""Forward mode automatic differentiation with block structured Jacobians."""
from . import functions
from .forward_mode import AdArray, initAdArrays
from .utils import concatenate

__all__ = ["AdArray", "initAdArrays", "concatenate", "functions"]
