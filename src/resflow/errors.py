"""Exception hierarchy for resflow.

Structural errors (bad variable names, inconsistent dimensions) are raised where they
are detected and terminate the current step. Numerical trouble in the nonlinear loop
is reported through the step reports instead, see
:mod:`resflow.numerics.nonlinear.solver_statistics`.

"""

__all__ = [
    "ResflowError",
    "AssemblyError",
    "ShapeMismatchError",
    "LinearSolverFailure",
    "ConvergenceFailure",
]


class ResflowError(Exception):
    """Base class for all resflow-related errors."""

    pass


class AssemblyError(ResflowError, ValueError):
    """Raised when equations cannot be assembled from the given state.

    Typical causes are unknown primary variable names or state fields whose
    dimensions do not match the grid.

    """

    pass


class ShapeMismatchError(ResflowError, ValueError):
    """Raised when AD arrays with incompatible value lengths or Jacobian block
    structures are combined."""

    pass


class LinearSolverFailure(ResflowError):
    """Raised when the linear solver fails or returns non-finite increments."""

    pass


class ConvergenceFailure(ResflowError):
    """Raised when a nonlinear solve cannot be completed within its budget."""

    pass
