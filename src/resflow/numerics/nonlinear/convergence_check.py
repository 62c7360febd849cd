"""Collection of objects and functions related to convergence checking of the
nonlinear iterations."""

from __future__ import annotations

import logging
from abc import abstractmethod
from enum import Enum

import numpy as np

logger = logging.getLogger(__name__)


class ConvergenceStatus(Enum):
    CONVERGED = "converged"
    NOT_CONVERGED = "not_converged"
    DIVERGED = "diverged"
    FAILED = "failed"

    def __str__(self):
        return self.value

    @classmethod
    def from_str(cls, status_str: str):
        """Convert a string to a ConvergenceStatus."""
        return cls[status_str.upper()]

    def is_converged(self) -> bool:
        """Check if the status indicates convergence."""
        return self == ConvergenceStatus.CONVERGED

    def is_not_converged(self) -> bool:
        """Check if the status indicates not converged."""
        return self == ConvergenceStatus.NOT_CONVERGED

    def is_diverged(self) -> bool:
        """Check if the status indicates divergence."""
        return self == ConvergenceStatus.DIVERGED

    def is_failed(self) -> bool:
        """Check if the status indicates a failed iteration."""
        return self == ConvergenceStatus.FAILED


class ConvergenceCriterion:
    @abstractmethod
    def check(self, problem, model) -> tuple[np.ndarray, np.ndarray, list[str]]:
        """Check convergence.

        Parameters:
            problem: The linearized problem of the current iteration.
            model: The model that assembled the problem.

        Returns:
            Tuple of boolean convergence flags, the corresponding measured values and
            their names.

        """
        pass


class InfinityNormCriterion(ConvergenceCriterion):
    """Maximum norm of each equation compared to one tolerance."""

    def __init__(self, tolerance: float = 1e-6) -> None:
        self.tolerance = tolerance

    def check(self, problem, model=None):
        values = problem.norm(np.inf)
        converged = values < self.tolerance
        names = [f"{n} ({t})" for n, t in zip(problem.equation_names, problem.types)]
        return converged, values, names


class CNVMBCriterion(ConvergenceCriterion):
    """Local (CNV) and global (material balance, MB) convergence measures.

    For each conservation equation with residual ``R`` in conserved units per time,

    * ``CNV = B_avg * dt * max(|R| / pv)``, the largest saturation-like error of a
      cell, and
    * ``MB = dt * |B_avg * sum(R)| / sum(pv)``, the total mass balance error,

    where ``B_avg`` is the average formation volume factor. All remaining
    equations (well equations and extension equations) are checked in the maximum
    norm against ``tolerance_wells``.

    The model provides the scaling through ``model.conservation_scaling(problem)``,
    which returns the pore volumes and a map from equation name to formation volume
    factors.

    """

    def __init__(
        self,
        tolerance_cnv: float = 1e-3,
        tolerance_mb: float = 1e-7,
        tolerance_wells: float = 1e-3,
    ) -> None:
        self.tolerance_cnv = tolerance_cnv
        self.tolerance_mb = tolerance_mb
        self.tolerance_wells = tolerance_wells

    def check(self, problem, model):
        pv, B = model.conservation_scaling(problem)
        dt = problem.dt
        pv_sum = np.sum(pv)

        cnv, mb, cnv_names, mb_names = [], [], [], []
        other, other_names = [], []
        for eq, name, tp in zip(
            problem.equations, problem.equation_names, problem.types
        ):
            R = np.asarray(eq.val if hasattr(eq, "val") else eq)
            if name in B:
                B_avg = np.mean(B[name])
                cnv.append(B_avg * dt * np.max(np.abs(R) / pv))
                mb.append(dt * np.abs(B_avg * np.sum(R)) / pv_sum)
                cnv_names.append(f"CNV_{name}")
                mb_names.append(f"MB_{name}")
            else:
                other.append(0.0 if R.size == 0 else np.max(np.abs(R)))
                other_names.append(f"{name} ({tp})")

        converged = np.concatenate(
            (
                np.array(cnv) < self.tolerance_cnv,
                np.array(mb) < self.tolerance_mb,
                np.array(other) < self.tolerance_wells,
            )
        ).astype(bool)
        values = np.concatenate((cnv, mb, other)).astype(float)
        return converged, values, cnv_names + mb_names + other_names


class NanConvergenceCriterion:
    """Convergence criterion that checks for non-finite values."""

    def check(
        self, nonlinear_increment: np.ndarray, residual: np.ndarray
    ) -> ConvergenceStatus:
        """Check for NaN or infinite values in the nonlinear increment and residual.

        Parameters:
            nonlinear_increment: The increment in the solution variables from the
                previous nonlinear iteration.
            residual: The current residual vector of the nonlinear system.

        Returns:
            ConvergenceStatus: DIVERGED if any value is not finite, otherwise
            NOT_CONVERGED (this criterion cannot establish convergence).

        """
        if not (
            np.all(np.isfinite(nonlinear_increment)) and np.all(np.isfinite(residual))
        ):
            return ConvergenceStatus.DIVERGED
        return ConvergenceStatus.NOT_CONVERGED
