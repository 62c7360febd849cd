"""Driving forces: wells and cell source terms."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from resflow.wells.well import Well


@dataclass
class SourceTerm:
    """Cell sources given in reservoir volume per time.

    Injection (positive rate) uses the phase fractions ``sat``. Production uses the
    fractional flow of the cell.

    """

    cells: np.ndarray
    """Cells with a source."""
    rate: np.ndarray
    """Reservoir volume rate per cell, positive for injection."""
    sat: np.ndarray
    """Injected phase fractions, ``shape=(num_sources, num_phases)``."""

    def __post_init__(self) -> None:
        self.cells = np.atleast_1d(np.asarray(self.cells, dtype=int))
        n = self.cells.size
        self.rate = np.asarray(self.rate, dtype=float) * np.ones(n)
        sat = np.atleast_2d(np.asarray(self.sat, dtype=float))
        if sat.shape[0] == 1 and n > 1:
            sat = np.tile(sat, (n, 1))
        if sat.shape[0] != n:
            raise ValueError("Source saturations must be given per source cell")
        self.sat = sat


@dataclass
class DrivingForces:
    """Forces acting on the reservoir during a time step."""

    wells: list[Well] = field(default_factory=list)
    src: Optional[SourceTerm] = None
