"""Well descriptions and well solutions.

A :class:`Well` is a driving force: it describes where a well is perforated and how it
is controlled. A :class:`WellSolution` holds the well unknowns (bottom hole pressure and
surface rates) and the control currently in effect, which may differ from the
well's own control after limit-based switching.

Sign convention: rates are positive for injection into the reservoir and negative
for production.

"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import scipy.sparse as sps

import resflow.utils.common_constants as const

CONTROL_TYPES = ["bhp", "rate", "orat", "wrat", "grat", "lrat"]
"""Supported control types. ``rate`` is the total surface rate, the others are
oil, water, gas and liquid (oil plus water) surface rates."""


@dataclass
class Well:
    """A well perforating one or more cells."""

    cells: np.ndarray
    """Perforated cells."""
    WI: np.ndarray
    """Well indices, one per perforation."""
    val: float
    """Target value of the control: pressure for ``bhp``, surface rate otherwise."""
    type: str = "bhp"
    """Control type, see :data:`CONTROL_TYPES`."""
    sign: int = 0
    """1 for injectors, -1 for producers. Inferred from ``val`` for rate controlled
    wells if not given."""
    compi: np.ndarray = field(default_factory=lambda: np.array([1.0]))
    """Injected phase composition, one entry per active phase."""
    name: str = "well"
    dZ: Optional[np.ndarray] = None
    """Depth of each perforation relative to the reference depth."""
    ref_depth: float = 0.0
    """Reference depth of the bottom hole pressure."""
    cstatus: Optional[np.ndarray] = None
    """Open (True) or closed (False) perforations."""
    components: Optional[np.ndarray] = None
    """Injected overall mole fractions (compositional models)."""
    polymer: float = 0.0
    """Injected polymer concentration."""
    surfactant: float = 0.0
    """Injected surfactant concentration."""
    T: float = const.CELSIUS_to_KELVIN(20 * const.CELSIUS)
    """Injection temperature (thermal models)."""
    lims: Optional[dict] = None
    """Limits for control switching, keyed by control type."""
    status: bool = True
    """False for shut wells."""

    def __post_init__(self) -> None:
        self.cells = np.atleast_1d(np.asarray(self.cells, dtype=int))
        n = self.cells.size
        if n == 0:
            raise ValueError(f"Well {self.name} has no perforations")
        self.WI = np.asarray(self.WI, dtype=float) * np.ones(n)
        self.compi = np.atleast_1d(np.asarray(self.compi, dtype=float))
        self.dZ = np.zeros(n) if self.dZ is None else np.asarray(self.dZ) * np.ones(n)
        self.cstatus = (
            np.ones(n, dtype=bool)
            if self.cstatus is None
            else np.asarray(self.cstatus, dtype=bool) * np.ones(n, dtype=bool)
        )
        if self.components is not None:
            self.components = np.asarray(self.components, dtype=float)
        if self.type not in CONTROL_TYPES:
            raise ValueError(f"Unknown control type {self.type} for well {self.name}")
        if self.sign == 0:
            if self.type == "bhp":
                raise ValueError(
                    f"Sign must be given for bhp controlled well {self.name}"
                )
            self.sign = 1 if self.val > 0 else -1
        if self.lims is None:
            self.lims = {}

    @property
    def num_perforations(self) -> int:
        return self.cells.size

    @property
    def is_injector(self) -> bool:
        return self.sign > 0


@dataclass
class WellSolution:
    """Unknowns and active control of a well."""

    name: str
    bhp: float
    type: str
    val: float
    sign: int
    qWs: float = 0.0
    qOs: float = 0.0
    qGs: float = 0.0
    status: bool = True
    cqs: Optional[np.ndarray] = None
    """Perforation surface rates from the last assembly, (num_perf, num_phases)."""
    cdp: Optional[np.ndarray] = None
    """Pressure drop from the reference depth to each perforation."""

    @classmethod
    def from_well(cls, well: Well, pressure: np.ndarray) -> WellSolution:
        """Initial well solution.

        The bottom hole pressure is set to the control value for bhp controlled wells,
        and to the pressure in the first perforated cell otherwise.

        """
        if well.type == "bhp":
            bhp = float(well.val)
        else:
            bhp = float(pressure[well.cells[0]])
        return cls(
            name=well.name,
            bhp=bhp,
            type=well.type,
            val=float(well.val),
            sign=well.sign,
            status=well.status,
        )

    def copy(self) -> WellSolution:
        return copy.deepcopy(self)


def initialize_well_solutions(wells: list[Well], pressure: np.ndarray) -> list:
    return [WellSolution.from_well(w, pressure) for w in wells]


def perforation_to_well_map(wells: list[Well]) -> np.ndarray:
    """Index of the owning well for each perforation."""
    if len(wells) == 0:
        return np.zeros(0, dtype=int)
    return np.repeat(np.arange(len(wells)), [w.num_perforations for w in wells])


def perforation_sum_matrix(wells: list[Well]) -> sps.csr_matrix:
    """Matrix summing perforation quantities into well quantities."""
    perf2well = perforation_to_well_map(wells)
    num_perf = perf2well.size
    return sps.csr_matrix(
        (np.ones(num_perf), (perf2well, np.arange(num_perf))),
        shape=(len(wells), num_perf),
    )


def reorder_perforations_by_depth(
    well: Well, depth: Optional[np.ndarray] = None
) -> Well:
    """Sort the perforations of a well by depth.

    The sort is stable, so perforations at the same depth keep their order.

    Parameters:
        well: Well to reorder.
        depth: Cell depths. If given, the perforation depths ``dZ`` are recomputed
            relative to the reference depth of the well before sorting.

    Returns:
        A new well with cells, well indices, depths and perforation status permuted.

    """
    new_well = copy.deepcopy(well)
    if depth is not None:
        new_well.dZ = np.asarray(depth, dtype=float)[well.cells] - well.ref_depth
    order = np.argsort(new_well.dZ, kind="stable")
    new_well.cells = well.cells[order]
    new_well.WI = well.WI[order]
    new_well.dZ = new_well.dZ[order]
    new_well.cstatus = well.cstatus[order]
    return new_well
