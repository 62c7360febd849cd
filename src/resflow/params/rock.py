""" Rock properties entering the flow and energy equations.

Permeability and porosity are given per cell. The thermal properties are only used
by :class:`~resflow.models.thermal.WaterThermalModel`. Thermal properties follow
typical values for sandstone.

"""

from __future__ import annotations

from typing import Optional

import numpy as np

import resflow.utils.common_constants as const


class Rock:
    """Cell-wise rock properties.

    Attributes:
        perm: Permeability, either (num_cells,) or (num_cells, dim) for diagonal
            tensors.
        poro: Porosity (num_cells,).
        DENSITY: Rock density.
        HEAT_CAPACITY: Specific heat capacity of the rock, J / kg K.
        THERMAL_CONDUCTIVITY: Thermal conductivity of the rock, W / m K.

    """

    def __init__(
        self,
        perm,
        poro,
        num_cells: Optional[int] = None,
        density: float = 2650 * const.KILOGRAM / const.METER**3,
        heat_capacity: float = 823.82 * const.JOULE / const.KILOGRAM,
        thermal_conductivity: float = 2.0 * const.WATT / const.METER,
    ) -> None:
        """Initialize rock properties.

        Parameters:
            perm: Permeability. A scalar is expanded to all cells.
            poro: Porosity. A scalar is expanded to all cells.
            num_cells: Number of cells. Needed when both perm and poro are scalars.
            density: Rock density.
            heat_capacity: Specific heat capacity.
            thermal_conductivity: Thermal conductivity.

        """
        perm = np.asarray(perm, dtype=float)
        poro = np.asarray(poro, dtype=float)
        if num_cells is None:
            if poro.ndim > 0:
                num_cells = poro.size
            elif perm.ndim > 0:
                num_cells = perm.shape[0]
            else:
                raise ValueError("Number of cells must be given for scalar data")

        if perm.ndim == 0:
            perm = np.full(num_cells, float(perm))
        if poro.ndim == 0:
            poro = np.full(num_cells, float(poro))

        if perm.shape[0] != num_cells or poro.size != num_cells:
            raise ValueError("Permeability and porosity must be given per cell")
        if np.any(poro <= 0) or np.any(poro > 1):
            raise ValueError("Porosity must be in (0, 1]")

        self.perm: np.ndarray = perm
        self.poro: np.ndarray = poro
        self.DENSITY = density
        self.HEAT_CAPACITY = heat_capacity
        self.THERMAL_CONDUCTIVITY = thermal_conductivity

    @property
    def num_cells(self) -> int:
        return self.poro.size
