"""Simulation state."""

from __future__ import annotations

import copy

import numpy as np


class State(dict):
    """Map from field names to cell-wise arrays.

    Known fields are ``pressure`` (num_cells,), ``s`` (num_cells, num_phases),
    ``rs``, ``rv``, ``status``, ``components`` (num_cells, num_components), ``T``,
    extension fields such as ``polymer``, and ``well_solutions``, a list with one
    :class:`~resflow.wells.well.WellSolution` per well. Assembly may add diagnostic
    fields (``flux``, ``mob``, ``bfactor``, ``upstream_flag``, ``rho``).

    Fields can be accessed as items and as attributes.

    """

    def __getattr__(self, key):
        try:
            return self[key]
        except KeyError as err:
            raise AttributeError(key) from err

    def __setattr__(self, key, value) -> None:
        self[key] = value

    def copy(self) -> State:
        """Deep copy of all fields, including the well solutions."""
        new = State()
        for key, value in self.items():
            if isinstance(value, np.ndarray):
                new[key] = value.copy()
            else:
                new[key] = copy.deepcopy(value)
        return new

    @property
    def num_cells(self) -> int:
        return np.asarray(self["pressure"]).shape[0]
