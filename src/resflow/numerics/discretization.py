"""Discrete differential operators for two-point finite volume schemes.

The operators act on cell-wise quantities and produce face-wise quantities (or the
other way around). The orientation is fixed by the neighbor list: a face is oriented
from its first neighbor towards its second. With this convention,

* ``grad(x)`` on a face is ``x[N[:, 1]] - x[N[:, 0]]``,
* ``div(v)`` in a cell is the net flux out of the cell,
* ``face_upstream(flag, x)`` takes the value of the first neighbor where ``flag`` is
  True and the second neighbor elsewhere.

All operators accept plain arrays and AdArrays.

"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import scipy.sparse as sps

import resflow.ad.functions as af
import resflow.utils.common_constants as const
from resflow.errors import AssemblyError
from resflow.numerics.fv.tpfa import tpfa_transmissibility

logger = logging.getLogger(__name__)


class DiscreteOperators:
    """Grid operators on internal connections.

    Attributes:
        neighbors: (num_faces, 2) cell pairs for each internal connection.
        T: (num_faces,) transmissibilities.
        pv: (num_cells,) pore volumes.
        gdz: (num_faces,) gravity potential difference per unit density,
            ``g * grad(depth)``.
        T_heat: (num_faces,) thermal transmissibilities of the rock, if given.
        depth: (num_cells,) cell depths, if given.

    """

    def __init__(
        self,
        neighbors,
        T,
        pv,
        gdz=None,
        T_heat=None,
        depth=None,
    ) -> None:
        neighbors = np.asarray(neighbors, dtype=int)
        if neighbors.ndim != 2 or neighbors.shape[1] != 2:
            raise AssemblyError("Neighbors must be given as a (num_faces, 2) array")

        self.neighbors: np.ndarray = neighbors
        self.pv: np.ndarray = np.asarray(pv, dtype=float)
        nc = self.pv.size
        nf = neighbors.shape[0]

        if nf > 0 and (neighbors.min() < 0 or neighbors.max() >= nc):
            raise AssemblyError("Neighbor indices must refer to cells")

        self.T: np.ndarray = self._face_field(T, nf, "transmissibility")
        self.gdz: np.ndarray = (
            np.zeros(nf) if gdz is None else self._face_field(gdz, nf, "gdz")
        )
        self.T_heat: Optional[np.ndarray] = (
            None if T_heat is None else self._face_field(T_heat, nf, "T_heat")
        )
        self.depth: np.ndarray = (
            np.zeros(nc) if depth is None else np.asarray(depth, dtype=float)
        )

        faces = np.arange(nf)
        self.C: sps.csr_matrix = sps.csr_matrix(
            (
                np.hstack((np.ones(nf), -np.ones(nf))),
                (np.hstack((faces, faces)), np.hstack(neighbors.T)),
            ),
            shape=(nf, nc),
        )
        self._div: sps.csr_matrix = self.C.T.tocsr()
        self._avg: sps.csr_matrix = 0.5 * abs(self.C)

    @classmethod
    def from_grid(
        cls,
        g,
        rock,
        gravity: bool = True,
        gravity_acceleration: float = const.GRAVITY_ACCELERATION,
    ) -> DiscreteOperators:
        """Build operators with two-point transmissibilities on a grid.

        Parameters:
            g: Grid, see :class:`~resflow.grids.structured.CartesianGrid`.
            rock: Rock with permeability and porosity.
            gravity: If False, gravity is disregarded.
            gravity_acceleration: Magnitude of gravity. Gravity acts along the third
                coordinate.

        """
        internal = g.internal_faces()
        T = tpfa_transmissibility(g, rock.perm)[internal]
        T_heat = tpfa_transmissibility(
            g, np.full(g.num_cells, float(rock.THERMAL_CONDUCTIVITY))
        )[internal]
        pv = rock.poro * g.cell_volumes
        depth = g.cell_centers[2]

        op = cls(g.face_neighbors[internal], T, pv, T_heat=T_heat, depth=depth)
        if gravity:
            op.gdz = gravity_acceleration * op.grad(depth)
        logger.debug(
            f"Discrete operators with {op.num_cells} cells and {op.num_faces} "
            "internal connections"
        )
        return op

    @property
    def num_cells(self) -> int:
        return self.pv.size

    @property
    def num_faces(self) -> int:
        return self.neighbors.shape[0]

    def grad(self, x):
        """Difference over each connection, second neighbor minus first."""
        return af.matmul(-self.C, x)

    def div(self, v):
        """Net outflow of cells, given fluxes oriented along the connections."""
        return af.matmul(self._div, v)

    def face_average(self, x):
        """Arithmetic mean of the two neighbors."""
        return af.matmul(self._avg, x)

    def face_upstream(self, flag, x):
        """Single point upstream value.

        Parameters:
            flag: (num_faces,) boolean. True if the first neighbor is upstream.
            x: Cell quantity.

        """
        flag = np.asarray(flag, dtype=bool)
        if flag.size != self.num_faces:
            raise AssemblyError(
                f"Upstream flag of size {flag.size} for {self.num_faces} faces"
            )
        cells = np.where(flag, self.neighbors[:, 0], self.neighbors[:, 1])
        M = sps.csr_matrix(
            (np.ones(self.num_faces), (np.arange(self.num_faces), cells)),
            shape=(self.num_faces, self.num_cells),
        )
        return af.matmul(M, x)

    @staticmethod
    def _face_field(x, nf: int, name: str) -> np.ndarray:
        x = np.asarray(x, dtype=float)
        if x.ndim == 0:
            return np.full(nf, float(x))
        if x.size != nf:
            raise AssemblyError(f"Field {name} of size {x.size} for {nf} faces")
        return x
