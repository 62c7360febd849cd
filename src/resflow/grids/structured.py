""" Module containing a Cartesian grid with the geometry needed for two-point flux
discretizations.

Acknowledgements:
    The ordering of cells and faces follows the conventions of the Matlab Reservoir
    Simulation Toolbox (MRST) developed by SINTEF ICT, see
    www.sintef.no/projectweb/mrst/: cells are numbered with the x-index running
    fastest, and faces are numbered direction by direction.

"""

from __future__ import annotations

from typing import Optional

import numpy as np
import scipy.sparse as sps


class CartesianGrid:
    """Cartesian grid in 1, 2 or 3 dimensions.

    The third coordinate is interpreted as depth, increasing downwards. Grids of
    dimension less than three are given unit (or user specified) thickness in the
    missing directions, so that cell volumes and face areas are always well defined.

    Attributes:
        dim: Dimension of the grid.
        cart_dims: Number of cells in each direction.
        num_cells: Number of cells.
        num_faces: Number of faces, including boundary faces.
        cell_centers: (3 x num_cells) cell center coordinates.
        cell_volumes: (num_cells) cell volumes.
        face_centers: (3 x num_faces) face center coordinates.
        face_normals: (3 x num_faces) face normals, scaled with the face area. Normals
            point in the positive coordinate direction.
        face_areas: (num_faces) face areas.
        cell_faces: (num_faces x num_cells) sparse matrix. The entry is +1 if the face
            normal points out of the cell, -1 if it points into the cell.
        face_neighbors: (num_faces x 2) cells on the negative and positive side of
            each face, with -1 for faces on the boundary.

    """

    def __init__(
        self,
        nx,
        physdims=None,
        name: Optional[str] = None,
    ) -> None:
        """
        Parameters:
            nx: Number of cells in each direction. The length (1, 2 or 3) gives the
                dimension of the grid.
            physdims: Physical extent of the domain in each direction. Defaults to
                unit cell size. If longer than ``nx``, the trailing entries give the
                thickness in the missing directions.
            name: Name of the grid.

        """
        nx = np.atleast_1d(np.asarray(nx, dtype=int))
        if nx.size not in (1, 2, 3) or np.any(nx < 1):
            raise ValueError(f"Invalid number of cells {nx}")

        if physdims is None:
            physdims = nx.astype(float)
        physdims = np.atleast_1d(np.asarray(physdims, dtype=float))
        if physdims.size < nx.size or physdims.size > 3 or np.any(physdims <= 0):
            raise ValueError(f"Invalid physical dimensions {physdims}")

        self.name = "CartesianGrid" if name is None else name
        self.dim: int = nx.size
        self.cart_dims: np.ndarray = nx

        n = np.ones(3, dtype=int)
        n[: self.dim] = nx
        extent = np.ones(3)
        extent[: physdims.size] = physdims
        cell_size = extent / n
        # For missing directions the full extent is the cell size.
        cell_size[self.dim :] = extent[self.dim :]

        self.num_cells: int = int(n.prod())

        index = self._multi_index(n)
        self.cell_centers: np.ndarray = (index + 0.5) * cell_size[:, None]
        self.cell_volumes: np.ndarray = np.full(self.num_cells, cell_size.prod())

        centers, normals, neighbors = [], [], []
        for d in range(self.dim):
            shape = n.copy()
            shape[d] += 1
            face_index = self._multi_index(shape)

            fc = (face_index + 0.5) * cell_size[:, None]
            fc[d] = face_index[d] * cell_size[d]
            centers.append(fc)

            normal = np.zeros_like(fc)
            normal[d] = cell_size.prod() / cell_size[d]
            normals.append(normal)

            # Cells on the negative and positive side of the face.
            lower = face_index.copy()
            lower[d] -= 1
            upper = face_index.copy()
            neighbors.append(
                np.vstack(
                    (
                        self._cell_index(lower, n),
                        self._cell_index(upper, n),
                    )
                ).T
            )

        self.face_centers: np.ndarray = np.hstack(centers)
        self.face_normals: np.ndarray = np.hstack(normals)
        self.face_areas: np.ndarray = np.sqrt(
            np.power(self.face_normals, 2).sum(axis=0)
        )
        self.face_neighbors: np.ndarray = np.vstack(neighbors)
        self.num_faces: int = self.face_neighbors.shape[0]

        # Face-cell connection, positive for faces where the normal points outwards.
        fi = np.tile(np.arange(self.num_faces), 2)
        ci = self.face_neighbors.ravel(order="F")
        sgn = np.hstack((np.ones(self.num_faces), -np.ones(self.num_faces)))
        keep = ci >= 0
        self.cell_faces: sps.csc_matrix = sps.csc_matrix(
            (sgn[keep], (fi[keep], ci[keep])),
            shape=(self.num_faces, self.num_cells),
        )

    def __repr__(self) -> str:
        return (
            f"{self.name} with {self.num_cells} cells and dimensions "
            f"{self.cart_dims.tolist()}"
        )

    def internal_faces(self) -> np.ndarray:
        """Indices of faces shared by two cells."""
        return np.where(np.all(self.face_neighbors >= 0, axis=1))[0]

    def boundary_faces(self) -> np.ndarray:
        """Indices of faces on the domain boundary."""
        return np.where(np.any(self.face_neighbors < 0, axis=1))[0]

    @staticmethod
    def _multi_index(shape: np.ndarray) -> np.ndarray:
        # (3 x prod(shape)) index triplets, with the first index running fastest.
        grids = np.meshgrid(*[np.arange(s) for s in shape], indexing="ij")
        return np.vstack([g.ravel(order="F") for g in grids])

    @staticmethod
    def _cell_index(index: np.ndarray, n: np.ndarray) -> np.ndarray:
        outside = np.any((index < 0) | (index >= n[:, None]), axis=0)
        ci = index[0] + n[0] * (index[1] + n[1] * index[2])
        ci[outside] = -1
        return ci
