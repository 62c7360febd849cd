"""Two-point flux approximation of transmissibilities."""

from __future__ import annotations

import numpy as np
import scipy.sparse as sps


def half_transmissibility(g, perm) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Compute one-sided transmissibilities for all cell-face pairs.

    Parameters:
        g: Grid with geometry fields (``cell_faces``, ``face_normals``,
            ``face_centers``, ``cell_centers``).
        perm: Permeability. Either one value per cell (isotropic), or an array of
            shape (num_cells, dim) with the diagonal of the permeability tensor.

    Returns:
        Face indices, cell indices and half transmissibilities, one entry per
        cell-face pair.

    """
    fi, ci, sgn = sps.find(g.cell_faces)

    perm = np.asarray(perm, dtype=float)
    if perm.ndim == 1:
        k = np.tile(perm[ci], (3, 1))
    else:
        k = np.ones((3, ci.size))
        k[: perm.shape[1]] = perm[ci].T
        # Isotropic continuation in directions not covered by the tensor.
        k[perm.shape[1] :] = perm[ci, :1].T

    # Normal vectors for each face (here and there side)
    n = g.face_normals[:, fi] * sgn

    # Distance from face center to cell center
    fc_cc = g.face_centers[:, fi] - g.cell_centers[:, ci]

    t_face = (n * k * fc_cc).sum(axis=0)
    dist_face_cell = np.power(fc_cc, 2).sum(axis=0)
    t_face = np.divide(t_face, dist_face_cell)

    return fi, ci, t_face


def tpfa_transmissibility(g, perm) -> np.ndarray:
    """Discretize the pressure equation using two-point fluxes.

    The transmissibility of a face is the harmonic combination of the half
    transmissibilities of its neighboring cells.

    Parameters:
        g: Grid, see :func:`half_transmissibility`.
        perm: Cell-wise permeability.

    Returns:
        np.ndarray (num_faces): Transmissibilities. For boundary faces the value is
            the half transmissibility of the single neighbor.

    """
    fi, _, t_face = half_transmissibility(g, perm)

    # Return harmonic average
    t = 1 / np.bincount(fi, weights=1 / t_face, minlength=g.num_faces)
    return t
