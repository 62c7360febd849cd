"""Tests of the Cartesian grid: counts, geometry and the face-cell relation."""
import numpy as np
import pytest

from resflow.grids.structured import CartesianGrid


class TestCartesianGrid:
    def test_1d_counts(self):
        g = CartesianGrid(4)
        assert g.dim == 1
        assert g.num_cells == 4
        assert g.num_faces == 5
        assert np.allclose(g.cell_volumes, 1)
        assert np.allclose(g.cell_centers[0], [0.5, 1.5, 2.5, 3.5])

    def test_2d_counts(self):
        g = CartesianGrid([3, 2], physdims=[3.0, 4.0])
        assert g.num_cells == 6
        # 4 x 2 faces in x-direction, 3 x 3 faces in y-direction.
        assert g.num_faces == 8 + 9
        assert np.allclose(g.cell_volumes, 2.0)
        assert g.internal_faces().size == 2 * 2 + 3 * 1

    def test_3d_depth_is_third_coordinate(self):
        g = CartesianGrid([1, 1, 3], physdims=[1.0, 1.0, 30.0])
        assert np.allclose(g.cell_centers[2], [5.0, 15.0, 25.0])
        assert np.allclose(g.face_areas[g.internal_faces()], 1.0)

    def test_thickness_of_missing_directions(self):
        g = CartesianGrid([2], physdims=[2.0, 3.0, 5.0])
        assert np.allclose(g.cell_volumes, 15.0)
        assert np.allclose(g.face_areas, 15.0)

    def test_face_neighbors_ordering(self):
        g = CartesianGrid([2, 2])
        internal = g.internal_faces()
        pairs = {tuple(p) for p in g.face_neighbors[internal]}
        assert pairs == {(0, 1), (2, 3), (0, 2), (1, 3)}
        assert np.all(np.any(g.face_neighbors[g.boundary_faces()] < 0, axis=1))

    def test_cell_faces_signs(self):
        g = CartesianGrid([3, 2, 2])
        assert g.cell_faces.shape == (g.num_faces, g.num_cells)
        row_sums = np.asarray(g.cell_faces.sum(axis=1)).ravel()
        nnz = np.diff(g.cell_faces.tocsr().indptr)
        assert np.allclose(row_sums[g.internal_faces()], 0)
        assert np.all(nnz[g.internal_faces()] == 2)
        assert np.all(nnz[g.boundary_faces()] == 1)

    @pytest.mark.parametrize("nx", [[0], [1, 2, 3, 4], [-1, 2]])
    def test_invalid_sizes(self, nx):
        with pytest.raises(ValueError):
            CartesianGrid(nx)

    def test_invalid_physdims(self):
        with pytest.raises(ValueError):
            CartesianGrid([2, 2], physdims=[1.0])
