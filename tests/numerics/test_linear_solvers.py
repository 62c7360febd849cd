import numpy as np
import pytest
import scipy.sparse as sps

from resflow.ad.forward_mode import initAdArrays
from resflow.errors import LinearSolverFailure
from resflow.models.linearized_problem import LinearizedProblem
from resflow.numerics.linear_solvers import LinearSolver


def _laplacian(n):
    main = 2 * np.ones(n)
    off = -np.ones(n - 1)
    return sps.diags([off, main, off], [-1, 0, 1], format="csr")


@pytest.mark.parametrize("method", ["direct", "gmres", "bicgstab"])
def test_solve_linear_system(method):
    A = _laplacian(20) + sps.identity(20)
    x_ex = np.linspace(0, 1, 20)
    solver = LinearSolver({"method": method, "tolerance": 1e-12})
    x, report = solver.solve_linear_system(A, A @ x_ex)
    assert np.allclose(x, x_ex, atol=1e-8)
    assert report["method"] == method
    assert report["iterations"] >= 1


def test_unknown_method():
    with pytest.raises(ValueError):
        LinearSolver({"method": "cholesky"})


def test_singular_system_fails():
    A = sps.csr_matrix(np.ones((2, 2)))
    with pytest.raises(LinearSolverFailure):
        LinearSolver().solve_linear_system(A, np.array([1.0, 2.0]))


def test_empty_system():
    x, _ = LinearSolver().solve_linear_system(sps.csr_matrix((0, 0)), np.zeros(0))
    assert x.size == 0


def test_solve_linearized_problem_splits_increments():
    p, s = initAdArrays([np.array([1.0, 2.0]), np.array([0.5])])
    eqs = [p - np.array([3.0, 5.0]), 2 * s - 3.0]
    problem = LinearizedProblem(
        eqs, ["cell", "cell"], ["a", "b"], ["p", "s"], state={}, dt=1.0
    )
    dx, report = LinearSolver().solve_linear_problem(problem)
    assert len(dx) == 2
    assert np.allclose(dx[0], [2.0, 3.0])
    assert np.allclose(dx[1], [1.0])
    assert "solver_time" in report
