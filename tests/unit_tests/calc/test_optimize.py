import pytest
import numpy as np
from glidproc.calc.optimize import (ConvergenceError, MinimizationResult,
                                    ScipyMinimizer)


def quadratic(x):
    return (x[0] - 1.5) ** 2 + 3 * (x[1] + 0.5) ** 2


def test_scipy_minimizer_nelder_mead():
    result = ScipyMinimizer().minimize(quadratic, [(-5, 5), (-5, 5)],
                                       [0, 0])
    assert isinstance(result, MinimizationResult)
    assert result.converged
    assert np.allclose(result.params, [1.5, -0.5], atol=1e-3)
    assert result.n_evaluations > 0


def test_scipy_minimizer_other_method():
    result = ScipyMinimizer(method='L-BFGS-B').minimize(
        quadratic, [(-5, 5), (-5, 5)], [0, 0])
    assert result.converged
    assert np.allclose(result.params, [1.5, -0.5], atol=1e-3)


def test_scipy_minimizer_respects_bounds():
    # Unconstrained minimum at (1.5, -0.5) lies outside the box
    result = ScipyMinimizer().minimize(quadratic, [(2, 5), (0, 5)], [3, 3])
    assert np.all(result.params >= [2, 0])
    assert np.allclose(result.params, [2, 0], atol=1e-2)


def test_scipy_minimizer_clips_initial_guess():
    result = ScipyMinimizer().minimize(quadratic, [(-5, 5), (-5, 5)],
                                       [50, -50])
    assert result.converged
    assert np.allclose(result.params, [1.5, -0.5], atol=1e-3)


@pytest.mark.parametrize("initial", [[5, -5], [-5, 5], [5, 5], [-5, -5]])
def test_scipy_minimizer_starts_on_bound(initial):
    # A simplex stepping outwards would be clipped flat onto the bound
    result = ScipyMinimizer().minimize(quadratic, [(-5, 5), (-5, 5)],
                                       initial)
    assert result.converged
    assert np.allclose(result.params, [1.5, -0.5], atol=1e-3)


def test_scipy_minimizer_initial_simplex_inside_bounds():
    minimizer = ScipyMinimizer()
    simplex = minimizer._initial_simplex(np.array([5.0, 0.0]),
                                         np.array([-5.0, -1.0]),
                                         np.array([5.0, 1.0]))
    assert simplex.shape == (3, 2)
    assert np.all(simplex >= [-5, -1]) and np.all(simplex <= [5, 1])
    # Vertices are distinct, the simplex is not degenerate
    assert np.linalg.matrix_rank(simplex[1:] - simplex[0]) == 2


def test_scipy_minimizer_iteration_limit():
    result = ScipyMinimizer(max_iter=2).minimize(
        quadratic, [(-5, 5), (-5, 5)], [4, 4])
    assert not result.converged


def test_scipy_minimizer_time_budget():
    result = ScipyMinimizer(time_budget=0).minimize(
        quadratic, [(-5, 5), (-5, 5)], [4, 4])
    assert not result.converged
    assert 'Time budget' in result.message


def test_scipy_minimizer_non_finite_objective():
    result = ScipyMinimizer(max_iter=50).minimize(
        lambda x: np.nan, [(-1, 1)], [0])
    assert not result.converged


def test_scipy_minimizer_invalid_bounds():
    with pytest.raises(ValueError):
        ScipyMinimizer().minimize(quadratic, [(1, -1), (0, 1)], [0, 0])
    with pytest.raises(ValueError):
        ScipyMinimizer().minimize(quadratic, [(-1, 1), (0, 1)], [0])


def test_convergence_error_keeps_result():
    result = MinimizationResult(params=np.array([1.0]), value=2.0,
                                converged=False, n_evaluations=3)
    err = ConvergenceError('did not converge', result)
    assert isinstance(err, RuntimeError)
    assert err.result is result
