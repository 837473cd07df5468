'''
GLIDPROC.CALC.OPTIMIZE

Bounded minimization behind a small strategy interface, so the parameter
estimators do not depend on one particular algorithm.

A minimizer is any object with a method

    minimize(objective, bounds, initial) -> MinimizationResult

`ScipyMinimizer` wraps scipy.optimize.minimize (Nelder-Mead by default,
any bounded scipy method can be selected) and adds an iteration limit and
an optional wall-clock budget.
'''

import time
import warnings
import numpy as np
from dataclasses import dataclass
from scipy.optimize import minimize
from typing import Callable, Optional, Protocol, Sequence, Tuple


@dataclass(frozen=True)
class MinimizationResult:
    """
    Outcome of a bounded minimization.
    """
    params: np.ndarray
    value: float
    converged: bool
    n_evaluations: int
    message: str = ''


class ConvergenceError(RuntimeError):
    """
    Raised when a minimization does not converge. The (unconverged)
    result is kept in the *result* attribute.
    """

    def __init__(self, message: str,
                 result: Optional[MinimizationResult] = None):
        super().__init__(message)
        self.result = result


class Minimizer(Protocol):
    def minimize(self, objective: Callable[[np.ndarray], float],
                 bounds: Sequence[Tuple[float, float]],
                 initial: Sequence[float]) -> MinimizationResult:
        ...


class ScipyMinimizer:
    """
    Bounded minimizer based on scipy.optimize.minimize.

    Parameters:
    - method: Any scipy method supporting bounds ('Nelder-Mead',
              'L-BFGS-B', 'Powell', 'TNC', 'SLSQP', 'trust-constr').
    - max_iter: Maximum number of iterations.
    - time_budget: Optional wall-clock limit in seconds. Exceeding it ends
                   the search without convergence.
    - xtol, ftol: Tolerances on the parameters and the objective value.
    - options: Extra options passed on to scipy (override the above).
    """

    def __init__(self, method: str = 'Nelder-Mead', max_iter: int = 2000,
                 time_budget: Optional[float] = None,
                 xtol: float = 1e-5, ftol: float = 1e-4,
                 options: Optional[dict] = None):
        self.method = method
        self.max_iter = max_iter
        self.time_budget = time_budget
        self.xtol = xtol
        self.ftol = ftol
        self.options = options or {}

    def _scipy_options(self) -> dict:
        if self.method == 'Nelder-Mead':
            options = {'xatol': self.xtol, 'fatol': self.ftol,
                       'maxiter': self.max_iter}
        elif self.method == 'Powell':
            options = {'xtol': self.xtol, 'ftol': self.ftol,
                       'maxiter': self.max_iter}
        elif self.method == 'L-BFGS-B':
            options = {'ftol': self.ftol, 'maxiter': self.max_iter}
        else:
            options = {'maxiter': self.max_iter}
        options.update(self.options)
        return options

    def _initial_simplex(self, x0: np.ndarray, lower: np.ndarray,
                         upper: np.ndarray) -> np.ndarray:
        """
        Nelder-Mead starting simplex that stays inside the bounds.

        Each vertex moves one parameter by 5% of its value (0.00025 when
        zero), at most half the width of its bounds. The step is taken
        downwards where going up would leave the box, so that no vertex is
        clipped onto another.
        """
        step = np.where(x0 != 0, 0.05 * np.abs(x0), 0.00025)
        width = upper - lower
        step = np.where(np.isfinite(width) & (width > 0),
                        np.minimum(step, width / 2), step)
        step = np.where(x0 + step > upper, -step, step)

        simplex = np.tile(x0, (x0.size + 1, 1))
        simplex[1:] += np.diag(step)
        return simplex

    def minimize(self, objective: Callable[[np.ndarray], float],
                 bounds: Sequence[Tuple[float, float]],
                 initial: Sequence[float]) -> MinimizationResult:
        """
        Minimize *objective* within *bounds*, starting from *initial*.

        Returns a MinimizationResult; `converged` is False when the solver
        reports failure, runs out of iterations or time, or ends on a
        non-finite value.
        """
        lower = np.array([bound[0] for bound in bounds], dtype=float)
        upper = np.array([bound[1] for bound in bounds], dtype=float)
        if np.any(lower > upper):
            raise ValueError(
                f'Lower bounds {lower} exceed upper bounds {upper}.')

        x0 = np.asarray(initial, dtype=float)
        if x0.shape != lower.shape:
            raise ValueError(
                f'Initial guess has {x0.size} parameters but '
                f'{lower.size} bounds were given.')
        x0 = np.clip(x0, lower, upper)

        start = time.monotonic()
        n_evaluations = 0

        def counted_objective(x):
            nonlocal n_evaluations
            n_evaluations += 1
            return objective(x)

        callback = None
        if self.time_budget is not None:
            def callback(xk):
                if time.monotonic() - start > self.time_budget:
                    raise StopIteration

        options = self._scipy_options()
        if self.method == 'Nelder-Mead' and 'initial_simplex' not in options:
            options['initial_simplex'] = self._initial_simplex(
                x0, lower, upper)

        with warnings.catch_warnings():
            # Nelder-Mead warns when the initial simplex touches a bound
            warnings.simplefilter('ignore', category=RuntimeWarning)
            result = minimize(counted_objective, x0, method=self.method,
                              bounds=list(zip(lower, upper)),
                              callback=callback,
                              options=options)

        converged = bool(result.success) and np.isfinite(result.fun)
        message = str(result.message)
        if (self.time_budget is not None
                and time.monotonic() - start > self.time_budget
                and not converged):
            message = (f'Time budget of {self.time_budget} s exceeded. '
                       f'({message})')

        return MinimizationResult(
            params=np.clip(np.asarray(result.x, dtype=float), lower, upper),
            value=float(result.fun),
            converged=converged,
            n_evaluations=n_evaluations,
            message=message,
        )
