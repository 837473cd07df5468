'''
GLIDPROC.CTD.PARAMS

Estimation of sensor correction parameters from pairs of consecutive
casts (a downcast and the following upcast, or vice versa).

The idea (Garau et al., 2011): with the right correction the two casts
should describe the same water column, so the area enclosed between them
in a diagnostic diagram should be minimal.

- Time response: area in the depth-value diagram (one parameter, tau).
- Sensor lag: area in the depth-value diagram (tau, or tau offset and
  slope when the lag depends on the flow speed past the sensor).
- Thermal lag: area in the temperature-salinity diagram (four
  parameters, see glidproc.ctd.thermal_lag).

Pair estimators raise ConvergenceError if the minimization fails, so the
caller can fall back on default parameters. The deployment-wide functions
do exactly that: they run the pair estimator on every suitable pair of
casts, skip the failures and return the median of the successful fits.
'''

import warnings
import numpy as np
import xarray as xr
import gsw
from tqdm.auto import tqdm
from typing import Callable, List, Optional, Sequence, Tuple

from glidproc.calc.optimize import ConvergenceError, Minimizer, ScipyMinimizer
from glidproc.calc.polygon import profile_area
from glidproc.ctd.response import correct_sensor_lag, correct_time_response
from glidproc.ctd.thermal_lag import (MORISON_PARAMS, ThermalLagParams,
                                      correct_thermal_lag)
from glidproc.data.profile import (check_variables, clean_profile,
                                   cast_pairs, is_downcast, select_cast)

EPS = np.finfo(float).eps

DEFAULT_TIME_CONSTANT = 0.5
MAX_TIME_CONSTANT = 16.0

# (tau_offset, tau_slope) of a flow dependent sensor lag
DEFAULT_SENSOR_LAG_FLOW = (0.3568, 0.07)
SENSOR_LAG_FLOW_BOUNDS = [(EPS, MAX_TIME_CONSTANT), (EPS, 7.5)]


# TIME RESPONSE


def _overlapping_range(depth1: np.ndarray, depth2: np.ndarray
                       ) -> Tuple[slice, slice]:
    """
    Index ranges of two casts covering the depth range common to both
    (from the first to the last sample inside that range).
    """
    depth_min = max(np.nanmin(depth1), np.nanmin(depth2))
    depth_max = min(np.nanmax(depth1), np.nanmax(depth2))

    ranges = []
    for depth in (depth1, depth2):
        inside = np.flatnonzero((depth >= depth_min) & (depth <= depth_max))
        if inside.size == 0:
            ranges.append(slice(0, 0))
        else:
            ranges.append(slice(inside[0], inside[-1] + 1))

    return ranges[0], ranges[1]


def depth_value_area(time_constant: float,
                     time1: np.ndarray, depth1: np.ndarray,
                     data1: np.ndarray,
                     time2: np.ndarray, depth2: np.ndarray,
                     data2: np.ndarray) -> float:
    """
    Area between two casts in the depth-value diagram after correcting
    both with `correct_time_response` using *time_constant*.
    """
    corrected1 = correct_time_response(data1, time1, time_constant)
    corrected2 = correct_time_response(data2, time2, time_constant)

    range1, range2 = _overlapping_range(depth1, depth2)

    return profile_area(corrected1[range1], depth1[range1],
                        corrected2[range2], depth2[range2])


def find_time_constant(cast1: xr.Dataset, cast2: xr.Dataset,
                       var_name: str,
                       time_var: str = 'TIME', depth_var: str = 'DEPTH',
                       guess: float = DEFAULT_TIME_CONSTANT,
                       bounds: Tuple[float, float] = (EPS,
                                                      MAX_TIME_CONSTANT),
                       minimizer: Optional[Minimizer] = None,
                       return_result: bool = False):
    """
    Estimate the time constant of a slow sensor from a pair of casts.

    Searches the time constant minimizing the area enclosed by the two
    corrected casts in the depth-value diagram. Samples with NaN in time,
    depth or data are ignored.

    Parameters:
    - cast1, cast2: Profile Datasets of two consecutive casts.
    - var_name: Name of the lagged variable.
    - time_var, depth_var: Names of the time and depth variables.
    - guess: Initial time constant (seconds).
    - bounds: (lower, upper) bounds of the time constant.
    - minimizer: Minimization strategy (default: ScipyMinimizer()).
    - return_result: If True, also return the MinimizationResult.

    Returns:
    - The time constant (float), or (time_constant, result) if
      *return_result* is True.

    Raises:
    - ValueError: If a cast has fewer than two usable samples.
    - ConvergenceError: If the minimization does not converge.
    """
    var_names = [time_var, depth_var, var_name]
    arrays = []
    for ii, cast in enumerate((cast1, cast2)):
        check_variables(cast, var_names)
        cast_clean, _ = clean_profile(cast, var_names)
        if cast_clean.sizes['N_MEASUREMENTS'] < 2:
            raise ValueError(
                f'Cast {ii + 1} has fewer than two usable samples of '
                f'{var_name}.')
        arrays += [cast_clean[name].values for name in var_names]

    time1, depth1, data1, time2, depth2, data2 = arrays

    def objective(params):
        return depth_value_area(params[0], time1, depth1, data1,
                                time2, depth2, data2)

    minimizer = minimizer or ScipyMinimizer()
    result = minimizer.minimize(objective, [bounds], [guess])

    if not result.converged:
        raise ConvergenceError(
            f'Time constant estimation for {var_name} did not converge '
            f'(residual area: {result.value:.4g}). {result.message}',
            result)

    time_constant = float(result.params[0])

    if return_result:
        return time_constant, result
    return time_constant


# SENSOR LAG


def sensor_lag_area(params: Sequence[float],
                    time1: np.ndarray, depth1: np.ndarray,
                    data1: np.ndarray,
                    time2: np.ndarray, depth2: np.ndarray,
                    data2: np.ndarray,
                    flow1: Optional[np.ndarray] = None,
                    flow2: Optional[np.ndarray] = None) -> float:
    """
    Area between two casts in the depth-value diagram after correcting
    both with `correct_sensor_lag`. *params* is `(tau,)` without flow and
    `(tau_offset, tau_slope)` with flow.
    """
    if flow1 is None:
        params = float(params[0])
    corrected1 = correct_sensor_lag(time1, data1, params, flow=flow1)
    corrected2 = correct_sensor_lag(time2, data2, params, flow=flow2)

    range1, range2 = _overlapping_range(depth1, depth2)

    return profile_area(corrected1[range1], depth1[range1],
                        corrected2[range2], depth2[range2])


def find_sensor_lag_params(cast1: xr.Dataset, cast2: xr.Dataset,
                           var_name: str,
                           time_var: str = 'TIME', depth_var: str = 'DEPTH',
                           flow_var: Optional[str] = None,
                           guess: Optional[Sequence[float]] = None,
                           bounds: Optional[
                               Sequence[Tuple[float, float]]] = None,
                           minimizer: Optional[Minimizer] = None,
                           return_result: bool = False):
    """
    Estimate the sensor lag of a slow sensor from a pair of casts.

    Searches the parameters of `correct_sensor_lag` minimizing the area
    enclosed by the two corrected casts in the depth-value diagram, over
    the depth range covered by both casts.

    - Constant flow (*flow_var* None): one time constant. Guess 0.5 s,
      bounds (eps, 16).
    - Variable flow: `tau = tau_offset + tau_slope / flow`. Guess
      (0.3568, 0.07), bounds (eps, 16) and (eps, 7.5).

    Samples with NaN in time, depth, data or flow are ignored.

    Parameters:
    - cast1, cast2: Profile Datasets of two consecutive casts.
    - var_name: Name of the lagged variable.
    - time_var, depth_var: Names of the time and depth variables.
    - flow_var: Name of the flow speed variable (see
                glidproc.ctd.flow.add_ctd_flow_speed), or None.
    - guess: Initial parameters. Clipped into the bounds.
    - bounds: (lower, upper) bound of each parameter.
    - minimizer: Minimization strategy (default: ScipyMinimizer()).
    - return_result: If True, also return the MinimizationResult.

    Returns:
    - The time constant (float) or, with *flow_var*, the tuple
      (tau_offset, tau_slope). With *return_result*, a (params, result)
      tuple.

    Raises:
    - ValueError: If a cast has fewer than two usable samples, or guess
                  and bounds do not match the number of parameters.
    - ConvergenceError: If the minimization does not converge.
    """
    var_names = [time_var, depth_var, var_name]
    if flow_var is not None:
        var_names.append(flow_var)

    arrays = []
    for ii, cast in enumerate((cast1, cast2)):
        check_variables(cast, var_names)
        cast_clean, _ = clean_profile(cast, var_names)
        if cast_clean.sizes['N_MEASUREMENTS'] < 2:
            raise ValueError(
                f'Cast {ii + 1} has fewer than two usable samples of '
                f'{var_name}.')
        arrays.append([cast_clean[name].values for name in var_names])

    if flow_var is None:
        (time1, depth1, data1), (time2, depth2, data2) = arrays
        flow1 = flow2 = None
        default_guess = [DEFAULT_TIME_CONSTANT]
        default_bounds = [(EPS, MAX_TIME_CONSTANT)]
    else:
        (time1, depth1, data1, flow1), (time2, depth2, data2, flow2) = arrays
        default_guess = list(DEFAULT_SENSOR_LAG_FLOW)
        default_bounds = SENSOR_LAG_FLOW_BOUNDS

    guess = np.atleast_1d(np.asarray(
        default_guess if guess is None else guess, dtype=float))
    bounds = default_bounds if bounds is None else list(bounds)
    if guess.size != len(default_guess) or len(bounds) != guess.size:
        raise ValueError(
            f'Expected {len(default_guess)} parameter(s), got a guess of '
            f'{guess.size} and {len(bounds)} bound(s).')

    lower = np.array([bound[0] for bound in bounds], dtype=float)
    upper = np.array([bound[1] for bound in bounds], dtype=float)
    if np.any(guess < lower) or np.any(guess > upper):
        warnings.warn(
            f'Initial guess {guess.tolist()} outside the bounds, clipped to '
            f'{np.clip(guess, lower, upper).tolist()}.')
        guess = np.clip(guess, lower, upper)

    def objective(params):
        return sensor_lag_area(params, time1, depth1, data1,
                               time2, depth2, data2, flow1, flow2)

    minimizer = minimizer or ScipyMinimizer()
    result = minimizer.minimize(objective, bounds, guess)

    if not result.converged:
        raise ConvergenceError(
            f'Sensor lag estimation for {var_name} did not converge '
            f'(residual area: {result.value:.4g}). {result.message}',
            result)

    if flow_var is None:
        lag_params = float(result.params[0])
    else:
        lag_params = tuple(float(param) for param in result.params)

    if return_result:
        return lag_params, result
    return lag_params


# THERMAL LAG


def _conductivity_factor(cndc: xr.DataArray) -> float:
    """
    Factor converting conductivity to mS cm-1 (the unit used by gsw).
    Conductivity without a recognised mS cm-1 unit is taken as S m-1.
    """
    units = cndc.attrs.get('units', 'S m-1').replace(' ', '').lower()
    if units in ('mscm-1', 'ms/cm'):
        return 1.0
    return 10.0


class _ThermalLagCast:
    """
    Cleaned arrays of one cast, ready for repeated thermal lag
    corrections.
    """

    def __init__(self, cast, temp_var, cndc_var, time_var, depth_var,
                 pres_var, pitch_var):
        var_names = [time_var, depth_var, temp_var, cndc_var]
        check_variables(cast, var_names)
        if pres_var in cast:
            var_names.append(pres_var)
        if pitch_var in cast:
            var_names.append(pitch_var)

        cast_clean, _ = clean_profile(cast, var_names)
        if cast_clean.sizes['N_MEASUREMENTS'] < 2:
            raise ValueError(
                'Cast has fewer than two usable samples for the thermal '
                'lag estimation.')

        self.time = cast_clean[time_var].values
        self.depth = cast_clean[depth_var].values
        self.temp = cast_clean[temp_var].values
        self.cond = cast_clean[cndc_var].values
        # Depth is a good enough stand-in for pressure here
        self.pres = (cast_clean[pres_var].values if pres_var in cast_clean
                     else self.depth)
        self.pitch = (cast_clean[pitch_var].values
                      if pitch_var in cast_clean else None)
        self.cond_factor = _conductivity_factor(cast[cndc_var])

    def temperature_salinity(self, params, pairing, speed_factor_degree):
        temp_inside, cond_outside = correct_thermal_lag(
            self.time, self.depth, self.temp, self.cond, params=params,
            pitch=self.pitch, speed_factor_degree=speed_factor_degree)

        if pairing == 'temp_inside':
            salinity = gsw.SP_from_C(self.cond * self.cond_factor,
                                     temp_inside, self.pres)
        else:
            salinity = gsw.SP_from_C(cond_outside * self.cond_factor,
                                     self.temp, self.pres)

        return self.temp, np.asarray(salinity, dtype=float)


def _ts_area(casts, params, pairing, speed_factor_degree) -> float:
    temp1, salt1 = casts[0].temperature_salinity(
        params, pairing, speed_factor_degree)
    temp2, salt2 = casts[1].temperature_salinity(
        params, pairing, speed_factor_degree)
    return profile_area(salt1, temp1, salt2, temp2)


def thermal_lag_area(cast1: xr.Dataset, cast2: xr.Dataset,
                     params: Sequence[float] = MORISON_PARAMS,
                     pairing: str = 'temp_inside',
                     temp_var: str = 'TEMP', cndc_var: str = 'CNDC',
                     time_var: str = 'TIME', depth_var: str = 'DEPTH',
                     pres_var: str = 'PRES', pitch_var: str = 'PITCH',
                     speed_factor_degree: int = 1) -> float:
    """
    Area between two casts in the temperature-salinity diagram after
    thermal lag correction with *params*: the quantity minimized by
    `find_thermal_lag_params` (see there for the arguments).
    """
    if pairing not in ('temp_inside', 'cond_outside'):
        raise ValueError(
            f"Invalid pairing '{pairing}'. Use 'temp_inside' or "
            "'cond_outside'.")

    casts = [_ThermalLagCast(cast, temp_var, cndc_var, time_var, depth_var,
                             pres_var, pitch_var)
             for cast in (cast1, cast2)]
    return _ts_area(casts, params, pairing, speed_factor_degree)


def thermal_lag_bounds(duration: float) -> List[Tuple[float, float]]:
    """
    Default bounds of the four thermal lag coefficients for a cast
    lasting *duration* seconds.
    """
    upper = [2.0, 1.0, duration, duration / 2]
    return [(EPS, max(EPS, bound)) for bound in upper]


def find_thermal_lag_params(
        cast1: xr.Dataset, cast2: xr.Dataset,
        temp_var: str = 'TEMP', cndc_var: str = 'CNDC',
        time_var: str = 'TIME', depth_var: str = 'DEPTH',
        pres_var: str = 'PRES', pitch_var: str = 'PITCH',
        guess: Sequence[float] = MORISON_PARAMS,
        bounds: Optional[Sequence[Tuple[float, float]]] = None,
        pairing: str = 'temp_inside',
        speed_factor_degree: int = 1,
        minimizer: Optional[Minimizer] = None,
        return_result: bool = False):
    """
    Estimate thermal lag coefficients from a pair of casts.

    Searches (alpha_offset, alpha_slope, tau_offset, tau_slope) minimizing
    the area enclosed by the two casts in the temperature-salinity diagram.
    Salinity is computed with gsw.SP_from_C from the pairing selected by
    *pairing*:

    - 'temp_inside': raw conductivity with the in-cell temperature.
    - 'cond_outside': corrected (outside) conductivity with the raw
      temperature.

    Parameters:
    - cast1, cast2: Profile Datasets of two consecutive casts. Pressure
                    and pitch are used if present (depth and 26 degrees
                    otherwise). Conductivity is taken as S m-1 unless its
                    `units` attribute says mS cm-1.
    - temp_var, cndc_var, time_var, depth_var, pres_var, pitch_var:
      Variable names.
    - guess: Initial coefficients (default Morison et al., 1994). Clipped
             into the bounds.
    - bounds: Four (lower, upper) bounds. Default: from machine epsilon up
              to (2, 1, T, T/2), T being the duration of the first cast.
    - pairing: 'temp_inside' or 'cond_outside'.
    - speed_factor_degree: Degree of the surge/flow speed polynomial.
    - minimizer: Minimization strategy (default: ScipyMinimizer()).
    - return_result: If True, also return the MinimizationResult.

    Returns:
    - ThermalLagParams, or (params, result) if *return_result* is True.

    Raises:
    - ValueError: Invalid *pairing*, or a cast without usable samples.
    - ConvergenceError: If the minimization does not converge.
    """
    if pairing not in ('temp_inside', 'cond_outside'):
        raise ValueError(
            f"Invalid pairing '{pairing}'. Use 'temp_inside' or "
            "'cond_outside'.")

    casts = [_ThermalLagCast(cast, temp_var, cndc_var, time_var, depth_var,
                             pres_var, pitch_var)
             for cast in (cast1, cast2)]

    if bounds is None:
        duration = float(np.ptp(casts[0].time))
        bounds = thermal_lag_bounds(duration)
    if len(bounds) != 4:
        raise ValueError(f'Expected 4 bounds, got {len(bounds)}.')

    lower = np.array([bound[0] for bound in bounds], dtype=float)
    upper = np.array([bound[1] for bound in bounds], dtype=float)
    guess = np.asarray(guess, dtype=float)
    if np.any(guess < lower) or np.any(guess > upper):
        warnings.warn(
            f'Initial guess {guess.tolist()} outside the bounds, clipped to '
            f'{np.clip(guess, lower, upper).tolist()}.')
        guess = np.clip(guess, lower, upper)

    def objective(params):
        return _ts_area(casts, params, pairing, speed_factor_degree)

    minimizer = minimizer or ScipyMinimizer()
    result = minimizer.minimize(objective, bounds, guess)

    if not result.converged:
        raise ConvergenceError(
            'Thermal lag parameter estimation did not converge (residual '
            f'area: {result.value:.4g}). {result.message}', result)

    params = ThermalLagParams(*[float(param) for param in result.params])

    if return_result:
        return params, result
    return params


# DEPLOYMENT-WIDE ESTIMATION


def _fit_cast_pairs(ds: xr.Dataset, fit_pair: Callable,
                    var_names: Sequence[str], profile_var: str,
                    depth_var: str, verbose: bool) -> List[np.ndarray]:
    """
    Run *fit_pair(cast1, cast2)* on every pair of consecutive casts going
    in opposite directions. Returns the list of successful fits.
    """
    check_variables(ds, [profile_var, depth_var, *var_names])

    fits = []
    pairs = cast_pairs(ds, profile_var=profile_var)

    for cast_index1, cast_index2 in tqdm(
            pairs, desc='Fitting cast pairs', disable=not verbose):
        cast1, _ = clean_profile(
            select_cast(ds, cast_index1, profile_var), var_names)
        cast2, _ = clean_profile(
            select_cast(ds, cast_index2, profile_var), var_names)

        if (cast1.sizes['N_MEASUREMENTS'] < 2
                or cast2.sizes['N_MEASUREMENTS'] < 2):
            warnings.warn(
                f'Dismissing cast pair ({cast_index1:g}, {cast_index2:g}): '
                'not enough valid samples.')
            continue

        if is_downcast(cast1, depth_var) == is_downcast(cast2, depth_var):
            warnings.warn(
                f'Dismissing cast pair ({cast_index1:g}, {cast_index2:g}): '
                'same direction.')
            continue

        try:
            fit = fit_pair(cast1, cast2)
        except ConvergenceError as err:
            warnings.warn(
                f'Dismissing cast pair ({cast_index1:g}, {cast_index2:g}): '
                f'{err}')
            continue

        if verbose:
            print(f'Cast pair ({cast_index1:g}, {cast_index2:g}): {fit}')
        fits.append(np.atleast_1d(np.asarray(fit, dtype=float)))

    return fits


def find_deployment_time_constant(
        ds: xr.Dataset, var_name: str,
        profile_var: str = 'PROFILE_INDEX',
        time_var: str = 'TIME', depth_var: str = 'DEPTH',
        fallback: float = DEFAULT_TIME_CONSTANT,
        verbose: bool = False, **kwargs) -> float:
    """
    Median time constant of a sensor over all suitable cast pairs of a
    deployment.

    Parameters:
    - ds: Dataset holding all casts, told apart by *profile_var*.
    - var_name: Name of the lagged variable.
    - profile_var, time_var, depth_var: Variable names.
    - fallback: Returned (with a warning) if no pair gives a result.
    - verbose: Print per-pair results and show a progress bar.
    - **kwargs: Passed on to `find_time_constant` (guess, bounds,
                minimizer).

    Returns:
    - The median time constant, or *fallback*.
    """
    def fit_pair(cast1, cast2):
        return find_time_constant(cast1, cast2, var_name,
                                  time_var=time_var, depth_var=depth_var,
                                  **kwargs)

    fits = _fit_cast_pairs(ds, fit_pair, [time_var, depth_var, var_name],
                           profile_var, depth_var, verbose)

    if not fits:
        warnings.warn(
            f'Could not estimate the {var_name} time constant from any '
            f'cast pair. Using the fallback value ({fallback}).')
        return fallback

    time_constant = float(np.median(np.concatenate(fits)))
    if verbose:
        print(f'{var_name} time constant: {time_constant:.4g} s '
              f'(median of {len(fits)} cast pairs)')

    return time_constant


def find_deployment_sensor_lag_params(
        ds: xr.Dataset, var_name: str,
        profile_var: str = 'PROFILE_INDEX',
        time_var: str = 'TIME', depth_var: str = 'DEPTH',
        flow_var: Optional[str] = None,
        fallback: Optional[Sequence[float]] = None,
        verbose: bool = False, **kwargs):
    """
    Median sensor lag parameters of a sensor over all suitable cast pairs
    of a deployment.

    Parameters:
    - ds: Dataset holding all casts, told apart by *profile_var*.
    - var_name: Name of the lagged variable.
    - profile_var, time_var, depth_var: Variable names.
    - flow_var: Name of the flow speed variable for a flow dependent lag,
                or None for a constant time constant.
    - fallback: Returned (with a warning) if no pair gives a result.
                Default: 0.5 s, or (0.3568, 0.07) with *flow_var*.
    - verbose: Print per-pair results and show a progress bar.
    - **kwargs: Passed on to `find_sensor_lag_params` (guess, bounds,
                minimizer).

    Returns:
    - The median time constant (float), or the per-parameter medians
      (tau_offset, tau_slope) with *flow_var*; or *fallback*.
    """
    if fallback is None:
        fallback = (DEFAULT_TIME_CONSTANT if flow_var is None
                    else DEFAULT_SENSOR_LAG_FLOW)

    def fit_pair(cast1, cast2):
        return find_sensor_lag_params(cast1, cast2, var_name,
                                      time_var=time_var, depth_var=depth_var,
                                      flow_var=flow_var, **kwargs)

    var_names = [time_var, depth_var, var_name]
    if flow_var is not None:
        var_names.append(flow_var)
    fits = _fit_cast_pairs(ds, fit_pair, var_names, profile_var, depth_var,
                           verbose)

    if not fits:
        warnings.warn(
            f'Could not estimate the {var_name} sensor lag from any cast '
            f'pair. Using the fallback value ({fallback}).')
        return fallback

    medians = np.median(np.vstack(fits), axis=0)
    if flow_var is None:
        lag_params = float(medians[0])
    else:
        lag_params = tuple(float(param) for param in medians)

    if verbose:
        print(f'{var_name} sensor lag parameters: {lag_params} '
              f'(median of {len(fits)} cast pairs)')

    return lag_params


def find_deployment_thermal_lag_params(
        ds: xr.Dataset,
        profile_var: str = 'PROFILE_INDEX',
        temp_var: str = 'TEMP', cndc_var: str = 'CNDC',
        time_var: str = 'TIME', depth_var: str = 'DEPTH',
        fallback: Sequence[float] = MORISON_PARAMS,
        verbose: bool = False, **kwargs) -> ThermalLagParams:
    """
    Median thermal lag coefficients over all suitable cast pairs of a
    deployment.

    Parameters:
    - ds: Dataset holding all casts, told apart by *profile_var*.
    - profile_var, temp_var, cndc_var, time_var, depth_var: Variable names.
    - fallback: Returned (with a warning) if no pair gives a result.
    - verbose: Print per-pair results and show a progress bar.
    - **kwargs: Passed on to `find_thermal_lag_params` (pres_var,
                pitch_var, guess, bounds, pairing, speed_factor_degree,
                minimizer).

    Returns:
    - ThermalLagParams with the per-coefficient medians, or *fallback*.
    """
    def fit_pair(cast1, cast2):
        return find_thermal_lag_params(
            cast1, cast2, temp_var=temp_var, cndc_var=cndc_var,
            time_var=time_var, depth_var=depth_var, **kwargs)

    fits = _fit_cast_pairs(
        ds, fit_pair, [time_var, depth_var, temp_var, cndc_var],
        profile_var, depth_var, verbose)

    if not fits:
        warnings.warn(
            'Could not estimate thermal lag parameters from any cast pair. '
            f'Using the fallback values ({tuple(fallback)}).')
        return ThermalLagParams(*fallback)

    params = ThermalLagParams(*np.median(np.vstack(fits), axis=0).tolist())
    if verbose:
        print(f'Thermal lag parameters: {params} '
              f'(median of {len(fits)} cast pairs)')

    return params
