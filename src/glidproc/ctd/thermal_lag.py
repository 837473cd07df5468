'''
GLIDPROC.CTD.THERMAL_LAG

Thermal lag correction for the conductivity cell of unpumped glider CTDs.

The heat stored in the cell walls makes the water inside the cell differ
in temperature from the water outside. Following Lueck & Picklo (1990) and
Morison et al. (1994), the error is modelled by a recursive filter whose
amplitude (alpha) and time constant (tau) depend on the flow speed through
the cell:

    alpha = alpha_offset + alpha_slope / flow_speed
    tau   = tau_offset   + tau_slope / sqrt(flow_speed)

Two corrected series come out of the correction:

- conductivity outside the cell (to pair with the raw temperature)
- temperature inside the cell (to pair with the raw conductivity)

Which pair is used for salinity is left to the caller.
'''

import numpy as np
import xarray as xr
from typing import NamedTuple, Optional, Sequence, Tuple

from glidproc.ctd.flow import DEFAULT_PITCH_DEG, surge_speed, cell_flow_speed
from glidproc.data.profile import check_variables
from glidproc.util.processing import record_processing


class ThermalLagParams(NamedTuple):
    """
    Coefficients of the flow dependent thermal lag model.
    """
    alpha_offset: float
    alpha_slope: float
    tau_offset: float
    tau_slope: float


# Morison et al. (1994)
MORISON_PARAMS = ThermalLagParams(0.0135, 0.0264, 7.1499, 2.7858)

# Surge speed (m/s) below which the glider is taken to be stalled
MIN_SURGE_SPEED = 0.01


def correct_thermal_lag(
        time: Sequence[float], depth: Sequence[float],
        temp: Sequence[float], cond: Sequence[float],
        params: Sequence[float] = MORISON_PARAMS,
        pitch: Optional[Sequence[float]] = None,
        speed_factor_degree: int = 1,
        min_surge_speed: float = MIN_SURGE_SPEED,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Apply the thermal lag correction to one cast.

    Parameters:
    - time: Timestamps (seconds).
    - depth: Depth (m). Direction does not matter (down- or upcast).
    - temp: Temperature measured outside the conductivity cell.
    - cond: Conductivity measured inside the cell.
    - params: (alpha_offset, alpha_slope, tau_offset, tau_slope).
              Defaults to Morison et al. (1994).
    - pitch: Glider pitch in degrees, a series or a scalar. Defaults to
             26 degrees.
    - speed_factor_degree: Degree (0, 1, 2) of the polynomial mapping
                           surge speed to cell flow speed.
    - min_surge_speed: Intervals slower than this (m/s) add no correction
                       and carry the previous one. At vanishing flow the
                       model amplitude grows without bound.

    Returns:
    - (temp_inside, cond_outside): Temperature inside the cell and
      conductivity outside the cell. Samples with NaN in any input or a
      non-positive time are NaN in both outputs. With one valid sample or
      less, the raw series are returned unchanged.

    Raises:
    - ValueError: If the input series differ in length or *params* does
                  not hold four coefficients.
    """
    time = np.asarray(time, dtype=float)
    depth = np.asarray(depth, dtype=float)
    temp = np.asarray(temp, dtype=float)
    cond = np.asarray(cond, dtype=float)

    if not (time.shape == depth.shape == temp.shape == cond.shape):
        raise ValueError(
            'time, depth, temp and cond must have the same shape (got '
            f'{time.shape}, {depth.shape}, {temp.shape}, {cond.shape}).')

    if pitch is None:
        pitch = np.full(time.shape, DEFAULT_PITCH_DEG)
    else:
        pitch = np.broadcast_to(np.asarray(pitch, dtype=float), time.shape)

    if len(params) != 4:
        raise ValueError(
            f'Expected 4 thermal lag coefficients, got {len(params)}.')
    alpha_offset, alpha_slope, tau_offset, tau_slope = [
        float(param) for param in params]

    valid = ~(np.isnan(time) | np.isnan(depth) | np.isnan(temp)
              | np.isnan(cond) | np.isnan(pitch)) & (time > 0)

    if np.count_nonzero(valid) <= 1:
        return temp.copy(), cond.copy()

    time_val = time[valid]
    depth_val = depth[valid]
    temp_val = temp[valid]
    cond_val = cond[valid]
    pitch_val = pitch[valid]

    # Zero time steps would give infinite sampling frequencies
    delta_time = np.maximum(np.abs(np.diff(time_val)), np.finfo(float).eps)
    delta_temp = np.diff(temp_val)
    sampling_freq = 1 / delta_time

    surge = surge_speed(delta_time, np.diff(depth_val), pitch_val[:-1])
    flow_speed = cell_flow_speed(surge, degree=speed_factor_degree)

    alpha = alpha_offset + alpha_slope / flow_speed
    tau = tau_offset + tau_slope / np.sqrt(flow_speed)

    coefa = 4 * sampling_freq * alpha * tau / (1 + 4 * sampling_freq * tau)
    coefb = 1 - 2 * coefa / alpha

    # Stalled intervals hold the correction: c[n+1] = c[n]
    stalled = surge < min_surge_speed
    coefa[stalled] = 0.0
    coefb[stalled] = -1.0

    # Sensitivity of conductivity to temperature
    dcond_dtemp = 0.088 + 0.0006 * temp_val

    cond_correction = np.zeros(temp_val.size)
    temp_correction = np.zeros(temp_val.size)
    for n in range(temp_val.size - 1):
        cond_correction[n + 1] = (
            -coefb[n] * cond_correction[n]
            + coefa[n] * dcond_dtemp[n] * delta_temp[n])
        temp_correction[n + 1] = (
            -coefb[n] * temp_correction[n]
            + coefa[n] * delta_temp[n])

    temp_inside = np.full(time.shape, np.nan)
    cond_outside = np.full(time.shape, np.nan)
    temp_inside[valid] = temp_val - temp_correction
    cond_outside[valid] = cond_val + cond_correction

    return temp_inside, cond_outside


def thermal_lag_distortion(
        time: Sequence[float], depth: Sequence[float],
        temp: Sequence[float], cond: Sequence[float],
        params: Sequence[float] = MORISON_PARAMS,
        pitch: Optional[Sequence[float]] = None,
        speed_factor_degree: int = 1,
) -> np.ndarray:
    """
    Conductivity as it would be measured inside a cell affected by the
    thermal lag described by *params*, given the true outside conductivity.

    This is the inverse of the conductivity part of
    `correct_thermal_lag`: correcting the returned series with the same
    *params* gives back *cond*. Useful for building synthetic casts.
    """
    cond = np.asarray(cond, dtype=float)
    _, cond_outside = correct_thermal_lag(
        time, depth, temp, cond, params=params, pitch=pitch,
        speed_factor_degree=speed_factor_degree)
    return cond - (cond_outside - cond)


@record_processing(
    'Applied thermal lag correction to {temp_var}/{cndc_var} with '
    'coefficients {params} (alpha_offset, alpha_slope, tau_offset, '
    'tau_slope). Speed factor polynomial degree: {speed_factor_degree}. '
    'Corrected variables: {temp_var}_IN_CELL, {cndc_var}_OUT_CELL.',
    'Thermal lag correction of {cndc_var}',
)
def correct_thermal_lag_profile(
        ds: xr.Dataset,
        params: Sequence[float] = MORISON_PARAMS,
        temp_var: str = 'TEMP', cndc_var: str = 'CNDC',
        time_var: str = 'TIME', depth_var: str = 'DEPTH',
        pitch_var: str = 'PITCH',
        speed_factor_degree: int = 1,
) -> xr.Dataset:
    """
    Apply `correct_thermal_lag` to a single cast stored in a Dataset.

    Adds `<temp_var>_IN_CELL` and `<cndc_var>_OUT_CELL`. The pitch variable
    is used if present, otherwise the default pitch of 26 degrees.

    Parameters:
    - ds: Profile Dataset holding one cast.
    - params: (alpha_offset, alpha_slope, tau_offset, tau_slope).
    - temp_var, cndc_var, time_var, depth_var, pitch_var: Variable names.
    - speed_factor_degree: Degree of the surge/flow speed polynomial.

    Returns:
    - Copy of *ds* with the two corrected variables.
    """
    check_variables(ds, [temp_var, cndc_var, time_var, depth_var])

    pitch = ds[pitch_var].values if pitch_var in ds else None

    temp_inside, cond_outside = correct_thermal_lag(
        ds[time_var].values, ds[depth_var].values,
        ds[temp_var].values, ds[cndc_var].values,
        params=params, pitch=pitch,
        speed_factor_degree=speed_factor_degree)

    params_str = ', '.join(f'{param:g}' for param in params)

    ds_new = ds.copy()
    ds_new[f'{temp_var}_IN_CELL'] = (
        ds[temp_var].dims, temp_inside, dict(ds[temp_var].attrs))
    ds_new[f'{cndc_var}_OUT_CELL'] = (
        ds[cndc_var].dims, cond_outside, dict(ds[cndc_var].attrs))
    for name in [f'{temp_var}_IN_CELL', f'{cndc_var}_OUT_CELL']:
        ds_new[name].attrs['thermal_lag_correction'] = params_str

    return ds_new
