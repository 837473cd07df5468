'''
GLIDPROC.CTD.RESPONSE

Corrections for the slow time response of CTD sensors:

- First-order time response correction using the signal derivative
  (x + tau * dx/dt).
- Sensor lag correction by resampling the signal ahead in time, with a
  constant time constant or one depending on the flow speed past the
  sensor.
'''

import numpy as np
import xarray as xr
from scipy.interpolate import interp1d
from typing import Optional, Sequence, Union

from glidproc.data.profile import check_variables
from glidproc.util.processing import record_processing


def correct_time_response(values: Sequence[float], times: Sequence[float],
                          time_constant: float) -> np.ndarray:
    """
    Advance a signal in time using its own derivative:

        corrected = values + time_constant * d(values)/d(times)

    The derivative is a first difference, with zero slope at the first
    sample and wherever two consecutive timestamps coincide.

    Parameters:
    - values: Sensor readings.
    - times: Timestamps of the readings (seconds).
    - time_constant: Sensor time constant (seconds).

    Returns:
    - np.ndarray with the corrected readings.

    Raises:
    - ValueError: If *values* and *times* differ in length.
    """
    values = np.asarray(values, dtype=float)
    times = np.asarray(times, dtype=float)

    if values.shape != times.shape:
        raise ValueError(
            f'values and times must have the same shape '
            f'(got {values.shape} and {times.shape}).')

    if time_constant == 0 or values.size == 0:
        return values.copy()

    dvalues = np.diff(values)
    dtimes = np.diff(times)

    slope = np.zeros_like(dvalues)
    np.divide(dvalues, dtimes, out=slope, where=dtimes != 0)

    derivative = np.concatenate([[0.0], slope])

    return values + time_constant * derivative


def correct_sensor_lag(time: Sequence[float], raw: Sequence[float],
                       params: Union[float, Sequence[float]],
                       flow: Optional[Sequence[float]] = None
                       ) -> np.ndarray:
    """
    Correct a sensor lag by interpolating the signal at `time + tau`.

    With constant flow past the sensor *params* is the time constant
    `tau`. With variable flow (*flow* given), *params* is
    `(tau_offset, tau_slope)` and `tau = tau_offset + tau_slope / flow`.

    Samples with NaN readings (or NaN flow) or non-positive timestamps are
    not used and come out as NaN. Repeated timestamps are collapsed to one
    sample; values are extrapolated linearly at the edges.

    Parameters:
    - time: Timestamps (seconds since epoch).
    - raw: Lagged sensor readings.
    - params: Time constant, or (offset, slope) for variable flow.
    - flow: Optional flow speed past the sensor.

    Returns:
    - np.ndarray with the corrected readings (all NaN if fewer than two
      distinct valid timestamps are available).

    Raises:
    - ValueError: On length mismatches, or if the same timestamp carries
                  different readings.
    """
    time = np.asarray(time, dtype=float)
    raw = np.asarray(raw, dtype=float)

    if time.shape != raw.shape:
        raise ValueError(
            f'time and raw must have the same shape '
            f'(got {time.shape} and {raw.shape}).')

    if flow is None:
        valid = (time > 0) & ~np.isnan(raw)
        tau = float(params)
    else:
        flow = np.asarray(flow, dtype=float)
        if flow.shape != time.shape:
            raise ValueError(
                f'flow must have the same shape as time '
                f'(got {flow.shape} and {time.shape}).')
        tau_offset, tau_slope = params
        valid = (time > 0) & ~(np.isnan(raw) | np.isnan(flow))
        tau = tau_offset + tau_slope / flow[valid]

    corrected = np.full(raw.shape, np.nan)

    time_valid = time[valid]
    raw_valid = raw[valid]

    time_unique, index_from, index_to = np.unique(
        time_valid, return_index=True, return_inverse=True)
    raw_unique = raw_valid[index_from]

    if np.any(raw_valid != raw_unique[index_to.ravel()]):
        raise ValueError(
            'Inconsistent sensor data: repeated timestamps with '
            'different readings.')

    if time_unique.size > 1:
        interpolator = interp1d(time_unique, raw_unique, kind='linear',
                                fill_value='extrapolate',
                                assume_sorted=True)
        corrected[valid] = interpolator(time_valid + tau)

    return corrected


@record_processing(
    'Applied time response correction to {var_name} with time constant '
    '{time_constant} s (time variable: {time_var}).',
    'Time response correction of {var_name}',
)
def correct_time_response_profile(ds: xr.Dataset, var_name: str,
                                  time_constant: float,
                                  time_var: str = 'TIME',
                                  suffix: str = '_CORR') -> xr.Dataset:
    """
    Apply `correct_time_response` to a variable of a profile Dataset.

    The corrected series is stored as `<var_name><suffix>`; the raw
    variable is left as it is.

    Parameters:
    - ds: Profile Dataset.
    - var_name: Name of the lagged variable.
    - time_constant: Sensor time constant (seconds).
    - time_var: Name of the time variable.
    - suffix: Suffix of the new variable name.

    Returns:
    - Copy of *ds* with the corrected variable added.
    """
    check_variables(ds, [var_name, time_var])

    ds_new = ds.copy()
    corrected = correct_time_response(
        ds[var_name].values, ds[time_var].values, time_constant)

    ds_new[var_name + suffix] = (ds[var_name].dims, corrected,
                                 dict(ds[var_name].attrs))
    ds_new[var_name + suffix].attrs['time_response_correction'] = (
        f'time_constant={time_constant} s')

    return ds_new


@record_processing(
    'Applied sensor lag correction to {var_name} with parameters {params} '
    '(flow speed variable: {flow_var}).',
    'Sensor lag correction of {var_name}',
)
def correct_sensor_lag_profile(ds: xr.Dataset, var_name: str,
                               params: Union[float, Sequence[float]],
                               time_var: str = 'TIME',
                               flow_var: Optional[str] = None,
                               suffix: str = '_CORR') -> xr.Dataset:
    """
    Apply `correct_sensor_lag` to a variable of a profile Dataset.

    Parameters:
    - ds: Profile Dataset.
    - var_name: Name of the lagged variable.
    - params: Time constant, or (tau_offset, tau_slope) with *flow_var*.
    - time_var: Name of the time variable.
    - flow_var: Name of the flow speed variable (see
                glidproc.ctd.flow.add_ctd_flow_speed). None for a constant
                time constant.
    - suffix: Suffix of the new variable name.

    Returns:
    - Copy of *ds* with `<var_name><suffix>` added.
    """
    check_variables(ds, [var_name, time_var]
                    + ([flow_var] if flow_var is not None else []))

    flow = ds[flow_var].values if flow_var is not None else None
    corrected = correct_sensor_lag(ds[time_var].values, ds[var_name].values,
                                   params, flow=flow)

    ds_new = ds.copy()
    ds_new[var_name + suffix] = (ds[var_name].dims, corrected,
                                 dict(ds[var_name].attrs))
    ds_new[var_name + suffix].attrs['sensor_lag_correction'] = (
        f'params={params}, flow={flow_var}')

    return ds_new
