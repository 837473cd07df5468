'''
GLIDPROC.CTD.FLOW

Speed of the glider through the water and of the water through the
conductivity cell of an unpumped CTD.
'''

import numpy as np
import xarray as xr
from typing import Optional, Sequence

from glidproc.data.profile import check_variables
from glidproc.util.processing import record_processing

# Rows: 0th, 1st and 2nd degree polynomials (highest power first) mapping
# glider surge speed to the flow speed factor inside the conductivity cell.
SPEED_FACTOR_POLYNOMIALS = np.array([
    [0.00, 0.00, 0.40],
    [0.00, 0.03, 0.45],
    [1.58, 1.15, 0.70],
])

DEFAULT_PITCH_DEG = 26.0


def surge_speed(dtime: np.ndarray, ddepth: np.ndarray,
                pitch: np.ndarray) -> np.ndarray:
    """
    Along-path speed of the glider over each sampling interval, from the
    depth rate and the pitch angle (degrees).
    """
    depth_rate = np.abs(ddepth) / dtime
    return depth_rate / np.sin(np.deg2rad(pitch))


def cell_flow_speed(surge: np.ndarray, degree: int = 1) -> np.ndarray:
    """
    Flow speed through the conductivity cell,
    `|speed_factor(surge) * surge| + eps`.

    Parameters:
    - surge: Glider surge speed.
    - degree: Degree (0, 1 or 2) of the speed factor polynomial.
    """
    if degree not in (0, 1, 2):
        raise ValueError(
            f'Invalid speed factor degree ({degree}). Must be 0, 1 or 2.')
    speed_factor = np.polyval(SPEED_FACTOR_POLYNOMIALS[degree], surge)
    return np.abs(speed_factor * surge) + np.finfo(float).eps


def compute_ctd_flow_speed(time: Sequence[float], depth: Sequence[float],
                           pitch: Optional[Sequence[float]] = None,
                           factorpoly: Optional[Sequence[float]] = (
                               0.00, 0.03, 1.15),
                           min_vel: float = 0.0,
                           min_pitch: float = 0.0) -> np.ndarray:
    """
    Compute the flow speed past a CTD mounted on a glider.

    The vertical velocity is computed with time-weighted centred
    differences (one-sided at the ends). The surge speed is
    `|w / sin(pitch)|`, or `|w|` when no pitch is given (vertical profile).
    The flow speed is `polyval(factorpoly, surge) * surge`.

    Parameters:
    - time: Timestamps (seconds since epoch).
    - depth: Depth (m).
    - pitch: Optional pitch (degrees), a series or a scalar.
    - factorpoly: Flow factor polynomial coefficients (highest power
                  first). `None` means a factor of 1.
    - min_vel: Samples with |w| below this are set to NaN.
    - min_pitch: Samples with |pitch| below this (degrees) are set to NaN.

    Returns:
    - np.ndarray of flow speeds, NaN where the input is invalid.
    """
    time = np.asarray(time, dtype=float)
    depth = np.asarray(depth, dtype=float)
    if time.shape != depth.shape:
        raise ValueError(
            f'time and depth must have the same shape '
            f'(got {time.shape} and {depth.shape}).')

    if pitch is not None and np.ndim(pitch) > 0:
        pitch = np.asarray(pitch, dtype=float)
        if pitch.shape != time.shape:
            raise ValueError(
                f'pitch must have the same shape as time '
                f'(got {pitch.shape} and {time.shape}).')
        valid = (time > 0) & ~np.isnan(depth) & ~np.isnan(pitch)
        pitch_val = pitch[valid]
    else:
        valid = (time > 0) & ~np.isnan(depth)
        pitch_val = pitch

    time_val = time[valid]
    depth_val = depth[valid]
    n = time_val.size

    vertical_velocity = np.zeros(n)
    dd = np.diff(depth_val)
    dt = np.diff(time_val)
    with np.errstate(divide='ignore', invalid='ignore'):
        dd_dt = dd / dt
        if n > 1:
            vertical_velocity[[0, -1]] = dd_dt[[0, -1]]
        if n > 2:
            ddt = time_val[2:] - time_val[:-2]
            vertical_velocity[1:-1] = (
                dt[1:] * dd_dt[:-1] + dt[:-1] * dd_dt[1:]) / ddt

    if pitch_val is None:
        surge = np.abs(vertical_velocity)
        low_pitch = np.zeros(n, dtype=bool)
    else:
        surge = np.abs(vertical_velocity / np.sin(np.deg2rad(pitch_val)))
        low_pitch = np.abs(pitch_val) < min_pitch

    low_vel = np.abs(vertical_velocity) < min_vel
    surge[low_vel | low_pitch] = np.nan

    if factorpoly is None:
        flow_factor = 1.0
    else:
        flow_factor = np.polyval(factorpoly, surge)

    flow = np.full(time.shape, np.nan)
    flow[valid] = flow_factor * surge

    return flow


@record_processing(
    'Computed the flow speed past the CTD ({flow_var}) from {depth_var} '
    'and {time_var} with flow factor polynomial {factorpoly}.',
    'CTD flow speed')
def add_ctd_flow_speed(ds: xr.Dataset,
                       time_var: str = 'TIME', depth_var: str = 'DEPTH',
                       pitch_var: str = 'PITCH',
                       flow_var: str = 'FLOW_SPEED',
                       factorpoly: Optional[Sequence[float]] = (
                           0.00, 0.03, 1.15),
                       min_vel: float = 0.0,
                       min_pitch: float = 0.0) -> xr.Dataset:
    """
    Add the flow speed past the CTD (`compute_ctd_flow_speed`) to a
    Dataset, e.g. for a flow dependent sensor lag correction.

    The pitch variable is used if present; without it the profile is taken
    as vertical.

    Returns:
    - Copy of *ds* with the *flow_var* variable (m s-1).
    """
    check_variables(ds, [time_var, depth_var])
    pitch = ds[pitch_var].values if pitch_var in ds else None

    speed = compute_ctd_flow_speed(
        ds[time_var].values, ds[depth_var].values, pitch=pitch,
        factorpoly=factorpoly, min_vel=min_vel, min_pitch=min_pitch)

    ds_new = ds.copy()
    ds_new[flow_var] = (ds[depth_var].dims, speed,
                        {'units': 'm s-1',
                         'long_name': 'Flow speed past the CTD'})
    return ds_new
