"""
glidproc.data.profile

Functions for building and slicing glider profile datasets.

A profile (or a collection of casts) is an xr.Dataset where every
sensor series lives along the single sample dimension `N_MEASUREMENTS`.
The casts of a collection are told apart by the `PROFILE_INDEX`
variable (NaN between casts).
"""

import numpy as np
import xarray as xr
from typing import List, Optional, Sequence, Tuple

from glidproc.util.processing import record_processing

SAMPLE_DIM = 'N_MEASUREMENTS'


def make_profile(attrs: Optional[dict] = None, **series) -> xr.Dataset:
    """
    Build a profile Dataset from equally long 1D series.

    Parameters:
    - attrs: Optional global attributes of the Dataset.
    - **series: Variable name -> 1D array-like (e.g. TIME=..., DEPTH=...).
                All series must have the same length.

    Returns:
    - xr.Dataset with all series along the `N_MEASUREMENTS` dimension.

    Raises:
    - ValueError: If no series are given, if a series is not 1D, or if the
                  series lengths differ.
    """
    if not series:
        raise ValueError('At least one series is needed to build a profile.')

    arrays = {}
    for name, values in series.items():
        arr = np.asarray(values, dtype=float)
        if arr.ndim != 1:
            raise ValueError(
                f"Series '{name}' must be one-dimensional "
                f"(got shape {arr.shape}).")
        arrays[name] = arr

    lengths = {name: arr.size for name, arr in arrays.items()}
    if len(set(lengths.values())) > 1:
        raise ValueError(
            f'All series of a profile must have the same length. '
            f'Got: {lengths}')

    ds = xr.Dataset(
        {name: ((SAMPLE_DIM,), arr) for name, arr in arrays.items()})
    if attrs:
        ds.attrs.update(attrs)

    return ds


def check_variables(ds: xr.Dataset, var_names: Sequence[str]) -> None:
    """
    Raise a ValueError if any of *var_names* is missing from *ds*.
    """
    missing = [name for name in var_names if name not in ds]
    if missing:
        raise ValueError(
            f'Variable(s) {missing} not found in the Dataset '
            f'(available: {list(ds.data_vars)}).')


def clean_profile(ds: xr.Dataset, var_names: Optional[Sequence[str]] = None
                  ) -> Tuple[xr.Dataset, np.ndarray]:
    """
    Drop every sample where any of the selected variables is NaN.

    Parameters:
    - ds: Profile Dataset.
    - var_names: Variables to consider. Defaults to all data variables
                 along the sample dimension.

    Returns:
    - (ds_clean, kept_indices): The cleaned Dataset and the integer
      indices (into the input) of the samples that were kept.
    """
    if var_names is None:
        var_names = [name for name, var in ds.data_vars.items()
                     if var.dims == (SAMPLE_DIM,)]
    check_variables(ds, var_names)

    good = np.ones(ds.sizes[SAMPLE_DIM], dtype=bool)
    for name in var_names:
        good &= ~np.isnan(ds[name].values)

    kept_indices = np.flatnonzero(good)

    return ds.isel({SAMPLE_DIM: kept_indices}), kept_indices


def cast_indices(ds: xr.Dataset, profile_var: str = 'PROFILE_INDEX'
                 ) -> np.ndarray:
    """
    Sorted array of the distinct (non-NaN) cast indices in a collection.
    """
    check_variables(ds, [profile_var])
    profile = ds[profile_var].values
    return np.unique(profile[~np.isnan(profile)])


def select_cast(ds: xr.Dataset, cast_index: float,
                profile_var: str = 'PROFILE_INDEX') -> xr.Dataset:
    """
    Return the samples of a collection belonging to one cast.
    """
    check_variables(ds, [profile_var])
    selected = np.flatnonzero(ds[profile_var].values == cast_index)
    return ds.isel({SAMPLE_DIM: selected})


def cast_pairs(ds: xr.Dataset, profile_var: str = 'PROFILE_INDEX'
               ) -> List[Tuple[float, float]]:
    """
    List the consecutive cast index pairs (k, k+1) present in a collection.
    """
    casts = cast_indices(ds, profile_var=profile_var)
    present = set(casts.tolist())
    return [(k, k + 1) for k in casts.tolist() if (k + 1) in present]


def is_downcast(ds: xr.Dataset, depth_var: str = 'DEPTH') -> bool:
    """
    True if the cast ends deeper than it starts (NaNs ignored).
    """
    check_variables(ds, [depth_var])
    depth = ds[depth_var].values
    depth = depth[~np.isnan(depth)]
    if depth.size < 2:
        return False
    return bool(depth[-1] > depth[0])


def find_profiles(depth: Sequence[float],
                  stamp: Optional[Sequence[float]] = None,
                  length: float = 0, period: float = 0,
                  inversion: float = 0, interrupt: float = 0,
                  stall: float = 0, shake: float = 0
                  ) -> Tuple[np.ndarray, np.ndarray]:
    """
    Split a depth (or pressure) series into casts and compute the vertical
    direction of travel.

    The series is cut into segments of constant vertical direction at the
    turning points of the depth. A segment is a cast segment unless it is
    *stalled* (depth range <= *stall*) or a *shake* (duration <= *shake*).
    Consecutive cast segments going the same way are joined into one cast
    when the lapse between them is <= *interrupt* and the depth inversion
    they introduce is <= *inversion*. Casts spanning a depth range <=
    *length* or a duration <= *period* are discarded.

    Parameters:
    - depth: Depth or pressure series.
    - stamp: Timestamps. Defaults to the sample number.
    - length, period: Minimum depth range and duration of a cast.
    - inversion, interrupt: Largest depth inversion and lapse between
                            cast segments joined into one cast.
    - stall, shake: Largest depth range and duration of a segment that is
                    not a cast segment.

    Returns:
    - (profile_index, profile_direction):
      - profile_index: Cast number (1, 2, ...) of each sample, NaN for
        samples between casts. The turning points bounding a cast are
        between casts. NaN input samples take the value of the previous
        sample.
      - profile_direction: 1 (down), -1 (up) or 0 (flat) over the
        interval starting at each sample, NaN after the last valid one.

    Raises:
    - ValueError: If *stamp* and *depth* differ in length.
    """
    depth = np.asarray(depth, dtype=float).ravel()
    if stamp is None:
        stamp = np.arange(depth.size, dtype=float)
    stamp = np.asarray(stamp, dtype=float).ravel()
    if stamp.size != depth.size:
        raise ValueError(
            f'stamp and depth must have the same length '
            f'(got {stamp.size} and {depth.size}).')

    valid_index = np.flatnonzero(~(np.isnan(depth) | np.isnan(stamp)))
    sdy = np.sign(np.diff(depth[valid_index]))

    # Turning points (and both ends) delimit the segments
    depth_peak = np.ones(valid_index.size, dtype=bool)
    depth_peak[1:-1] = np.diff(sdy) != 0
    peak_index = valid_index[depth_peak]

    sgmt_frst = stamp[peak_index[:-1]]
    sgmt_last = stamp[peak_index[1:]]
    sgmt_strt = depth[peak_index[:-1]]
    sgmt_fnsh = depth[peak_index[1:]]
    sgmt_vinc = sgmt_fnsh - sgmt_strt
    sgmt_vdir = np.sign(sgmt_vinc)

    cast_sgmt = np.flatnonzero(
        ~((np.abs(sgmt_vinc) <= stall) | (sgmt_last - sgmt_frst <= shake)))

    prev_sgmt, next_sgmt = cast_sgmt[:-1], cast_sgmt[1:]
    lapse = sgmt_frst[next_sgmt] - sgmt_last[prev_sgmt]
    space = -sgmt_vdir[prev_sgmt] * (sgmt_strt[next_sgmt]
                                      - sgmt_fnsh[prev_sgmt])
    joined = ((np.diff(sgmt_vdir[cast_sgmt]) == 0)
              & (lapse <= interrupt) & (space <= inversion))

    head_valid = np.ones(cast_sgmt.size, dtype=bool)
    tail_valid = np.ones(cast_sgmt.size, dtype=bool)
    head_valid[1:] = ~joined
    tail_valid[:-1] = ~joined
    cast_head_index = peak_index[cast_sgmt[head_valid]]
    cast_tail_index = peak_index[cast_sgmt[tail_valid] + 1]

    cast_length = np.abs(depth[cast_tail_index] - depth[cast_head_index])
    cast_period = stamp[cast_tail_index] - stamp[cast_head_index]
    cast_valid = ~((cast_length <= length) | (cast_period <= period))

    # Half steps: entering a cast after its head, leaving it at its tail
    steps = np.zeros(depth.size)
    steps[cast_head_index[cast_valid] + 1] += 0.5
    steps[cast_tail_index[cast_valid]] += 0.5
    profile_index = 0.5 + np.cumsum(steps)
    profile_index[np.mod(profile_index, 1) != 0] = np.nan

    profile_direction = np.full(depth.size, np.nan)
    for i in range(valid_index.size - 1):
        profile_direction[valid_index[i]:valid_index[i + 1]] = sdy[i]

    return profile_index, profile_direction


@record_processing(
    'Identified casts from {depth_var} ({profile_var}, {direction_var}) '
    'with minimum length {length}, minimum period {period}, inversion '
    '{inversion}, interrupt {interrupt}, stall {stall} and shake {shake}.',
    'Find casts')
def add_profile_index(ds: xr.Dataset, depth_var: str = 'DEPTH',
                      time_var: Optional[str] = 'TIME',
                      profile_var: str = 'PROFILE_INDEX',
                      direction_var: str = 'PROFILE_DIRECTION',
                      length: float = 0, period: float = 0,
                      inversion: float = 0, interrupt: float = 0,
                      stall: float = 0, shake: float = 0) -> xr.Dataset:
    """
    Add the cast index and vertical direction of `find_profiles` to a
    Dataset. Time is used as stamp if present (seconds), otherwise the
    sample number.
    """
    check_variables(ds, [depth_var])
    stamp = (ds[time_var].values
             if time_var is not None and time_var in ds else None)

    profile_index, profile_direction = find_profiles(
        ds[depth_var].values, stamp=stamp, length=length, period=period,
        inversion=inversion, interrupt=interrupt, stall=stall, shake=shake)

    ds_new = ds.copy()
    ds_new[profile_var] = (SAMPLE_DIM, profile_index,
                           {'long_name': 'Cast number (NaN between casts)'})
    ds_new[direction_var] = (SAMPLE_DIM, profile_direction,
                             {'long_name': 'Vertical direction of travel',
                              'comment': '1 down, -1 up, 0 flat'})
    return ds_new
