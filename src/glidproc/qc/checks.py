'''
GLIDPROC.QC.CHECKS

Stateless per-variable quality control checks.

Every check returns an integer flag vector as long as the checked
variable, GOOD (1) everywhere except at the failing samples, which get the
caller-supplied flag `qc_flag`. NaNs in the inputs never raise; they are
either the subject of the check (`nan_check`) or left alone.
'''

import numpy as np
import pandas as pd
from typing import Optional, Sequence, Union

from glidproc.qc.flags import QCFlag


def _good_flags(size: int) -> np.ndarray:
    return np.full(size, int(QCFlag.GOOD), dtype=int)


def nan_check(data: Sequence[float], qc_flag: int) -> np.ndarray:
    """
    Flag non-finite samples (NaN or infinite).

    Parameters
    ----------
    data : array-like
        Data to check.
    qc_flag : int
        Flag given to non-finite samples.

    Returns
    -------
    np.ndarray
        Flag vector.
    """
    data = np.asarray(data, dtype=float).ravel()
    flags = _good_flags(data.size)
    flags[~np.isfinite(data)] = qc_flag
    return flags


def impossible_date_check(time: Sequence[float], qc_flag: int,
                          min_date: str = '2007-01-01',
                          max_date: Optional[str] = None) -> np.ndarray:
    """
    Flag timestamps outside a plausible date range.

    Parameters
    ----------
    time : array-like
        Timestamps in seconds since 1970-01-01 (UTC).
    qc_flag : int
        Flag given to implausible timestamps.
    min_date : str, optional
        Earliest plausible date (parsed with pandas). Default is
        '2007-01-01'.
    max_date : str, optional
        Latest plausible date. Default is the current time.

    Returns
    -------
    np.ndarray
        Flag vector. NaN timestamps are not flagged by this check.
    """
    time = np.asarray(time, dtype=float).ravel()

    min_posix = pd.Timestamp(min_date, tz='UTC').timestamp()
    if max_date is None:
        max_posix = pd.Timestamp.now(tz='UTC').timestamp()
    else:
        max_posix = pd.Timestamp(max_date, tz='UTC').timestamp()

    flags = _good_flags(time.size)
    flags[(time < min_posix) | (time > max_posix)] = qc_flag
    return flags


def impossible_location_check(lat: Sequence[float], lon: Sequence[float],
                              qc_flag: int) -> np.ndarray:
    """
    Flag positions outside [-90, 90] degrees latitude or [-180, 180]
    degrees longitude. The boundary values themselves are valid.

    Raises
    ------
    ValueError
        If lat and lon differ in length.
    """
    lat = np.asarray(lat, dtype=float).ravel()
    lon = np.asarray(lon, dtype=float).ravel()

    if lat.size != lon.size:
        raise ValueError(
            f'lat and lon must have the same length '
            f'(got {lat.size} and {lon.size}).')

    flags = _good_flags(lat.size)
    flags[(lat < -90) | (lon < -180) | (lat > 90) | (lon > 180)] = qc_flag
    return flags


def valid_range_check(data: Sequence[float],
                      min_range: Union[float, Sequence[float]],
                      max_range: Union[float, Sequence[float]],
                      qc_flag: int,
                      depth: Optional[Sequence[float]] = None,
                      depth_ranges: Optional[Sequence[Sequence[float]]] = None,
                      ) -> np.ndarray:
    """
    Flag samples outside [min_range, max_range].

    With *depth* and *depth_ranges*, the limits are given per depth band:
    `min_range[i]`/`max_range[i]` apply to samples with
    `depth_ranges[i][0] <= depth < depth_ranges[i][1]`. Samples outside
    every band are not flagged.

    Parameters
    ----------
    data : array-like
        Data to check.
    min_range, max_range : float or array-like
        Limits (one per depth band in the banded form).
    qc_flag : int
        Flag given to samples out of range.
    depth : array-like, optional
        Depth of each sample (banded form).
    depth_ranges : array-like, optional
        (n_bands, 2) array of [start, end) depth intervals (banded form).

    Returns
    -------
    np.ndarray
        Flag vector.

    Raises
    ------
    ValueError
        If only one of depth/depth_ranges is given, or if the number of
        limits does not match the number of depth bands, or if depth and
        data differ in length.
    """
    data = np.asarray(data, dtype=float).ravel()
    flags = _good_flags(data.size)

    if depth is None and depth_ranges is None:
        flags[(data > max_range) | (data < min_range)] = qc_flag
        return flags

    if depth is None or depth_ranges is None:
        raise ValueError(
            'depth and depth_ranges must be given together for a depth '
            'banded range check.')

    depth = np.asarray(depth, dtype=float).ravel()
    depth_ranges = np.atleast_2d(np.asarray(depth_ranges, dtype=float))
    min_range = np.atleast_1d(np.asarray(min_range, dtype=float))
    max_range = np.atleast_1d(np.asarray(max_range, dtype=float))

    if depth.size != data.size:
        raise ValueError(
            f'depth and data must have the same length '
            f'(got {depth.size} and {data.size}).')
    if not (min_range.size == max_range.size == depth_ranges.shape[0]):
        raise ValueError(
            f'Got {min_range.size} minimum and {max_range.size} maximum '
            f'values for {depth_ranges.shape[0]} depth ranges.')

    for (start, end), low, high in zip(depth_ranges, min_range, max_range):
        in_band = (depth >= start) & (depth < end)
        out_of_range = in_band & ((data > high) | (data < low))
        flags[out_of_range] = qc_flag

    return flags


def _spike_test_values(data: np.ndarray) -> np.ndarray:
    """
    Spike test value of each interior sample:
    |V2 - (V3 + V1)/2| - |(V3 - V1)/2|
    """
    v1, v2, v3 = data[:-2], data[1:-1], data[2:]
    return np.abs(v2 - (v3 + v1) / 2) - np.abs((v3 - v1) / 2)


def spike_check(data: Sequence[float], qc_flag: int, *args) -> np.ndarray:
    """
    Flag spikes, i.e. samples standing out from both neighbours.

    NaNs are removed before the test, so the neighbours of a sample are the
    nearest valid samples. A sample is flagged when its test value
    `|V2 - (V3 + V1)/2| - |(V3 - V1)/2|` is at least the threshold. The end
    samples are never flagged.

    Two call forms:

    - `spike_check(data, qc_flag, limit)`
    - `spike_check(data, qc_flag, pressure, divider, threshold_below,
      threshold_above)`: `threshold_below` applies where the mean pressure
      of the three-sample window is greater than `divider` (deeper),
      `threshold_above` elsewhere.

    Raises
    ------
    ValueError
        For any other number of arguments, or a pressure series of the
        wrong length.
    """
    data = np.asarray(data, dtype=float).ravel()
    flags = _good_flags(data.size)

    if len(args) not in (1, 4):
        raise ValueError(
            'spike_check takes either a limit, or pressure, divider, '
            f'threshold_below and threshold_above (got {len(args)} '
            'arguments).')

    valid_index = np.flatnonzero(~np.isnan(data))
    if valid_index.size < 3:
        return flags

    test_values = _spike_test_values(data[valid_index])

    if len(args) == 1:
        threshold = args[0]
    else:
        pressure, divider, threshold_below, threshold_above = args
        pressure = np.asarray(pressure, dtype=float).ravel()
        if pressure.size != data.size:
            raise ValueError(
                f'pressure and data must have the same length '
                f'(got {pressure.size} and {data.size}).')
        pressure = pressure[valid_index]
        window_mean = (pressure[:-2] + pressure[1:-1] + pressure[2:]) / 3
        threshold = np.where(window_mean > divider,
                             threshold_below, threshold_above)

    is_spike = test_values >= threshold
    flags[valid_index[1:-1][is_spike]] = qc_flag

    return flags


def special_gradient_check(data: Sequence[float], depth: Sequence[float],
                           gradient_threshold: float, diff_threshold: float,
                           depth_threshold: float,
                           qc_flag: int) -> np.ndarray:
    """
    Flag samples of a "stuck" sensor after a sharp step (gradient/flatline
    check).

    The cast is sorted by depth and scanned from just above
    *depth_threshold* downwards, over the valid samples. A run starts where
    the three-point curvature `|V2 - (V3 + V1)/2|` exceeds
    *gradient_threshold*. Samples in a run are flagged while the cumulative
    difference `sum(V2 - V3)` stays above *diff_threshold*; the sample that
    brings it down to or below *diff_threshold* is the last one flagged.
    The cumulative difference runs over the whole scan and is not reset
    when a new run starts, so a run following a large drop ends sooner.

    Parameters
    ----------
    data, depth : array-like
        One cast of data and depth.
    gradient_threshold : float
        Curvature starting a run.
    diff_threshold : float
        Cumulative difference ending a run.
    depth_threshold : float
        Depth from which the scan starts.
    qc_flag : int
        Flag given to samples in a run.

    Returns
    -------
    np.ndarray
        Flag vector in the original (unsorted) sample order.
    """
    data = np.asarray(data, dtype=float).ravel()
    depth = np.asarray(depth, dtype=float).ravel()
    if data.size != depth.size:
        raise ValueError(
            f'data and depth must have the same length '
            f'(got {data.size} and {depth.size}).')

    flags = _good_flags(data.size)

    order = np.argsort(depth, kind='stable')
    depth_sorted = depth[order]
    data_sorted = data[order]

    below = np.flatnonzero(depth_sorted >= depth_threshold)
    if below.size == 0:
        return flags
    start = max(below[0] - 1, 0)

    # Positions (in the sorted cast) of the samples taking part in the scan
    scan = start + np.flatnonzero(
        ~np.isnan(data_sorted[start:]) & ~np.isnan(depth_sorted[start:]))
    values = data_sorted[scan]

    flagged = []
    in_run = False
    cumulative_diff = 0.0
    for i in range(1, values.size - 1):
        v1, v2, v3 = values[i - 1], values[i], values[i + 1]
        if not in_run and abs(v2 - (v3 + v1) / 2) > gradient_threshold:
            in_run = True
        if in_run:
            cumulative_diff += v2 - v3
            flagged.append(scan[i])
            if cumulative_diff <= diff_threshold:
                in_run = False

    flags[order[np.asarray(flagged, dtype=int)]] = qc_flag

    return flags


def special_gradient_check_profiles(
        data: Sequence[float], depth: Sequence[float],
        profile_index: Sequence[float],
        gradient_threshold: float, diff_threshold: float,
        depth_threshold: float, qc_flag: int) -> np.ndarray:
    """
    Run `special_gradient_check` separately on every cast of a collection
    (casts told apart by *profile_index*; samples with NaN profile index
    are not checked).
    """
    data = np.asarray(data, dtype=float).ravel()
    depth = np.asarray(depth, dtype=float).ravel()
    profile_index = np.asarray(profile_index, dtype=float).ravel()

    if not (data.size == depth.size == profile_index.size):
        raise ValueError(
            'data, depth and profile_index must have the same length '
            f'(got {data.size}, {depth.size} and {profile_index.size}).')

    flags = _good_flags(data.size)
    for cast in np.unique(profile_index[~np.isnan(profile_index)]):
        in_cast = np.flatnonzero(profile_index == cast)
        flags[in_cast] = special_gradient_check(
            data[in_cast], depth[in_cast], gradient_threshold,
            diff_threshold, depth_threshold, qc_flag)

    return flags
