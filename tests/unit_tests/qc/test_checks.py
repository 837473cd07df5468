import pytest
import numpy as np
import pandas as pd
from glidproc.qc import checks


### NaN check

def test_nan_check():
    data = [10, 20, np.nan, 40, 50, np.nan]
    assert checks.nan_check(data, 9).tolist() == [1, 1, 9, 1, 1, 9]


def test_nan_check_infinite():
    assert checks.nan_check([np.inf, 1.0, -np.inf], 9).tolist() == [9, 1, 9]


### Date check

def test_impossible_date_check():
    time = np.array([
        pd.Timestamp('2006-12-31', tz='UTC').timestamp(),
        pd.Timestamp('2015-06-01', tz='UTC').timestamp(),
        pd.Timestamp('2100-01-01', tz='UTC').timestamp(),
        np.nan,
    ])
    assert checks.impossible_date_check(time, 4).tolist() == [4, 1, 4, 1]


def test_impossible_date_check_custom_range():
    time = np.array([
        pd.Timestamp('2015-06-01', tz='UTC').timestamp(),
        pd.Timestamp('2021-06-01', tz='UTC').timestamp(),
    ])
    flags = checks.impossible_date_check(time, 3, min_date='2020-01-01',
                                         max_date='2022-01-01')
    assert flags.tolist() == [3, 1]


### Location check

def test_impossible_location_check_boundaries():
    lat = [90, -90, 0, 90.001, 45, np.nan]
    lon = [180, -180, 0, 10, -180.5, 10]
    flags = checks.impossible_location_check(lat, lon, 4)
    assert flags.tolist() == [1, 1, 1, 4, 4, 1]


def test_impossible_location_check_length_mismatch():
    with pytest.raises(ValueError):
        checks.impossible_location_check([0, 1], [0], 4)


### Range check

def test_valid_range_check():
    data = [-3, -2, 10, 42, 43, np.nan]
    flags = checks.valid_range_check(data, -2, 42, 4)
    assert flags.tolist() == [4, 1, 1, 1, 4, 1]


def test_valid_range_check_depth_bands():
    data = [30, 30, 30, 1, 25]
    depth = [10, 30, 60, 10, 2000]
    flags = checks.valid_range_check(
        data, [0, 3, 3], [34, 28, 26], 4,
        depth=depth, depth_ranges=[[0, 20], [20, 50], [50, 75]])
    # 30 is fine at 10 m, too warm at 30 m and 60 m; 2000 m is in no band
    assert flags.tolist() == [1, 4, 4, 1, 1]


def test_valid_range_check_band_edges():
    # Bands are [start, end)
    flags = checks.valid_range_check(
        [30, 30], [0, 0], [34, 28], 4,
        depth=[19.999, 20], depth_ranges=[[0, 20], [20, 50]])
    assert flags.tolist() == [1, 4]


def test_valid_range_check_invalid_bands():
    with pytest.raises(ValueError):
        checks.valid_range_check([1, 2], [0, 0], [1, 1], 4,
                                 depth=[1, 2])
    with pytest.raises(ValueError):
        checks.valid_range_check([1, 2], [0], [1, 1], 4, depth=[1, 2],
                                 depth_ranges=[[0, 10], [10, 20]])


### Spike check

def test_spike_check_single_threshold():
    data = [1, 10, 3, 4, 5, 6]
    flags = checks.spike_check(data, 6, 2)
    assert flags.tolist() == [1, 6, 1, 1, 1, 1]


def test_spike_check_end_samples_never_flagged():
    flags = checks.spike_check([100, 0, 0, 0, 100], 6, 1)
    assert flags[0] == 1
    assert flags[-1] == 1


def test_spike_check_skips_nans():
    # The neighbours of the spike are the nearest valid samples
    data = [1, np.nan, 10, np.nan, 3, 4]
    flags = checks.spike_check(data, 6, 2)
    assert flags.tolist() == [1, 1, 6, 1, 1, 1]


def test_spike_check_pressure_dependent_threshold():
    # Same spike (test value 3) shallow and deep
    data = [0, 3, 0, 0, 0, 0, 3, 0]
    pressure = [100, 100, 100, 300, 900, 900, 900, 900]
    flags = checks.spike_check(data, 6, pressure, 500, 6, 2)
    # Threshold 2 above 500 dbar, 6 below
    assert flags.tolist() == [1, 6, 1, 1, 1, 1, 1, 1]


def test_spike_check_wrong_arguments():
    with pytest.raises(ValueError):
        checks.spike_check([1, 2, 3], 6)
    with pytest.raises(ValueError):
        checks.spike_check([1, 2, 3], 6, 1, 2)
    with pytest.raises(ValueError):
        checks.spike_check([1, 2, 3], 6, [1, 2], 500, 6, 2)


def test_spike_check_short_series():
    assert checks.spike_check([1, 10], 6, 2).tolist() == [1, 1]


### Gradient check

@pytest.fixture
def stuck_sensor_cast():
    depth = np.arange(10, dtype=float)
    data = np.array([20, 20, 20, 5, 4, 3, 2, 2, 2, 2], dtype=float)
    return data, depth


def test_special_gradient_check(stuck_sensor_cast):
    data, depth = stuck_sensor_cast
    flags = checks.special_gradient_check(data, depth, 4, 0.5, 0, 4)
    assert flags.tolist() == [1, 1, 4, 4, 4, 4, 4, 4, 4, 1]


def test_special_gradient_check_carries_cumulative_difference():
    """
    The first run ends at -1, so the second run starts from there and ends
    on its first sample instead of flagging down to the last interior one.
    """
    data = np.array([0, 0, 1, 0, 0, 0], dtype=float)
    depth = np.arange(6, dtype=float)
    flags = checks.special_gradient_check(data, depth, 0.05, 0.05, 0, 4)
    assert flags.tolist() == [1, 4, 4, 4, 1, 1]


def test_special_gradient_check_unsorted(stuck_sensor_cast):
    """Flags refer to the samples as given, not sorted by depth."""
    data, depth = stuck_sensor_cast
    flags = checks.special_gradient_check(data[::-1], depth[::-1],
                                          4, 0.5, 0, 4)
    assert flags.tolist() == [1, 4, 4, 4, 4, 4, 4, 4, 1, 1]


def test_special_gradient_check_no_run(stuck_sensor_cast):
    data, depth = stuck_sensor_cast
    flags = checks.special_gradient_check(data, depth, 100, 0.5, 0, 4)
    assert np.all(flags == 1)


def test_special_gradient_check_above_depth_threshold(stuck_sensor_cast):
    data, depth = stuck_sensor_cast
    flags = checks.special_gradient_check(data, depth, 4, 0.5, 50, 4)
    assert np.all(flags == 1)


def test_special_gradient_check_profiles(stuck_sensor_cast):
    data, depth = stuck_sensor_cast
    flat = np.full(10, 7.0)
    profile_index = np.repeat([1.0, 2.0], 10)

    flags = checks.special_gradient_check_profiles(
        np.concatenate([data, flat]), np.concatenate([depth, depth]),
        profile_index, 4, 0.5, 0, 4)

    assert flags[:10].tolist() == [1, 1, 4, 4, 4, 4, 4, 4, 4, 1]
    assert np.all(flags[10:] == 1)


def test_special_gradient_check_length_mismatch():
    with pytest.raises(ValueError):
        checks.special_gradient_check([1, 2, 3], [1, 2], 4, 0.5, 0, 4)
