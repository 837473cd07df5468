import numpy as np
import pytest
from glidproc.geo.geocalc import great_circle_distance, cumulative_distance

EARTH_RADIUS = 6378e3


# Test great_circle_distance function
def test_great_circle_distance():

    # Define test cases
    test_cases = [
        ((0, 0, 90, 0), np.pi*EARTH_RADIUS/2),  # 90E and 0E on equator
        ((0, 0, 180, 0), np.pi*EARTH_RADIUS),  # Date line and 0E on equator
        ((0, 0, 0, 90),  np.pi*EARTH_RADIUS/2),  # Equator and North pole
        ((0, 0, 0, -90),  np.pi*EARTH_RADIUS/2),  # Equator and South pole
        ((-180, 0, 180, 0), 0),  # Date line to date line (longitude wrap)
        ((-90, 0, 90, 0), np.pi*EARTH_RADIUS),  # 90E to 90W
    ]

    # Perform the tests
    for (lon0, lat0, lon1, lat1), expected_distance in test_cases:
        assert np.isclose(great_circle_distance(lon0, lat0, lon1, lat1),
                          expected_distance)


def test_great_circle_distance_identical_points():
    dist = great_circle_distance(15.123, 78.456, 15.123, 78.456)
    assert not np.isnan(dist)
    assert dist < 1


def test_great_circle_distance_arrays():
    dist = great_circle_distance([0, 0, np.nan], [0, 0, 0],
                                 [90, 0, 0], [0, 0, 0])
    assert np.isclose(dist[0], np.pi*EARTH_RADIUS/2)
    assert dist[1] == 0
    assert np.isnan(dist[2])


def test_cumulative_distance():
    one_degree_km = np.pi*EARTH_RADIUS/180/1e3
    dist = cumulative_distance([0, 0, np.nan, 0], [0, 1, 5, 2])

    assert dist[0] == 0
    assert np.isclose(dist[1], one_degree_km)
    # NaN position skipped
    assert np.isnan(dist[2])
    assert np.isclose(dist[3], 2*one_degree_km)


def test_cumulative_distance_leading_nan():
    dist = cumulative_distance([np.nan, 0, 0], [np.nan, 3, 3])
    assert np.isnan(dist[0])
    assert dist[1:].tolist() == [0, 0]


def test_cumulative_distance_edge_cases():
    assert cumulative_distance([60], [5]).tolist() == [0]
    assert np.isnan(cumulative_distance([np.nan], [np.nan])).all()
    assert cumulative_distance([], []).size == 0

    with pytest.raises(ValueError):
        cumulative_distance([0, 1], [0])
