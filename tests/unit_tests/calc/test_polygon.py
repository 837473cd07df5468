import pytest
import numpy as np
from glidproc.calc.polygon import build_polygon, profile_area


def test_profile_area_rectangle():
    # Down along x=0, back up along x=2: a 2 x 10 rectangle
    depth = np.linspace(0, 10, 11)
    area = profile_area(np.zeros(11), depth, np.full(11, 2.0), depth[::-1])
    assert np.isclose(area, 20)


def test_profile_area_identical_curves():
    x = np.array([1.0, 2.0, 4.0, 3.0])
    y = np.array([0.0, 1.0, 2.0, 3.0])
    assert profile_area(x, y, x[::-1], y[::-1]) == 0


def test_profile_area_crossing_curves():
    """Crossing profiles make a figure eight; both lobes count."""
    x1 = np.array([0.0, 2.0])
    y1 = np.array([0.0, 2.0])
    x2 = np.array([0.0, 2.0])
    y2 = np.array([2.0, 0.0])
    # Polygon (0,0) (2,2) (0,2) (2,0): two triangles of area 1
    assert np.isclose(profile_area(x1, y1, x2, y2), 2)


def test_build_polygon_drops_nans():
    x, y, area = build_polygon([0, np.nan, 0], [0, 5, 10],
                               [2, 2], [10, 0])
    assert x.size == y.size == 4
    assert not np.isnan(x).any()
    assert np.isclose(area, 20)


def test_build_polygon_too_few_points():
    _, _, area = build_polygon([0], [0], [1], [1])
    assert area == 0


def test_build_polygon_length_mismatch():
    with pytest.raises(ValueError):
        build_polygon([0, 1], [0], [1, 2], [1, 2])
