"""
Short functions for geographical calculations along glider tracks.
"""

import numpy as np
from typing import Union, Sequence


def great_circle_distance(
    lon0: Union[float, Sequence[float]],
    lat0: Union[float, Sequence[float]],
    lon1: Union[float, Sequence[float]],
    lat1: Union[float, Sequence[float]],
    earth_radius: float = 6378e3,
) -> Union[float, Sequence[float]]:
    """
    Calculate the great circle distance between two points on the
    Earth's surface.

    Parameters:
        lon0 (float or array-like): Longitude of the first point in degrees.
        lat0 (float or array-like): Latitude of the first point in degrees.
        lon1 (float or array-like): Longitude of the second point in degrees.
        lat1 (float or array-like): Latitude of the second point in degrees.
        earth_radius (float, optional): Earth's radius in meters.
                                        Default is 6378e3.

    Returns:
        float or array-like: The great circle distance between the two points
                             in meters (or in the units of *earth_radius*).
                             NaN where any coordinate is NaN.

    Notes:
        - lon0, lat0, lon1, lat1 must be broadcastable.
        - The cosine argument is clipped to [-1, 1] so that rounding errors
          for (nearly) identical points give 0 rather than NaN.
    """
    # Convert degrees to radians
    lon0 = np.deg2rad(lon0)
    lat0 = np.deg2rad(lat0)
    lon1 = np.deg2rad(lon1)
    lat1 = np.deg2rad(lat1)

    cos_angle = (np.cos(lat0) * np.cos(lat1) * np.cos(lon0 - lon1)
                 + np.sin(lat0) * np.sin(lat1))

    dist = earth_radius * np.arccos(np.clip(cos_angle, -1, 1))

    return dist


def cumulative_distance(
    lat: Sequence[float],
    lon: Sequence[float],
    earth_radius: float = 6378e3,
) -> np.ndarray:
    """
    Cumulative along-track distance (km) of a sequence of positions.

    Parameters:
        lat (array-like): Latitudes in degrees.
        lon (array-like): Longitudes in degrees.
        earth_radius (float, optional): Earth's radius in meters.

    Returns:
        np.ndarray: Distance (km) from the first valid position to each
                    position. Positions with NaN latitude or longitude are
                    skipped when accumulating and get NaN. A single valid
                    position gets 0.

    Raises:
        ValueError: If lat and lon differ in length.
    """
    lat = np.asarray(lat, dtype=float).ravel()
    lon = np.asarray(lon, dtype=float).ravel()

    if lat.size != lon.size:
        raise ValueError(
            f'lat and lon must have the same length '
            f'(got {lat.size} and {lon.size}).')

    dist = np.full(lat.size, np.nan)
    valid = np.flatnonzero(~(np.isnan(lat) | np.isnan(lon)))

    if valid.size == 0:
        return dist

    steps = great_circle_distance(
        lon[valid[:-1]], lat[valid[:-1]], lon[valid[1:]], lat[valid[1:]],
        earth_radius=earth_radius) / 1e3

    dist[valid] = np.concatenate([[0.0], np.cumsum(steps)])

    return dist
