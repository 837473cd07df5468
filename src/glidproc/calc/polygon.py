'''
GLIDPROC.CALC.POLYGON

Area enclosed between two curves, e.g. a downcast and the following
upcast in a depth-value or temperature-salinity diagram.

The two curves are joined end to end into one closed polygon. Profiles
crossing each other make the polygon self-intersecting, so the polygon is
split into valid simple parts before the (unsigned) area is summed.
'''

import numpy as np
from shapely.geometry import Polygon
from shapely.validation import make_valid
from typing import Sequence, Tuple


def build_polygon(x1: Sequence[float], y1: Sequence[float],
                  x2: Sequence[float], y2: Sequence[float]
                  ) -> Tuple[np.ndarray, np.ndarray, float]:
    """
    Join two curves into a closed polygon and compute its area.

    The second curve is appended after the first one as given, so it
    should run in the opposite direction (e.g. downcast followed by
    upcast). Points with NaN in either coordinate are dropped.

    Parameters:
    - x1, y1: Coordinates of the first curve.
    - x2, y2: Coordinates of the second curve.

    Returns:
    - (x, y, area): Polygon vertices (not repeating the first vertex) and
      the total unsigned area enclosed. The area is 0 for fewer than three
      vertices or a degenerate polygon.

    Raises:
    - ValueError: If the coordinates of a curve differ in length.
    """
    x1, y1, x2, y2 = [np.asarray(arr, dtype=float).ravel()
                      for arr in (x1, y1, x2, y2)]
    if x1.size != y1.size or x2.size != y2.size:
        raise ValueError(
            'x and y coordinates of a curve must have the same length '
            f'(got {x1.size}/{y1.size} and {x2.size}/{y2.size}).')

    x = np.concatenate([x1, x2])
    y = np.concatenate([y1, y2])
    keep = ~(np.isnan(x) | np.isnan(y))
    x, y = x[keep], y[keep]

    if x.size < 3:
        return x, y, 0.0

    polygon = make_valid(Polygon(np.column_stack([x, y])))

    return x, y, float(polygon.area)


def profile_area(x1: Sequence[float], y1: Sequence[float],
                 x2: Sequence[float], y2: Sequence[float]) -> float:
    """
    Area enclosed by two profiles of opposite direction.

    Shortcut for `build_polygon(x1, y1, x2, y2)[2]`.
    """
    return build_polygon(x1, y1, x2, y2)[2]
