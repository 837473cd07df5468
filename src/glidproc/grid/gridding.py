'''
GLIDPROC.GRID.GRIDDING

Resampling of glider casts onto a regular depth axis.

Each cast of a collection becomes one column of a (DEPTH, PROFILE) grid,
interpolated with monotone piecewise cubic (PCHIP) interpolation. Casts are
located by their mean time and position, and by the cumulative distance
along the track.
'''

import warnings
import numpy as np
import xarray as xr
from scipy.interpolate import PchipInterpolator
from tqdm.auto import tqdm
from typing import List, Optional, Sequence, Tuple

from glidproc.data.profile import (SAMPLE_DIM, cast_indices, check_variables,
                                   select_cast)
from glidproc.geo.geocalc import cumulative_distance
from glidproc.util.processing import record_processing

# Variables describing where/when/how a sample was taken rather than what
NON_GRIDDING_VARS = ['TIME', 'LATITUDE', 'LONGITUDE', 'DEPTH', 'PRES',
                     'PROFILE_INDEX', 'PROFILE_DIRECTION', 'DISTANCE',
                     'PITCH']


def depth_bins(depth: Sequence[float], depth_step: float = 1.0
               ) -> np.ndarray:
    """
    Regular depth axis from floor(min depth) to ceil(max depth), rounded to
    multiples of *depth_step*.

    Raises a ValueError if *depth_step* is not positive or *depth* has no
    valid values.
    """
    if not depth_step > 0:
        raise ValueError(f'depth_step must be positive (got {depth_step}).')

    depth = np.asarray(depth, dtype=float)
    if np.all(np.isnan(depth)):
        raise ValueError('No valid depth values to build a depth axis from.')

    depth_min = depth_step * np.floor(np.nanmin(depth) / depth_step)
    depth_max = depth_step * np.ceil(np.nanmax(depth) / depth_step)
    n_bins = int(round((depth_max - depth_min) / depth_step)) + 1

    return depth_min + depth_step * np.arange(n_bins)


def grid_cast(depth: Sequence[float], values: Sequence[float],
              depth_grid: Sequence[float]) -> np.ndarray:
    """
    Interpolate one cast onto *depth_grid*.

    NaN pairs are dropped and repeated depths keep their first value. Grid
    depths outside the cast are NaN, and so is the whole column if fewer
    than two distinct depths remain.
    """
    depth = np.asarray(depth, dtype=float)
    values = np.asarray(values, dtype=float)
    depth_grid = np.asarray(depth_grid, dtype=float)

    good = ~(np.isnan(depth) | np.isnan(values))
    known_depth, first = np.unique(depth[good], return_index=True)
    known_values = values[good][first]

    if known_depth.size < 2:
        return np.full(depth_grid.shape, np.nan)

    interpolator = PchipInterpolator(known_depth, known_values,
                                     extrapolate=False)
    return interpolator(depth_grid)


def profile_statistics(grid: np.ndarray, axis: int = 1
                       ) -> Tuple[np.ndarray, np.ndarray]:
    """
    NaN-aware mean and standard deviation across casts.

    Bins without data in any cast are NaN; every other bin is computed from
    the casts that have data there.
    """
    with warnings.catch_warnings():
        # All-NaN bins
        warnings.simplefilter('ignore', category=RuntimeWarning)
        mean = np.nanmean(grid, axis=axis)
        std = np.nanstd(grid, axis=axis)
    return mean, std


def _gridding_variables(ds: xr.Dataset, profile_var: str,
                        depth_var: str) -> List[str]:
    exclude = set(NON_GRIDDING_VARS) | {profile_var, depth_var}
    # QC flags are categorical and cannot be interpolated
    return [name for name, var in ds.data_vars.items()
            if var.dims == (SAMPLE_DIM,) and name not in exclude
            and not name.startswith('QC_')
            and 'flag_values' not in var.attrs
            and np.issubdtype(var.dtype, np.number)]


def _nanmean(values: np.ndarray) -> float:
    if np.all(np.isnan(values)):
        return np.nan
    return float(np.nanmean(values))


@record_processing(
    'Gridded casts onto a regular depth axis ({depth_step} m resolution, '
    'PCHIP interpolation).',
    'Grid casts')
def grid_profiles(
        ds: xr.Dataset,
        variables: Optional[Sequence[str]] = None,
        depth_step: float = 1.0,
        profile_var: str = 'PROFILE_INDEX',
        depth_var: str = 'DEPTH',
        time_var: str = 'TIME',
        lat_var: str = 'LATITUDE',
        lon_var: str = 'LONGITUDE',
        verbose: bool = False,
) -> xr.Dataset:
    """
    Grid every cast of a collection onto a common depth axis.

    Parameters:
    - ds: Collection of casts told apart by *profile_var*.
    - variables: Variables to grid. Default: all numeric variables along
                 the sample dimension except time, position, depth,
                 pressure, pitch, the cast index and QC flag variables
                 (named QC_* or carrying flag_values).
    - depth_step: Resolution of the depth axis.
    - profile_var, depth_var, time_var, lat_var, lon_var: Variable names.
      Time and position are optional; missing ones give NaN coordinates.
    - verbose: Show a progress bar over casts.

    Returns:
    - xr.Dataset with dimensions (DEPTH, PROFILE):
      - one (DEPTH, PROFILE) variable per gridded variable,
      - PROFILE_INDEX, TIME, LATITUDE, LONGITUDE (cast means) and
        DISTANCE (cumulative along-track distance, km) along PROFILE,
      - <VAR>_MEAN and <VAR>_STD across casts along DEPTH.

    Raises:
    - ValueError: Missing variables, no casts, or no valid depth.
    """
    check_variables(ds, [profile_var, depth_var])
    if variables is None:
        variables = _gridding_variables(ds, profile_var, depth_var)
    check_variables(ds, variables)

    casts = cast_indices(ds, profile_var=profile_var)
    if casts.size == 0:
        raise ValueError(f'No casts found in {profile_var}.')

    depth_grid = depth_bins(ds[depth_var].values, depth_step=depth_step)

    grids = {name: np.full((depth_grid.size, casts.size), np.nan)
             for name in variables}
    cast_coords = {name: np.full(casts.size, np.nan)
                   for name in (time_var, lat_var, lon_var)}

    for nn, cast_index in enumerate(tqdm(casts, desc='Gridding casts',
                                         disable=not verbose)):
        cast = select_cast(ds, cast_index, profile_var=profile_var)

        for name in cast_coords:
            if name in cast:
                cast_coords[name][nn] = _nanmean(cast[name].values)

        cast_depth = cast[depth_var].values
        for name in variables:
            grids[name][:, nn] = grid_cast(cast_depth, cast[name].values,
                                           depth_grid)

    ds_grid = xr.Dataset(
        coords={'DEPTH': ('DEPTH', depth_grid, {'units': 'm'}),
                'PROFILE': ('PROFILE', np.arange(casts.size))})

    ds_grid['PROFILE_INDEX'] = ('PROFILE', casts)
    ds_grid['TIME'] = ('PROFILE', cast_coords[time_var])
    ds_grid['LATITUDE'] = ('PROFILE', cast_coords[lat_var])
    ds_grid['LONGITUDE'] = ('PROFILE', cast_coords[lon_var])
    ds_grid['DISTANCE'] = (
        'PROFILE', cumulative_distance(cast_coords[lat_var],
                                       cast_coords[lon_var]),
        {'units': 'km',
         'long_name': 'Cumulative distance along the glider track'})

    for name in variables:
        ds_grid[name] = (('DEPTH', 'PROFILE'), grids[name],
                         dict(ds[name].attrs))
        mean, std = profile_statistics(grids[name], axis=1)
        ds_grid[f'{name}_MEAN'] = ('DEPTH', mean,
                                   {'long_name': f'Mean profile of {name}'})
        ds_grid[f'{name}_STD'] = (
            'DEPTH', std,
            {'long_name': f'Standard deviation profile of {name}'})

    if 'PROCESSING' in ds:
        ds_grid['PROCESSING'] = ds['PROCESSING'].copy()

    return ds_grid
