'''
GLIDPROC.QC.PIPELINE

Configured QC runs over a profile Dataset.

A QC configuration is plain data (a dict, typically loaded from YAML):

    {'check_all_for_nan': True,
     'checks': {
         'valid_range_check': [
             {'process_on': 'TEMP',
              'parameters': [{'var': 'TEMP'}, -2, 42, 4]},
             {'process_on': ['LATITUDE', 'LONGITUDE'],
              'parameters': [{'var': 'LATITUDE'}, 30, 46, 4]},
         ]}}

- `process_on`: the variable (or group of variables) receiving the flags.
- `parameters`: positional arguments of the check. `{'var': NAME}` is
  replaced by the values of variable NAME, anything else is passed on
  as is.

The configuration is validated against the Dataset by `bind_qc_config`
before any check runs. Flags set by several checks on the same variable
are combined with the worst-flag-wins rule of glidproc.qc.flags.

`perform_gridded_qc` runs the same checks on every cast of a depth grid.
'''

import copy
import inspect
import warnings
import numpy as np
import xarray as xr
from tqdm.auto import tqdm
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from glidproc.data.profile import SAMPLE_DIM
from glidproc.qc import checks
from glidproc.qc.flags import QCFlag, combine_flags, flag_attributes, severity
from glidproc.util.processing import record_processing


class QCConfigError(ValueError):
    """
    Raised for an invalid QC configuration (unknown check, unknown
    variable, malformed declaration).
    """


# Check name -> function
QC_CHECKS: Dict[str, Callable] = {
    'nan_check': checks.nan_check,
    'impossible_date_check': checks.impossible_date_check,
    'impossible_location_check': checks.impossible_location_check,
    'valid_range_check': checks.valid_range_check,
    'spike_check': checks.spike_check,
    'special_gradient_check': checks.special_gradient_check,
    'special_gradient_check_profiles': checks.special_gradient_check_profiles,
}

_ALL_SENSORS = ['TIME', 'TEMP', 'CNDC', 'PRES', 'DEPTH', 'DOXY', 'DOXY_SAT',
                'CHLA', 'TURB']

# Preprocessing QC of raw glider data
DEFAULT_QC_CONFIG = {
    'check_all_for_nan': True,
    'checks': {
        'impossible_date_check': [
            {'process_on': _ALL_SENSORS,
             'parameters': [{'var': 'TIME'}, 4]},
        ],
        'impossible_location_check': [
            {'process_on': ['LONGITUDE', 'LATITUDE'],
             'parameters': [{'var': 'LATITUDE'}, {'var': 'LONGITUDE'}, 4]},
        ],
        'valid_range_check': [
            {'process_on': 'TEMP', 'parameters': [{'var': 'TEMP'}, -2, 42, 4]},
            {'process_on': 'CHLA', 'parameters': [{'var': 'CHLA'}, 0, 50, 4]},
            {'process_on': 'TURB', 'parameters': [{'var': 'TURB'}, 0, 50, 4]},
            {'process_on': ['DOXY', 'DOXY_SAT'],
             'parameters': [{'var': 'DOXY'}, 0, 500, 4]},
            {'process_on': ['DOXY_SAT', 'DOXY'],
             'parameters': [{'var': 'DOXY_SAT'}, 0, 200, 4]},
            {'process_on': ['LONGITUDE', 'LATITUDE'],
             'parameters': [{'var': 'LONGITUDE'}, -6, 37, 4]},
            {'process_on': ['LATITUDE', 'LONGITUDE'],
             'parameters': [{'var': 'LATITUDE'}, 30, 46, 4]},
            {'process_on': 'TEMP',
             'parameters': [{'var': 'TEMP'},
                            [0, 3, 3, 3, 3, 3],
                            [34, 30, 28, 26, 22, 20],
                            4,
                            {'var': 'DEPTH'},
                            [[0, 20], [20, 50], [50, 75], [75, 150],
                             [150, 300], [300, 1100]]]},
        ],
        'spike_check': [
            {'process_on': 'TEMP',
             'parameters': [{'var': 'TEMP'}, 6, {'var': 'PRES'}, 500, 6, 2]},
            {'process_on': 'TURB', 'parameters': [{'var': 'TURB'}, 6, 5]},
        ],
    },
}


# QC of gridded casts, see `perform_gridded_qc`. Same ranges as the raw
# data; the spike thresholds switch on depth as the grid carries no pressure.
DEFAULT_GRIDDED_QC_CONFIG = {
    'check_all_for_nan': True,
    'checks': {
        'impossible_date_check': copy.deepcopy(
            DEFAULT_QC_CONFIG['checks']['impossible_date_check']),
        'impossible_location_check': copy.deepcopy(
            DEFAULT_QC_CONFIG['checks']['impossible_location_check']),
        'valid_range_check': copy.deepcopy(
            DEFAULT_QC_CONFIG['checks']['valid_range_check']),
        'spike_check': [
            {'process_on': 'TEMP',
             'parameters': [{'var': 'TEMP'}, 6, {'var': 'DEPTH'}, 500, 6,
                            2]},
            {'process_on': 'TURB', 'parameters': [{'var': 'TURB'}, 6, 5]},
        ],
        'special_gradient_check': [
            {'process_on': ['CNDC', 'PSAL'],
             'parameters': [{'var': 'CNDC'}, {'var': 'DEPTH'}, 0.05, 0.05,
                            200, 4]},
        ],
    },
}


@dataclass(frozen=True)
class BoundCheck:
    """
    One check declaration resolved against a Dataset.
    """
    name: str
    function: Callable
    process_on: Tuple[str, ...]
    args: Tuple

    def run(self) -> np.ndarray:
        return np.asarray(self.function(*self.args), dtype=int).ravel()


def _referenced_variables(parameters: Sequence) -> List[str]:
    return [param['var'] for param in parameters
            if isinstance(param, dict) and 'var' in param]


def bind_qc_config(config: dict, ds: xr.Dataset,
                   ignore_missing: bool = False
                   ) -> Tuple[bool, List[BoundCheck]]:
    """
    Validate a QC configuration and resolve it against a Dataset.

    Parameters:
    - config: QC configuration (see module docstring).
    - ds: Profile Dataset the checks will run on.
    - ignore_missing: If True, variables missing from *ds* are dropped from
                      `process_on` groups, and declarations that lose all
                      their variables or reference a missing variable in
                      their parameters are skipped (with a warning).
                      If False (default), they are errors.

    Returns:
    - (check_all_for_nan, bound_checks)

    Raises:
    - QCConfigError: Unknown check names or variables, malformed
                     declarations, or parameters not matching the
                     signature of the check.
    """
    if not isinstance(config, dict):
        raise QCConfigError(
            f'QC configuration must be a mapping (got {type(config)}).')

    unknown_keys = set(config) - {'check_all_for_nan', 'checks'}
    if unknown_keys:
        raise QCConfigError(
            f'Unknown QC configuration key(s): {sorted(unknown_keys)}.')

    check_all_for_nan = bool(config.get('check_all_for_nan', False))
    declared_checks = config.get('checks', {}) or {}
    if not isinstance(declared_checks, dict):
        raise QCConfigError("'checks' must map check names to lists of "
                            'declarations.')

    bound_checks = []

    for check_name, declarations in declared_checks.items():
        if check_name not in QC_CHECKS:
            raise QCConfigError(
                f"Unknown QC check '{check_name}'. Available checks: "
                f'{list(QC_CHECKS)}')
        function = QC_CHECKS[check_name]

        if not isinstance(declarations, (list, tuple)):
            raise QCConfigError(
                f"Declarations of '{check_name}' must be a list.")

        for ii, declaration in enumerate(declarations):
            where = f"'{check_name}' declaration #{ii}"

            if (not isinstance(declaration, dict)
                    or 'process_on' not in declaration
                    or 'parameters' not in declaration):
                raise QCConfigError(
                    f"{where} must be a mapping with 'process_on' and "
                    "'parameters'.")

            process_on = declaration['process_on']
            if isinstance(process_on, str):
                process_on = [process_on]
            parameters = declaration['parameters']
            if not isinstance(parameters, (list, tuple)):
                raise QCConfigError(f"{where}: 'parameters' must be a list.")

            missing_targets = [name for name in process_on if name not in ds]
            missing_params = [name for name in
                              _referenced_variables(parameters)
                              if name not in ds]

            if missing_targets or missing_params:
                if not ignore_missing:
                    raise QCConfigError(
                        f'{where} references variable(s) not in the '
                        f'Dataset: {missing_targets + missing_params}')
                process_on = [name for name in process_on if name in ds]
                if missing_params or not process_on:
                    warnings.warn(
                        f'Skipping {where}: variable(s) '
                        f'{missing_targets + missing_params} not in the '
                        'Dataset.')
                    continue

            args = tuple(ds[param['var']].values
                         if isinstance(param, dict) and 'var' in param
                         else param
                         for param in parameters)

            try:
                inspect.signature(function).bind(*args)
            except TypeError as err:
                raise QCConfigError(
                    f'{where}: parameters do not match {check_name}: '
                    f'{err}') from err

            bound_checks.append(BoundCheck(
                name=check_name, function=function,
                process_on=tuple(process_on), args=args))

    return check_all_for_nan, bound_checks


def _qc_variables(ds: xr.Dataset) -> List[str]:
    """
    Numeric data variables along the sample dimension.
    """
    return [name for name, var in ds.data_vars.items()
            if var.dims == (SAMPLE_DIM,)
            and np.issubdtype(var.dtype, np.number)]


def perform_qc(ds: xr.Dataset, config: Optional[dict] = None,
               ignore_missing: Optional[bool] = None,
               verbose: bool = False) -> xr.Dataset:
    """
    Run a configured set of QC checks on a profile Dataset.

    Flags start GOOD. If `check_all_for_nan` is set, every variable first
    gets MISSING (9) where it is NaN. The declared checks then run in
    declaration order; a new flag replaces the current one only where it
    is more severe (worst flag wins).

    Parameters:
    - ds: Profile Dataset.
    - config: QC configuration. Default: DEFAULT_QC_CONFIG.
    - ignore_missing: Passed on to `bind_qc_config`. Defaults to True for
                      the default configuration and False otherwise.
    - verbose: Print a line per check.

    Returns:
    - QC table: an xr.Dataset with, for each numeric variable, an integer
      flag variable of the same name and a `<VAR>_CHECK` variable naming
      the check that set the flag ('' for GOOD).

    Raises:
    - QCConfigError: If the configuration is invalid for *ds*.
    - ValueError: If a check returns a flag vector of the wrong length.
    """
    if config is None:
        config = DEFAULT_QC_CONFIG
        if ignore_missing is None:
            ignore_missing = True

    check_all_for_nan, bound_checks = bind_qc_config(
        config, ds, ignore_missing=bool(ignore_missing))

    n_samples = ds.sizes[SAMPLE_DIM]
    var_names = _qc_variables(ds)
    for bound_check in bound_checks:
        for name in bound_check.process_on:
            if name not in var_names:
                raise QCConfigError(
                    f"'{name}' is not a numeric variable along "
                    f'{SAMPLE_DIM} and cannot receive QC flags.')

    flags = {name: np.full(n_samples, int(QCFlag.GOOD), dtype=int)
             for name in var_names}
    applied = {name: np.full(n_samples, '', dtype=object)
               for name in var_names}

    def update(name, new_flags, check_name):
        combined = combine_flags(flags[name], new_flags)
        applied[name][combined != flags[name]] = check_name
        flags[name] = combined

    if check_all_for_nan:
        for name in var_names:
            update(name, checks.nan_check(ds[name].values, QCFlag.MISSING),
                   'nan_check')

    for bound_check in bound_checks:
        new_flags = bound_check.run()
        if new_flags.size != n_samples:
            raise ValueError(
                f'{bound_check.name} returned {new_flags.size} flags for '
                f'{n_samples} samples.')
        for name in bound_check.process_on:
            update(name, new_flags, bound_check.name)
        if verbose:
            n_flagged = np.count_nonzero(new_flags != QCFlag.GOOD)
            print(f'{bound_check.name} on {list(bound_check.process_on)}: '
                  f'{n_flagged} samples flagged')

    ds_qc = xr.Dataset()
    for name in var_names:
        ds_qc[name] = xr.DataArray(
            flags[name], dims=(SAMPLE_DIM,),
            attrs={'long_name': f'QC flags of {name}', **flag_attributes()})
        ds_qc[f'{name}_CHECK'] = xr.DataArray(
            applied[name].astype(str), dims=(SAMPLE_DIM,),
            attrs={'long_name': f'QC check setting the flags of {name}'})

    ds_qc.attrs['applied_checks'] = ', '.join(
        (['nan_check'] if check_all_for_nan else [])
        + list(dict.fromkeys(check.name for check in bound_checks)))

    return ds_qc


def _grid_column(ds_grid: xr.Dataset, nn: int, depth_dim: str,
                 profile_dim: str) -> xr.Dataset:
    """
    One cast of a grid as a profile Dataset along the sample dimension.
    Per-cast variables (time, position) are repeated at every depth.
    """
    n_depth = ds_grid.sizes[depth_dim]
    column = {depth_dim: ds_grid[depth_dim].values.astype(float)}
    for name, var in ds_grid.data_vars.items():
        if not np.issubdtype(var.dtype, np.number):
            continue
        if set(var.dims) == {depth_dim, profile_dim}:
            column[name] = var.transpose(depth_dim, profile_dim).values[:, nn]
        elif var.dims == (profile_dim,):
            column[name] = np.full(n_depth, var.values[nn], dtype=float)

    return xr.Dataset({name: (SAMPLE_DIM, values)
                       for name, values in column.items()})


def perform_gridded_qc(ds_grid: xr.Dataset, config: Optional[dict] = None,
                       ignore_missing: Optional[bool] = None,
                       depth_dim: str = 'DEPTH', profile_dim: str = 'PROFILE',
                       verbose: bool = False) -> xr.Dataset:
    """
    Run a configured set of QC checks on gridded casts.

    Every cast (column) of the grid is checked on its own with
    `perform_qc`, the depth axis standing in for the sample dimension and
    the per-cast time and position repeated at every depth. Checks can
    refer to the depth axis as `{'var': 'DEPTH'}`.

    Parameters:
    - ds_grid: Grid from glidproc.grid.gridding.grid_profiles.
    - config: QC configuration. Default: DEFAULT_GRIDDED_QC_CONFIG.
    - ignore_missing: Passed on to `bind_qc_config`. Defaults to True for
                      the default configuration and False otherwise.
    - depth_dim, profile_dim: Dimension names of the grid.
    - verbose: Show a progress bar over casts and print a line per check.

    Returns:
    - QC table: for each numeric (depth, cast) variable a flag variable
      and a `<VAR>_CHECK` variable of the same shape. Per-cast variables
      get the most severe flag found in their cast.

    Raises:
    - QCConfigError: If the configuration is invalid for the grid.
    """
    if config is None:
        config = DEFAULT_GRIDDED_QC_CONFIG
        if ignore_missing is None:
            ignore_missing = True

    n_depth = ds_grid.sizes[depth_dim]
    n_profiles = ds_grid.sizes[profile_dim]

    grid_vars, cast_vars = [], []
    for name, var in ds_grid.data_vars.items():
        if not np.issubdtype(var.dtype, np.number):
            continue
        if set(var.dims) == {depth_dim, profile_dim}:
            grid_vars.append(name)
        elif var.dims == (profile_dim,):
            cast_vars.append(name)

    flags = {name: np.full((n_depth, n_profiles), int(QCFlag.GOOD))
             for name in grid_vars}
    applied = {name: np.full((n_depth, n_profiles), '', dtype=object)
               for name in grid_vars}
    flags.update({name: np.full(n_profiles, int(QCFlag.GOOD))
                  for name in cast_vars})
    applied.update({name: np.full(n_profiles, '', dtype=object)
                    for name in cast_vars})

    applied_checks = ''
    with warnings.catch_warnings():
        # Missing variable warnings would repeat for every cast
        warnings.simplefilter('once', UserWarning)
        for nn in tqdm(range(n_profiles), desc='QC of gridded casts',
                       disable=not verbose):
            column = _grid_column(ds_grid, nn, depth_dim, profile_dim)
            ds_qc_column = perform_qc(column, config,
                                      ignore_missing=ignore_missing)
            applied_checks = ds_qc_column.attrs['applied_checks']

            for name in grid_vars:
                flags[name][:, nn] = ds_qc_column[name].values
                applied[name][:, nn] = ds_qc_column[f'{name}_CHECK'].values
            for name in cast_vars:
                column_flags = ds_qc_column[name].values
                worst = int(np.argmax(severity(column_flags)))
                flags[name][nn] = column_flags[worst]
                applied[name][nn] = (
                    ds_qc_column[f'{name}_CHECK'].values[worst])

    ds_qc = xr.Dataset(coords={depth_dim: ds_grid[depth_dim],
                               profile_dim: ds_grid[profile_dim]})
    for name in grid_vars + cast_vars:
        dims = ((depth_dim, profile_dim) if name in grid_vars
                else (profile_dim,))
        ds_qc[name] = xr.DataArray(
            flags[name], dims=dims,
            attrs={'long_name': f'QC flags of {name}', **flag_attributes()})
        ds_qc[f'{name}_CHECK'] = xr.DataArray(
            applied[name].astype(str), dims=dims,
            attrs={'long_name': f'QC check setting the flags of {name}'})
    ds_qc.attrs['applied_checks'] = applied_checks

    if verbose:
        for name in grid_vars:
            n_flagged = np.count_nonzero(flags[name] != QCFlag.GOOD)
            print(f'{name}: {n_flagged} of {flags[name].size} grid points '
                  'flagged')

    return ds_qc


def _flagged_variables(ds_qc: xr.Dataset) -> List[str]:
    return [name for name in ds_qc.data_vars
            if f'{name}_CHECK' in ds_qc]


def summarize_qc(ds_qc: xr.Dataset, filename: Optional[str] = None,
                 verbose: bool = False) -> str:
    """
    Text summary of a QC table: per variable, the number of good, missing
    and (probably) bad samples, and the number of samples flagged by each
    check.

    Parameters:
    - ds_qc: QC table from `perform_qc`.
    - filename: If given, the summary is also written to this file.
    - verbose: If True, print the summary.

    Returns:
    - The summary (str).
    """
    lines = [f'{ds_qc.sizes[SAMPLE_DIM]} entries per variable before QC '
             'filtering.']

    for name in _flagged_variables(ds_qc):
        flags = ds_qc[name].values
        check_names = ds_qc[f'{name}_CHECK'].values

        lines.append(f'QC of {name}:')
        lines.append(f'{np.count_nonzero(flags == QCFlag.GOOD)} good '
                     '(QC flag 1) measurements')
        lines.append(f'{np.count_nonzero(flags == QCFlag.MISSING)} NaN '
                     '(QC flag 9) values')
        n_bad = np.count_nonzero((flags > 2) & (flags < 9))
        lines.append(f'{n_bad} (probably) bad (QC flag 3, 4, 6) values')
        lines.append('Detailed list of applied QC:')
        applied, counts = np.unique(check_names[check_names != ''],
                                    return_counts=True)
        for check_name, count in zip(applied, counts):
            lines.append(f'{count} entries marked with {check_name}')
        lines.append('')

    summary = '\n'.join(lines)

    if filename is not None:
        with open(filename, 'w', encoding='utf-8') as f:
            f.write(summary)
    if verbose:
        print(summary)

    return summary


@record_processing(
    'Added QC flag variables (QC_<variable>) from the QC table.',
    'Attach QC flags')
def combine_data_and_qc(ds: xr.Dataset, ds_qc: xr.Dataset) -> xr.Dataset:
    """
    Attach the flags of a QC table to a data Dataset as `QC_<VAR>`
    variables (CF flag attributes, linked through the
    `ancillary_variables` attribute of the data variable).

    Variables of *ds* without flags in *ds_qc* are left without a QC
    variable (with a warning).
    """
    if ds_qc.sizes[SAMPLE_DIM] != ds.sizes[SAMPLE_DIM]:
        raise ValueError(
            f'QC table has {ds_qc.sizes[SAMPLE_DIM]} samples, the '
            f'Dataset {ds.sizes[SAMPLE_DIM]}.')

    ds_new = ds.copy()

    for name in _qc_variables(ds):
        if name not in ds_qc:
            warnings.warn(f'No QC flags found for {name}.')
            continue

        qc_name = f'QC_{name}'
        ds_new[qc_name] = xr.DataArray(
            ds_qc[name].values.astype(np.int8), dims=(SAMPLE_DIM,),
            attrs={'long_name': f'Quality flag of {name}',
                   **flag_attributes()})
        if f'{name}_CHECK' in ds_qc:
            ds_new[qc_name].attrs['comment'] = (
                'Checks applied: ' + ', '.join(
                    np.unique(ds_qc[f'{name}_CHECK'].values[
                        ds_qc[f'{name}_CHECK'].values != '']).tolist()))
        ds_new[name].attrs['ancillary_variables'] = qc_name

    return ds_new


@record_processing(
    'Set samples with QC flags {bad_flags} to NaN.',
    'Mask flagged samples')
def apply_qc(ds: xr.Dataset, ds_qc: xr.Dataset,
             bad_flags: Sequence[int] = (3, 4, 6, 9)) -> xr.Dataset:
    """
    Mask flagged samples.

    Returns a copy of *ds* where every variable flagged in *ds_qc* is NaN
    at the samples whose flag is in *bad_flags*. No sample is removed.
    """
    ds_new = ds.copy(deep=True)
    for name in _flagged_variables(ds_qc):
        if name not in ds_new:
            continue
        bad = np.isin(ds_qc[name].values, bad_flags)
        ds_new[name] = ds_new[name].where(
            xr.DataArray(~bad, dims=ds_new[name].dims))

    return ds_new
