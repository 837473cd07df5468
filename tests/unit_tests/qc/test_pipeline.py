import pytest
import numpy as np
import pandas as pd
import xarray as xr
from glidproc.data.profile import make_profile
from glidproc.qc import checks, pipeline
from glidproc.qc.flags import combine_flags
from glidproc.qc.pipeline import QCConfigError
from glidproc.util.processing import add_processing_variable

T0 = pd.Timestamp('2023-05-01', tz='UTC').timestamp()


@pytest.fixture
def glider_ds():
    n = 8
    return make_profile(
        TIME=T0 + 10 * np.arange(n),
        DEPTH=np.linspace(0, 35, n),
        PRES=np.linspace(0, 35.5, n),
        TEMP=[15, 15, 14, np.nan, 13, 50, 12, 12],
        CNDC=[4.2, 4.2, 4.1, 4.1, np.nan, 4.0, 4.0, 4.0],
        LATITUDE=np.full(n, 40.0),
        LONGITUDE=[10, 10, 10, 10, 10, 10, 10, 200],
    )


RANGE_CONFIG = {
    'check_all_for_nan': True,
    'checks': {
        'valid_range_check': [
            {'process_on': 'TEMP',
             'parameters': [{'var': 'TEMP'}, -2, 42, 4]},
        ],
    },
}


### Binding the configuration

def test_bind_qc_config(glider_ds):
    check_all_for_nan, bound = pipeline.bind_qc_config(RANGE_CONFIG,
                                                       glider_ds)
    assert check_all_for_nan
    assert len(bound) == 1
    assert bound[0].name == 'valid_range_check'
    assert bound[0].process_on == ('TEMP',)
    # Variable references are resolved to the data
    assert np.array_equal(bound[0].args[0], glider_ds.TEMP.values,
                          equal_nan=True)
    assert bound[0].args[1:] == (-2, 42, 4)


def test_bind_qc_config_unknown_check(glider_ds):
    config = {'checks': {'rainbow_check': []}}
    with pytest.raises(QCConfigError, match='rainbow_check'):
        pipeline.bind_qc_config(config, glider_ds)


def test_bind_qc_config_unknown_key(glider_ds):
    with pytest.raises(QCConfigError):
        pipeline.bind_qc_config({'checks': {}, 'speed': 1}, glider_ds)


def test_bind_qc_config_wrong_arity(glider_ds):
    config = {'checks': {'valid_range_check': [
        {'process_on': 'TEMP', 'parameters': [{'var': 'TEMP'}, -2]}]}}
    with pytest.raises(QCConfigError, match='parameters do not match'):
        pipeline.bind_qc_config(config, glider_ds)


def test_bind_qc_config_malformed_declaration(glider_ds):
    config = {'checks': {'valid_range_check': [{'process_on': 'TEMP'}]}}
    with pytest.raises(QCConfigError):
        pipeline.bind_qc_config(config, glider_ds)


def test_bind_qc_config_missing_variable(glider_ds):
    config = {'checks': {'valid_range_check': [
        {'process_on': 'CHLA', 'parameters': [{'var': 'CHLA'}, 0, 50, 4]},
        {'process_on': ['TEMP', 'DOXY'],
         'parameters': [{'var': 'TEMP'}, -2, 42, 4]},
    ]}}

    with pytest.raises(QCConfigError, match='CHLA'):
        pipeline.bind_qc_config(config, glider_ds)

    with pytest.warns(UserWarning, match='Skipping'):
        _, bound = pipeline.bind_qc_config(config, glider_ds,
                                           ignore_missing=True)
    # CHLA declaration skipped, DOXY dropped from the group
    assert len(bound) == 1
    assert bound[0].process_on == ('TEMP',)


def test_bind_qc_config_not_a_mapping(glider_ds):
    with pytest.raises(QCConfigError):
        pipeline.bind_qc_config(['valid_range_check'], glider_ds)


### Running the checks

def test_perform_qc_nan_and_range(glider_ds):
    ds_qc = pipeline.perform_qc(glider_ds, RANGE_CONFIG)

    assert ds_qc.TEMP.values.tolist() == [1, 1, 1, 9, 1, 4, 1, 1]
    assert ds_qc.CNDC.values.tolist() == [1, 1, 1, 1, 9, 1, 1, 1]
    assert ds_qc.TEMP_CHECK.values[3] == 'nan_check'
    assert ds_qc.TEMP_CHECK.values[5] == 'valid_range_check'
    assert ds_qc.TEMP_CHECK.values[0] == ''
    assert ds_qc.attrs['applied_checks'] == 'nan_check, valid_range_check'


def test_perform_qc_missing_not_overwritten(glider_ds):
    """A NaN sample stays MISSING even if a later check flags it BAD."""
    config = {'check_all_for_nan': True, 'checks': {'valid_range_check': [
        {'process_on': 'TEMP',
         'parameters': [{'var': 'TEMP'}, 100, 200, 4]}]}}
    ds_qc = pipeline.perform_qc(glider_ds, config)
    assert ds_qc.TEMP.values[3] == 9
    assert np.all(np.delete(ds_qc.TEMP.values, 3) == 4)


def test_perform_qc_group_flags(glider_ds):
    config = {'checks': {'impossible_location_check': [
        {'process_on': ['LATITUDE', 'LONGITUDE'],
         'parameters': [{'var': 'LATITUDE'}, {'var': 'LONGITUDE'}, 4]}]}}
    ds_qc = pipeline.perform_qc(glider_ds, config)

    expected = [1, 1, 1, 1, 1, 1, 1, 4]
    assert ds_qc.LATITUDE.values.tolist() == expected
    assert ds_qc.LONGITUDE.values.tolist() == expected
    # Not part of the group, and no NaN check
    assert np.all(ds_qc.TEMP.values == 1)


def test_perform_qc_worst_flag_wins(glider_ds):
    config = {'checks': {
        'spike_check': [
            {'process_on': 'TEMP', 'parameters': [{'var': 'TEMP'}, 6, 5]}],
        'valid_range_check': [
            {'process_on': 'TEMP',
             'parameters': [{'var': 'TEMP'}, -2, 42, 4]}],
    }}
    ds_qc = pipeline.perform_qc(glider_ds, config)
    # The 50 degree sample is a spike (6) and out of range (4)
    assert ds_qc.TEMP.values[5] == 6
    assert ds_qc.TEMP_CHECK.values[5] == 'spike_check'


def test_perform_qc_matches_combined_flags(glider_ds):
    """Check order does not matter, flags combine like combine_flags."""
    config = {'check_all_for_nan': True, 'checks': {
        'valid_range_check': [
            {'process_on': 'TEMP',
             'parameters': [{'var': 'TEMP'}, -2, 42, 4]}],
        'spike_check': [
            {'process_on': 'TEMP', 'parameters': [{'var': 'TEMP'}, 6, 5]}],
    }}
    ds_qc = pipeline.perform_qc(glider_ds, config)

    temp = glider_ds.TEMP.values
    expected = combine_flags(checks.nan_check(temp, 9),
                             checks.spike_check(temp, 6, 5),
                             checks.valid_range_check(temp, -2, 42, 4))
    assert np.array_equal(ds_qc.TEMP.values, expected)
    assert ds_qc.TEMP.values[5] == 6
    assert ds_qc.TEMP_CHECK.values[5] == 'spike_check'


def test_perform_qc_unknown_flag_code(glider_ds):
    config = {'checks': {'valid_range_check': [
        {'process_on': 'TEMP',
         'parameters': [{'var': 'TEMP'}, -2, 42, 7]}]}}
    with pytest.raises(ValueError):
        pipeline.perform_qc(glider_ds, config)


def test_perform_qc_default_config(glider_ds):
    ds_qc = pipeline.perform_qc(glider_ds)

    assert ds_qc.TEMP.values[3] == 9
    assert ds_qc.TEMP.values[5] in (4, 6)
    # Longitude 200 is an impossible location
    assert ds_qc.LONGITUDE.values[-1] == 4
    assert ds_qc.TIME.values.tolist() == [1] * 8


def test_perform_qc_target_not_numeric(glider_ds):
    ds = glider_ds.copy()
    ds['NAME'] = ('N_MEASUREMENTS', np.array(['x'] * 8))
    config = {'checks': {'nan_check': [
        {'process_on': 'NAME', 'parameters': [{'var': 'TEMP'}, 9]}]}}
    with pytest.raises(QCConfigError):
        pipeline.perform_qc(ds, config)


def test_perform_qc_verbose(glider_ds, capsys):
    pipeline.perform_qc(glider_ds, RANGE_CONFIG, verbose=True)
    assert 'valid_range_check' in capsys.readouterr().out


### Summary, flags and masking

def test_summarize_qc(glider_ds, tmp_path):
    ds_qc = pipeline.perform_qc(glider_ds, RANGE_CONFIG)
    filename = tmp_path / 'qc_summary.txt'

    summary = pipeline.summarize_qc(ds_qc, filename=filename)

    assert summary.startswith('8 entries per variable')
    assert 'QC of TEMP:' in summary
    assert '6 good (QC flag 1) measurements' in summary
    assert '1 entries marked with valid_range_check' in summary
    assert filename.read_text(encoding='utf-8') == summary


def test_combine_data_and_qc(glider_ds):
    ds = add_processing_variable(glider_ds)
    ds_qc = pipeline.perform_qc(ds, RANGE_CONFIG)

    ds_out = pipeline.combine_data_and_qc(ds, ds_qc)

    assert ds_out.QC_TEMP.dtype == np.int8
    assert ds_out.QC_TEMP.values.tolist() == [1, 1, 1, 9, 1, 4, 1, 1]
    assert ds_out.TEMP.attrs['ancillary_variables'] == 'QC_TEMP'
    assert ds_out.QC_TEMP.attrs['flag_meanings'].startswith('good_data')
    assert 'valid_range_check' in ds_out.QC_TEMP.attrs['comment']
    assert 'Added QC flag variables' in (
        ds_out.PROCESSING.attrs['post_processing'])
    # Input untouched
    assert 'QC_TEMP' not in ds


def test_combine_data_and_qc_size_mismatch(glider_ds):
    ds_qc = pipeline.perform_qc(glider_ds, RANGE_CONFIG)
    with pytest.raises(ValueError):
        pipeline.combine_data_and_qc(
            glider_ds.isel(N_MEASUREMENTS=slice(0, 4)), ds_qc)


def test_apply_qc(glider_ds):
    ds_qc = pipeline.perform_qc(glider_ds, RANGE_CONFIG)
    ds_masked = pipeline.apply_qc(glider_ds, ds_qc)

    assert ds_masked.sizes['N_MEASUREMENTS'] == 8
    assert np.isnan(ds_masked.TEMP.values[[3, 5]]).all()
    assert np.sum(np.isnan(ds_masked.TEMP.values)) == 2
    assert np.array_equal(ds_masked.DEPTH.values, glider_ds.DEPTH.values)
    # Input untouched
    assert glider_ds.TEMP.values[5] == 50


def test_apply_qc_custom_flags(glider_ds):
    ds_qc = pipeline.perform_qc(glider_ds, RANGE_CONFIG)
    ds_masked = pipeline.apply_qc(glider_ds, ds_qc, bad_flags=(9,))
    assert ds_masked.TEMP.values[5] == 50


### Gridded casts

@pytest.fixture
def glider_grid():
    depth = np.arange(5.0)
    temp = np.array([[15, 15, 16],
                     [14, np.nan, 15],
                     [13, 14, 50],
                     [12, 13, 13],
                     [11, 12, 12.0]])
    return xr.Dataset(
        {'TEMP': (('DEPTH', 'PROFILE'), temp),
         'PROFILE_INDEX': ('PROFILE', [1.0, 2.0, 3.0]),
         'TIME': ('PROFILE', [T0, pd.Timestamp('1990-01-01',
                                               tz='UTC').timestamp(),
                              T0 + 3600]),
         'LATITUDE': ('PROFILE', [40.0, 40.0, 40.0]),
         'LONGITUDE': ('PROFILE', [10.0, 10.0, 10.0]),
         'TEMP_MEAN': ('DEPTH', np.nanmean(temp, axis=1))},
        coords={'DEPTH': depth, 'PROFILE': np.arange(3)})


GRID_CONFIG = {
    'check_all_for_nan': True,
    'checks': {
        'impossible_date_check': [
            {'process_on': ['TEMP', 'TIME'],
             'parameters': [{'var': 'TIME'}, 4]},
        ],
        'valid_range_check': [
            {'process_on': 'TEMP', 'parameters': [{'var': 'TEMP'}, -2, 42, 4]},
        ],
    },
}


def test_perform_gridded_qc(glider_grid):
    ds_qc = pipeline.perform_gridded_qc(glider_grid, GRID_CONFIG)

    assert ds_qc.TEMP.dims == ('DEPTH', 'PROFILE')
    assert ds_qc.TEMP.values[1, 1] == 9
    assert ds_qc.TEMP.values[2, 2] == 4
    assert ds_qc.TEMP_CHECK.values[2, 2] == 'valid_range_check'
    # The whole 1990 cast is flagged, the missing sample keeps 9
    assert ds_qc.TEMP.values[[0, 2, 3, 4], 1].tolist() == [4, 4, 4, 4]
    assert ds_qc.TEMP_CHECK.values[0, 1] == 'impossible_date_check'
    assert ds_qc.TIME.dims == ('PROFILE',)
    assert ds_qc.TIME.values.tolist() == [1, 4, 1]
    assert np.all(ds_qc.TEMP.values[:, 0] == 1)
    # Depth only statistics are not flagged
    assert 'TEMP_MEAN' not in ds_qc
    assert 'flag_values' in ds_qc.TEMP.attrs


def test_perform_gridded_qc_depth_reference(glider_grid):
    """Checks can refer to the depth axis of the grid."""
    config = {'checks': {'valid_range_check': [
        {'process_on': 'TEMP',
         'parameters': [{'var': 'TEMP'}, [0, 0], [100, 14.5], 4,
                        {'var': 'DEPTH'}, [[0, 2], [2, 5]]]}]}}
    ds_qc = pipeline.perform_gridded_qc(glider_grid, config)
    assert ds_qc.TEMP.values[2].tolist() == [1, 1, 4]
    assert ds_qc.TEMP.values[0].tolist() == [1, 1, 1]


def test_perform_gridded_qc_apply(glider_grid):
    ds_qc = pipeline.perform_gridded_qc(glider_grid, GRID_CONFIG)
    ds_masked = pipeline.apply_qc(glider_grid, ds_qc)
    assert np.isnan(ds_masked.TEMP.values[:, 1]).all()
    assert np.isnan(ds_masked.TEMP.values[2, 2])
    assert np.isfinite(ds_masked.TEMP.values[:, 0]).all()


def test_perform_gridded_qc_default_config(glider_grid):
    ds_qc = pipeline.perform_gridded_qc(glider_grid)
    # Out of range and a spike, the spike flag is the more severe
    assert ds_qc.TEMP.values[2, 2] == 6
    assert ds_qc.TEMP_CHECK.values[2, 2] == 'spike_check'
    assert ds_qc.TEMP.values[1, 1] == 9
    assert ds_qc.TIME.values[1] == 4


def test_perform_gridded_qc_invalid_config(glider_grid):
    with pytest.raises(QCConfigError):
        pipeline.perform_gridded_qc(
            glider_grid, {'checks': {'no_such_check': []}})
