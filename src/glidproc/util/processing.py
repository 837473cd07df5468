'''
GLIDPROC.UTIL.PROCESSING

Decorator function for recording processing steps to the PROCESSING
variable of a dataset.

- *ds.PROCESSING.post_processing* gets a human readable description of
  each step.
- *ds.PROCESSING.python_script* gets the equivalent function call.

Datasets without a PROCESSING variable are left untouched.
'''

import functools
import inspect
import numpy as np
import xarray as xr


def add_processing_variable(ds: xr.Dataset) -> xr.Dataset:
    """
    Add an empty `PROCESSING` variable whose attributes will collect the
    processing history of the dataset.
    """
    ds = ds.copy()
    ds['PROCESSING'] = xr.DataArray(
        data=None, dims=[],
        attrs={
            'long_name': 'Empty variable whose attributes describe '
                         'processing steps applied to the data',
            'post_processing': '',
            'python_script': 'import glidproc',
        })
    return ds


def _format_value(value):
    if isinstance(value, str):
        return f"'{value}'"
    if isinstance(value, np.ndarray):
        return f'np.array({value.tolist()})'
    return f'{value}'


def record_processing(description_template, py_comment=None):
    """
    A decorator to record processing steps and their input arguments in the
    dataset's metadata.

    Parameters:
    - description_template (str): A template for the description that
                                  includes placeholders for input arguments.
    - py_comment (str): Optional template for a comment line placed above
                        the function call in the python script.

    Returns:
    - decorator function
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(ds, *args, **kwargs):

            # Apply the function
            ds_out = func(ds, *args, **kwargs)

            if "PROCESSING" not in ds_out:
                return ds_out

            sig = inspect.signature(func)
            bound_args = sig.bind(ds, *args, **kwargs)
            bound_args.apply_defaults()

            description = description_template.format(**bound_args.arguments)
            ds_out["PROCESSING"].attrs["post_processing"] += (
                description + "\n")

            # Only list arguments that differ from their defaults
            args_list = []
            for name, value in bound_args.arguments.items():
                if name == "ds":
                    continue
                default_value = sig.parameters[name].default
                if isinstance(value, (xr.Dataset, xr.DataArray)):
                    args_list.append(f"{name}={name}")
                elif default_value is inspect.Parameter.empty or not np.array_equal(
                        np.asarray(value, dtype=object),
                        np.asarray(default_value, dtype=object)):
                    args_list.append(f"{name}={_format_value(value)}")

            module_name = func.__module__.replace('glidproc.', '')
            function_call = (
                f"ds = {module_name}.{func.__name__}(ds, "
                f"{', '.join(args_list)})"
            )

            if py_comment:
                ds_out["PROCESSING"].attrs["python_script"] += (
                    f"\n\n# {py_comment.format(**bound_args.arguments)}"
                    f"\n{function_call}"
                )
            else:
                ds_out["PROCESSING"].attrs["python_script"] += (
                    f"\n\n{function_call}")
            return ds_out

        return wrapper

    return decorator
