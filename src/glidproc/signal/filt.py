'''
GLIDPROC.SIGNAL.FILT

Functions for filtering data.

- Zero-phase recursive low-pass filter (SBE Data Processing style).
'''
import numpy as np
from scipy.signal import lfilter
from typing import Union, Sequence


def seabird_filter(signal: Union[np.ndarray, Sequence[float]],
                   time_constant: float,
                   sampling_period: float) -> np.ndarray:
    """
    Apply a first-order recursive low-pass filter forward and then
    backward over a signal, cancelling the phase lag of a single pass.

    This is the filter described in the SBE Data Processing manual
    (section "Filter"):

        A = 1 / (1 + 2*tau/dt)
        B = (1 - 2*tau/dt) * A
        y[n] = A * (x[n] + x[n-1]) - B * y[n-1],   y[0] = x[0]

    Parameters
    ----------
    signal : array-like
        Evenly sampled input signal.
    time_constant : float
        Filter time constant (same unit as *sampling_period*).
    sampling_period : float
        Sampling period of the signal.

    Returns
    -------
    np.ndarray
        Filtered signal with the same shape as the input.

    Notes
    -----
    NaNs propagate through the recursion. Remove or fill them first if
    that is not wanted.
    """
    signal = np.asarray(signal, dtype=float)
    orig_shape = signal.shape
    x = signal.ravel()

    if x.size <= 1:
        return signal.copy()

    magic_number = 2 * time_constant / sampling_period
    coef_a = 1 / (1 + magic_number)
    coef_b = (1 - magic_number) * coef_a

    # Work on the deviation from the first sample, so that a constant
    # signal stays exactly zero through both passes
    offset = x[0]
    x = x - offset

    # Initial state chosen so that the first output equals the first input
    for _ in range(2):
        zi = np.array([(1 - coef_a) * x[0]])
        x, _zf = lfilter([coef_a, coef_a], [1.0, coef_b], x, zi=zi)
        x = x[::-1]

    return (x + offset).reshape(orig_shape)
