'''
GLIDPROC.QC.FLAGS

QC flag codes and the rule for combining flags set by different checks on
the same variable.

Precedence is "worst flag wins", by the severity order

    GOOD < PROBABLY_BAD < BAD < SPIKE < MISSING

so a sample flagged by several checks keeps the most severe flag.
'''

import numpy as np
from enum import IntEnum
from typing import Dict


class QCFlag(IntEnum):
    GOOD = 1
    PROBABLY_BAD = 3
    BAD = 4
    SPIKE = 6
    MISSING = 9


# Lowest to highest severity
FLAG_SEVERITY = [QCFlag.GOOD, QCFlag.PROBABLY_BAD, QCFlag.BAD,
                 QCFlag.SPIKE, QCFlag.MISSING]

FLAG_MEANINGS: Dict[int, str] = {
    QCFlag.GOOD: 'good_data',
    QCFlag.PROBABLY_BAD: 'probably_bad_data',
    QCFlag.BAD: 'bad_data',
    QCFlag.SPIKE: 'spike',
    QCFlag.MISSING: 'missing_value',
}


def severity(flags) -> np.ndarray:
    """
    Rank of each flag in the severity order (0 = good).

    Raises a ValueError for codes that are not QC flags.
    """
    flags = np.asarray(flags, dtype=int)
    codes = np.array([int(flag) for flag in FLAG_SEVERITY])

    unknown = ~np.isin(flags, codes)
    if np.any(unknown):
        raise ValueError(
            f'Unknown QC flag code(s): {np.unique(flags[unknown]).tolist()}. '
            f'Valid codes: {codes.tolist()}')

    return np.searchsorted(codes, flags)


def combine_flags(*flag_vectors) -> np.ndarray:
    """
    Combine flag vectors of the same variable, keeping the most severe flag
    for each sample.

    Parameters:
    - *flag_vectors: Equally long integer flag vectors.

    Returns:
    - np.ndarray (int) with the combined flags.

    Raises:
    - ValueError: If no vectors are given, their lengths differ, or they
                  contain unknown flag codes.
    """
    if not flag_vectors:
        raise ValueError('At least one flag vector is needed.')

    vectors = [np.asarray(flags, dtype=int).ravel()
               for flags in flag_vectors]
    sizes = {vector.size for vector in vectors}
    if len(sizes) > 1:
        raise ValueError(
            f'Flag vectors must have the same length (got {sorted(sizes)}).')

    combined = vectors[0].copy()
    for vector in vectors[1:]:
        worse = severity(vector) > severity(combined)
        combined[worse] = vector[worse]

    # Validates a single input too
    severity(combined)

    return combined


def flag_attributes() -> dict:
    """
    CF attributes (flag_values, flag_meanings) describing the flag codes.
    """
    return {
        'flag_values': np.array([int(flag) for flag in FLAG_SEVERITY],
                                dtype=np.int8),
        'flag_meanings': ' '.join(FLAG_MEANINGS[flag]
                                  for flag in FLAG_SEVERITY),
    }
