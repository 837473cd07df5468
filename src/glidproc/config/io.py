'''
GLIDPROC.CONFIG.IO

Import/export QC configurations between Python dicts and human-readable
yaml.
'''

import numpy as np
from ruamel.yaml import YAML

from glidproc.qc.pipeline import DEFAULT_QC_CONFIG, QCConfigError

yaml = YAML()
yaml.indent(mapping=2, sequence=4, offset=2)


# Convert numpy arrays and scalars (and tuples) to plain yaml types
def clean_config(obj):
    if isinstance(obj, dict):
        return {k: clean_config(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [clean_config(v) for v in obj]
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, np.generic):
        return obj.item()
    else:
        return obj


def export_qc_config(filename, config=None):
    """
    Export a QC configuration to YAML.

    Parameters:
    - filename: Path of the yaml file.
    - config: QC configuration. Default: DEFAULT_QC_CONFIG.
    """
    if config is None:
        config = DEFAULT_QC_CONFIG

    with open(filename, 'w', encoding='utf-8') as f:
        yaml.dump(clean_config(config), f)


def load_qc_config(filename):
    """
    Load a QC configuration from a YAML file.

    Only the structure is checked here (a mapping with a 'checks'
    mapping); the check names and variables are validated against a Dataset
    by glidproc.qc.pipeline.bind_qc_config.

    Parameters:
    - filename: Path of the yaml file.

    Returns:
    - dict: The configuration, with plain dicts and lists.

    Raises:
    - QCConfigError: If the file does not hold a mapping with a 'checks'
                     mapping.
    """
    with open(filename, encoding='utf-8') as f:
        config = yaml.load(f)

    # ruamel gives CommentedMap/CommentedSeq, convert to dict/list
    config = clean_config(config)

    if not isinstance(config, dict):
        raise QCConfigError(
            f'{filename} does not hold a QC configuration mapping.')
    if not isinstance(config.get('checks', {}), dict):
        raise QCConfigError(
            f"'checks' in {filename} must map check names to lists of "
            'declarations.')

    return config
