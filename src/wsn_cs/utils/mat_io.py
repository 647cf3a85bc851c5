"""MATLAB v5 file input/output for source matrices and output streams."""

import os

import numpy as np
import scipy.io as sio


def load_matrix(mat_file, name=None):
    """
    Load an n × S source matrix from a .mat file.

    Parameters
    ----------
    mat_file : str or Path
        MATLAB v5 file.
    name : str, optional
        Variable to read. If omitted the file must hold exactly one variable.

    Returns
    -------
    ndarray of shape (n, S)
        One signal per column. A vector is returned as a single column.
    """
    if not os.path.exists(mat_file):
        raise FileNotFoundError(f"Matrix file not found: {mat_file}")
    mat_data = sio.loadmat(mat_file)
    variables = [k for k in mat_data if not k.startswith('__')]

    if name is None:
        if len(variables) != 1:
            raise ValueError(
                f"{mat_file} holds {len(variables)} variables {variables}; pass name="
            )
        name = variables[0]
    if name not in mat_data:
        raise KeyError(f"Variable '{name}' not found in {mat_file}. Available: {variables}")

    X = np.asarray(mat_data[name], dtype=np.float64)
    if X.ndim == 1:
        X = X[:, None]
    if X.ndim != 2:
        raise ValueError(f"Variable '{name}' has {X.ndim} dimensions, expected 2")
    return X


def iter_columns(X):
    """Yield the columns of X one at a time as 1-D arrays."""
    X = np.atleast_2d(np.asarray(X, dtype=np.float64))
    for j in range(X.shape[1]):
        yield X[:, j]


def save_matrix(mat_file, X, name='X'):
    sio.savemat(mat_file, {name: np.asarray(X, dtype=np.float64)})


def save_streams(mat_file, store):
    """
    Write every stream of a StreamStore to a .mat file.

    Each stream becomes one variable named after its scoped key
    (e.g. 'C1N3_RecTemp'). Streams whose buffers differ in length are
    written as cell arrays.

    Returns
    -------
    list of str
        Variable names written.
    """
    out = {}
    for key, stream in store.items():
        data = stream.to_matrix()
        if isinstance(data, list):
            cell = np.empty(len(data), dtype=object)
            for i, buf in enumerate(data):
                cell[i] = buf
            data = cell
        out[key] = data
    sio.savemat(mat_file, out)
    return sorted(out)
