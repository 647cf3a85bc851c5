"""
Tabular export of engine traces.

SNR, timing, timeout, drop and reconstruction-error records are flattened
into pandas DataFrames (one row per record) and written as CSV.
"""

import os
from pathlib import Path

import numpy as np
import pandas as pd


TRACE_ATTRIBUTES = {
    'snr': 'snr_records',
    'timing': 'timings',
    'timeout': 'timeouts',
    'drop': 'dropped',
    'error': 'rec_errors',
}


def records_to_frame(records, **extra_columns):
    """
    Convert a list of trace records to a DataFrame.

    Parameters
    ----------
    records : list
        Dataclass records with a to_dict() method.
    **extra_columns
        Constant columns added to every row (e.g. run_id=3).

    Returns
    -------
    pd.DataFrame
    """
    rows = [r.to_dict() for r in records]
    df = pd.DataFrame(rows)
    for column, value in extra_columns.items():
        df[column] = value
    return df


def engine_frames(engine):
    """
    Collect every trace list of an engine into DataFrames.

    Returns
    -------
    dict
        trace kind -> DataFrame, tagged with the engine's current run id.
    """
    run_id = engine.streams.run_id
    return {kind: records_to_frame(getattr(engine, attr), run_id=run_id)
            for kind, attr in TRACE_ATTRIBUTES.items()}


def append_csv(df, csv_path):
    """Append rows to a CSV file, writing the header only when the file is new."""
    if df.empty:
        return
    write_header = not os.path.exists(csv_path)
    df.to_csv(csv_path, mode='a', header=write_header, index=False)


def save_engine_records(engine, output_dir, prefix=''):
    """
    Append the engine's traces to <output_dir>/<prefix><kind>.csv.

    Returns
    -------
    dict
        trace kind -> path of every file that received rows.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written = {}
    for kind, df in engine_frames(engine).items():
        if df.empty:
            continue
        path = output_dir / f"{prefix}{kind}.csv"
        append_csv(df, path)
        written[kind] = path
    return written


def snr_table(engine, stage='temporal'):
    """
    Per-node SNR of the current run, one row per (cluster, node).

    Returns
    -------
    pd.DataFrame
        Columns cluster_id, node_id, mean_snr_db, last_snr_db and n_sequences.
        Mean is taken over finite values only.
    """
    df = records_to_frame([r for r in engine.snr_records if r.stage == stage])
    columns = ['cluster_id', 'node_id', 'mean_snr_db', 'last_snr_db', 'n_sequences']
    if df.empty:
        return pd.DataFrame(columns=columns)

    def _finite_mean(values):
        finite = values[np.isfinite(values)]
        return finite.mean() if len(finite) else values.iloc[-1]

    keys = ['cluster_id', 'node_id'] if stage == 'temporal' else ['cluster_id']
    grouped = df.groupby(keys, dropna=False)['snr_db']
    out = pd.DataFrame({
        'mean_snr_db': grouped.apply(_finite_mean),
        'last_snr_db': grouped.last(),
        'n_sequences': grouped.size(),
    }).reset_index()
    if 'node_id' not in out:
        out.insert(1, 'node_id', np.nan)
    return out[columns]
