"""Utility functions for matrix files and trace export."""

from .mat_io import load_matrix, iter_columns, save_matrix, save_streams
from .records_io import (
    records_to_frame, engine_frames, append_csv, save_engine_records, snr_table
)

__all__ = [
    'load_matrix',
    'iter_columns',
    'save_matrix',
    'save_streams',
    'records_to_frame',
    'engine_frames',
    'append_csv',
    'save_engine_records',
    'snr_table',
]
