"""
Evaluation metrics for reconstruction quality.
"""

from .metrics import snr_db, relative_error, summarize_snr
