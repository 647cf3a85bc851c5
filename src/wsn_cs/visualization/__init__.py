"""
Plots of reconstruction results.
"""

from .reconstruction_plots import (
    plot_node_snr,
    plot_signal_comparison,
    plot_spatial_reconstruction,
)

__all__ = [
    'plot_node_snr',
    'plot_signal_comparison',
    'plot_spatial_reconstruction',
]
