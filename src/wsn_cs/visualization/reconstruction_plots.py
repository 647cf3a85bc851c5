"""Reconstruction visualization functions.

This module contains functions for:
- Per-node SNR bar charts
- Original vs reconstructed signal overlays
- Spatial (cluster) reconstruction heatmaps
"""

import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

matplotlib.rcParams['font.size'] = 14


def plot_node_snr(snr_df, threshold_db=None, title='Temporal reconstruction SNR', save_path=None):
    """
    Bar chart of the per-node SNR.

    Parameters
    ----------
    snr_df : pd.DataFrame
        Output of utils.snr_table (columns cluster_id, node_id, mean_snr_db).
    threshold_db : float, optional
        Draw a horizontal reference line at this SNR.
    title : str
    save_path : str, optional
        Path to save the figure

    Returns
    -------
    fig, ax : matplotlib figure and axis objects
    """
    fig, ax = plt.subplots(figsize=(12, 5))

    values = snr_df['mean_snr_db'].to_numpy(dtype=float)
    # Exact reconstructions (+inf) are drawn at the top of the finite range
    finite = values[np.isfinite(values)]
    cap = (finite.max() + 10.0) if finite.size else 100.0
    shown = np.where(np.isposinf(values), cap, values)
    shown = np.where(np.isneginf(shown), 0.0, shown)

    labels = [f"C{int(c)}N{int(n)}" if n == n else f"C{int(c)}"
              for c, n in zip(snr_df['cluster_id'], snr_df['node_id'])]
    colors = ['seagreen' if np.isposinf(v) else 'steelblue' for v in values]
    ax.bar(np.arange(len(shown)), shown, color=colors, edgecolor='black', alpha=0.8)

    if threshold_db is not None:
        ax.axhline(threshold_db, color='red', linestyle='--', linewidth=2,
                   label=f'{threshold_db:.0f} dB')
        ax.legend(fontsize=12)

    ax.set_xticks(np.arange(len(shown)))
    ax.set_xticklabels(labels, rotation=90, fontsize=9)
    ax.set_ylabel('SNR (dB)')
    ax.set_title(title, fontsize=16)
    ax.grid(axis='y', alpha=0.3)

    if save_path:
        plt.savefig(save_path, dpi=300, bbox_inches='tight')

    return fig, ax


def plot_signal_comparison(original, reconstructed, label='', save_path=None):
    """
    Overlay an original signal and its reconstruction.

    Parameters
    ----------
    original, reconstructed : array-like of shape (n,)
    label : str
        Shown in the title (e.g. 'C1N3').
    save_path : str, optional

    Returns
    -------
    fig, ax : matplotlib figure and axis objects
    """
    original = np.asarray(original, dtype=float)
    reconstructed = np.asarray(reconstructed, dtype=float)

    fig, ax = plt.subplots(figsize=(10, 4))
    t = np.arange(original.size)
    ax.plot(t, original, color='black', linewidth=1.5, label='Original')
    ax.plot(t, reconstructed, color='tab:orange', linestyle='--', linewidth=1.5,
            label='Reconstructed')

    err = np.linalg.norm(original - reconstructed)
    if err > 0 and np.linalg.norm(original) > 0:
        snr = 20 * np.log10(np.linalg.norm(original) / err)
        ax.set_title(f'{label} (SNR = {snr:.1f} dB)', fontsize=14)
    else:
        ax.set_title(label, fontsize=14)

    ax.set_xlabel('Sample')
    ax.set_ylabel('Amplitude')
    ax.legend(fontsize=12)
    ax.grid(alpha=0.3)

    if save_path:
        plt.savefig(save_path, dpi=300, bbox_inches='tight')

    return fig, ax


def plot_spatial_reconstruction(Y0, Y, cluster_id, save_path=None):
    """
    Side-by-side heatmaps of a cluster's reference Y₀ and recovered Y (nodes × m).

    Returns
    -------
    fig, axes : matplotlib figure and array of axes
    """
    Y0 = np.asarray(Y0, dtype=float)
    Y = np.asarray(Y, dtype=float)
    vmax = max(np.nanmax(np.abs(Y0)), np.nanmax(np.abs(Y)), 1e-12)

    fig, axes = plt.subplots(1, 2, figsize=(12, 5), sharey=True)
    for ax, data, name in zip(axes, (Y0, Y), ('Reference', 'Reconstructed')):
        im = ax.imshow(data, aspect='auto', cmap='RdBu_r', vmin=-vmax, vmax=vmax)
        ax.set_title(f'Cluster {cluster_id}: {name}', fontsize=14)
        ax.set_xlabel('Measurement')
    axes[0].set_ylabel('Node')
    fig.colorbar(im, ax=axes, shrink=0.8)

    if save_path:
        plt.savefig(save_path, dpi=300, bbox_inches='tight')

    return fig, axes
