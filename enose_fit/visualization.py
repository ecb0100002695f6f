"""
Plots of channel fit ranges and fitted response curves.
"""
from pathlib import Path
from typing import List, Optional, Tuple, Union
import logging

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
from matplotlib.figure import Figure

logger = logging.getLogger(__name__)


def plot_channel_fit(samples: List[Tuple[float, float]],
                     curve: List[Tuple[float, float]],
                     channel: int,
                     tau90: Optional[float] = None,
                     save_path: Optional[Union[str, Path]] = None) -> Figure:
    """
    Plot the fit range of a channel together with its fitted curve.

    Args:
        samples: Absolute (timestamp, value) pairs of the fit range
        curve: Absolute (timestamp, value) pairs of the fitted model
        channel: Channel index (0-based)
        tau90: Response time shown in the title
        save_path: If provided, save the figure to this path

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=(8, 4))
    if samples:
        t, y = zip(*samples)
        ax.plot(t, y, '.', markersize=3, label='fit range')
    if curve:
        t, y = zip(*curve)
        ax.plot(t, y, 'r-', linewidth=1.5, label='fitted curve')

    title = f'Channel {channel + 1}'
    if tau90 is not None:
        title += f' (tau90 = {tau90:.1f} s)'
    ax.set_title(title)
    ax.set_xlabel('Time (s)')
    ax.set_ylabel('Relative deviation (%)')
    ax.grid(True, alpha=0.3)
    ax.legend()
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150)
        logger.info(f"Figure saved to {save_path}")
    return fig


def save_fit_plots(worker, out_dir: Union[str, Path]) -> List[str]:
    """Save one fit plot per fitted channel of a CurveFitWorker."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    paths = []
    for result in worker.results:
        if not result.fit_valid:
            continue
        channel_range = worker.channel_ranges[result.channel]
        samples = [(t + channel_range.x_start, y + channel_range.y_offset) for t, y in channel_range.samples]
        path = out_dir / f'fit_ch{result.channel + 1}.png'
        try:
            fig = plot_channel_fit(samples, worker.fitted_curve(result.channel), result.channel,
                                   tau90=result.tau90, save_path=path)
            plt.close(fig)
            paths.append(str(path))
        except Exception as e:
            logger.error(f"Failed to plot channel {result.channel + 1}: {e}")
    return paths
