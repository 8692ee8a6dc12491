"""
Output Plots
============
Matplotlib figures of the populations recorded by a run.
"""
from __future__ import annotations

from datetime import datetime
import logging
from typing import Optional, TYPE_CHECKING

from matplotlib.figure import Figure
import numpy as np

if TYPE_CHECKING:
    from stox.model.output import OutputLog

logger = logging.getLogger(__name__)


def _label(log: OutputLog, col: int) -> str:
    stage = log.stages[col]
    return f"{stage.name} ({stage.hierarchical_id})"


def plot_output(log: OutputLog, filepath: Optional[str] = None, bins: int = 20) -> Figure:
    """
    Plot the trajectory of every reported stage over the iterations (left) and
    the distribution of the populations reaching it (right).

    The figure is saved to `filepath` when given and always returned. It is
    not registered with pyplot and leaves the backend and rcParams alone.
    """
    data = log.completed_populations()
    iterations = np.arange(1, data.shape[0] + 1)

    fig = Figure(figsize=(11, 5), layout="constrained")
    ax_traj, ax_hist = fig.subplots(1, 2)

    for col in range(data.shape[1]):
        label = _label(log, col)
        ax_traj.plot(iterations, data[:, col], lw=1, label=label)
        if data.shape[0] > 0:
            ax_hist.hist(data[:, col], bins=bins, alpha=0.5, label=label)

    for ax in (ax_traj, ax_hist):
        ax.grid(visible=True, which='major', axis='both', linestyle='-', color='gray', lw=0.5)
        ax.minorticks_on()
        ax.grid(visible=True, which='minor', axis='both', linestyle=':', color='gray', lw=0.5)

    ax_traj.set_xlabel("Iteration")
    ax_traj.set_ylabel("Population")
    ax_traj.set_title(f"N = {log.initial_population:g}, eps = {log.epsilon:g}")
    ax_hist.set_xlabel("Population")
    ax_hist.set_ylabel("Iterations")
    ax_hist.set_title(f"Run plotted at {datetime.now().strftime('%d.%m.%Y %H:%M:%S')}")
    if data.shape[1]:
        ax_traj.legend(loc='best')

    if filepath is not None:
        fig.savefig(filepath)
        logger.info(f"Output plot saved to {filepath}")
    return fig
