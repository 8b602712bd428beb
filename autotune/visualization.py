"""
Visualization Module
====================

Figures for a finished tuning session:
- Best-fitness convergence per generation/iteration
- Per-trial fitness history
- kp/kd sample map coloured by fitness
- Gain distributions against fitness
- Relay oscillation with detected peaks and valleys
"""

import math
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np
import matplotlib.pyplot as plt

from .gains import Candidate


plt.rcParams.update({
    'font.family': 'serif',
    'font.size': 11,
    'axes.labelsize': 12,
    'axes.titlesize': 14,
    'legend.fontsize': 10,
    'xtick.labelsize': 10,
    'ytick.labelsize': 10,
    'figure.dpi': 150,
    'savefig.dpi': 300,
    'savefig.bbox': 'tight',
    'axes.grid': True,
    'grid.alpha': 0.3,
})


def _finite_trials(history: dict) -> List[dict]:
    return [t for t in history.get('trials', []) if t.get('fitness') is not None]


class TuningVisualizer:
    """Visualization tools for tuning session results."""

    def __init__(self, output_dir: str = "figures"):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.colors = {
            'best': '#2ecc71',      # Green
            'trial': '#3498db',     # Blue
            'failed': '#e74c3c',    # Red
            'peak': '#e74c3c',
            'valley': '#3498db',
            'baseline': '#95a5a6',  # Gray
        }

    def _save(self, fig: plt.Figure, save_name: str) -> None:
        fig.savefig(self.output_dir / save_name, dpi=300, bbox_inches='tight')

    def plot_convergence(
        self,
        history: dict,
        step_label: str = 'Generation',
        save_name: str = "convergence.png"
    ) -> plt.Figure:
        """Best fitness found so far after each generation/iteration."""
        fig, ax = plt.subplots(figsize=(10, 5))

        steps = history['steps']
        best = [f if math.isfinite(f) else np.nan for f in history['best_fitness']]

        ax.plot(steps, best, color=self.colors['best'], linewidth=2, marker='o')
        ax.fill_between(steps, best, alpha=0.3, color=self.colors['best'])
        ax.set_xlabel(step_label)
        ax.set_ylabel('Best Fitness')
        ax.set_title('Best-So-Far Fitness Convergence')

        plt.tight_layout()
        self._save(fig, save_name)
        return fig

    def plot_trial_history(
        self,
        history: dict,
        save_name: str = "trial_history.png"
    ) -> plt.Figure:
        """Fitness of every trial in run order; failed trials marked on the axis."""
        fig, ax = plt.subplots(figsize=(12, 5))

        trials = history.get('trials', [])
        ok = [t for t in trials if t.get('fitness') is not None]
        failed = [t for t in trials if t.get('fitness') is None]

        if ok:
            idx = [t['index'] for t in ok]
            fit = [t['fitness'] for t in ok]
            ax.scatter(idx, fit, c=self.colors['trial'], s=30, alpha=0.7, label='Trial')
            ax.plot(idx, np.minimum.accumulate(fit), color=self.colors['best'],
                    linewidth=2, label='Best so far')
        if failed:
            ax.scatter([t['index'] for t in failed], [0] * len(failed),
                       c=self.colors['failed'], marker='x', s=50, label='Failed trial')

        ax.set_xlabel('Trial')
        ax.set_ylabel('Fitness')
        ax.set_title('Trial Fitness History')
        if trials:
            ax.legend()

        plt.tight_layout()
        self._save(fig, save_name)
        return fig

    def plot_sample_map(
        self,
        history: dict,
        best: Optional[Candidate] = None,
        save_name: str = "sample_map.png"
    ) -> plt.Figure:
        """Every evaluated (kp, kd) coloured by fitness."""
        fig, ax = plt.subplots(figsize=(9, 7))

        trials = _finite_trials(history)
        if trials:
            kp = [t['gains']['kp'] for t in trials]
            kd = [t['gains']['kd'] for t in trials]
            fit = [t['fitness'] for t in trials]
            scatter = ax.scatter(kp, kd, c=fit, cmap='viridis_r', s=60,
                                 alpha=0.8, edgecolors='white', linewidth=0.5)
            cbar = plt.colorbar(scatter, ax=ax)
            cbar.set_label('Fitness (lower is better)')

        if best is not None:
            ax.scatter(best.gains.kp, best.gains.kd, c=self.colors['best'], s=250,
                       marker='*', edgecolors='black', linewidth=1.5, label='Best', zorder=5)
            ax.legend()

        ax.set_xlabel(r'$K_p$')
        ax.set_ylabel(r'$K_d$')
        ax.set_title('Sampled Gains')

        plt.tight_layout()
        self._save(fig, save_name)
        return fig

    def plot_gains_distribution(
        self,
        history: dict,
        best: Optional[Candidate] = None,
        save_name: str = "gains_distribution.png"
    ) -> plt.Figure:
        """Fitness against each gain."""
        fig, axes = plt.subplots(1, 3, figsize=(15, 5))

        trials = _finite_trials(history)
        names = ('kp', 'ki', 'kd')
        labels = [r'$K_p$', r'$K_i$', r'$K_d$']

        for ax, name, label in zip(axes, names, labels):
            if trials:
                ax.scatter([t['gains'][name] for t in trials], [t['fitness'] for t in trials],
                           c=self.colors['trial'], s=40, alpha=0.7)
            if best is not None:
                ax.scatter(getattr(best.gains, name), best.fitness, c=self.colors['best'],
                           s=200, marker='*', edgecolors='black', linewidth=1.5, label='Best')
                ax.legend()
            ax.set_xlabel(label)
            ax.set_ylabel('Fitness')
            ax.set_title(f'{label} Distribution')

        plt.tight_layout()
        self._save(fig, save_name)
        return fig

    def plot_relay_oscillation(
        self,
        oscillation: Sequence[Tuple[float, float]],
        peaks: Sequence[Tuple[float, float]],
        valleys: Sequence[Tuple[float, float]],
        ku: Optional[float] = None,
        tu: Optional[float] = None,
        save_name: str = "relay_oscillation.png"
    ) -> plt.Figure:
        """Pitch during the relay experiment with detected extrema."""
        fig, ax = plt.subplots(figsize=(12, 5))

        if oscillation:
            t, angle = zip(*oscillation)
            ax.plot(t, angle, color=self.colors['trial'], linewidth=1.5, label='Pitch')
        if peaks:
            ax.scatter(*zip(*peaks), c=self.colors['peak'], marker='^', s=80,
                       zorder=5, label='Peaks')
        if valleys:
            ax.scatter(*zip(*valleys), c=self.colors['valley'], marker='v', s=80,
                       edgecolors='black', zorder=5, label='Valleys')

        ax.axhline(0.0, color=self.colors['baseline'], linestyle='--', linewidth=1)
        ax.set_xlabel('Time (s)')
        ax.set_ylabel('Pitch (deg)')
        title = 'Relay Oscillation'
        if ku is not None and tu is not None:
            title += f' ($K_u$={ku:.2f}, $T_u$={tu:.3f} s)'
        ax.set_title(title)
        if oscillation:
            ax.legend()

        plt.tight_layout()
        self._save(fig, save_name)
        return fig
