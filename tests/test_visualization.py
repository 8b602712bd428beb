"""Smoke tests for the session figures."""

import math

import matplotlib.pyplot as plt

from autotune.gains import Candidate, GainTriple
from autotune.visualization import TuningVisualizer


HISTORY = {
    'steps': [1, 2, 3],
    'best_fitness': [math.inf, 4.0, 2.5],
    'trials': [
        {'index': 1, 'step': 0, 'gains': {'kp': 20.0, 'ki': 0.0, 'kd': 1.0}, 'fitness': None,
         'itae': None, 'overshoot': None},
        {'index': 2, 'step': 1, 'gains': {'kp': 45.0, 'ki': 0.0, 'kd': 2.0}, 'fitness': 4.0,
         'itae': 1.0, 'overshoot': 0.3},
        {'index': 3, 'step': 2, 'gains': {'kp': 52.0, 'ki': 0.0, 'kd': 2.5}, 'fitness': 2.5,
         'itae': 0.8, 'overshoot': 0.2},
    ],
}


def test_session_figures_are_saved(tmp_path):
    viz = TuningVisualizer(output_dir=str(tmp_path / 'figures'))
    best = Candidate(GainTriple(52.0, 0.0, 2.5), fitness=2.5)

    viz.plot_convergence(HISTORY)
    viz.plot_trial_history(HISTORY)
    viz.plot_sample_map(HISTORY, best=best)
    viz.plot_gains_distribution(HISTORY, best=best)
    viz.plot_relay_oscillation(
        [(0.0, 0.0), (0.1, 1.0), (0.2, 0.0), (0.3, -1.0), (0.4, 0.0)],
        peaks=[(0.1, 1.0)], valleys=[(0.3, -1.0)], ku=2.5, tu=0.4,
    )
    plt.close('all')

    saved = sorted(p.name for p in (tmp_path / 'figures').glob('*.png'))
    assert saved == [
        'convergence.png',
        'gains_distribution.png',
        'relay_oscillation.png',
        'sample_map.png',
        'trial_history.png',
    ]


def test_empty_history(tmp_path):
    viz = TuningVisualizer(output_dir=str(tmp_path))
    empty = {'steps': [], 'best_fitness': [], 'trials': []}
    viz.plot_convergence(empty)
    viz.plot_trial_history(empty)
    viz.plot_sample_map(empty)
    viz.plot_gains_distribution(empty)
    plt.close('all')
    assert len(list(tmp_path.glob('*.png'))) == 4
