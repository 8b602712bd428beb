"""
Closed-Loop PID Auto-Tuning
===========================

Demo pipeline: tunes the balance loop of the simulated self-balancing
robot through the same PlantLink interface the real robot uses.

This script:
1. Starts the simulated plant and captures its current (baseline) gains
2. Runs a TuningSession with the chosen algorithm
3. Prints the best gains and the trial history summary
4. Saves the session results to JSON
5. Generates the session figures
"""

import argparse
import asyncio
import json
import logging
import math
import time
from pathlib import Path

from autotune.config import (
    BayesianConfig, GeneticConfig, RelayConfig, SwarmConfig,
    TrialConfig, TuningConfig, load_config
)
from autotune.errors import ConfigurationError
from autotune.gains import SearchSpace
from autotune.observer import CallbackObserver
from autotune.optimizers import ZieglerNicholsRelay
from autotune.plant import SimulatedPlant
from autotune.session import TuningSession
from autotune.visualization import TuningVisualizer


# Operator pauses after an emergency are confirmed automatically in the demo
AUTO_RESUME_DELAY = 1.0


def demo_config(algorithm: str) -> TuningConfig:
    """Small budgets so a demo session finishes in a few minutes of wall time."""
    return TuningConfig(
        algorithm=algorithm,
        search_space=SearchSpace(
            kp_min=10.0, kp_max=100.0,
            ki_min=0.0, ki_max=1.0,
            kd_min=0.0, kd_max=10.0,
            search_ki=False
        ),
        trial=TrialConfig(trial_duration=1.5, settling_delay=0.3),
        genetic=GeneticConfig(population_size=8, generations=5, seed=42),
        swarm=SwarmConfig(num_particles=6, iterations=5, seed=42),
        relay=RelayConfig(amplitude=2.0, min_cycles=3, verify=True),
        bayesian=BayesianConfig(iterations=12, initial_samples=5, seed=42),
    )


async def run_session(config: TuningConfig, seed: int = 42):
    plant = SimulatedPlant(seed=seed)
    plant.start()
    baseline = plant.get_gains(config.loop)
    print(f"Baseline {config.loop.value} gains: "
          f"Kp={baseline.kp:.4f}, Ki={baseline.ki:.4f}, Kd={baseline.kd:.4f}")

    event_loop = asyncio.get_running_loop()
    session = None

    def on_progress(step, total, best):
        if best is not None:
            print(f"  [{step}/{total}] best fitness={best.fitness:.4f} "
                  f"(Kp={best.gains.kp:.3f}, Ki={best.gains.ki:.3f}, Kd={best.gains.kd:.3f})")
        else:
            print(f"  [{step}/{total}] no successful trial yet")

    def on_trial_result(index, gains, fitness, itae, overshoot):
        if math.isfinite(fitness):
            print(f"    trial {index:3d}: fitness={fitness:9.4f} itae={itae:.4f} "
                  f"overshoot={overshoot:.3f} deg")
        else:
            print(f"    trial {index:3d}: failed ({gains})")

    def on_paused(reason):
        print(f"  ! plant emergency ({reason}), resuming in {AUTO_RESUME_DELAY:.1f}s")
        event_loop.call_later(AUTO_RESUME_DELAY, session.resume)

    def on_session_end(reason):
        print(f"\nSession ended: {reason}")

    observer = CallbackObserver(
        on_progress=on_progress,
        on_trial_result=on_trial_result,
        on_paused=on_paused,
        on_session_end=on_session_end,
    )
    session = TuningSession(plant, config, observer=observer)
    optimizer = None

    try:
        session.start(baseline)
        optimizer = session.optimizer
        await session.wait()
        if session.end_reason == 'completed' and session.best is not None:
            applied = session.apply_best()
            print(f"Applied best gains to the plant: {applied}")
    finally:
        await session.stop()
        await plant.close()

    return session, optimizer, baseline, plant


def save_results(path: Path, config: TuningConfig, session: TuningSession,
                 optimizer, baseline, elapsed: float) -> None:
    best = session.best
    results_data = {
        'configuration': config.to_dict(),
        'baseline': baseline.to_dict(),
        'best': best.to_dict() if best is not None else None,
        'end_reason': session.end_reason,
        'error': str(session.error) if session.error is not None else None,
        'history': session.history,
        'tuning_time_seconds': elapsed,
    }
    if isinstance(optimizer, ZieglerNicholsRelay) and optimizer.result is not None:
        results_data['relay'] = {'ku': optimizer.result.ku, 'tu': optimizer.result.tu}

    with open(path, 'w') as f:
        json.dump(results_data, f, indent=2, default=str)


def generate_figures(output_dir: Path, session: TuningSession, optimizer) -> None:
    viz = TuningVisualizer(output_dir=str(output_dir))
    history = session.history or {'steps': [], 'best_fitness': [], 'trials': []}
    step_label = optimizer.step_label.title() if optimizer is not None else 'Step'

    print("  - Convergence plot...")
    viz.plot_convergence(history, step_label=step_label)

    print("  - Trial history...")
    viz.plot_trial_history(history)

    print("  - Sample map...")
    viz.plot_sample_map(history, best=session.best)

    print("  - Gains distribution...")
    viz.plot_gains_distribution(history, best=session.best)

    if isinstance(optimizer, ZieglerNicholsRelay) and optimizer.oscillation_data:
        print("  - Relay oscillation...")
        result = optimizer.result
        viz.plot_relay_oscillation(
            optimizer.oscillation_data, optimizer.peaks, optimizer.valleys,
            ku=result.ku if result else None,
            tu=result.tu if result else None,
        )


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Auto-tune the balance PID loop on the simulated robot")
    parser.add_argument('--algorithm', choices=('ga', 'pso', 'zn', 'bayesian'), default='ga')
    parser.add_argument('--config', type=Path, default=None,
                        help="JSON tuning configuration (overrides the demo defaults)")
    parser.add_argument('--output', type=Path, default=Path('figures'))
    parser.add_argument('--seed', type=int, default=42)
    parser.add_argument('--log-level', default='WARNING',
                        choices=('DEBUG', 'INFO', 'WARNING', 'ERROR'))
    return parser.parse_args(argv)


def main(argv=None):
    """Main tuning pipeline."""
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s %(levelname)-7s %(name)s: %(message)s'
    )

    print("=" * 70)
    print("  Closed-Loop PID Auto-Tuning")
    print("  Self-Balancing Robot (simulated plant)")
    print("=" * 70)
    print()

    try:
        config = load_config(args.config) if args.config else demo_config(args.algorithm)
        config.validate()
    except ConfigurationError as exc:
        print(f"Invalid configuration: {exc}")
        return 2

    print(f"Algorithm: {config.algorithm}")
    print(f"Loop: {config.loop.value}")
    print(f"Trial: {config.trial.trial_duration:.2f}s after {config.trial.settling_delay:.2f}s settling")
    print()

    start_time = time.time()
    session, optimizer, baseline, plant = asyncio.run(run_session(config, seed=args.seed))
    elapsed = time.time() - start_time

    print("\n" + "=" * 70)
    print("  TUNING RESULTS")
    print("=" * 70)

    best = session.best
    if best is not None:
        print(f"\nBest gains: Kp={best.gains.kp:.4f}, Ki={best.gains.ki:.4f}, Kd={best.gains.kd:.4f}")
        if best.evaluated:
            print(f"Fitness: {best.fitness:.4f}")
    else:
        print("\nNo usable gains found")
    if session.error is not None:
        print(f"Error: {session.error}")
    if isinstance(optimizer, ZieglerNicholsRelay) and optimizer.result is not None:
        print(f"Ultimate gain Ku={optimizer.result.ku:.4f}, period Tu={optimizer.result.tu:.4f}s")

    trials = (session.history or {}).get('trials', [])
    failed = sum(1 for t in trials if t['fitness'] is None)
    print(f"Trials: {len(trials)} ({failed} failed), plant emergencies: {plant.emergencies}")
    print(f"Tuning completed in {elapsed:.1f} seconds")

    output_dir = args.output
    output_dir.mkdir(parents=True, exist_ok=True)

    print("\n" + "-" * 70)
    print("Generating figures...")
    generate_figures(output_dir, session, optimizer)

    save_results(output_dir / 'tuning_results.json', config, session, optimizer, baseline, elapsed)

    print("\n" + "=" * 70)
    print(f"  ALL FIGURES SAVED TO: {output_dir}/")
    print("=" * 70)
    print("\nGenerated files:")
    for f in sorted(output_dir.glob("*.png")):
        print(f"  - {f.name}")
    print("  - tuning_results.json")

    return 0 if session.end_reason == 'completed' else 1


if __name__ == "__main__":
    raise SystemExit(main())
