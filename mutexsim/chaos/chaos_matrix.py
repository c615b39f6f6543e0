"""
Chaos Matrix - seeded randomized fault campaigns

Runs many independent simulations, each driven by a FaultFuzzer with its own
seed, and checks mutual exclusion after every action.

Key Features:
- Batch execution with configurable parallelism
- Progress tracking with callbacks
- Automatic failure detection and seed capture for replay
- State fingerprinting and coverage statistics
"""

import logging
import os
import random
import time
import concurrent.futures
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from mutexsim.engine.mutex_simulator import MutexSimulator
from .coverage_tracker import CoverageTracker, compute_state_fingerprint
from .fuzzer import FaultFuzzer, FuzzingConfig

logger = logging.getLogger(__name__)


@dataclass
class SimulationResult:
    """Result from a single seeded run"""
    seed: int
    success: bool
    steps: int
    execution_time_ms: float
    error_message: Optional[str] = None
    violation_step: Optional[int] = None
    actions: List[str] = field(default_factory=list)
    final_state: Optional[Dict[str, Any]] = None
    state_fingerprints: List[str] = field(default_factory=list)


@dataclass
class ChaosMatrixStats:
    """Aggregated statistics from a Chaos Matrix batch"""
    total_runs: int
    completed: int
    failed: int
    success_rate: float
    total_execution_time_ms: float
    avg_execution_time_ms: float
    min_execution_time_ms: float
    max_execution_time_ms: float
    failing_seeds: List[int] = field(default_factory=list)
    unique_failure_patterns: int = 0
    failure_messages: List[str] = field(default_factory=list)
    unique_states: Optional[int] = None
    total_state_observations: Optional[int] = None
    state_coverage_rate: Optional[float] = None


class ChaosMatrix:
    """
    Runs seeded chaos campaigns against fresh MutexSimulator instances.
    Each worker owns its simulator and its fuzzer, so runs share nothing.
    """

    def __init__(self, process_count: int = 4, algorithm: str = 'TokenRing', steps_per_run: int = 200,
                 fuzzing_config: Optional[FuzzingConfig] = None, max_workers: Optional[int] = None,
                 track_coverage: bool = True, simulator_config: Optional[dict] = None):
        """
        Args:
            process_count: Processes per simulated system
            algorithm: 'TokenRing' or 'RA'
            steps_per_run: Fuzzer ticks per run
            fuzzing_config: Action weights (default: FuzzingConfig())
            max_workers: Max parallel workers (default: CPU count)
            track_coverage: Collect state fingerprints after every action
            simulator_config: Extra config passed to each MutexSimulator
        """
        self.process_count = process_count
        self.algorithm = algorithm
        self.steps_per_run = steps_per_run
        self.fuzzing_config = fuzzing_config or FuzzingConfig()
        self.max_workers = max_workers or os.cpu_count()
        self.track_coverage = track_coverage
        self.coverage_tracker = CoverageTracker() if track_coverage else None
        # Safety is checked here after every action, not by the simulator
        self.simulator_config = {'check_invariants': False, **(simulator_config or {})}

    def run_single_simulation(self, seed: int) -> SimulationResult:
        """Run one campaign; the same seed always yields the same actions and states."""
        start_time = time.time()
        sim = MutexSimulator(self.process_count, self.algorithm, config=self.simulator_config)
        fuzzer = FaultFuzzer(self.fuzzing_config, seed=seed)
        fingerprints = []
        performed = []

        if self.track_coverage:
            fingerprints.append(compute_state_fingerprint(sim.export_state()))

        for tick in range(1, self.steps_per_run + 1):
            action = fuzzer.next_action(sim.model)
            action.apply(sim)
            performed.append(action.describe())

            if self.track_coverage:
                fingerprints.append(compute_state_fingerprint(sim.export_state()))

            report = sim.check_safety()
            if not report.ok:
                return SimulationResult(
                    seed=seed,
                    success=False,
                    steps=tick,
                    execution_time_ms=(time.time() - start_time) * 1000,
                    error_message=f"{report.message} after {action.describe()}",
                    violation_step=tick,
                    actions=performed,
                    final_state=sim.export_state(),
                    state_fingerprints=fingerprints,
                )

        return SimulationResult(
            seed=seed,
            success=True,
            steps=self.steps_per_run,
            execution_time_ms=(time.time() - start_time) * 1000,
            actions=performed,
            final_state=sim.export_state(),
            state_fingerprints=fingerprints,
        )

    def run_batch(
        self,
        num_simulations: int,
        seed_start: Optional[int] = None,
        progress_callback: Optional[Callable[[int, int, SimulationResult], None]] = None,
    ) -> Tuple[List[SimulationResult], ChaosMatrixStats]:
        """
        Run a batch of simulations with consecutive seeds

        Args:
            num_simulations: Number of simulations to run
            seed_start: Starting seed (default: random)
            progress_callback: Called after each simulation: (completed, total, result)

        Returns:
            (results, stats) tuple; results are ordered by seed
        """
        if seed_start is None:
            seed_start = random.randint(0, 2**31)
        seeds = [seed_start + i for i in range(num_simulations)]

        results: List[SimulationResult] = []
        start_time = time.time()

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_seed = {executor.submit(self.run_single_simulation, seed): seed for seed in seeds}

            for completed, future in enumerate(concurrent.futures.as_completed(future_to_seed), 1):
                result = future.result()
                results.append(result)
                if not result.success:
                    logger.warning(f"Seed {result.seed} failed at step {result.violation_step}: {result.error_message}")
                if progress_callback:
                    progress_callback(completed, num_simulations, result)

        total_time = (time.time() - start_time) * 1000
        results.sort(key=lambda r: r.seed)
        stats = self._calculate_stats(results, total_time)
        return results, stats

    def _calculate_stats(self, results: List[SimulationResult], total_time_ms: float) -> ChaosMatrixStats:
        completed = len([r for r in results if r.success])
        failed = len(results) - completed
        success_rate = (completed / len(results)) * 100 if results else 0

        execution_times = [r.execution_time_ms for r in results]
        avg_time = sum(execution_times) / len(execution_times) if execution_times else 0
        min_time = min(execution_times) if execution_times else 0
        max_time = max(execution_times) if execution_times else 0

        failing_seeds = [r.seed for r in results if not r.success]

        # Group failures by message, ignoring the action that triggered them
        error_patterns = set()
        for r in results:
            if not r.success and r.error_message:
                error_patterns.add(r.error_message.split(' after ')[0])

        unique_states = total_state_observations = state_coverage_rate = None
        if self.track_coverage and self.coverage_tracker:
            for result in results:
                for fp in result.state_fingerprints:
                    self.coverage_tracker.add_state(fp)
            coverage = self.coverage_tracker.get_coverage_stats()
            unique_states = coverage.unique_states
            total_state_observations = coverage.total_observations
            state_coverage_rate = coverage.coverage_rate

        return ChaosMatrixStats(
            total_runs=len(results),
            completed=completed,
            failed=failed,
            success_rate=success_rate,
            total_execution_time_ms=total_time_ms,
            avg_execution_time_ms=avg_time,
            min_execution_time_ms=min_time,
            max_execution_time_ms=max_time,
            failing_seeds=failing_seeds,
            unique_failure_patterns=len(error_patterns),
            failure_messages=sorted(error_patterns),
            unique_states=unique_states,
            total_state_observations=total_state_observations,
            state_coverage_rate=state_coverage_rate,
        )


def print_chaos_matrix_report(stats: ChaosMatrixStats, verbose: bool = False):
    """Print formatted Chaos Matrix statistics"""
    print("\n" + "=" * 80)
    print("CHAOS MATRIX RESULTS")
    print("=" * 80)
    print(f"\nTotal Simulations: {stats.total_runs}")
    print(f"  Safe: {stats.completed} ({stats.success_rate:.1f}%)")
    print(f"  Violations: {stats.failed}")

    print("\nExecution Time:")
    print(f"  Total: {stats.total_execution_time_ms:.2f}ms ({stats.total_execution_time_ms/1000:.2f}s)")
    print(f"  Average per simulation: {stats.avg_execution_time_ms:.2f}ms")
    print(f"  Range: {stats.min_execution_time_ms:.2f}ms - {stats.max_execution_time_ms:.2f}ms")

    if stats.unique_states is not None:
        print("\nState Coverage:")
        print(f"  Unique states: {stats.unique_states}")
        print(f"  Observations: {stats.total_state_observations}")
        print(f"  Coverage rate: {stats.state_coverage_rate:.3f}")

    if stats.failed > 0:
        print("\nSAFETY VIOLATIONS DETECTED:")
        print(f"  Unique failure patterns: {stats.unique_failure_patterns}")
        if verbose:
            for message in stats.failure_messages:
                print(f"    * {message}")
        print("  Failing seeds (for replay):")
        for seed in stats.failing_seeds[:10]:
            print(f"    - {seed}")
        if len(stats.failing_seeds) > 10:
            print(f"    ... and {len(stats.failing_seeds) - 10} more")

    print("\n" + "=" * 80)
