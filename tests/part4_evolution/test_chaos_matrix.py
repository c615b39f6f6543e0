"""
Chaos Matrix Tests

Verifies seeded parallel campaigns, safety detection, and statistics.
"""

import pytest

from mutexsim.chaos.chaos_matrix import ChaosMatrix, ChaosMatrixStats, print_chaos_matrix_report
from mutexsim.chaos.coverage_tracker import CoverageTracker, compute_state_fingerprint
from mutexsim.chaos.fuzzer import FaultFuzzer, FuzzAction, FuzzingConfig
from mutexsim.engine.model import make_model
from mutexsim.engine.mutex_simulator import MutexSimulator
from mutexsim.engine.snapshot import export_state


@pytest.mark.parametrize('algorithm', ['TokenRing', 'RA'])
def test_crash_free_campaign_is_always_safe(algorithm):
    """Without crashes, token and message faults can only block progress"""
    chaos = ChaosMatrix(process_count=4, algorithm=algorithm, steps_per_run=150,
                        fuzzing_config=FuzzingConfig.crash_free(), max_workers=4)
    results, stats = chaos.run_batch(num_simulations=20, seed_start=500)

    assert len(results) == 20
    assert stats.total_runs == 20
    assert stats.failed == 0
    assert stats.success_rate == 100
    assert stats.failing_seeds == []
    assert all(r.steps == 150 for r in results)


def test_results_are_ordered_by_seed():
    chaos = ChaosMatrix(process_count=3, steps_per_run=20, max_workers=4)
    results, _ = chaos.run_batch(num_simulations=12, seed_start=42)
    assert [r.seed for r in results] == list(range(42, 54))


def test_progress_callback():
    calls = []

    def callback(completed, total, result):
        calls.append((completed, total, result.seed))

    chaos = ChaosMatrix(process_count=3, algorithm='RA', steps_per_run=20, max_workers=2)
    chaos.run_batch(num_simulations=5, seed_start=1, progress_callback=callback)

    assert [c[0] for c in calls] == [1, 2, 3, 4, 5]
    assert all(c[1] == 5 for c in calls)
    assert sorted(c[2] for c in calls) == [1, 2, 3, 4, 5]


@pytest.mark.parametrize('algorithm', ['TokenRing', 'RA'])
def test_same_seed_replays_identically(algorithm):
    chaos = ChaosMatrix(process_count=5, algorithm=algorithm, steps_per_run=120,
                        fuzzing_config=FuzzingConfig(crash_prob=0.1, recover_prob=0.1))
    first = chaos.run_single_simulation(2024)
    second = chaos.run_single_simulation(2024)

    assert first.actions == second.actions
    assert first.state_fingerprints == second.state_fingerprints
    assert first.final_state == second.final_state
    assert first.success == second.success


def test_violation_is_reported_with_seed_and_step():
    # Heavy crash rate on RA: a crashed CS holder no longer blocks new entries
    chaos = ChaosMatrix(process_count=3, algorithm='RA', steps_per_run=300,
                        fuzzing_config=FuzzingConfig(crash_prob=0.15, recover_prob=0.02, release_prob=0.05),
                        max_workers=4)
    results, stats = chaos.run_batch(num_simulations=30, seed_start=0)

    for r in results:
        if not r.success:
            assert r.violation_step == r.steps == len(r.actions)
            assert r.error_message.startswith('Safety violated: multiple processes in CS')
            assert sum(p['inCS'] for p in r.final_state['processes']) > 1
    assert stats.failing_seeds == [r.seed for r in results if not r.success]
    assert stats.completed + stats.failed == 30


def test_coverage_statistics():
    chaos = ChaosMatrix(process_count=3, steps_per_run=25, max_workers=2, track_coverage=True)
    results, stats = chaos.run_batch(num_simulations=4, seed_start=10)

    assert all(len(r.state_fingerprints) == 26 for r in results)
    assert stats.total_state_observations == 4 * 26
    assert 1 <= stats.unique_states <= stats.total_state_observations
    assert 0 < stats.state_coverage_rate <= 1


def test_coverage_disabled():
    chaos = ChaosMatrix(process_count=3, steps_per_run=10, track_coverage=False)
    results, stats = chaos.run_batch(num_simulations=2, seed_start=1)
    assert stats.unique_states is None
    assert all(r.state_fingerprints == [] for r in results)


def test_report_for_safe_batch(capsys):
    chaos = ChaosMatrix(process_count=3, steps_per_run=10, max_workers=2)
    _, stats = chaos.run_batch(num_simulations=3, seed_start=7)
    print_chaos_matrix_report(stats)

    out = capsys.readouterr().out
    assert 'CHAOS MATRIX RESULTS' in out
    assert 'Total Simulations: 3' in out
    assert 'Safe: 3 (100.0%)' in out
    assert 'SAFETY VIOLATIONS' not in out


def test_report_lists_failing_seeds(capsys):
    stats = ChaosMatrixStats(
        total_runs=14, completed=2, failed=12, success_rate=100 * 2 / 14,
        total_execution_time_ms=50.0, avg_execution_time_ms=3.5,
        min_execution_time_ms=1.0, max_execution_time_ms=9.0,
        failing_seeds=list(range(100, 112)), unique_failure_patterns=1,
        failure_messages=['Safety violated: multiple processes in CS (P1, P2).'],
    )
    print_chaos_matrix_report(stats, verbose=True)

    out = capsys.readouterr().out
    assert 'SAFETY VIOLATIONS DETECTED' in out
    assert '* Safety violated: multiple processes in CS (P1, P2).' in out
    assert '- 109' in out
    assert '- 110' not in out
    assert '... and 2 more' in out


# --- Fuzzer ---

def test_fuzzer_is_deterministic_per_seed():
    model = make_model(4, 'RA')
    a = FaultFuzzer(FuzzingConfig(), seed=99)
    b = FaultFuzzer(FuzzingConfig(), seed=99)
    assert [a.next_action(model) for _ in range(50)] == [b.next_action(model) for _ in range(50)]


def test_fuzzer_seed_from_config():
    assert FaultFuzzer(FuzzingConfig(seed=5)).seed == 5
    assert FaultFuzzer(FuzzingConfig(seed=5), seed=6).seed == 6


def test_crash_free_config_never_crashes():
    sim = MutexSimulator(4, 'TokenRing')
    fuzzer = FaultFuzzer(FuzzingConfig.crash_free(), seed=3)
    for _ in range(300):
        action = fuzzer.next_action(sim.model)
        assert action.kind not in ('crash', 'recover')
        action.apply(sim)


def test_fuzzer_never_crashes_last_alive_process():
    sim = MutexSimulator(3, 'RA')
    config = FuzzingConfig(step_prob=0, request_prob=0, release_prob=0, crash_prob=1.0,
                           recover_prob=0, message_fault_prob=0)
    fuzzer = FaultFuzzer(config, seed=11)
    for _ in range(10):
        fuzzer.next_action(sim.model).apply(sim)
    assert sum(not p.crashed for p in sim.model.processes) == 1


def test_fuzzer_only_offers_algorithm_faults():
    config = FuzzingConfig(step_prob=0, request_prob=0, release_prob=0, crash_prob=0, recover_prob=0)
    ring = FaultFuzzer(config, seed=1).next_action(make_model(3, 'TokenRing'))
    assert ring.kind == 'drop_token'
    ra = FaultFuzzer(config, seed=1).next_action(make_model(3, 'RA'))
    assert ra.kind == 'toggle_drop_next_send'


def test_fuzz_action_describe():
    assert FuzzAction('request_cs', 'P2').describe() == 'request_cs(P2)'
    assert FuzzAction('step').describe() == 'step'


# --- Fingerprints ---

def test_fingerprint_ignores_mode_and_derived():
    model = make_model(3, 'TokenRing')
    base = export_state(model)
    changed = export_state(model)
    changed['mode'] = 'script'
    changed['derived']['metrics']['csEntries'] = 9
    assert compute_state_fingerprint(base) == compute_state_fingerprint(changed)


def test_fingerprint_tracks_protocol_state():
    model = make_model(3, 'TokenRing')
    before = compute_state_fingerprint(export_state(model))
    model.token.holder = 'P2'
    assert compute_state_fingerprint(export_state(model)) != before


def test_coverage_tracker_merge():
    a, b = CoverageTracker(), CoverageTracker()
    assert a.add_state('x') is True
    assert a.add_state('x') is False
    b.add_state('y')
    a.merge(b)
    stats = a.get_coverage_stats()
    assert (stats.unique_states, stats.total_observations) == (2, 3)
    a.reset()
    assert a.get_coverage_stats().coverage_rate == 0.0


@pytest.mark.parametrize('workers', [1, 8])
def test_batch_results_do_not_depend_on_thread_count(workers):
    config = FuzzingConfig(crash_prob=0.1, recover_prob=0.1)
    serial, _ = ChaosMatrix(process_count=4, algorithm='RA', steps_per_run=60,
                            fuzzing_config=config, max_workers=1).run_batch(6, seed_start=300)
    parallel, _ = ChaosMatrix(process_count=4, algorithm='RA', steps_per_run=60,
                              fuzzing_config=config, max_workers=workers).run_batch(6, seed_start=300)
    assert [r.state_fingerprints for r in serial] == [r.state_fingerprints for r in parallel]
    assert [r.success for r in serial] == [r.success for r in parallel]
