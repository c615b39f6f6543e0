"""
mutexsim/chaos/coverage_tracker.py

Tracks the distinct model states visited across chaos runs.
"""
import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, Set


@dataclass
class CoverageStats:
    """Statistics about state space coverage"""
    unique_states: int
    total_observations: int
    coverage_rate: float  # unique / total


class CoverageTracker:
    """
    Collects state fingerprints (SHA-256 of the canonical snapshot JSON).
    """

    def __init__(self):
        self.state_fingerprints: Set[str] = set()
        self.observation_count: int = 0

    def add_state(self, state_fingerprint: str) -> bool:
        """Record one observation; returns True if the state was not seen before."""
        self.observation_count += 1
        is_new = state_fingerprint not in self.state_fingerprints
        if is_new:
            self.state_fingerprints.add(state_fingerprint)
        return is_new

    def get_coverage_stats(self) -> CoverageStats:
        unique = len(self.state_fingerprints)
        total = self.observation_count
        rate = unique / total if total > 0 else 0.0
        return CoverageStats(unique_states=unique, total_observations=total, coverage_rate=rate)

    def reset(self):
        self.state_fingerprints.clear()
        self.observation_count = 0

    def merge(self, other: 'CoverageTracker'):
        self.state_fingerprints.update(other.state_fingerprints)
        self.observation_count += other.observation_count


def compute_state_fingerprint(snapshot: Dict[str, Any]) -> str:
    """
    Compute the SHA-256 fingerprint of an exported snapshot.

    Only protocol state is hashed; the mode and derived sections (metrics,
    current holder) are left out.
    """
    state = {k: v for k, v in snapshot.items() if k not in ('mode', 'derived')}
    canonical_json = json.dumps(state, sort_keys=True, separators=(',', ':'))
    return hashlib.sha256(canonical_json.encode('utf-8')).hexdigest()
