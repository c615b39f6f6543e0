"""
mutexsim/chaos/fuzzer.py

Randomized fault scheduling for chaos campaigns.

Each tick the fuzzer picks one action for a simulator:
1. Protocol actions: single step, request, release
2. Process faults: crash, recover
3. Resource faults: token loss/regeneration (Token Ring), message loss (RA)
"""

import random
from dataclasses import dataclass
from typing import List, Optional

from mutexsim.engine.model import Algorithm, Model


@dataclass
class FuzzingConfig:
    """Relative weights of each action kind (they need not sum to 1)"""
    step_prob: float = 0.5
    request_prob: float = 0.2
    release_prob: float = 0.15
    crash_prob: float = 0.03
    recover_prob: float = 0.04
    token_fault_prob: float = 0.04  # Token Ring only
    message_fault_prob: float = 0.04  # RA only
    seed: Optional[int] = None

    @classmethod
    def crash_free(cls, **overrides) -> 'FuzzingConfig':
        """Campaign without process crashes: mutual exclusion must always hold."""
        return cls(crash_prob=0.0, recover_prob=0.0, **overrides)


@dataclass(frozen=True)
class FuzzAction:
    kind: str
    pid: Optional[str] = None

    def apply(self, simulator):
        """Invoke the matching MutexSimulator method (step, request_cs, crash, ...)."""
        method = getattr(simulator, self.kind)
        if self.pid is None:
            return method()
        return method(self.pid)

    def describe(self) -> str:
        return f"{self.kind}({self.pid})" if self.pid else self.kind


STEP = FuzzAction('step')


class FaultFuzzer:
    """
    Chooses actions with a private Random instance, so campaigns running in
    parallel threads never share random state and every seed is replayable.
    """

    def __init__(self, config: FuzzingConfig, seed: Optional[int] = None):
        self.config = config
        if seed is None:
            seed = config.seed if config.seed is not None else random.randint(0, 2**32 - 1)
        self.seed = seed
        self.rng = random.Random(seed)

    def _weights(self, model: Model):
        c = self.config
        kinds = [
            ('step', c.step_prob),
            ('request', c.request_prob),
            ('release', c.release_prob),
            ('crash', c.crash_prob),
            ('recover', c.recover_prob),
        ]
        if model.algorithm is Algorithm.TOKEN_RING:
            kinds.append(('token_fault', c.token_fault_prob))
        else:
            kinds.append(('message_fault', c.message_fault_prob))
        return [k for k, w in kinds if w > 0], [w for k, w in kinds if w > 0]

    def _pick(self, pids: List[str]) -> Optional[str]:
        return self.rng.choice(pids) if pids else None

    def next_action(self, model: Model) -> FuzzAction:
        kinds, weights = self._weights(model)
        if not kinds:
            return STEP
        kind = self.rng.choices(kinds, weights=weights)[0]

        if kind == 'request':
            pid = self._pick([p.id for p in model.processes if not p.crashed and not p.in_cs and not p.requesting])
            return FuzzAction('request_cs', pid) if pid else STEP
        if kind == 'release':
            pid = self._pick([p.id for p in model.processes if p.in_cs and not p.crashed])
            return FuzzAction('release_cs', pid) if pid else STEP
        if kind == 'crash':
            alive = [p.id for p in model.processes if not p.crashed]
            # Keep at least one process alive so the run can still make progress
            pid = self._pick(alive) if len(alive) > 1 else None
            return FuzzAction('crash', pid) if pid else STEP
        if kind == 'recover':
            pid = self._pick([p.id for p in model.processes if p.crashed])
            return FuzzAction('recover', pid) if pid else STEP
        if kind == 'token_fault':
            return FuzzAction('regenerate_token' if model.token.lost else 'drop_token')
        if kind == 'message_fault':
            if model.network.queue and self.rng.random() < 0.5:
                return FuzzAction('drop_next_message')
            if not model.network.drop_next_send:
                return FuzzAction('toggle_drop_next_send')
        return STEP
