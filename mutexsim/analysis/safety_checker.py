# mutexsim/analysis/safety_checker.py
from dataclasses import dataclass, field
from typing import List

from mutexsim.engine.model import Model


@dataclass(frozen=True)
class SafetyReport:
    ok: bool
    message: str
    holders: List[str] = field(default_factory=list)


def check_safety(model: Model) -> SafetyReport:
    """Mutual exclusion holds when at most one process is in the critical section.

    Crashed processes still count: a process that crashed inside the critical
    section keeps holding it until it recovers. The model is never mutated.
    """
    holders = [p.id for p in model.processes if p.in_cs]
    if len(holders) > 1:
        return SafetyReport(ok=False, message=f"Safety violated: multiple processes in CS ({', '.join(holders)}).",
                            holders=holders)
    if holders:
        return SafetyReport(ok=True, message=f"Safety OK: {holders[0]} is in CS.", holders=holders)
    return SafetyReport(ok=True, message='Safety OK: no process in CS.', holders=holders)
