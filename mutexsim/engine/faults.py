# mutexsim/engine/faults.py
#
# Crash / recover primitives shared by both algorithms. The algorithm-specific
# side effects (token loss, RA bookkeeping reset) live in the engine modules.

from . import ricart_agrawala, token_ring
from .model import ACCEPTED, ActionResult, Algorithm, Model, Reason, get_proc, log_warning


def engine_for(model: Model):
    """The engine module implementing model.algorithm."""
    if model.algorithm is Algorithm.TOKEN_RING:
        return token_ring
    if model.algorithm is Algorithm.RICART_AGRAWALA:
        return ricart_agrawala
    raise ValueError(f"Unsupported algorithm: {model.algorithm!r}")


def crash(model: Model, pid: str) -> ActionResult:
    p = get_proc(model, pid)
    if p is None:
        return ActionResult.rejected(Reason.UNKNOWN_PROCESS)
    if p.crashed:
        return ActionResult.rejected(Reason.ALREADY_CRASHED)

    p.crashed = True
    p.requesting = False
    log_warning(model, f"Fault injected: {pid} crashed.")
    engine_for(model).on_crash(model, p)
    return ACCEPTED


def recover(model: Model, pid: str) -> ActionResult:
    p = get_proc(model, pid)
    if p is None:
        return ActionResult.rejected(Reason.UNKNOWN_PROCESS)
    if not p.crashed:
        return ActionResult.rejected(Reason.NOT_CRASHED)

    p.crashed = False
    p.requesting = False
    if p.in_cs:
        p.in_cs = False
        log_warning(model, f"Recovery: {pid} recovered (state reset; exited critical section).")
    else:
        log_warning(model, f"Recovery: {pid} recovered.")
    engine_for(model).on_recover(model, p)
    return ACCEPTED
