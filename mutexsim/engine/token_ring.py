# mutexsim/engine/token_ring.py
#
# Token Ring mutual exclusion: a single token circulates along the fixed ring,
# skipping crashed members. Only the token holder may enter the critical section.

from .model import (
    ACCEPTED, ActionResult, Model, Process, Reason, StepKind, StepResult,
    alive_pids, any_in_cs, get_proc, log_event, log_warning, ring_next_alive,
)


def _pass_token(model: Model, holder: str) -> StepResult:
    nxt = ring_next_alive(model, holder)
    if nxt == holder:
        log_event(model, f"Token remains at {holder} (no other alive processes).")
        return StepResult(kind=StepKind.TOKEN_PASS, source=holder, target=holder)
    model.token.holder = nxt
    model.metrics.token_passes += 1
    log_event(model, f"Token passed from {holder} to {nxt}.")
    return StepResult(kind=StepKind.TOKEN_PASS, source=holder, target=nxt)


def _enter(model: Model, p: Process) -> StepResult:
    p.in_cs = True
    p.requesting = False
    model.metrics.cs_entries += 1
    log_event(model, f"{p.id} enters the critical section (holds token).")
    return StepResult(kind=StepKind.CS_ENTRY, pid=p.id)


def try_enter(model: Model, pid: str):
    """Grant entry if pid is requesting, holds the live token and the CS is free.

    Returns the CS_ENTRY result, or None when the grant conditions do not hold.
    """
    p = get_proc(model, pid)
    if p is None or p.crashed or not p.requesting:
        return None
    if model.token.lost or model.token.holder != pid or any_in_cs(model) is not None:
        return None
    return _enter(model, p)


def request_cs(model: Model, pid: str) -> ActionResult:
    p = get_proc(model, pid)
    if p is None:
        return ActionResult.rejected(Reason.UNKNOWN_PROCESS)
    if p.crashed:
        return ActionResult.rejected(Reason.CRASHED)
    if p.in_cs:
        return ActionResult.rejected(Reason.ALREADY_IN_CS)
    if p.requesting:
        return ActionResult.rejected(Reason.ALREADY_REQUESTING)

    p.requesting = True
    log_event(model, f"{pid} requests the critical section.")
    return ACCEPTED


def release_cs(model: Model, pid: str) -> ActionResult:
    p = get_proc(model, pid)
    if p is None:
        return ActionResult.rejected(Reason.UNKNOWN_PROCESS)
    if p.crashed:
        return ActionResult.rejected(Reason.CRASHED)
    if not p.in_cs:
        return ActionResult.rejected(Reason.NOT_IN_CS)

    p.in_cs = False
    model.metrics.cs_releases += 1
    log_event(model, f"{pid} releases the critical section.")

    if not model.token.lost and model.token.holder == pid:
        _pass_token(model, pid)
    return ACCEPTED


def drop_token(model: Model) -> ActionResult:
    model.token.lost = True
    log_warning(model, 'Fault injected: token lost.')
    return ACCEPTED


def pick_regeneration_holder(model: Model):
    alive = alive_pids(model)
    if not alive:
        return None

    current = model.token.holder
    current_proc = get_proc(model, current) if current is not None else None
    if current_proc is not None and not current_proc.crashed:
        return current_proc.id

    if current is not None and current in model.ring:
        nxt = ring_next_alive(model, current)
        p = get_proc(model, nxt)
        if p is not None and not p.crashed:
            return p.id
    return alive[0]


def regenerate_token(model: Model) -> ActionResult:
    holder = pick_regeneration_holder(model)
    if holder is None:
        model.token.lost = True
        log_warning(model, 'Recovery failed: no alive processes to hold the token.')
        return ActionResult.rejected(Reason.NO_ALIVE_PROCESSES)
    model.token.lost = False
    model.token.holder = holder
    log_warning(model, f"Recovery: token regenerated at {holder}.")
    return ACCEPTED


def place_token(model: Model, pid: str, counted: bool = False):
    """Scripted placement: the token (re)appears at pid, optionally as a counted pass."""
    model.token.lost = False
    model.token.holder = pid
    if counted:
        model.metrics.token_passes += 1


def on_crash(model: Model, p: Process):
    # Fail-stop poisons the shared resource: the token dies with its holder
    if p.in_cs:
        model.token.holder = p.id
        model.token.lost = True
        log_warning(model, f"Progress blocked: {p.id} crashed in the critical section; token is lost.")
    elif model.token.holder == p.id and not model.token.lost:
        model.token.lost = True
        log_warning(model, f"Progress blocked: token lost because {p.id} (token holder) crashed.")


def on_recover(model: Model, p: Process):
    pass


def step(model: Model) -> StepResult:
    if model.token.lost:
        log_warning(model, 'No progress: token is lost.')
        return StepResult.stalled(Reason.TOKEN_LOST)

    in_cs = any_in_cs(model)
    if in_cs is not None:
        if in_cs.crashed:
            log_warning(model, f"No progress: {in_cs.id} is crashed in the critical section.")
            return StepResult.stalled(Reason.CRASHED_IN_CS, pid=in_cs.id)
        log_event(model, f"No internal progress: {in_cs.id} is in the critical section (release required).")
        return StepResult.stalled(Reason.RELEASE_REQUIRED, pid=in_cs.id)

    holder = get_proc(model, model.token.holder) if model.token.holder is not None else None
    if holder is None:
        log_warning(model, 'No progress: token holder is unknown.')
        return StepResult.stalled(Reason.UNKNOWN_HOLDER)
    if holder.crashed:
        model.token.lost = True
        log_warning(model, f"No progress: token lost (holder {holder.id} is crashed).")
        return StepResult.stalled(Reason.TOKEN_LOST, pid=holder.id)

    if holder.requesting:
        return _enter(model, holder)
    return _pass_token(model, holder.id)
