# mutexsim/engine/script_runner.py
#
# Replays an ordered list of scripted events, one event per step. Events go
# through the same primitives as interactive actions; a malformed or unsupported
# event is recorded as a warning and skipped.

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from . import ricart_agrawala, token_ring
from .faults import crash, engine_for, recover
from .model import (
    ActionResult, Algorithm, Mode, Model, Reason, StepKind, StepResult,
    get_proc, log_event, log_warning,
)


class ScriptOp(str, Enum):
    HOLD_TOKEN = 'holdToken'
    PASS_TOKEN = 'passToken'
    REQUEST_CS = 'requestCS'
    RELEASE_CS = 'releaseCS'
    DROP_TOKEN = 'dropToken'
    REGENERATE_TOKEN = 'regenerateToken'
    DELIVER_NEXT = 'deliverNext'
    DROP_NEXT_MESSAGE = 'dropNextMessage'
    CRASH = 'crash'
    RECOVER = 'recover'


OP_ALIASES = {'deliver': ScriptOp.DELIVER_NEXT}

VOCABULARY = {
    Algorithm.TOKEN_RING: frozenset({
        ScriptOp.HOLD_TOKEN, ScriptOp.PASS_TOKEN, ScriptOp.REQUEST_CS, ScriptOp.RELEASE_CS,
        ScriptOp.DROP_TOKEN, ScriptOp.REGENERATE_TOKEN, ScriptOp.CRASH, ScriptOp.RECOVER,
    }),
    Algorithm.RICART_AGRAWALA: frozenset({
        ScriptOp.REQUEST_CS, ScriptOp.RELEASE_CS, ScriptOp.DELIVER_NEXT,
        ScriptOp.DROP_NEXT_MESSAGE, ScriptOp.CRASH, ScriptOp.RECOVER,
    }),
}

REQUIRED_FIELDS = {
    ScriptOp.HOLD_TOKEN: ('on',),
    ScriptOp.PASS_TOKEN: ('to',),
    ScriptOp.REQUEST_CS: ('on',),
    ScriptOp.RELEASE_CS: ('on',),
    ScriptOp.CRASH: ('on',),
    ScriptOp.RECOVER: ('on',),
}


class ScriptEventError(Exception):
    """A scripted event that cannot be applied (skipped with a warning)."""

    def __init__(self, message: str, reason: Reason = Reason.BAD_EVENT):
        super().__init__(message)
        self.reason = reason


@dataclass(frozen=True)
class ScriptEvent:
    op: ScriptOp
    t: float = 0
    on: Optional[str] = None
    source: Optional[str] = None
    target: Optional[str] = None


def event_time(raw) -> float:
    t = raw.get('t') if isinstance(raw, dict) else None
    if isinstance(t, bool) or not isinstance(t, (int, float)):
        return 0
    return t


def sort_events(events: List) -> List:
    """Stable ascending sort by logical time; a missing or non-numeric t counts as 0."""
    return sorted(events, key=event_time)


def parse_event(raw, algorithm: Algorithm) -> ScriptEvent:
    if not isinstance(raw, dict):
        raise ScriptEventError(f"event is not a mapping ({type(raw).__name__})")

    op_name = str(raw.get('op') or '').strip()
    if not op_name:
        raise ScriptEventError('missing op')
    try:
        op = OP_ALIASES.get(op_name) or ScriptOp(op_name)
    except ValueError:
        raise ScriptEventError(f'unsupported op "{op_name}"', Reason.UNSUPPORTED_OP)
    if op not in VOCABULARY[algorithm]:
        raise ScriptEventError(f'op "{op_name}" is not available for {algorithm.value}', Reason.UNSUPPORTED_OP)

    for key in REQUIRED_FIELDS.get(op, ()):
        if not isinstance(raw.get(key), str) or not raw.get(key):
            raise ScriptEventError(f'{op.value} is missing "{key}"')
    for key in ('on', 'from', 'to'):
        if key in raw and raw[key] is not None and not isinstance(raw[key], str):
            raise ScriptEventError(f'{op.value} has a non-string "{key}"')

    return ScriptEvent(op=op, t=event_time(raw), on=raw.get('on'), source=raw.get('from'), target=raw.get('to'))


def load_script(model: Model, events: List, description: str = ''):
    model.script.description = description or ''
    model.script.events = sort_events(list(events))
    model.script.index = 0
    model.mode = Mode.SCRIPT


# --- Event handlers ---

def _applied(pid: Optional[str] = None, reason: Optional[Reason] = None) -> StepResult:
    return StepResult(kind=StepKind.SCRIPT_EVENT, pid=pid, reason=reason)


def _require_known(model: Model, event: ScriptEvent, pid: str):
    if get_proc(model, pid) is None:
        raise ScriptEventError(f"{event.op.value} names unknown process {pid}")


def _report_rejection(model: Model, event: ScriptEvent, pid: str, result: ActionResult) -> StepResult:
    log_warning(model, f"{event.op.value} on {pid} rejected ({result.reason.value}).")
    return _applied(pid=pid, reason=result.reason)


def _hold_token(model: Model, event: ScriptEvent) -> StepResult:
    _require_known(model, event, event.on)
    token_ring.place_token(model, event.on)
    log_event(model, f"Token placed at {event.on}.")
    return _applied(pid=event.on)


def _pass_token(model: Model, event: ScriptEvent) -> StepResult:
    _require_known(model, event, event.target)
    token_ring.place_token(model, event.target, counted=True)
    if event.source:
        log_event(model, f"Token passed from {event.source} to {event.target}.")
    else:
        log_event(model, f"Token passed to {event.target}.")
    return StepResult(kind=StepKind.TOKEN_PASS, source=event.source, target=event.target)


def _request_cs(model: Model, event: ScriptEvent) -> StepResult:
    _require_known(model, event, event.on)
    result = engine_for(model).request_cs(model, event.on)
    if model.algorithm is Algorithm.TOKEN_RING:
        # Scripts have no separate step op: a request at the token holder enters at once
        if result.ok or result.reason is Reason.ALREADY_REQUESTING:
            entry = token_ring.try_enter(model, event.on)
            if entry is not None:
                return entry
            return _applied(pid=event.on)
    if not result.ok:
        return _report_rejection(model, event, event.on, result)
    return _applied(pid=event.on)


def _release_cs(model: Model, event: ScriptEvent) -> StepResult:
    _require_known(model, event, event.on)
    result = engine_for(model).release_cs(model, event.on)
    if not result.ok:
        if result.reason is Reason.NOT_IN_CS:
            log_warning(model, f"{event.on} release ignored (not in CS).")
            return _applied(pid=event.on, reason=result.reason)
        return _report_rejection(model, event, event.on, result)
    return _applied(pid=event.on)


def _drop_token(model: Model, event: ScriptEvent) -> StepResult:
    token_ring.drop_token(model)
    return _applied()


def _regenerate_token(model: Model, event: ScriptEvent) -> StepResult:
    if event.on:
        _require_known(model, event, event.on)
        if get_proc(model, event.on).crashed:
            raise ScriptEventError(f"regenerateToken targets crashed process {event.on}")
        token_ring.place_token(model, event.on)
        log_warning(model, f"Recovery: token regenerated at {event.on}.")
        return _applied(pid=event.on)
    result = token_ring.regenerate_token(model)
    return _applied(pid=model.token.holder if result.ok else None, reason=result.reason)


def _deliver_next(model: Model, event: ScriptEvent) -> StepResult:
    return ricart_agrawala.deliver_next(model)


def _drop_next_message(model: Model, event: ScriptEvent) -> StepResult:
    result = ricart_agrawala.drop_next_message(model)
    if not result.ok:
        log_warning(model, 'No message to drop (queue empty).')
    return _applied(reason=result.reason)


def _crash(model: Model, event: ScriptEvent) -> StepResult:
    _require_known(model, event, event.on)
    result = crash(model, event.on)
    if not result.ok:
        return _report_rejection(model, event, event.on, result)
    return _applied(pid=event.on)


def _recover(model: Model, event: ScriptEvent) -> StepResult:
    _require_known(model, event, event.on)
    result = recover(model, event.on)
    if not result.ok:
        return _report_rejection(model, event, event.on, result)
    return _applied(pid=event.on)


_HANDLERS = {
    ScriptOp.HOLD_TOKEN: _hold_token,
    ScriptOp.PASS_TOKEN: _pass_token,
    ScriptOp.REQUEST_CS: _request_cs,
    ScriptOp.RELEASE_CS: _release_cs,
    ScriptOp.DROP_TOKEN: _drop_token,
    ScriptOp.REGENERATE_TOKEN: _regenerate_token,
    ScriptOp.DELIVER_NEXT: _deliver_next,
    ScriptOp.DROP_NEXT_MESSAGE: _drop_next_message,
    ScriptOp.CRASH: _crash,
    ScriptOp.RECOVER: _recover,
}


def step_script(model: Model) -> StepResult:
    """Consume exactly one scripted event."""
    events = model.script.events
    if not events:
        log_warning(model, 'Script mode: no events loaded.')
        return StepResult.stalled(Reason.NO_EVENTS)
    if model.script.index >= len(events):
        log_event(model, 'Script finished.')
        return StepResult(kind=StepKind.SCRIPT_DONE)

    position = model.script.index
    raw = events[position]
    model.script.index += 1

    try:
        event = parse_event(raw, model.algorithm)
        return _HANDLERS[event.op](model, event)
    except ScriptEventError as e:
        log_warning(model, f"Script event #{position + 1} skipped: {e}.")
        return StepResult.stalled(e.reason)
