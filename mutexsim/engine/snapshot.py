# mutexsim/engine/snapshot.py
#
# Plain-data snapshots of a Model and the reverse conversion from a parsed
# document (state snapshot or scripted demo) into a brand-new Model.

from collections import deque
from typing import Any, Dict

from .document_parser import DEMO_KIND, STATE_KIND, validate_document
from .model import (
    DEFAULT_TRACE_LIMIT, METRIC_FIELDS, Algorithm, Message, MessageKind, Metrics,
    Mode, Model, NetworkState, Process, TokenState, any_in_cs, clear_trace, log_event,
)
from .script_runner import load_script


def _export_process(p: Process, algorithm: Algorithm) -> Dict[str, Any]:
    data = {
        'id': p.id,
        'requesting': p.requesting,
        'inCS': p.in_cs,
        'crashed': p.crashed,
    }
    if algorithm is Algorithm.RICART_AGRAWALA:
        data.update({
            'clock': p.clock,
            'reqTs': p.req_ts,
            'awaiting': list(p.awaiting),
            'deferred': list(p.deferred),
        })
    return data


def _export_message(m: Message) -> Dict[str, Any]:
    return {'id': m.id, 'kind': m.kind.value, 'from': m.sender, 'to': m.recipient, 'timestamp': m.timestamp}


def export_state(model: Model) -> Dict[str, Any]:
    """Snapshot of the model as a plain JSON/YAML-serializable dict. Never mutates."""
    if model.algorithm is Algorithm.TOKEN_RING:
        resource = {'token': {'holder': model.token.holder, 'lost': model.token.lost}}
    else:
        network = model.network
        resource = {'network': {
            'nextMessageId': network.next_message_id,
            'dropNextSend': network.drop_next_send,
            'queue': [_export_message(m) for m in network.queue],
        }}

    holder = any_in_cs(model)
    return {
        'kind': STATE_KIND,
        'algorithm': model.algorithm.value,
        'mode': model.mode.value,
        'processes': [_export_process(p, model.algorithm) for p in model.processes],
        'ring': list(model.ring),
        'resource': resource,
        'derived': {
            'inCS': holder.id if holder else None,
            'metrics': model.metrics.as_dict(model.algorithm),
        },
    }


# --- Import ---

def _import_metrics(raw) -> Metrics:
    metrics = Metrics()
    if isinstance(raw, dict):
        for key, attr in METRIC_FIELDS.items():
            value = raw.get(key)
            if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
                setattr(metrics, attr, value)
    return metrics


def _import_process(raw: Dict[str, Any], algorithm: Algorithm) -> Process:
    p = Process(
        id=str(raw['id']),
        requesting=bool(raw.get('requesting', False)),
        in_cs=bool(raw.get('inCS', False)),
        crashed=bool(raw.get('crashed', False)),
    )
    if algorithm is Algorithm.RICART_AGRAWALA:
        p.clock = raw.get('clock') or 0
        p.req_ts = raw.get('reqTs')
        p.awaiting = list(dict.fromkeys(raw.get('awaiting') or []))
        p.deferred = list(dict.fromkeys(raw.get('deferred') or []))
    return p


def _import_message(raw: Dict[str, Any]) -> Message:
    return Message(
        id=raw['id'],
        kind=MessageKind(raw['kind']),
        sender=raw['from'],
        recipient=raw['to'],
        timestamp=raw['timestamp'],
    )


def _model_from_state(doc: Dict[str, Any], trace_limit: int) -> Model:
    algorithm = Algorithm.parse(doc['algorithm'])
    processes = [_import_process(p, algorithm) for p in doc['processes']]
    ring = list(doc.get('ring') or [p.id for p in processes])
    resource = doc['resource']

    token = network = None
    if algorithm is Algorithm.TOKEN_RING:
        raw_token = resource['token']
        token = TokenState(holder=raw_token.get('holder'), lost=bool(raw_token.get('lost', False)))
    else:
        raw_net = resource['network']
        queue = deque(_import_message(m) for m in raw_net.get('queue') or [])
        next_id = raw_net.get('nextMessageId') or 1
        # Never reissue an id that is still in flight
        next_id = max([next_id] + [m.id + 1 for m in queue])
        network = NetworkState(queue=queue, next_message_id=next_id,
                               drop_next_send=bool(raw_net.get('dropNextSend', False)))

    derived = doc.get('derived') or {}
    model = Model(
        algorithm=algorithm,
        processes=processes,
        ring=ring,
        mode=Mode.INTERACTIVE,
        token=token,
        network=network,
        metrics=_import_metrics(derived.get('metrics')),
        trace_limit=trace_limit,
    )
    log_event(model, 'Loaded interactive state.')
    return model


def _model_from_demo(doc: Dict[str, Any], trace_limit: int) -> Model:
    algorithm = Algorithm.parse(doc['algorithm'])
    processes = [Process(id=str(pid)) for pid in doc['processes']]
    ring = list(doc.get('ring') or [p.id for p in processes])

    model = Model(algorithm=algorithm, processes=processes, ring=ring, trace_limit=trace_limit)
    description = doc.get('description') or ''
    load_script(model, doc.get('events') or [], description)
    clear_trace(model)
    log_event(model, f"Loaded scripted scenario: {description or algorithm.value + ' demo'}.")
    return model


def model_from_document(doc: Dict[str, Any], trace_limit: int = DEFAULT_TRACE_LIMIT) -> Model:
    """Validate a parsed document and build a new Model from it.

    The conversion is all-or-nothing: a DocumentValidationError is raised before
    any Model is created, so callers can keep their current Model on failure.
    """
    validate_document(doc)
    if doc['kind'] == STATE_KIND:
        return _model_from_state(doc, trace_limit)
    if doc['kind'] == DEMO_KIND:
        return _model_from_demo(doc, trace_limit)
    raise ValueError(f"Unsupported document kind: {doc['kind']!r}")
