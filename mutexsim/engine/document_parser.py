# mutexsim/engine/document_parser.py
#
# Loading and validation of state snapshots and scripted demo documents. This is
# the gateway between text (YAML or JSON, which YAML parses as a subset) and the
# engine: everything past this point may assume a well-formed document.

import json
import re

import yaml

from .expression_engine import ExpressionSyntaxError, parse_expression

STATE_KIND = 'state'
DEMO_KIND = 'demo'
ALGORITHMS = ('TokenRing', 'RA')
MESSAGE_KINDS = ('REQUEST', 'REPLY')

_BOOL_TAG = 'tag:yaml.org,2002:bool'


class DocumentLoader(yaml.SafeLoader):
    """SafeLoader that only reads true/false as booleans, so keys like `on` stay strings."""
    pass


# YAML 1.1 also resolves on/off/yes/no to booleans; script events use `on` as a key
DocumentLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != _BOOL_TAG]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
DocumentLoader.add_implicit_resolver(
    _BOOL_TAG,
    re.compile(r'^(?:true|True|TRUE|false|False|FALSE)$'),
    list('tTfF'),
)


class DocumentValidationError(Exception):
    """Raised when a document is malformed or does not match its declared kind."""
    pass


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


def _require(data, key, types, where, type_name):
    if key not in data:
        raise DocumentValidationError(f"{where} is missing the required '{key}' key.")
    # bool is an int subclass; never accept it where a number or string is expected
    if isinstance(data[key], bool) or not isinstance(data[key], types):
        raise DocumentValidationError(f"{where}.{key} must be {type_name}.")
    return data[key]


def _check_id_list(values, where, known=None):
    if not all(isinstance(v, str) and v for v in values):
        raise DocumentValidationError(f"{where} must contain only non-empty string ids.")
    if len(set(values)) != len(values):
        raise DocumentValidationError(f"{where} contains duplicate ids.")
    if known is not None:
        unknown = [v for v in values if v not in known]
        if unknown:
            raise DocumentValidationError(f"{where} references unknown process(es): {', '.join(unknown)}")


def _check_ring(data, ids):
    ring = data.get('ring')
    if ring is None:
        return
    if not isinstance(ring, list) or not ring:
        raise DocumentValidationError("'ring' must be a non-empty list of process ids.")
    _check_id_list(ring, 'ring', known=set(ids))


def _check_invariants(data):
    invariants = data.get('invariants')
    if invariants is None:
        return
    if not isinstance(invariants, list):
        raise DocumentValidationError("'invariants' must be a list of expression strings.")
    for i, inv in enumerate(invariants):
        # Object-style invariants: { name: "...", expression: "..." }
        expr = inv.get('expression') if isinstance(inv, dict) else inv
        try:
            parse_expression(expr)
        except ExpressionSyntaxError as e:
            raise DocumentValidationError(f"invariants[{i}] is invalid: {e}") from e


def _validate_state_process(p, i, algorithm):
    where = f"processes[{i}]"
    if not isinstance(p, dict):
        raise DocumentValidationError(f"{where} must be a dictionary.")
    _require(p, 'id', str, where, 'a string')
    for flag in ('requesting', 'inCS', 'crashed'):
        if flag in p and not isinstance(p[flag], bool):
            raise DocumentValidationError(f"{where}.{flag} must be a boolean.")
    if algorithm != 'RA':
        return
    if 'clock' in p and not (_is_int(p['clock']) and p['clock'] >= 0):
        raise DocumentValidationError(f"{where}.clock must be a non-negative integer.")
    if p.get('reqTs') is not None and not _is_int(p['reqTs']):
        raise DocumentValidationError(f"{where}.reqTs must be an integer or null.")
    for key in ('awaiting', 'deferred'):
        if key in p and not isinstance(p[key], list):
            raise DocumentValidationError(f"{where}.{key} must be a list.")


def _validate_message(m, i, ids):
    where = f"resource.network.queue[{i}]"
    if not isinstance(m, dict):
        raise DocumentValidationError(f"{where} must be a dictionary.")
    _require(m, 'id', int, where, 'an integer')
    if m.get('kind') not in MESSAGE_KINDS:
        raise DocumentValidationError(f"{where}.kind must be one of {', '.join(MESSAGE_KINDS)}.")
    for key in ('from', 'to'):
        value = _require(m, key, str, where, 'a string')
        if value not in ids:
            raise DocumentValidationError(f"{where}.{key} references unknown process '{value}'.")
    _require(m, 'timestamp', int, where, 'an integer')


def _validate_state(data):
    algorithm = data['algorithm']
    processes = _require(data, 'processes', list, 'state', 'a list')
    if not processes:
        raise DocumentValidationError("state.processes must not be empty.")
    for i, p in enumerate(processes):
        _validate_state_process(p, i, algorithm)
    ids = [p['id'] for p in processes]
    _check_id_list(ids, 'processes')
    _check_ring(data, ids)

    if algorithm == 'RA':
        for p in processes:
            for key in ('awaiting', 'deferred'):
                _check_id_list(p.get(key) or [], f"processes.{p['id']}.{key}", known=set(ids))

    resource = _require(data, 'resource', dict, 'state', 'a dictionary')
    if algorithm == 'TokenRing':
        token = _require(resource, 'token', dict, 'resource', 'a dictionary')
        holder = token.get('holder')
        if holder is not None and holder not in ids:
            raise DocumentValidationError(f"resource.token.holder references unknown process '{holder}'.")
        if 'lost' in token and not isinstance(token['lost'], bool):
            raise DocumentValidationError("resource.token.lost must be a boolean.")
        if 'network' in resource:
            raise DocumentValidationError("A TokenRing state cannot carry a 'network' resource.")
    else:
        network = _require(resource, 'network', dict, 'resource', 'a dictionary')
        if 'nextMessageId' in network and not (_is_int(network['nextMessageId']) and network['nextMessageId'] >= 1):
            raise DocumentValidationError("resource.network.nextMessageId must be a positive integer.")
        if 'dropNextSend' in network and not isinstance(network['dropNextSend'], bool):
            raise DocumentValidationError("resource.network.dropNextSend must be a boolean.")
        queue = network.get('queue') or []
        if not isinstance(queue, list):
            raise DocumentValidationError("resource.network.queue must be a list.")
        for i, m in enumerate(queue):
            _validate_message(m, i, set(ids))
        if 'token' in resource:
            raise DocumentValidationError("An RA state cannot carry a 'token' resource.")

    derived = data.get('derived')
    if derived is not None and not isinstance(derived, dict):
        raise DocumentValidationError("'derived' must be a dictionary.")
    _check_invariants(data)


def _validate_demo(data):
    processes = _require(data, 'processes', list, 'demo', 'a list')
    if not processes:
        raise DocumentValidationError("demo.processes must not be empty.")
    _check_id_list(processes, 'processes')
    _check_ring(data, processes)
    if 'description' in data and data['description'] is not None and not isinstance(data['description'], str):
        raise DocumentValidationError("'description' must be a string.")
    # Individual events are checked when they run; a bad event is skipped, not fatal
    _require(data, 'events', list, 'demo', 'a list')
    _check_invariants(data)


def validate_document(data):
    """
    Validates a parsed document (state snapshot or scripted demo).
    Raises DocumentValidationError with a specific message if any check fails.
    """
    if not isinstance(data, dict):
        raise DocumentValidationError("The document must be a mapping at the top level.")
    kind = data.get('kind')
    if kind not in (STATE_KIND, DEMO_KIND):
        raise DocumentValidationError(f"Unsupported document kind: {kind!r} (expected 'state' or 'demo').")
    if data.get('algorithm') not in ALGORITHMS:
        raise DocumentValidationError(
            f"Unsupported algorithm: {data.get('algorithm')!r} (expected 'TokenRing' or 'RA')."
        )
    if kind == STATE_KIND:
        _validate_state(data)
    else:
        _validate_demo(data)


def load_document_from_string(text):
    """
    Parses and validates a document from YAML or JSON text.

    :param text: The document text.
    :return: The parsed document as a dictionary.
    :raises DocumentValidationError: If the text is malformed or fails validation.
    """
    try:
        data = yaml.load(text, Loader=DocumentLoader)
    except yaml.YAMLError as e:
        raise DocumentValidationError(f"Error parsing document: {e}")

    # None when the text is empty or only contains comments
    if data is None:
        raise DocumentValidationError("The document is empty.")

    validate_document(data)
    return data


def load_document_from_file(file_path):
    """
    Loads and validates a document from a file path.

    :param file_path: Path to a .yaml/.yml/.json document.
    :return: The parsed document as a dictionary.
    :raises DocumentValidationError: If the file is missing, poorly formatted, or fails validation.
    """
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            text = f.read()
    except FileNotFoundError:
        raise DocumentValidationError(f"The file could not be found at path: {file_path}")
    except UnicodeDecodeError as e:
        raise DocumentValidationError(f"Failed to decode file using UTF-8 (Check file encoding): {e}")
    return load_document_from_string(text)


def dump_document(data, fmt='json'):
    """Serialize a document to JSON (default) or YAML text."""
    if fmt == 'json':
        return json.dumps(data, indent=2)
    if fmt == 'yaml':
        return yaml.safe_dump(data, sort_keys=False)
    raise ValueError(f"Unsupported format: {fmt!r} (expected 'json' or 'yaml')")


def save_document(data, file_path):
    """Write a document, choosing YAML for .yaml/.yml paths and JSON otherwise."""
    fmt = 'yaml' if str(file_path).endswith(('.yaml', '.yml')) else 'json'
    with open(file_path, 'w', encoding='utf-8') as f:
        f.write(dump_document(data, fmt))
