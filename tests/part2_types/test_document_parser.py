# tests/part2_types/test_document_parser.py
"""
Document Parser Tests

Coverage:
- YAML and JSON text loading
- Structural validation of state and demo documents
- Serialization back to JSON / YAML
"""

import json
import unittest

import pytest
import yaml

from mutexsim.engine.document_parser import (
    DocumentValidationError, dump_document, load_document_from_file,
    load_document_from_string, save_document, validate_document,
)

DEMO_YAML = """
kind: demo
algorithm: TokenRing
description: minimal
processes: [P1, P2, P3]
events:
  - {t: 1, op: requestCS, on: P1}
invariants:
  - count(processes.inCS) <= 1
"""


def ra_state(**overrides):
    doc = {
        'kind': 'state',
        'algorithm': 'RA',
        'mode': 'interactive',
        'processes': [
            {'id': 'P1', 'requesting': True, 'inCS': False, 'crashed': False,
             'clock': 1, 'reqTs': 1, 'awaiting': ['P2'], 'deferred': []},
            {'id': 'P2', 'requesting': False, 'inCS': False, 'crashed': False,
             'clock': 0, 'reqTs': None, 'awaiting': [], 'deferred': []},
        ],
        'ring': ['P1', 'P2'],
        'resource': {'network': {
            'nextMessageId': 2,
            'dropNextSend': False,
            'queue': [{'id': 1, 'kind': 'REQUEST', 'from': 'P1', 'to': 'P2', 'timestamp': 1}],
        }},
        'derived': {'inCS': None, 'metrics': {'messagesSent': 1}},
    }
    doc.update(overrides)
    return doc


class TestLoading(unittest.TestCase):

    def test_load_yaml_demo(self):
        doc = load_document_from_string(DEMO_YAML)
        self.assertEqual(doc['kind'], 'demo')
        self.assertEqual(doc['processes'], ['P1', 'P2', 'P3'])
        self.assertEqual(doc['events'][0]['op'], 'requestCS')

    def test_on_key_stays_a_string(self):
        doc = load_document_from_string(DEMO_YAML)
        self.assertEqual(doc['events'][0]['on'], 'P1')
        self.assertNotIn(True, doc['events'][0])

    def test_yes_no_values_are_strings_but_true_false_are_booleans(self):
        doc = load_document_from_string(DEMO_YAML + "extra: [yes, no, off, true, False]\n")
        self.assertEqual(doc['extra'], ['yes', 'no', 'off', True, False])

    def test_state_booleans_survive_yaml(self):
        text = dump_document(ra_state(), 'yaml')
        self.assertEqual(load_document_from_string(text), ra_state())

    def test_load_json_state(self):
        doc = load_document_from_string(json.dumps(ra_state()))
        self.assertEqual(doc['resource']['network']['queue'][0]['from'], 'P1')

    def test_empty_document(self):
        with self.assertRaisesRegex(DocumentValidationError, 'empty'):
            load_document_from_string('# just a comment\n')

    def test_malformed_yaml(self):
        with self.assertRaises(DocumentValidationError):
            load_document_from_string('kind: [unclosed')

    def test_missing_file(self):
        with self.assertRaisesRegex(DocumentValidationError, 'could not be found'):
            load_document_from_file('/nonexistent/scenario.yaml')


class TestValidation(unittest.TestCase):

    def assertInvalid(self, doc, pattern):
        with self.assertRaisesRegex(DocumentValidationError, pattern):
            validate_document(doc)

    def test_valid_state(self):
        validate_document(ra_state())

    def test_top_level_must_be_mapping(self):
        self.assertInvalid(['kind', 'state'], 'mapping')

    def test_unknown_kind(self):
        self.assertInvalid(ra_state(kind='MutexState'), 'Unsupported document kind')

    def test_unknown_algorithm(self):
        self.assertInvalid(ra_state(algorithm='Maekawa'), 'Unsupported algorithm')

    def test_missing_resource(self):
        doc = ra_state()
        del doc['resource']
        self.assertInvalid(doc, "missing the required 'resource'")

    def test_wrong_resource_variant(self):
        self.assertInvalid(ra_state(resource={'token': {'holder': 'P1', 'lost': False}}),
                           "missing the required 'network'")

    def test_ring_with_unknown_id(self):
        self.assertInvalid(ra_state(ring=['P1', 'P3']), 'unknown process')

    def test_duplicate_process_ids(self):
        doc = ra_state()
        doc['processes'][1]['id'] = 'P1'
        self.assertInvalid(doc, 'duplicate')

    def test_message_from_unknown_process(self):
        doc = ra_state()
        doc['resource']['network']['queue'][0]['from'] = 'P7'
        self.assertInvalid(doc, 'unknown process')

    def test_message_kind(self):
        doc = ra_state()
        doc['resource']['network']['queue'][0]['kind'] = 'ACK'
        self.assertInvalid(doc, 'kind must be one of')

    def test_bool_is_not_an_integer(self):
        doc = ra_state()
        doc['processes'][0]['clock'] = True
        self.assertInvalid(doc, 'clock')

    def test_awaiting_references_known_ids(self):
        doc = ra_state()
        doc['processes'][0]['awaiting'] = ['P9']
        self.assertInvalid(doc, 'unknown process')

    def test_token_holder_must_exist(self):
        doc = {
            'kind': 'state', 'algorithm': 'TokenRing',
            'processes': [{'id': 'P1'}, {'id': 'P2'}],
            'resource': {'token': {'holder': 'P5', 'lost': False}},
        }
        self.assertInvalid(doc, 'holder')

    def test_state_invalid_invariant(self):
        self.assertInvalid(ra_state(invariants=['count(processes.inCS) <=']), r'invariants\[0\]')

    def test_state_valid_invariant(self):
        validate_document(ra_state(invariants=['count(processes.inCS) <= 1']))

    def test_demo_requires_events(self):
        doc = yaml.safe_load(DEMO_YAML)
        del doc['events']
        self.assertInvalid(doc, "missing the required 'events'")

    def test_demo_invalid_invariant(self):
        doc = yaml.safe_load(DEMO_YAML)
        doc['invariants'] = ['count(processes.inCS) <=']
        self.assertInvalid(doc, r'invariants\[0\]')

    def test_demo_object_style_invariant(self):
        doc = yaml.safe_load(DEMO_YAML)
        doc['invariants'] = [{'name': 'single holder', 'expression': 'count(processes.inCS) <= 1'}]
        validate_document(doc)

    def test_malformed_events_are_not_fatal(self):
        doc = yaml.safe_load(DEMO_YAML)
        doc['events'] = [{'op': 'teleport'}, 'garbage']
        validate_document(doc)


def test_dump_json_and_yaml():
    doc = ra_state()
    assert json.loads(dump_document(doc)) == doc
    assert yaml.safe_load(dump_document(doc, 'yaml')) == doc
    with pytest.raises(ValueError):
        dump_document(doc, 'xml')


@pytest.mark.parametrize('filename', ['state.json', 'state.yaml'])
def test_save_and_load_file(tmp_path, filename):
    path = tmp_path / filename
    save_document(ra_state(), str(path))
    assert load_document_from_file(str(path)) == ra_state()
