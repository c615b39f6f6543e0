"""
Unit tests for invariant expressions

Tests cover:
1. Literals, arithmetic and comparisons
2. Dotted access and list projection over a snapshot
3. Aggregate functions (sum, len, count, any, all, min, max)
4. Null safety and error handling
5. Parse-time rejection of malformed expressions
"""

import unittest

import pytest

from mutexsim.engine import actions
from mutexsim.engine.expression_engine import (
    ExpressionInterpreter, ExpressionSyntaxError, evaluate, parse_expression,
)
from mutexsim.engine.model import make_model
from mutexsim.engine.snapshot import export_state


class TestExpressionEvaluation(unittest.TestCase):

    def setUp(self):
        model = make_model(3, 'RA')
        actions.request_cs(model, 'P2')
        self.snapshot = export_state(model)
        self.interpreter = ExpressionInterpreter(self.snapshot)

    def test_literals(self):
        self.assertEqual(evaluate('42', self.interpreter), 42)
        self.assertEqual(evaluate('"P1"', self.interpreter), 'P1')
        self.assertEqual(evaluate("'P1'", self.interpreter), 'P1')
        self.assertIs(evaluate('true', self.interpreter), True)
        self.assertIsNone(evaluate('null', self.interpreter))
        self.assertEqual(evaluate('[1, 2]', self.interpreter), [1.0, 2.0])

    def test_arithmetic(self):
        self.assertEqual(evaluate('2 + 3 * 4', self.interpreter), 14)
        self.assertEqual(evaluate('(2 + 3) * 4', self.interpreter), 20)
        self.assertEqual(evaluate('7 / 2', self.interpreter), 3.5)
        self.assertIsNone(evaluate('1 / 0', self.interpreter))

    def test_dotted_access(self):
        self.assertEqual(evaluate('algorithm', self.interpreter), 'RA')
        self.assertEqual(evaluate('resource.network.nextMessageId', self.interpreter), 3)
        self.assertIsNone(evaluate('resource.token.holder', self.interpreter))

    def test_keyword_prefixed_names(self):
        # inCS starts with the keyword "in"; it must still lex as a name
        self.assertIs(evaluate('derived.inCS == null', self.interpreter), True)

    def test_list_projection(self):
        self.assertEqual(evaluate('processes.id', self.interpreter), ['P1', 'P2', 'P3'])
        self.assertEqual(evaluate('processes.requesting', self.interpreter), [False, True, False])

    def test_aggregates(self):
        self.assertEqual(evaluate('count(processes.requesting)', self.interpreter), 1)
        self.assertEqual(evaluate('count(processes.reqTs, null)', self.interpreter), 2)
        self.assertEqual(evaluate('sum(processes.clock)', self.interpreter), 1)
        self.assertEqual(evaluate('len(resource.network.queue)', self.interpreter), 2)
        self.assertIs(evaluate('any(processes.requesting)', self.interpreter), True)
        self.assertIs(evaluate('all(processes.requesting)', self.interpreter), False)
        self.assertEqual(evaluate('max(processes.clock)', self.interpreter), 1)
        self.assertEqual(evaluate('min(processes.clock)', self.interpreter), 0)

    def test_logic_and_membership(self):
        self.assertIs(evaluate('count(processes.inCS) <= 1 and not resource.network.dropNextSend',
                               self.interpreter), True)
        self.assertIs(evaluate('"P2" in processes.id', self.interpreter), True)
        self.assertIs(evaluate('"P7" in processes.id or false', self.interpreter), False)

    def test_null_ordering_is_false(self):
        self.assertIs(evaluate('derived.inCS > 1', self.interpreter), False)

    def test_unknown_function_yields_none(self):
        self.assertIsNone(evaluate('uuid()', self.interpreter))

    def test_plain_dict_context(self):
        self.assertEqual(evaluate('a.b + 1', {'a': {'b': 2}}), 3)

    def test_invalid_context(self):
        self.assertIsNone(evaluate('1 + 1', ['not', 'a', 'context']))


@pytest.mark.parametrize('expression', [
    'count(processes.inCS) <=',
    'processes..id',
    '"unterminated',
    '',
])
def test_parse_errors(expression):
    with pytest.raises(ExpressionSyntaxError):
        parse_expression(expression)


class TestExpressionSandbox(unittest.TestCase):
    """Expressions are interpreted from the parse tree; nothing reaches Python's eval."""

    def test_statements_do_not_parse(self):
        self.assertIsNone(evaluate('import os', {}))

    def test_only_known_functions(self):
        self.assertEqual(evaluate('sum([1, 2])', {}), 3)
        for expression in ("eval('1+1')", "__import__('os')", 'exit()'):
            self.assertIsNone(evaluate(expression, {}), expression)

    def test_dunder_names_are_plain_lookups(self):
        self.assertIsNone(evaluate('__class__', {'a': 1}))
        self.assertIsNone(evaluate('a.__class__', {'a': {}}))


def test_evaluate_returns_none_on_syntax_error():
    assert evaluate('1 +', {}) is None


def test_non_string_passes_through():
    assert evaluate(5, {}) == 5
