# mutexsim/engine/expression_engine.py
#
# Declarative invariant expressions, e.g. "count(processes.inCS) <= 1".
# Expressions are parsed with lark and evaluated against an exported snapshot.
import logging
import os
from functools import lru_cache

from lark import Lark, Token, Transformer, v_args
from lark.exceptions import LarkError

logger = logging.getLogger(__name__)

script_dir = os.path.dirname(__file__)
grammar_path = os.path.join(script_dir, 'expression_grammar.lark')
with open(grammar_path, 'r', encoding='utf-8') as f:
    grammar = f.read()

expression_parser = Lark(grammar, start='expression', parser='lalr')


class ExpressionSyntaxError(ValueError):
    """Raised when an invariant expression cannot be parsed."""
    pass


@lru_cache(maxsize=1024)
def cached_parse(expression_string):
    return expression_parser.parse(expression_string)


def parse_expression(expression_string: str):
    """Parse an expression, raising ExpressionSyntaxError instead of lark's errors."""
    if not isinstance(expression_string, str) or not expression_string.strip():
        raise ExpressionSyntaxError('Expression must be a non-empty string.')
    try:
        return cached_parse(expression_string)
    except LarkError as e:
        raise ExpressionSyntaxError(f"Cannot parse expression '{expression_string}': {e}") from e


def _as_list(args):
    if len(args) == 1 and isinstance(args[0], list):
        return args[0]
    return list(args)


@v_args(inline=True)
class ExpressionInterpreter(Transformer):
    def __init__(self, context):
        self.context = context
        super().__init__()

    # --- Operators ---
    def logical_or(self, *args):
        left = args[0]
        for right in args[2::2]:
            if left:
                return True
            left = left or right
        return left

    def logical_and(self, *args):
        left = args[0]
        for right in args[2::2]:
            if not left:
                return False
            left = left and right
        return left

    def logical_not(self, _op, value):
        if value is None:
            return None
        return not value

    def comparison(self, *args):
        left = args[0]
        for i in range(1, len(args), 2):
            op = args[i].type
            right = args[i + 1]

            # Ordering against null is false, like SQL NULL in WHERE clauses
            if op in ('GT', 'LT', 'GTE', 'LTE') and (left is None or right is None):
                return False
            try:
                if op == 'EQ': left = (left == right)
                elif op == 'NEQ': left = (left != right)
                elif op == 'GT': left = (float(left) > float(right))
                elif op == 'LT': left = (float(left) < float(right))
                elif op == 'GTE': left = (float(left) >= float(right))
                elif op == 'LTE': left = (float(left) <= float(right))
                elif op == 'IN': left = (left in right)
            except (ValueError, TypeError):
                return False
        return left

    def _arithmetic(self, args, ops):
        left = args[0]
        for i in range(1, len(args), 2):
            op_token, right = args[i], args[i + 1]
            if left is None or right is None:
                return None
            if not isinstance(op_token, Token) or op_token.type not in ops:
                return None
            try:
                a, b = float(left), float(right)
            except (ValueError, TypeError):
                return None
            if op_token.type == 'ADD':
                left = a + b
            elif op_token.type == 'SUB':
                left = a - b
            elif op_token.type == 'MUL':
                left = a * b
            elif b == 0:
                return None
            else:
                left = a / b
        return left

    def addition(self, *args):
        return self._arithmetic(args, ('ADD', 'SUB'))

    def multiplication(self, *args):
        return self._arithmetic(args, ('MUL', 'DIV'))

    # --- Literals ---
    def number(self, n): return float(n)
    def string(self, s): return s[1:-1]
    def true_lit(self, *args): return True
    def false_lit(self, *args): return False
    def null_lit(self, *args): return None
    def list_literal(self, *args): return list(args)

    # --- Variables and functions ---
    def variable(self, *parts):
        value = self.context
        for part in parts:
            key = part.value
            # List projection: processes.inCS -> [p.inCS for p in processes]
            if isinstance(value, list):
                value = [item.get(key) for item in value if isinstance(item, dict)]
                continue
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return None
            if value is None:
                break
        return value

    def function_call(self, name, *args):
        func_name = name.value
        if func_name == 'sum':
            return sum(_as_list(args))
        elif func_name == 'len':
            return len(args[0]) if len(args) == 1 and args[0] is not None else 0
        elif func_name == 'count':
            # count(list) counts truthy items; count(list, value) counts matches
            if len(args) == 2 and isinstance(args[0], list):
                return sum(1 for item in args[0] if item == args[1])
            return sum(1 for item in _as_list(args) if item)
        elif func_name == 'any':
            return any(_as_list(args))
        elif func_name == 'all':
            return all(_as_list(args))
        elif func_name == 'min':
            values = _as_list(args)
            return min(values) if values else None
        elif func_name == 'max':
            values = _as_list(args)
            return max(values) if values else None
        raise NameError(f"Function '{func_name}' is not defined.")


def evaluate(expression_string: str, context_or_interpreter):
    """Evaluate an expression; returns None when it cannot be parsed or evaluated."""
    if not isinstance(expression_string, str):
        return expression_string

    if isinstance(context_or_interpreter, ExpressionInterpreter):
        interpreter = context_or_interpreter
    elif isinstance(context_or_interpreter, dict):
        interpreter = ExpressionInterpreter(context_or_interpreter)
    else:
        return None

    try:
        tree = cached_parse(expression_string)
        result = interpreter.transform(tree)
    except Exception as e:
        logger.debug(f"Failed to evaluate '{expression_string}': {e}")
        return None

    if isinstance(result, float) and result.is_integer():
        result = int(result)
    return result
