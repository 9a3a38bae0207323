# ============================================================================
# EXPRESSION EVALUATOR
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - ${{ }} expression parsing and evaluation
# PURPOSE: Evaluate conditionals and interpolate values against run contexts
# CREATED: 14 OCT 2026
# ============================================================================
"""
Expression Evaluator

Evaluates workflow expressions such as:

    ${{ needs.build.result == 'success' && matrix.os != 'windows' }}
    ${{ contains(github.event.labels.*.name, 'deploy') }}
    ${{ format('{0}-{1}', matrix.os, matrix.ver) }}

Features:
- Literals: null, true, false, numbers (incl. hex/exponent), 'strings'
- Property access (a.b), index access (a['b'], a[0]), object filter (a.*.b)
- Operators: ! < <= > >= == != && || and parentheses
- Functions: contains, startsWith, endsWith, format, join, toJSON, fromJSON
- Status functions: success(), failure(), always(), cancelled()

Semantics:
- Undefined property paths evaluate to null (never an error)
- null compared with a defined value is false
- && and || short-circuit and return the deciding operand
- String comparisons are case-insensitive
- Mixed scalar comparisons coerce both sides to numbers

Status functions read the needs result table carried by the
EvaluationContext - there is no global state. Parsing is pure and cached.
"""

import json
import logging
import math
import operator
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from core.contracts import JobResult
from core.errors import EvaluationError

logger = logging.getLogger(__name__)


# Context names every evaluation may reference, even when empty
KNOWN_CONTEXTS = (
    "github", "event", "env", "vars", "inputs", "job", "jobs", "steps",
    "runner", "secrets", "strategy", "matrix", "needs",
)

STATUS_FUNCTIONS = ("success", "failure", "always", "cancelled")

EXPRESSION_START = "${{"
EXPRESSION_END = "}}"


# ============================================================================
# EVALUATION CONTEXT
# ============================================================================

@dataclass
class EvaluationContext:
    """
    Snapshot of everything an expression may read.

    Attributes:
        contexts: Named contexts (github, env, matrix, needs, steps, ...)
        needs_results: Job result per direct dependency (job -> result)
        run_cancelled: Whether the owning run has been cancelled
    """
    contexts: Dict[str, Any] = field(default_factory=dict)
    needs_results: Dict[str, str] = field(default_factory=dict)
    run_cancelled: bool = False

    def lookup(self, name: str, expression: str) -> Any:
        """Resolve a top-level named value."""
        if name in self.contexts:
            return self.contexts[name]
        folded = name.casefold()
        for key, value in self.contexts.items():
            if key.casefold() == folded:
                return value
        if folded in KNOWN_CONTEXTS:
            return None
        # Direct dependencies are addressable by bare job name
        needs = self.contexts.get("needs") or {}
        for job_name, value in needs.items():
            if job_name.casefold() == folded:
                return value
        raise EvaluationError(f"Unrecognized named-value: '{name}'", expression)

    def with_contexts(self, **contexts: Any) -> "EvaluationContext":
        """Copy with additional/overridden named contexts."""
        merged = dict(self.contexts)
        merged.update(contexts)
        return EvaluationContext(
            contexts=merged,
            needs_results=dict(self.needs_results),
            run_cancelled=self.run_cancelled,
        )


# ============================================================================
# TOKENIZER
# ============================================================================

@dataclass(frozen=True)
class Token:
    """Lexical token."""
    kind: str      # number, string, ident, op, punct, eof
    value: Any
    pos: int


_NUMBER_RE = re.compile(
    r"[-+]?(?:0[xX][0-9a-fA-F]+|(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)"
)
_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_-]*")
_TWO_CHAR_OPS = ("&&", "||", "==", "!=", "<=", ">=")
_ONE_CHAR_OPS = ("<", ">", "!")
_PUNCT = ".[](),*"


def _parse_number(text: str) -> Any:
    body = text.lstrip("+-")
    sign = -1 if text.startswith("-") else 1
    if body[:2].lower() == "0x":
        return sign * int(body, 16)
    if any(c in body for c in ".eE"):
        return float(text)
    return int(text)


def tokenize(expression: str) -> List[Token]:
    """
    Split an expression into tokens.

    Raises:
        EvaluationError: On unterminated strings or unexpected characters
    """
    tokens: List[Token] = []
    i = 0
    n = len(expression)

    def previous_is_value() -> bool:
        if not tokens:
            return False
        last = tokens[-1]
        return last.kind in ("number", "string", "ident") or last.value in (")", "]")

    while i < n:
        ch = expression[i]

        if ch.isspace():
            i += 1
            continue

        if ch == "'":
            j = i + 1
            chars = []
            while True:
                if j >= n:
                    raise EvaluationError("Unterminated string literal", expression)
                if expression[j] == "'":
                    if j + 1 < n and expression[j + 1] == "'":
                        chars.append("'")
                        j += 2
                        continue
                    break
                chars.append(expression[j])
                j += 1
            tokens.append(Token("string", "".join(chars), i))
            i = j + 1
            continue

        if ch.isdigit() or (ch in "+-." and not previous_is_value()):
            match = _NUMBER_RE.match(expression, i)
            if match:
                tokens.append(Token("number", _parse_number(match.group()), i))
                i = match.end()
                continue

        if ch.isalpha() or ch == "_":
            match = _IDENT_RE.match(expression, i)
            tokens.append(Token("ident", match.group(), i))
            i = match.end()
            continue

        two = expression[i:i + 2]
        if two in _TWO_CHAR_OPS:
            tokens.append(Token("op", two, i))
            i += 2
            continue
        if ch in _ONE_CHAR_OPS:
            tokens.append(Token("op", ch, i))
            i += 1
            continue
        if ch in _PUNCT:
            tokens.append(Token("punct", ch, i))
            i += 1
            continue

        raise EvaluationError(f"Unexpected character '{ch}' at position {i}", expression)

    tokens.append(Token("eof", None, n))
    return tokens


# ============================================================================
# SYNTAX TREE
# ============================================================================

@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class NamedValue:
    name: str


@dataclass(frozen=True)
class PropertyAccess:
    target: Any
    name: str


@dataclass(frozen=True)
class IndexAccess:
    target: Any
    index: Any


@dataclass(frozen=True)
class ObjectFilter:
    target: Any


@dataclass(frozen=True)
class Not:
    operand: Any


@dataclass(frozen=True)
class Binary:
    op: str
    left: Any
    right: Any


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: Tuple[Any, ...]


def walk(node: Any) -> Iterator[Any]:
    """Yield a node and all of its descendants."""
    yield node
    if isinstance(node, (PropertyAccess, ObjectFilter)):
        yield from walk(node.target)
    elif isinstance(node, IndexAccess):
        yield from walk(node.target)
        yield from walk(node.index)
    elif isinstance(node, Not):
        yield from walk(node.operand)
    elif isinstance(node, Binary):
        yield from walk(node.left)
        yield from walk(node.right)
    elif isinstance(node, FunctionCall):
        for arg in node.args:
            yield from walk(arg)


# ============================================================================
# PARSER
# ============================================================================

_KEYWORDS = {
    "true": True,
    "false": False,
    "null": None,
    "NaN": float("nan"),
    "Infinity": float("inf"),
}


class _Parser:
    """
    Recursive-descent parser.

    Precedence (low to high): ||, &&, == !=, < <= > >=, !, postfix.
    """

    def __init__(self, expression: str):
        self.expression = expression
        self.tokens = tokenize(expression)
        self.pos = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def _accept(self, kind: str, value: Any = None) -> Optional[Token]:
        token = self.current
        if token.kind == kind and (value is None or token.value == value):
            return self._advance()
        return None

    def _expect(self, kind: str, value: Any = None) -> Token:
        token = self._accept(kind, value)
        if token is None:
            wanted = value if value is not None else kind
            found = self.current.value if self.current.kind != "eof" else "end of expression"
            raise EvaluationError(
                f"Expected '{wanted}' but found '{found}' at position {self.current.pos}",
                self.expression,
            )
        return token

    def parse(self) -> Any:
        if self.current.kind == "eof":
            raise EvaluationError("Empty expression", self.expression)
        node = self._or()
        if self.current.kind != "eof":
            raise EvaluationError(
                f"Unexpected token '{self.current.value}' at position {self.current.pos}",
                self.expression,
            )
        return node

    def _binary_level(self, operators: Tuple[str, ...], operand: Callable[[], Any]) -> Any:
        node = operand()
        while self.current.kind == "op" and self.current.value in operators:
            op = self._advance().value
            node = Binary(op, node, operand())
        return node

    def _or(self) -> Any:
        return self._binary_level(("||",), self._and)

    def _and(self) -> Any:
        return self._binary_level(("&&",), self._equality)

    def _equality(self) -> Any:
        return self._binary_level(("==", "!="), self._comparison)

    def _comparison(self) -> Any:
        return self._binary_level(("<", "<=", ">", ">="), self._unary)

    def _unary(self) -> Any:
        if self._accept("op", "!"):
            return Not(self._unary())
        return self._postfix()

    def _postfix(self) -> Any:
        node = self._primary()
        while True:
            if self._accept("punct", "."):
                if self._accept("punct", "*"):
                    node = ObjectFilter(node)
                else:
                    node = PropertyAccess(node, self._expect("ident").value)
            elif self._accept("punct", "["):
                if self._accept("punct", "*"):
                    node = ObjectFilter(node)
                else:
                    node = IndexAccess(node, self._or())
                self._expect("punct", "]")
            else:
                return node

    def _primary(self) -> Any:
        token = self.current

        if token.kind in ("number", "string"):
            self._advance()
            return Literal(token.value)

        if token.kind == "ident":
            self._advance()
            if self._accept("punct", "("):
                args = []
                if not self._accept("punct", ")"):
                    args.append(self._or())
                    while self._accept("punct", ","):
                        args.append(self._or())
                    self._expect("punct", ")")
                return FunctionCall(token.value, tuple(args))
            if token.value in _KEYWORDS:
                return Literal(_KEYWORDS[token.value])
            return NamedValue(token.value)

        if self._accept("punct", "("):
            node = self._or()
            self._expect("punct", ")")
            return node

        found = token.value if token.kind != "eof" else "end of expression"
        raise EvaluationError(
            f"Unexpected token '{found}' at position {token.pos}", self.expression
        )


@lru_cache(maxsize=1024)
def parse_expression(expression: str) -> Any:
    """Parse an expression body (without ${{ }}) into a syntax tree."""
    return _Parser(expression).parse()


def uses_function(expression: str, *names: str) -> bool:
    """
    Check whether an expression calls any of the named functions.

    Accepts a bare expression, one ${{ }} block, or text with several
    embedded ${{ }} blocks.
    """
    if not expression:
        return False
    if has_expressions(expression) and not is_single_expression(expression):
        bodies = [text for is_expr, text in split_template(expression) if is_expr]
    else:
        bodies = [strip_expression(expression)]
    wanted = {n.casefold() for n in names}
    return any(
        isinstance(node, FunctionCall) and node.name.casefold() in wanted
        for body in bodies if body.strip()
        for node in walk(parse_expression(body))
    )


# ============================================================================
# VALUE SEMANTICS
# ============================================================================

class FilteredArray(list):
    """Result of an object filter; property access maps over the elements."""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_truthy(value: Any) -> bool:
    """Falsy values: null, false, 0, NaN and the empty string."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if _is_number(value):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    return True


def to_number(value: Any) -> float:
    """Coerce a scalar to a number (NaN when not convertible)."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return 1 if value else 0
    if _is_number(value):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            if text.lower().lstrip("+-").startswith("0x"):
                return _parse_number(text)
            return float(text)
        except ValueError:
            return float("nan")
    return float("nan")


def to_string(value: Any) -> str:
    """Render a value the way interpolation shows it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (list, dict)):
        return json.dumps(value, sort_keys=False, default=str)
    return str(value)


def loose_equals(left: Any, right: Any) -> bool:
    """Equality with case-insensitive strings and numeric coercion."""
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, (list, dict)) or isinstance(right, (list, dict)):
        if isinstance(left, (list, dict)) and isinstance(right, (list, dict)):
            return left == right
        return False
    if isinstance(left, str) and isinstance(right, str):
        return left.casefold() == right.casefold()
    if isinstance(left, bool) and isinstance(right, bool):
        return left == right
    if _is_number(left) and _is_number(right):
        return left == right
    return to_number(left) == to_number(right)


_ORDERING = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def _ordered(op: str, left: Any, right: Any, expression: str) -> bool:
    if isinstance(left, (list, dict)) or isinstance(right, (list, dict)):
        raise EvaluationError(f"Cannot apply '{op}' to an array or object", expression)
    if left is None or right is None:
        return False
    if isinstance(left, str) and isinstance(right, str):
        return _ORDERING[op](left.casefold(), right.casefold())
    a, b = to_number(left), to_number(right)
    if math.isnan(a) or math.isnan(b):
        return False
    return _ORDERING[op](a, b)


def _get_property(target: Any, name: str) -> Any:
    if isinstance(target, FilteredArray):
        mapped = FilteredArray()
        for item in target:
            value = _get_property(item, name)
            if value is not None:
                mapped.append(value)
        return mapped
    if isinstance(target, dict):
        if name in target:
            return target[name]
        folded = name.casefold()
        for key, value in target.items():
            if isinstance(key, str) and key.casefold() == folded:
                return value
    return None


def _get_index(target: Any, index: Any) -> Any:
    if isinstance(target, dict):
        return _get_property(target, to_string(index))
    if isinstance(target, list):
        number = to_number(index)
        if math.isnan(number) or number < 0:
            return None
        position = int(number)
        return target[position] if position < len(target) else None
    return None


def _filter(target: Any) -> FilteredArray:
    if isinstance(target, dict):
        return FilteredArray(target.values())
    if isinstance(target, list):
        return FilteredArray(target)
    return FilteredArray()


def _plain(value: Any) -> Any:
    """Drop the FilteredArray marker before values leave the evaluator."""
    if isinstance(value, FilteredArray):
        return list(value)
    return value


# ============================================================================
# FUNCTIONS
# ============================================================================

# name -> (min args, max args or None)
_FUNCTION_ARITY = {
    "contains": (2, 2),
    "startswith": (2, 2),
    "endswith": (2, 2),
    "format": (1, None),
    "join": (1, 2),
    "tojson": (1, 1),
    "fromjson": (1, 1),
    "success": (0, 0),
    "failure": (0, 0),
    "always": (0, 0),
    "cancelled": (0, 0),
}


def _format(template: Any, args: List[Any], expression: str) -> str:
    text = to_string(template)
    out = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "{":
            if text.startswith("{{", i):
                out.append("{")
                i += 2
                continue
            end = text.find("}", i)
            index_text = text[i + 1:end] if end != -1 else ""
            if not index_text.isdigit():
                raise EvaluationError(f"Invalid format string '{text}'", expression)
            index = int(index_text)
            if index >= len(args):
                raise EvaluationError(
                    f"Format placeholder {{{index}}} has no matching argument", expression
                )
            out.append(to_string(args[index]))
            i = end + 1
            continue
        if ch == "}":
            if text.startswith("}}", i):
                out.append("}")
                i += 2
                continue
            raise EvaluationError(f"Invalid format string '{text}'", expression)
        out.append(ch)
        i += 1
    return "".join(out)


def _from_json(value: Any, expression: str) -> Any:
    if not isinstance(value, str):
        raise EvaluationError("fromJSON expects a string argument", expression)
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise EvaluationError(f"fromJSON could not parse input: {e}", expression) from e


def _join(args: List[Any]) -> str:
    separator = to_string(args[1]) if len(args) > 1 else ","
    items = args[0]
    if isinstance(items, list):
        return separator.join(to_string(item) for item in items)
    return to_string(items)


# ============================================================================
# EVALUATOR
# ============================================================================

class ExpressionEvaluator:
    """
    Evaluates expressions and ${{ }} templates against an EvaluationContext.

    Stateless apart from the shared parse cache.
    """

    def evaluate(self, expression: str, context: EvaluationContext) -> Any:
        """
        Evaluate a bare expression (no ${{ }} wrapper required).

        Args:
            expression: Expression text, optionally wrapped in ${{ }}
            context: Evaluation context

        Returns:
            bool, str, number, list, dict or None

        Raises:
            EvaluationError: Syntax error, unknown function/named-value,
                wrong argument types
        """
        body = strip_expression(expression)
        tree = parse_expression(body)
        return _plain(self._eval(tree, context, body))

    def evaluate_condition(self, condition: Optional[str], context: EvaluationContext) -> bool:
        """
        Evaluate a job `if` condition.

        An empty condition means success(). A condition that calls no
        status function is evaluated as success() && (condition).
        """
        if condition is None or not condition.strip():
            return self._status("success", context)

        if not is_single_expression(condition) and EXPRESSION_START in condition:
            if not uses_function(condition, *STATUS_FUNCTIONS) and not self._status("success", context):
                return False
            return is_truthy(self.interpolate(condition, context))

        body = strip_expression(condition)
        tree = parse_expression(body)
        has_status = any(
            isinstance(node, FunctionCall) and node.name.casefold() in STATUS_FUNCTIONS
            for node in walk(tree)
        )
        if not has_status and not self._status("success", context):
            return False
        return is_truthy(self._eval(tree, context, body))

    def interpolate(self, template: Any, context: EvaluationContext) -> Any:
        """
        Resolve ${{ }} placeholders in a string.

        A string that is exactly one expression yields the raw value;
        otherwise each expression is rendered as text.
        """
        if not isinstance(template, str) or EXPRESSION_START not in template:
            return template

        segments = split_template(template)
        expressions = [text for is_expr, text in segments if is_expr]
        literal_text = "".join(text for is_expr, text in segments if not is_expr)

        if len(expressions) == 1 and not literal_text.strip():
            return self.evaluate(expressions[0], context)

        parts = []
        for is_expr, text in segments:
            parts.append(to_string(self.evaluate(text, context)) if is_expr else text)
        return "".join(parts)

    def render(self, value: Any, context: EvaluationContext) -> Any:
        """Interpolate every string inside a nested dict/list structure."""
        if isinstance(value, dict):
            return {k: self.render(v, context) for k, v in value.items()}
        if isinstance(value, list):
            return [self.render(v, context) for v in value]
        return self.interpolate(value, context)

    # ------------------------------------------------------------------
    # Tree walking
    # ------------------------------------------------------------------

    def _eval(self, node: Any, context: EvaluationContext, expression: str) -> Any:
        if isinstance(node, Literal):
            return node.value

        if isinstance(node, NamedValue):
            return context.lookup(node.name, expression)

        if isinstance(node, PropertyAccess):
            return _get_property(self._eval(node.target, context, expression), node.name)

        if isinstance(node, IndexAccess):
            target = self._eval(node.target, context, expression)
            return _get_index(target, self._eval(node.index, context, expression))

        if isinstance(node, ObjectFilter):
            return _filter(self._eval(node.target, context, expression))

        if isinstance(node, Not):
            return not is_truthy(self._eval(node.operand, context, expression))

        if isinstance(node, Binary):
            left = self._eval(node.left, context, expression)
            if node.op == "&&":
                return self._eval(node.right, context, expression) if is_truthy(left) else left
            if node.op == "||":
                return left if is_truthy(left) else self._eval(node.right, context, expression)
            right = self._eval(node.right, context, expression)
            left, right = _plain(left), _plain(right)
            if node.op == "==":
                return loose_equals(left, right)
            if node.op == "!=":
                return not loose_equals(left, right)
            return _ordered(node.op, left, right, expression)

        if isinstance(node, FunctionCall):
            return self._call(node, context, expression)

        raise EvaluationError(f"Unsupported syntax node {type(node).__name__}", expression)

    def _call(self, node: FunctionCall, context: EvaluationContext, expression: str) -> Any:
        name = node.name.casefold()
        if name not in _FUNCTION_ARITY:
            raise EvaluationError(f"Unknown function '{node.name}'", expression)

        low, high = _FUNCTION_ARITY[name]
        count = len(node.args)
        if count < low or (high is not None and count > high):
            raise EvaluationError(
                f"Function '{node.name}' called with {count} argument(s)", expression
            )

        if name in STATUS_FUNCTIONS:
            return self._status(name, context)

        args = [_plain(self._eval(arg, context, expression)) for arg in node.args]

        if name == "contains":
            haystack, needle = args
            if isinstance(haystack, list):
                return any(loose_equals(item, needle) for item in haystack)
            return to_string(needle).casefold() in to_string(haystack).casefold()
        if name == "startswith":
            return to_string(args[0]).casefold().startswith(to_string(args[1]).casefold())
        if name == "endswith":
            return to_string(args[0]).casefold().endswith(to_string(args[1]).casefold())
        if name == "format":
            return _format(args[0], args[1:], expression)
        if name == "join":
            return _join(args)
        if name == "tojson":
            return json.dumps(args[0], indent=2, default=str)
        return _from_json(args[0], expression)

    @staticmethod
    def _status(name: str, context: EvaluationContext) -> bool:
        results = list(context.needs_results.values())
        if name == "always":
            return True
        if name == "cancelled":
            return context.run_cancelled or JobResult.CANCELLED.value in results
        if name == "failure":
            return JobResult.FAILURE.value in results
        # success
        if context.run_cancelled:
            return False
        return all(r in (JobResult.SUCCESS.value, JobResult.SKIPPED.value) for r in results)


# ============================================================================
# TEMPLATE HELPERS
# ============================================================================

def split_template(template: str) -> List[Tuple[bool, str]]:
    """
    Split a string into (is_expression, text) segments.

    Quoted strings inside an expression may contain '}}'.

    Raises:
        EvaluationError: If a ${{ is never closed
    """
    segments: List[Tuple[bool, str]] = []
    i = 0
    while True:
        start = template.find(EXPRESSION_START, i)
        if start == -1:
            if i < len(template):
                segments.append((False, template[i:]))
            return segments
        if start > i:
            segments.append((False, template[i:start]))

        j = start + len(EXPRESSION_START)
        in_string = False
        while j < len(template):
            if template[j] == "'":
                in_string = not in_string
            elif not in_string and template.startswith(EXPRESSION_END, j):
                break
            j += 1
        else:
            raise EvaluationError("Unterminated '${{' in template", template)

        segments.append((True, template[start + len(EXPRESSION_START):j].strip()))
        i = j + len(EXPRESSION_END)


def is_single_expression(text: str) -> bool:
    """True if the whole string is exactly one ${{ }} block."""
    stripped = text.strip()
    if not stripped.startswith(EXPRESSION_START):
        return False
    segments = split_template(stripped)
    return len(segments) == 1 and segments[0][0]


def strip_expression(text: str) -> str:
    """Remove a single enclosing ${{ }} wrapper, if present."""
    if is_single_expression(text):
        return split_template(text.strip())[0][1]
    return text


def has_expressions(value: Any) -> bool:
    """Check whether a string contains any ${{ }} placeholder."""
    return isinstance(value, str) and EXPRESSION_START in value


# ============================================================================
# CONVENIENCE
# ============================================================================

_evaluator: Optional[ExpressionEvaluator] = None


def get_expression_evaluator() -> ExpressionEvaluator:
    """Get the singleton expression evaluator."""
    global _evaluator
    if _evaluator is None:
        _evaluator = ExpressionEvaluator()
    return _evaluator


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "EvaluationContext",
    "ExpressionEvaluator",
    "get_expression_evaluator",
    "parse_expression",
    "tokenize",
    "uses_function",
    "is_truthy",
    "to_number",
    "to_string",
    "loose_equals",
    "split_template",
    "strip_expression",
    "is_single_expression",
    "has_expressions",
    "KNOWN_CONTEXTS",
    "STATUS_FUNCTIONS",
]
