# ============================================================================
# EXPRESSION EVALUATOR TESTS
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Tests - ${{ }} expressions
# PURPOSE: Verify parsing, value semantics, functions and conditions
# CREATED: 14 OCT 2026
# ============================================================================
"""
Expression Evaluator Tests

Covers:
1. Literals, operators and short-circuit results
2. Property/index access, object filters, undefined paths
3. Built-in functions
4. Template interpolation
5. `if` conditions and status functions
6. Syntax and evaluation errors

Run with:
    pytest tests/test_expressions.py -v
"""

import pytest

from core.errors import EvaluationError
from orchestrator.engine.expressions import (
    EvaluationContext,
    ExpressionEvaluator,
    is_truthy,
    split_template,
    to_string,
    uses_function,
)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def ev():
    return ExpressionEvaluator()


@pytest.fixture
def ctx():
    return EvaluationContext(
        contexts={
            "github": {
                "ref": "refs/heads/main",
                "event": {
                    "labels": [{"name": "deploy"}, {"name": "docs"}],
                    "number": 42,
                },
            },
            "matrix": {"os": "linux", "version": 3},
            "env": {"STAGE": "prod"},
            "needs": {
                "build": {"result": "success", "outputs": {"version": "1.2.3"}},
            },
        },
        needs_results={"build": "success"},
    )


# ============================================================================
# LITERALS AND OPERATORS
# ============================================================================

class TestLiterals:

    def test_keywords(self, ev):
        assert ev.evaluate("true", EvaluationContext()) is True
        assert ev.evaluate("false", EvaluationContext()) is False
        assert ev.evaluate("null", EvaluationContext()) is None

    def test_numbers(self, ev):
        assert ev.evaluate("42", EvaluationContext()) == 42
        assert ev.evaluate("0xff", EvaluationContext()) == 255
        assert ev.evaluate("1.5e2", EvaluationContext()) == 150.0
        assert ev.evaluate("-3", EvaluationContext()) == -3

    def test_string_with_escaped_quote(self, ev):
        assert ev.evaluate("'it''s'", EvaluationContext()) == "it's"

    def test_wrapped_expression(self, ev):
        assert ev.evaluate("${{ 1 == 1 }}", EvaluationContext()) is True


class TestOperators:

    def test_string_equality_is_case_insensitive(self, ev):
        assert ev.evaluate("'Linux' == 'linux'", EvaluationContext()) is True

    def test_mixed_types_coerce_to_numbers(self, ev):
        assert ev.evaluate("'3' == 3", EvaluationContext()) is True
        assert ev.evaluate("true == 1", EvaluationContext()) is True
        assert ev.evaluate("'abc' == 0", EvaluationContext()) is False

    def test_null_only_equals_null(self, ev):
        assert ev.evaluate("null == null", EvaluationContext()) is True
        assert ev.evaluate("null == 0", EvaluationContext()) is False
        assert ev.evaluate("null != ''", EvaluationContext()) is True

    def test_ordering(self, ev):
        assert ev.evaluate("1 < 2", EvaluationContext()) is True
        assert ev.evaluate("'10' >= 9", EvaluationContext()) is True
        assert ev.evaluate("'abc' < 1", EvaluationContext()) is False

    def test_not(self, ev):
        assert ev.evaluate("!false", EvaluationContext()) is True
        assert ev.evaluate("!''", EvaluationContext()) is True
        assert ev.evaluate("!'x'", EvaluationContext()) is False

    def test_and_or_return_deciding_operand(self, ev):
        empty = EvaluationContext()
        assert ev.evaluate("'' || 'fallback'", empty) == "fallback"
        assert ev.evaluate("'a' && 'b'", empty) == "b"
        assert ev.evaluate("0 && 'never'", empty) == 0

    def test_short_circuit_skips_errors(self, ev):
        # The right operand would raise (unknown function) if evaluated
        assert ev.evaluate("false && nope()", EvaluationContext()) is False

    def test_precedence_and_parentheses(self, ev):
        empty = EvaluationContext()
        assert ev.evaluate("true || false && false", empty) is True
        assert ev.evaluate("(true || false) && false", empty) is False


# ============================================================================
# PROPERTY ACCESS
# ============================================================================

class TestPropertyAccess:

    def test_dotted_path(self, ev, ctx):
        assert ev.evaluate("github.ref", ctx) == "refs/heads/main"
        assert ev.evaluate("needs.build.outputs.version", ctx) == "1.2.3"

    def test_index_access(self, ev, ctx):
        assert ev.evaluate("matrix['os']", ctx) == "linux"
        assert ev.evaluate("github.event.labels[1].name", ctx) == "docs"

    def test_property_names_are_case_insensitive(self, ev, ctx):
        assert ev.evaluate("MATRIX.OS", ctx) == "linux"

    def test_undefined_path_is_null(self, ev, ctx):
        assert ev.evaluate("github.event.nothing.here", ctx) is None
        assert ev.evaluate("needs.missing.outputs.x", ctx) is None
        assert ev.evaluate("github.event.labels[10]", ctx) is None

    def test_known_but_empty_context_is_null(self, ev):
        assert ev.evaluate("secrets.TOKEN", EvaluationContext()) is None

    def test_unknown_top_level_name_raises(self, ev):
        with pytest.raises(EvaluationError):
            ev.evaluate("bogus.value", EvaluationContext())

    def test_bare_job_name_reads_needs(self, ev, ctx):
        assert ev.evaluate("build.result", ctx) == "success"

    def test_bare_job_name_is_case_insensitive(self, ev, ctx):
        assert ev.evaluate("BUILD.outputs.version", ctx) == "1.2.3"

    def test_object_filter(self, ev, ctx):
        assert ev.evaluate("github.event.labels.*.name", ctx) == ["deploy", "docs"]


# ============================================================================
# FUNCTIONS
# ============================================================================

class TestFunctions:

    def test_contains(self, ev, ctx):
        assert ev.evaluate("contains(github.event.labels.*.name, 'DEPLOY')", ctx) is True
        assert ev.evaluate("contains('Hello world', 'WORLD')", ctx) is True
        assert ev.evaluate("contains(fromJSON('[1, 2]'), 3)", ctx) is False

    def test_starts_and_ends_with(self, ev, ctx):
        assert ev.evaluate("startsWith(github.ref, 'refs/heads/')", ctx) is True
        assert ev.evaluate("endsWith(github.ref, 'MAIN')", ctx) is True

    def test_format(self, ev, ctx):
        assert ev.evaluate("format('{0}-{1}', matrix.os, matrix.version)", ctx) == "linux-3"
        assert ev.evaluate("format('{{literal}} {0}', 'x')", ctx) == "{literal} x"

    def test_format_missing_argument_raises(self, ev, ctx):
        with pytest.raises(EvaluationError):
            ev.evaluate("format('{0} {1}', 'a')", ctx)

    def test_join(self, ev, ctx):
        assert ev.evaluate("join(github.event.labels.*.name)", ctx) == "deploy,docs"
        assert ev.evaluate("join(github.event.labels.*.name, ' | ')", ctx) == "deploy | docs"

    def test_json_round_trip(self, ev, ctx):
        assert ev.evaluate("fromJSON('{\"a\": [1, 2]}')", ctx) == {"a": [1, 2]}
        assert ev.evaluate("fromJSON(toJSON(matrix))", ctx) == {"os": "linux", "version": 3}

    def test_from_json_invalid_raises(self, ev, ctx):
        with pytest.raises(EvaluationError):
            ev.evaluate("fromJSON('not json')", ctx)

    def test_unknown_function_raises(self, ev, ctx):
        with pytest.raises(EvaluationError):
            ev.evaluate("shout('x')", ctx)

    def test_wrong_arity_raises(self, ev, ctx):
        with pytest.raises(EvaluationError):
            ev.evaluate("contains('x')", ctx)

    def test_function_names_are_case_insensitive(self, ev, ctx):
        assert ev.evaluate("STARTSWITH('abc', 'a')", ctx) is True


# ============================================================================
# INTERPOLATION
# ============================================================================

class TestInterpolation:

    def test_plain_string_unchanged(self, ev, ctx):
        assert ev.interpolate("no expressions", ctx) == "no expressions"
        assert ev.interpolate(5, ctx) == 5

    def test_single_expression_keeps_type(self, ev, ctx):
        assert ev.interpolate("${{ matrix.version }}", ctx) == 3
        assert ev.interpolate("${{ fromJSON('[1, 2]') }}", ctx) == [1, 2]

    def test_mixed_template_renders_text(self, ev, ctx):
        result = ev.interpolate("v${{ needs.build.outputs.version }}-${{ matrix.os }}", ctx)
        assert result == "v1.2.3-linux"

    def test_null_renders_empty(self, ev, ctx):
        assert ev.interpolate("x=${{ github.nothing }}.", ctx) == "x=."

    def test_closing_braces_inside_string_literal(self, ev, ctx):
        assert ev.interpolate("${{ '}}' }}", ctx) == "}}"

    def test_unterminated_template_raises(self, ev, ctx):
        with pytest.raises(EvaluationError):
            ev.interpolate("${{ matrix.os ", ctx)

    def test_render_nested(self, ev, ctx):
        rendered = ev.render({"a": ["${{ matrix.os }}", {"b": "${{ env.STAGE }}"}]}, ctx)
        assert rendered == {"a": ["linux", {"b": "prod"}]}


# ============================================================================
# CONDITIONS
# ============================================================================

class TestConditions:

    def _ctx(self, results, cancelled=False):
        return EvaluationContext(
            contexts={"needs": {k: {"result": v, "outputs": {}} for k, v in results.items()}},
            needs_results=results,
            run_cancelled=cancelled,
        )

    def test_empty_condition_means_success(self, ev):
        assert ev.evaluate_condition(None, self._ctx({"a": "success"})) is True
        assert ev.evaluate_condition("", self._ctx({"a": "failure"})) is False

    def test_skipped_needs_count_as_success(self, ev):
        assert ev.evaluate_condition(None, self._ctx({"a": "skipped"})) is True

    def test_condition_without_status_function_implies_success(self, ev):
        assert ev.evaluate_condition("true", self._ctx({"a": "failure"})) is False
        assert ev.evaluate_condition("true", self._ctx({"a": "success"})) is True

    def test_always(self, ev):
        assert ev.evaluate_condition("always()", self._ctx({"a": "failure"})) is True
        assert ev.evaluate_condition("${{ always() }}", self._ctx({}, cancelled=True)) is True

    def test_failure(self, ev):
        assert ev.evaluate_condition("failure()", self._ctx({"a": "failure", "b": "success"})) is True
        assert ev.evaluate_condition("failure()", self._ctx({"a": "success"})) is False

    def test_cancelled(self, ev):
        assert ev.evaluate_condition("cancelled()", self._ctx({}, cancelled=True)) is True
        assert ev.evaluate_condition("cancelled()", self._ctx({"a": "cancelled"})) is True
        assert ev.evaluate_condition("success()", self._ctx({}, cancelled=True)) is False

    def test_condition_reading_needs_result(self, ev):
        ctx = self._ctx({"a": "failure"})
        assert ev.evaluate_condition("always() && needs.a.result == 'failure'", ctx) is True

    def test_mixed_template_condition_is_truthy_text(self, ev):
        ctx = EvaluationContext(contexts={"github": {"ref": ""}})
        assert ev.evaluate_condition("${{ github.ref }}", ctx) is False
        assert ev.evaluate_condition("ref=${{ github.ref }}", ctx) is True

    def test_mixed_template_condition_implies_success(self, ev):
        ctx = self._ctx({"build": "failure"})
        ctx.contexts["github"] = {"ref": "refs/heads/main"}
        assert ev.evaluate_condition("ref ${{ github.ref }}", ctx) is False
        assert ev.evaluate_condition("${{ failure() }} and ${{ github.ref }}", ctx) is True

        passing = self._ctx({"build": "success"})
        passing.contexts["github"] = {"ref": "refs/heads/main"}
        assert ev.evaluate_condition("ref ${{ github.ref }}", passing) is True

    def test_syntax_error_raises(self, ev):
        with pytest.raises(EvaluationError):
            ev.evaluate_condition("1 ==", EvaluationContext())


# ============================================================================
# HELPERS
# ============================================================================

class TestHelpers:

    def test_truthiness(self):
        assert not is_truthy(None)
        assert not is_truthy(0)
        assert not is_truthy("")
        assert not is_truthy(float("nan"))
        assert is_truthy("false")
        assert is_truthy([])
        assert is_truthy({})

    def test_to_string(self):
        assert to_string(None) == ""
        assert to_string(True) == "true"
        assert to_string(3.0) == "3"
        assert to_string([1, "a"]) == '[1, "a"]'

    def test_split_template(self):
        assert split_template("a ${{ b }} c") == [(False, "a "), (True, "b"), (False, " c")]

    def test_uses_function(self):
        assert uses_function("${{ always() && true }}", "always")
        assert not uses_function("success()", "always")
        assert not uses_function("", "always")

    def test_uses_function_in_mixed_template(self):
        assert uses_function("on ${{ github.ref }} ${{ always() }}", "always")
        assert not uses_function("on ${{ github.ref }} ${{ true }}", "always", "success")
