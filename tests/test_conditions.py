"""Tests for condition evaluation."""

import math

import pytest

from automation_engine.core.conditions import ConditionEvaluator, parse_leading_float


@pytest.fixture
def evaluator():
    return ConditionEvaluator()


class TestConditionEvaluator:
    """Comparison semantics after interpolation."""

    @pytest.mark.parametrize("expression,data,expected", [
        ("{{status}} == active", {"status": "active"}, True),
        ("{{status}} == active", {"status": "paused"}, False),
        ("{{status}} != active", {"status": "paused"}, True),
        ("{{score}} > 50", {"score": 80}, True),
        ("{{score}} > 50", {"score": 20}, False),
        ("{{score}} < 50", {"score": 20}, True),
        ("{{flag}} == true", {"flag": True}, True),
    ])
    def test_operators(self, evaluator, expression, data, expected):
        assert evaluator.evaluate(expression, data) is expected

    def test_equality_is_string_comparison(self, evaluator):
        assert evaluator.evaluate("{{amount}} == 10.0", {"amount": 10}) is False
        assert evaluator.evaluate("{{amount}} == 10", {"amount": 10}) is True

    def test_operands_are_trimmed(self, evaluator):
        assert evaluator.evaluate("  yes   ==   yes ", {}) is True

    def test_numeric_prefix(self, evaluator):
        assert evaluator.evaluate("{{size}} > 5", {"size": "12abc"}) is True

    def test_non_numeric_ordering_is_false(self, evaluator):
        assert evaluator.evaluate("abc > 5", {}) is False
        assert evaluator.evaluate("abc < 5", {}) is False

    def test_first_operator_in_priority_order_wins(self, evaluator):
        # Split on "==" even though ">" also appears
        assert evaluator.evaluate("a == b > c", {}) is False
        assert evaluator.evaluate("b > c == b > c", {}) is True

    def test_only_first_two_operands_are_compared(self, evaluator):
        assert evaluator.evaluate("a == a == c", {}) is True
        assert evaluator.evaluate("a == b == b", {}) is False

    def test_unresolved_placeholder_compares_literally(self, evaluator):
        assert evaluator.evaluate("{{missing}} == x", {}) is False
        assert evaluator.evaluate("{{missing}} != x", {}) is True

    def test_no_operator_uses_default(self):
        assert ConditionEvaluator().evaluate("just text", {}) is True
        assert ConditionEvaluator(default_result=False).evaluate("just text", {}) is False


class TestParseLeadingFloat:

    def test_prefixes(self):
        assert parse_leading_float("42") == 42.0
        assert parse_leading_float(" -3.5kg") == -3.5
        assert parse_leading_float("1e3") == 1000.0
        assert parse_leading_float(".5") == 0.5
        assert parse_leading_float("Infinity") == math.inf

    def test_no_prefix_is_nan(self):
        assert math.isnan(parse_leading_float("abc"))
        assert math.isnan(parse_leading_float(""))
