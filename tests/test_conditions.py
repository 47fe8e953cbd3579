"""Unit tests for condition expressions."""

from __future__ import annotations

import pytest

from autoflow.errors import ConditionError
from autoflow.workflow.conditions import evaluate_condition, is_supported, parse_condition


class TestParseCondition:
    @pytest.mark.parametrize("expr", ["true", "false", " TRUE ", "count > 0", "x<=2.5", "n == -1", "items>=10"])
    def test_supported(self, expr):
        assert is_supported(expr)

    @pytest.mark.parametrize(
        "expr",
        ["", "count > limit", "a and b", "len(items) > 0", "x != 3", "1 < x", "__import__('os')"],
    )
    def test_unsupported(self, expr):
        assert not is_supported(expr)
        with pytest.raises(ConditionError):
            parse_condition(expr)

    def test_non_string(self):
        with pytest.raises(ConditionError):
            parse_condition(5)


class TestEvaluate:
    def test_constants(self):
        assert evaluate_condition("true", {}) is True
        assert evaluate_condition("False", {}) is False

    def test_numeric_comparison(self):
        assert evaluate_condition("count > 0", {"count": 3})
        assert not evaluate_condition("count > 0", {"count": 0})
        assert evaluate_condition("score <= 2.5", {"score": 2.5})
        assert evaluate_condition("n == 4", {"n": 4})

    def test_sized_values_compare_by_length(self):
        assert evaluate_condition("rows > 1", {"rows": [1, 2]})
        assert not evaluate_condition("rows > 1", {"rows": {}})

    def test_undefined_variable(self):
        with pytest.raises(ConditionError, match="Undefined variable 'count'"):
            evaluate_condition("count > 0", {})

    def test_non_numeric_value(self):
        with pytest.raises(ConditionError, match="not comparable"):
            evaluate_condition("count > 0", {"count": None})
