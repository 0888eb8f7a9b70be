import pytest
import os
import sys
from unittest.mock import patch

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tools.formula import (
    MAX_CELL_TEXT,
    FormulaFailure,
    FormulaValue,
    evaluate_formula,
    parse_leading_float,
    to_text,
)


class TestArithmetic:
    """Operators, precedence and literals."""

    def test_simple_addition_as_number(self):
        assert evaluate_formula("=1+1", "Number") == FormulaValue(2.0)

    def test_leading_equals_is_optional(self):
        assert evaluate_formula("1+1", "Number") == FormulaValue(2.0)

    def test_operator_precedence(self):
        assert evaluate_formula("=1+2*3", "Number") == FormulaValue(7.0)
        assert evaluate_formula("=(1+2)*3", "Number") == FormulaValue(9.0)
        assert evaluate_formula("=2^3", "Number") == FormulaValue(8.0)
        assert evaluate_formula("=10-4-3", "Number") == FormulaValue(3.0)

    def test_concatenation(self):
        assert evaluate_formula('="Lead "&"42"') == FormulaValue("Lead 42")

    def test_comparison_renders_lowercase_boolean(self):
        assert evaluate_formula("=1=1", "String") == FormulaValue("true")
        assert evaluate_formula("=1>2", "String") == FormulaValue("false")
        assert evaluate_formula("=TRUE", "String") == FormulaValue("true")


class TestFunctions:
    """Spreadsheet functions provided by the engine."""

    def test_logical(self):
        assert evaluate_formula('=IF(1>0, "yes", "no")') == FormulaValue("yes")
        assert evaluate_formula('=IFERROR(1/0, "fallback")') == FormulaValue("fallback")

    def test_numeric(self):
        assert evaluate_formula("=SUM(1, 2, 3)", "Number") == FormulaValue(6.0)
        assert evaluate_formula("=MAX(1, 7, 3)", "Number") == FormulaValue(7.0)
        assert evaluate_formula("=ABS(-4)", "Number") == FormulaValue(4.0)
        assert evaluate_formula("=ROUND(3.14159, 2)", "Number") == FormulaValue(3.14)

    def test_text(self):
        assert evaluate_formula('=UPPER("abc")') == FormulaValue("ABC")
        assert evaluate_formula('=LEN("hello")', "Number") == FormulaValue(5.0)
        assert evaluate_formula('=LEFT("hello", 2)') == FormulaValue("he")

    def test_rept(self):
        assert evaluate_formula('=REPT("ab", 3)') == FormulaValue("ababab")

    def test_rept_up_to_cell_limit(self):
        outcome = evaluate_formula(f'=REPT("a", {MAX_CELL_TEXT})')
        assert outcome == FormulaValue("a" * MAX_CELL_TEXT)

    @pytest.mark.parametrize("formula", [
        '=REPT("abc", 1e10)',
        f'=REPT("a", {MAX_CELL_TEXT + 1})',
        '=REPT("a", -1)',
    ])
    def test_rept_beyond_cell_limit_is_value_error(self, formula):
        assert evaluate_formula(formula) == FormulaFailure("#VALUE!")


class TestErrors:
    """Errors are returned as FormulaFailure, never raised."""

    @pytest.mark.parametrize("formula,code", [
        ("=1/0", "#DIV/0!"),
        ("=A1+1", "#REF!"),
        ("=SUM(A1:B2)", "#REF!"),
        ("=NA()", "#N/A"),
    ])
    def test_error_codes(self, formula, code):
        assert evaluate_formula(formula, "Number") == FormulaFailure(code)
        assert evaluate_formula(formula, "String") == FormulaFailure(code)

    @pytest.mark.parametrize("formula", ["=NOSUCHFUNC(1)", "=1+", "=(1+2", '="unterminated'])
    def test_invalid_formulas_fail(self, formula):
        assert isinstance(evaluate_formula(formula, "String"), FormulaFailure)

    @pytest.mark.parametrize("formula", [
        "=1e400",
        "=INT(1e400)",
        "=CEILING(1e400, 1)",
        "=1e308*10",
    ])
    @pytest.mark.parametrize("fmt", ["Number", "String"])
    def test_infinite_numbers_fail(self, formula, fmt):
        outcome = evaluate_formula(formula, fmt)
        assert isinstance(outcome, FormulaFailure)

    @pytest.mark.parametrize("formula", ['=LEFT("a", 1e400)', '=MID("abc", 1e400, 1)'])
    def test_infinite_text_arguments_do_not_raise(self, formula):
        outcome = evaluate_formula(formula, "String")
        assert isinstance(outcome, (FormulaValue, FormulaFailure))

    def test_infinite_result_is_num_error(self):
        with patch("tools.formula.compute", return_value=float("inf")):
            assert evaluate_formula("=X", "Number") == FormulaFailure("#NUM!")
            assert evaluate_formula("=X", "String") == FormulaFailure("#NUM!")

    def test_nan_result_is_num_error(self):
        with patch("tools.formula.compute", return_value=float("nan")):
            assert evaluate_formula("=X", "Number") == FormulaFailure("#NUM!")

    def test_engine_overflow_is_num_error(self):
        with patch("tools.formula.compute", side_effect=OverflowError("cannot convert float infinity to integer")):
            assert evaluate_formula("=INT(X)", "Number") == FormulaFailure("#NUM!")

    def test_unexpected_engine_exception_is_contained(self):
        with patch("tools.formula.compute", side_effect=RuntimeError("engine bug")):
            assert evaluate_formula("=X", "String") == FormulaFailure("#ERROR!")

    def test_deep_nesting_does_not_raise(self):
        formula = "=" + "(" * 200 + "1" + ")" * 200
        outcome = evaluate_formula(formula, "Number")
        assert isinstance(outcome, (FormulaValue, FormulaFailure))


class TestCoercion:
    """Output format coercion."""

    @pytest.mark.parametrize("fmt", ["Number", "float", "integer"])
    def test_non_numeric_result_becomes_zero(self, fmt):
        assert evaluate_formula('="hello"', fmt) == FormulaValue(0.0)
        assert evaluate_formula("=TRUE", fmt) == FormulaValue(0.0)

    @pytest.mark.parametrize("fmt", ["Number", "float", "integer"])
    def test_numeric_formats_return_floats(self, fmt):
        outcome = evaluate_formula("=7/2", fmt)
        assert outcome == FormulaValue(3.5)
        assert isinstance(outcome.value, float)

    def test_numeric_prefix_is_kept(self):
        assert evaluate_formula('="12abc"', "Number") == FormulaValue(12.0)

    def test_string_format(self):
        assert evaluate_formula("=1+1", "String") == FormulaValue("2")
        assert evaluate_formula("=7/2", "String") == FormulaValue("3.5")
        assert evaluate_formula('="abc"', "Text") == FormulaValue("abc")

    def test_to_text(self):
        assert to_text(True) == "true"
        assert to_text(False) == "false"
        assert to_text(2.0) == "2"
        assert to_text(None) == ""

    def test_empty_formula(self):
        assert evaluate_formula("", "String") == FormulaValue("")
        assert evaluate_formula("", "Number") == FormulaValue(0.0)
        assert evaluate_formula("=", "Number") == FormulaValue(0.0)

    def test_parse_leading_float(self):
        assert parse_leading_float(" 3.5kg") == 3.5
        assert parse_leading_float("-.5") == -0.5
        assert parse_leading_float("abc") == 0.0
        assert parse_leading_float(None) == 0.0
        assert parse_leading_float(False) == 0.0

    def test_evaluation_is_repeatable(self):
        for formula, fmt in [("=1+1", "Number"), ("=1/0", "String"), ('=UPPER("x")', "String")]:
            assert evaluate_formula(formula, fmt) == evaluate_formula(formula, fmt)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
