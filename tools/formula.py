"""
Spreadsheet-style formula evaluation on top of the ``formulas`` engine.

Formulas are evaluated without a workbook: any cell or range reference makes
the formula fail with ``#REF!``. Engine error values and engine exceptions
are both returned as ``FormulaFailure``; nothing raises past
``evaluate_formula``.
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Union

import formulas
import numpy as np
from formulas.errors import FormulaError, FunctionError
from formulas.tokens.operand import Error, XlError
from loguru import logger

NUMERIC_FORMATS = frozenset({"Number", "float", "integer"})

REF = "#REF!"
NAME = "#NAME?"
NUM = "#NUM!"
VALUE = "#VALUE!"
ERROR = "#ERROR!"

MAX_CELL_TEXT = 32767


@dataclass(frozen=True)
class FormulaValue:
    value: Union[float, str]


@dataclass(frozen=True)
class FormulaFailure:
    message: str


EvaluationOutcome = Union[FormulaValue, FormulaFailure]


def _scalar(value: Any) -> Any:
    """Unwrap the engine's array results to a single Python value."""
    if isinstance(value, XlError):
        return value
    if isinstance(value, np.ndarray):
        value = value.ravel()[0] if value.size else None
        if isinstance(value, XlError):
            return value
    if isinstance(value, np.generic):
        value = value.item()
    return value


def _rept(text, number_times):
    """REPT limited to the size of one spreadsheet cell."""
    text, times = _scalar(text), _scalar(number_times)
    for arg in (text, times):
        if isinstance(arg, XlError):
            return arg
    try:
        times = int(float(times))
    except (TypeError, ValueError, OverflowError):
        return Error.errors[VALUE]
    text = to_text(text)
    if times < 0 or len(text) * times > MAX_CELL_TEXT:
        return Error.errors[VALUE]
    return text * times


formulas.get_functions()["REPT"] = _rept


def format_number(number: float) -> str:
    """Render a number the way a spreadsheet cell shows it (2.0 -> "2")."""
    if float(number).is_integer() and abs(number) < 1e21:
        return str(int(number))
    return repr(float(number))


def to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    return str(value)


def compute(formula: str) -> Any:
    """
    Evaluate a formula to its raw engine value.

    Returns ``None`` for an empty formula and an ``XlError`` for spreadsheet
    errors. Engine exceptions propagate.
    """
    source = (formula or "").strip()
    if source.startswith("="):
        source = source[1:].strip()
    if not source:
        return None

    func = formulas.Parser().ast(f"={source}")[1].compile()
    if func.inputs:
        return Error.errors[REF]
    return _scalar(func())


_LEADING_NUMBER = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def parse_leading_float(raw: Any) -> float:
    """Read the numeric prefix of a raw result; 0 when there is none."""
    if isinstance(raw, bool) or raw is None:
        return 0.0
    if isinstance(raw, (int, float)):
        return float(raw)
    match = _LEADING_NUMBER.match(str(raw))
    return float(match.group()) if match else 0.0


def coerce(raw: Any, fmt: str) -> Union[float, str]:
    if fmt in NUMERIC_FORMATS:
        return parse_leading_float(raw)
    return to_text(raw)


def evaluate_formula(formula: str, fmt: str = "String") -> EvaluationOutcome:
    """
    Evaluate ``formula`` and coerce the result to ``fmt``.

    Args:
        formula: Formula text, with or without a leading ``=``
        fmt: Output format; ``Number``, ``float`` and ``integer`` produce a
            float, anything else produces text

    Returns:
        FormulaValue with the coerced result, or FormulaFailure carrying the
        spreadsheet error code
    """
    try:
        raw = compute(formula)
    except FunctionError:
        return FormulaFailure(NAME)
    except FormulaError as e:
        logger.warning(f"Formula could not be parsed {formula!r}: {e}")
        return FormulaFailure(ERROR)
    except (ArithmeticError, ValueError, MemoryError):
        return FormulaFailure(NUM)
    except Exception as e:
        logger.warning(f"Formula engine rejected {formula!r}: {e}")
        return FormulaFailure(ERROR)

    if isinstance(raw, XlError):
        return FormulaFailure(str(raw))
    if isinstance(raw, float) and not math.isfinite(raw):
        return FormulaFailure(NUM)

    value = coerce(raw, fmt)
    if isinstance(value, float) and not math.isfinite(value):
        return FormulaFailure(NUM)
    return FormulaValue(value)
