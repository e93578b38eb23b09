"""Condition evaluation for condition nodes and connection guards."""

import math
import re
from typing import Any, Dict

from .logging import get_logger
from .template import interpolate


logger = get_logger(__name__)

# Checked in this order; the first operator present wins.
OPERATORS = ("==", "!=", ">", "<")

_LEADING_NUMBER = re.compile(r'^[+-]?(?:Infinity|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)')


def parse_leading_float(text: str) -> float:
    """Parse the longest numeric prefix of ``text``.

    ``"12abc"`` gives 12.0 and text with no numeric prefix gives NaN, which
    makes every ordering comparison false.
    """
    match = _LEADING_NUMBER.match(text.strip())
    if not match:
        return math.nan
    token = match.group(0)
    if token.endswith("Infinity"):
        return -math.inf if token.startswith("-") else math.inf
    return float(token)


class ConditionEvaluator:
    """Evaluates ``left OP right`` expressions after template interpolation.

    Supported operators are ``==`` and ``!=`` (string comparison of the
    trimmed operands) and ``>`` and ``<`` (numeric comparison). An expression
    containing none of them evaluates to ``default_result``.
    """

    def __init__(self, default_result: bool = True):
        self.default_result = default_result

    def evaluate(self, condition: str, data: Dict[str, Any]) -> bool:
        """
        Evaluate a condition against node data.

        Args:
            condition: Expression, possibly containing ``{{...}}`` placeholders
            data: Values available to the placeholders

        Returns:
            The comparison result; False if evaluation raised
        """
        try:
            expression = interpolate(condition, data)

            for operator in OPERATORS:
                if operator in expression:
                    # Only the first two segments are compared
                    left, right = expression.split(operator)[:2]
                    return self._compare(left.strip(), operator, right.strip())

            logger.warning(
                f"Condition '{condition}' has no recognised operator; "
                f"evaluating to {self.default_result}"
            )
            return self.default_result

        except Exception as e:
            logger.error(f"Error evaluating condition '{condition}': {e}")
            return False

    @staticmethod
    def _compare(left: str, operator: str, right: str) -> bool:
        if operator == "==":
            return left == right
        if operator == "!=":
            return left != right
        if operator == ">":
            return parse_leading_float(left) > parse_leading_float(right)
        return parse_leading_float(left) < parse_leading_float(right)
