"""
Guard condition evaluation.

Guards are evaluated against a variable lookup and always produce a boolean.
An unbound variable is simply absent: NOT_NULL is false, NULL is true, and
equality and membership tests fail.
"""

from collections.abc import Callable
from typing import Any

from fhirweave.core.types import is_empty, to_fragment
from fhirweave.parsing.parser import (
    AND,
    CompoundCondition,
    Condition,
    ConditionOperator,
    Operand,
    Predicate,
    parse_condition,
)

Lookup = Callable[[str], Any]


def evaluate_condition(condition: "Condition | str | None", lookup: Lookup) -> bool:
    """
    Evaluate a guard.

    Params:
        condition: Parsed guard, guard text, or None for "always true"
        lookup: Variable lookup returning None for unbound names

    Returns:
        Whether the guarded node fires

    Raises:
        ConditionSyntaxError: Only when given guard text that does not parse
    """
    if condition is None:
        return True
    if isinstance(condition, str):
        condition = parse_condition(condition)

    if isinstance(condition, CompoundCondition):
        if condition.operator == AND:
            return all(evaluate_condition(term, lookup) for term in condition.terms)
        return any(evaluate_condition(term, lookup) for term in condition.terms)

    return _evaluate_predicate(condition, lookup)


def _evaluate_predicate(predicate: Predicate, lookup: Lookup) -> bool:
    value = lookup(predicate.variable)

    match predicate.operator:
        case ConditionOperator.NOT_NULL:
            return not is_empty(value)
        case ConditionOperator.NULL:
            return is_empty(value)
        case ConditionOperator.EQUALS_STRING:
            other = _operand_value(predicate.operands[0], lookup)
            return _matches_text(value, other)
        case ConditionOperator.EQUALS:
            other = _operand_value(predicate.operands[0], lookup)
            return _matches_value(value, other)
        case ConditionOperator.IN:
            options = [_operand_value(operand, lookup) for operand in predicate.operands]
            return any(_matches_text(value, option) for option in options)
    return False


def _operand_value(operand: Operand, lookup: Lookup) -> Any:
    if operand.is_variable:
        return lookup(operand.variable)
    return operand.literal


def _texts(value: Any) -> list[str]:
    """Comparable text forms; a list matches when any of its items does."""
    if is_empty(value):
        return []
    plain = to_fragment(value)
    items = plain if isinstance(plain, list) else [plain]
    return [str(item) for item in items if not is_empty(item)]


def _matches_text(value: Any, other: Any) -> bool:
    left, right = _texts(value), _texts(other)
    return any(item in right for item in left)


def _matches_value(value: Any, other: Any) -> bool:
    if is_empty(value) or is_empty(other):
        return False
    left, right = to_fragment(value), to_fragment(other)
    if left == right:
        return True
    try:
        return float(left) == float(right)
    except (TypeError, ValueError):
        return False
