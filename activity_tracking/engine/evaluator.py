"""Condition evaluation for sequence triggers and steps."""

from __future__ import annotations

import operator
from typing import Any

from .context import ExecutionContext

OPERATORS = {
    "equals": operator.eq,
    "not_equals": operator.ne,
    "in": lambda a, b: a in b if isinstance(b, (list, tuple, set)) else False,
    "contains": lambda a, b: (b in a if isinstance(a, (list, tuple, set)) else b in str(a)) if a else False,
    "not_contains": lambda a, b: (b not in a if isinstance(a, (list, tuple, set)) else b not in str(a)) if a else True,
    "starts_with": lambda a, b: str(a).startswith(str(b)) if a else False,
    "ends_with": lambda a, b: str(a).endswith(str(b)) if a else False,
    "greater_than": lambda a, b: float(a) > float(b) if a is not None else False,
    "greater_or_equal": lambda a, b: float(a) >= float(b) if a is not None else False,
    "less_than": lambda a, b: float(a) < float(b) if a is not None else False,
    "is_empty": lambda a, _: not a,
    "is_not_empty": lambda a, _: bool(a),
    "exists": lambda a, _: a is not None,
}


def is_expression(config: dict | None) -> bool:
    return bool(config) and ("field" in config or ("logic" in config and "conditions" in config))


def evaluate_condition(config: dict | None, ctx: ExecutionContext) -> bool:
    """Evaluate a condition config against an execution context.

    Config format:
        {"field": "activity.outcome", "operator": "equals", "value": "positive"}

    Or for compound conditions:
        {"logic": "and" | "or", "conditions": [...]}
    """
    if not config:
        return True

    if "logic" in config and "conditions" in config:
        results = [evaluate_condition(c, ctx) for c in config["conditions"]]
        if config["logic"] == "or":
            return any(results)
        return all(results)

    field = config.get("field", "")
    op_name = config.get("operator", "equals")
    expected = config.get("value", "")

    actual = ctx.get(field)

    if isinstance(expected, str) and "{{" in expected:
        expected = ctx.resolve_template(expected)

    op_func = OPERATORS.get(op_name, operator.eq)

    try:
        return bool(op_func(actual, expected))
    except (TypeError, ValueError):
        return False


def matches_filters(filters: dict[str, Any], data: dict[str, Any]) -> bool:
    """Plain equality filters; a list value matches any of its members.

    Keys may be dotted paths into ``data``.
    """
    ctx = ExecutionContext(data)
    for key, expected in filters.items():
        actual = ctx.get(key)
        if isinstance(expected, list):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def conditions_hold(conditions: dict | None, ctx: ExecutionContext) -> bool:
    """Evaluate either an expression or a filter map scoped to the activity."""
    if not conditions:
        return True
    if is_expression(conditions):
        return evaluate_condition(conditions, ctx)
    return matches_filters(conditions, ctx.get("activity") or {})
