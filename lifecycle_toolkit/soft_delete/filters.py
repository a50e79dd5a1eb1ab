"""
Filter predicates shared by every entity adapter.

A filter is a plain dict mapping a field name to a condition. A scalar means
equality, ``None`` means the field is null, and a dict of operators combines
comparisons that must all hold::

    {"workspace_id": 7}
    {"deleted_at": None}
    {"deleted_at": {"not": None, "lt": cutoff}}
    {"id": {"in": [1, 2, 3]}}
"""

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, false, true
from sqlalchemy.sql.elements import ColumnElement

Filter = Dict[str, Any]

# Read-only; merge_filters copies it into each filter it builds
NOT_NULL: Mapping[str, Any] = MappingProxyType({"not": None})

OPERATORS = frozenset({"not", "lt", "lte", "gt", "gte", "in"})


def merge_filters(base: Optional[Filter], extra: Filter) -> Filter:
    """Merge two filters; keys in ``extra`` win. Operator dicts are copied."""
    merged = dict(base or {})
    merged.update(extra)
    return {
        field: dict(condition) if isinstance(condition, Mapping) else condition
        for field, condition in merged.items()
    }


def _is_operator_dict(condition: Any) -> bool:
    if not isinstance(condition, Mapping) or not condition:
        return False
    unknown = set(condition) - OPERATORS
    if unknown:
        raise ValueError(f"Unknown filter operator(s): {', '.join(sorted(unknown))}")
    return True


def _compare(value: Any, op: str, operand: Any) -> bool:
    if op == "not" and operand is None:
        return value is not None
    # Any other comparison against null is unknown in SQL, so never matches
    if value is None:
        return False
    if op == "not":
        return value != operand
    if op == "in":
        return value in operand
    if operand is None:
        return False
    if op == "lt":
        return value < operand
    if op == "lte":
        return value <= operand
    if op == "gt":
        return value > operand
    return value >= operand


def matches(record: Dict[str, Any], filter: Optional[Filter]) -> bool:
    """
    Evaluate a filter against a record held in memory.

    Args:
        record: Record as a dict
        filter: Filter to evaluate

    Returns:
        True if every condition holds
    """
    for field, condition in (filter or {}).items():
        value = record.get(field)
        if _is_operator_dict(condition):
            if not all(_compare(value, op, operand) for op, operand in condition.items()):
                return False
        elif condition is None:
            if value is not None:
                return False
        elif value != condition:
            return False
    return True


def to_clauses(model: Any, filter: Optional[Filter]) -> List[ColumnElement[bool]]:
    """
    Translate a filter into SQLAlchemy clauses for a mapped model.

    Args:
        model: Mapped class or table with the filtered columns
        filter: Filter to translate

    Returns:
        List of boolean clauses to AND together
    """
    clauses: List[ColumnElement[bool]] = []
    for field, condition in (filter or {}).items():
        column = getattr(model, field, None)
        if column is None:
            raise ValueError(f"{model!r} has no column {field!r}")

        if _is_operator_dict(condition):
            for op, operand in condition.items():
                if op == "not":
                    clauses.append(
                        column.is_not(None) if operand is None else column != operand
                    )
                elif op == "in":
                    values = list(operand)
                    clauses.append(column.in_(values) if values else false())
                elif op == "lt":
                    clauses.append(column < operand)
                elif op == "lte":
                    clauses.append(column <= operand)
                elif op == "gt":
                    clauses.append(column > operand)
                else:
                    clauses.append(column >= operand)
        elif condition is None:
            clauses.append(column.is_(None))
        else:
            clauses.append(column == condition)
    return clauses


def where(model: Any, filter: Optional[Filter]) -> Any:
    """Build a single AND clause for a filter (``True`` when empty)."""
    clauses = to_clauses(model, filter)
    return and_(true(), *clauses)
