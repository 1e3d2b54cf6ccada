"""Loose value semantics shared by the evaluator and the tool invoker.

Conditions are written by workflow authors against JSON-shaped data, so
comparisons follow the loose rules of JSON-centric scripting: ``"1" == 1``,
``null == undefined``, and ordering that coerces mixed operands to numbers.
"""

from __future__ import annotations
import json
import math
from typing import Any, Optional


class _Undefined:
    """Value of a field path that does not resolve. Distinct from ``None`` (null)."""

    _instance: Optional["_Undefined"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "undefined"

    def __bool__(self) -> bool:
        return False


UNDEFINED = _Undefined()

NAN = float("nan")


def is_nullish(v: Any) -> bool:
    return v is None or v is UNDEFINED


def is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def truthy(v: Any) -> bool:
    if is_nullish(v) or v is False:
        return False
    if is_number(v):
        return v != 0 and not math.isnan(v)
    if isinstance(v, str):
        return v != ""
    # lists and mappings are truthy even when empty
    return True


def to_number(v: Any) -> float:
    if isinstance(v, bool):
        return 1.0 if v else 0.0
    if is_number(v):
        return float(v)
    if v is None:
        return 0.0
    if isinstance(v, str):
        s = v.strip()
        if s == "":
            return 0.0
        try:
            return float(s)
        except ValueError:
            return NAN
    if isinstance(v, list):
        if not v:
            return 0.0
        if len(v) == 1:
            return to_number(to_text(v[0]))
    return NAN


def to_text(v: Any) -> str:
    if is_nullish(v):
        return ""
    if isinstance(v, bool):
        return "true" if v else "false"
    if is_number(v):
        if isinstance(v, float) and v.is_integer():
            return str(int(v))
        return str(v)
    if isinstance(v, list):
        return ",".join(to_text(x) for x in v)
    if isinstance(v, dict):
        return "[object Object]"
    return str(v)


def _is_object(v: Any) -> bool:
    return isinstance(v, (list, dict))


def loose_equals(a: Any, b: Any) -> bool:
    if is_nullish(a) or is_nullish(b):
        return is_nullish(a) and is_nullish(b)
    if _is_object(a) and _is_object(b):
        return a is b
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    if isinstance(a, bool) and isinstance(b, bool):
        return a == b
    if is_number(a) and is_number(b):
        return float(a) == float(b)
    # objects compare through their primitive text form
    if _is_object(a):
        a = to_text(a)
    if _is_object(b):
        b = to_text(b)
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    x, y = to_number(a), to_number(b)
    if math.isnan(x) or math.isnan(y):
        return False
    return x == y


def compare(op: str, a: Any, b: Any) -> bool:
    """Ordering for ``>``, ``>=``, ``<`` and ``<=``; never raises."""
    if isinstance(a, str) and isinstance(b, str):
        x, y = a, b
    else:
        x, y = to_number(a), to_number(b)
        if math.isnan(x) or math.isnan(y):
            return False
    match op:
        case ">":
            return x > y
        case ">=":
            return x >= y
        case "<":
            return x < y
        case "<=":
            return x <= y
    raise ValueError(f"Not an ordering operator: {op}")


def contains(haystack: Any, needle: Any) -> bool:
    if isinstance(haystack, list):
        return any(loose_equals(item, needle) for item in haystack)
    if isinstance(haystack, str) and not is_nullish(needle):
        return to_text(needle).lower() in haystack.lower()
    return False


def to_jsonable(v: Any) -> Any:
    """Replace UNDEFINED with None so the value can be serialized."""
    if v is UNDEFINED:
        return None
    if isinstance(v, list):
        return [to_jsonable(x) for x in v]
    if isinstance(v, dict):
        return {k: to_jsonable(x) for k, x in v.items()}
    return v


def render_value(v: Any) -> str:
    """JSON rendering used in expression-with-values strings."""
    if v is UNDEFINED:
        return "undefined"
    if isinstance(v, float) and math.isnan(v):
        return "NaN"
    try:
        return json.dumps(to_jsonable(v), ensure_ascii=False, default=str)
    except ValueError:
        return str(v)
