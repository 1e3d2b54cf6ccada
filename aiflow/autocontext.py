"""Sample-context synthesis for previewing a condition.

Given an expression, build a context in which its comparisons would hold, so
a debugger can show a meaningful evaluation before any real data exists.
Never used during real execution.
"""

from __future__ import annotations
from typing import Any, Dict

from .ast import Array, Binary, Call, Field, Literal, Node, Unary
from .coercion import is_number
from .errors import LexError, ParseError
from .parser import parse


def default_sample_context() -> Dict[str, Any]:
    return {
        "ticket": {
            "id": "T-1234",
            "priority": "medium",
            "type": "technical",
            "status": "open",
            "channel": "email",
        },
        "customer": {
            "id": "C-42",
            "country": "NL",
            "segment": "pro",
            "language": "nl",
            "age": 21,
        },
        "meta": {
            "source": "inbox",
            "environment": "dev",
        },
    }


def set_path(obj: Dict[str, Any], path: str, value: Any) -> None:
    """Write ``value`` at the dotted ``path`` unless something is already there."""
    parts = path.split(".")
    cur = obj
    for p in parts[:-1]:
        if not isinstance(cur.get(p), dict):
            cur[p] = {}
        cur = cur[p]
    cur.setdefault(parts[-1], value)


def different_value(val: Any) -> Any:
    if isinstance(val, bool):
        return not val
    if is_number(val):
        return val + 1
    if isinstance(val, str):
        return val + "_other"
    if val is None:
        return "non-null"
    return "other"


# literal-on-the-left comparisons are mirrored so the sample still satisfies them
_MIRRORED = {">": "<", ">=": "<=", "<": ">", "<=": ">=", "==": "==", "!=": "!="}


def _sample_for(op: str, lit: Any) -> Any:
    if op == "!=":
        return different_value(lit)
    if not is_number(lit):
        return lit
    if op == ">":
        return lit + 1
    if op == "<":
        return lit - 1
    return lit


def collect_sample(ast: Node) -> Dict[str, Any]:
    ctx: Dict[str, Any] = {}

    def walk(node: Node) -> None:
        match node:
            case Binary(op="in", left=Field(path=path), right=Array(elements=elements)):
                if elements and isinstance(elements[0], Literal):
                    set_path(ctx, path, elements[0].value)
            case Binary(op="==" | "!=" | ">" | ">=" | "<" | "<=" as op, left=Field(path=path), right=Literal(value=lit)):
                set_path(ctx, path, _sample_for(op, lit))
            case Binary(op="==" | "!=" | ">" | ">=" | "<" | "<=" as op, left=Literal(value=lit), right=Field(path=path)):
                set_path(ctx, path, _sample_for(_MIRRORED[op], lit))
            case Call(name="contains", args=(Field(path=path), Literal(value=lit))):
                set_path(ctx, path, [lit])

        match node:
            case Binary(left=left, right=right):
                walk(left)
                walk(right)
            case Unary(operand=operand):
                walk(operand)
            case Array(elements=elements) | Call(args=elements):
                for e in elements:
                    walk(e)

    walk(ast)
    return ctx


def build_auto_context(expression: str) -> Dict[str, Any]:
    """Sample context for ``expression``; the canned default when nothing is deducible."""
    try:
        ast = parse(expression)
    except (LexError, ParseError):
        return default_sample_context()
    ctx = collect_sample(ast)
    return ctx if ctx else default_sample_context()
