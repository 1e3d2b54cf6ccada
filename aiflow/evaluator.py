"""Trace-producing evaluator for condition expressions.

Evaluation walks the AST post-order against a scope of the shape::

    {"context": {...}, "output": {...}, "agentId": "triage", "user": {...}}

and returns a :class:`ConditionTrace` holding the boolean result (or ``None``
when the expression does not produce a boolean), a :class:`TraceNode` tree that
mirrors the AST, and the list of fields actually visited.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger

from .ast import Array, Binary, Call, Field, Literal, Node, Unary
from .coercion import (
    UNDEFINED,
    compare,
    contains,
    is_nullish,
    loose_equals,
    render_value,
    to_jsonable,
    to_text,
    truthy,
)
from .errors import LexError, ParseError
from .parser import parse

_PRECEDENCE = {"||": 1, "&&": 2}


@dataclass
class TraceNode:
    kind: str  # LITERAL | FIELD | UNARY | BINARY | ARRAY | CALL
    raw: str
    value: Any
    operator: Optional[str] = None
    children: List["TraceNode"] = field(default_factory=list)
    short_circuited: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.kind, "raw": self.raw, "value": to_jsonable(self.value)}
        if self.operator is not None:
            out["operator"] = self.operator
        if self.children:
            out["children"] = [c.to_dict() for c in self.children]
        if self.short_circuited:
            out["shortCircuited"] = True
        if self.error:
            out["error"] = self.error
        return out


@dataclass(frozen=True)
class ReferencedField:
    path: str
    value: Any


@dataclass
class ConditionTrace:
    expression: str
    expression_with_values: str
    result: Optional[bool]
    root: TraceNode
    referenced_fields: List[ReferencedField]
    debug_context: Any = None

    @property
    def status(self) -> str:
        if self.result is True:
            return "TRUE"
        if self.result is False:
            return "FALSE"
        return "ERROR"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expression": self.expression,
            "expressionWithValues": self.expression_with_values,
            "result": self.result,
            "root": self.root.to_dict(),
            "referencedFields": [
                {"path": f.path, "value": to_jsonable(f.value)} for f in self.referenced_fields
            ],
        }


# ---------- Field resolution ----------

def _walk_path(source: Any, parts: List[str]) -> Any:
    cur = source
    for p in parts:
        if isinstance(cur, Mapping):
            if p not in cur:
                return UNDEFINED
            cur = cur[p]
        elif isinstance(cur, (list, str)) and p == "length":
            cur = len(cur)
        elif isinstance(cur, list) and p.isdigit() and int(p) < len(cur):
            cur = cur[int(p)]
        else:
            return UNDEFINED
    return cur


def resolve_field(path: str, scope: Mapping[str, Any]) -> Any:
    """Resolve a dotted path: step output first, then the global context,
    then the top-level scope keys (``output``, ``context``, ``agentId``, ``user``)."""
    parts = path.split(".")
    head = parts[0]
    for source in (scope.get("output"), scope.get("context"), scope):
        if isinstance(source, Mapping) and head in source:
            return _walk_path(source, parts)
    return UNDEFINED


# ---------- Evaluation ----------

def _call(name: str, args: List[Any]) -> Any:
    match name:
        case "contains":
            return contains(args[0], args[1])
        case "startsWith":
            return isinstance(args[0], str) and not is_nullish(args[1]) and \
                args[0].lower().startswith(to_text(args[1]).lower())
        case "endsWith":
            return isinstance(args[0], str) and not is_nullish(args[1]) and \
                args[0].lower().endswith(to_text(args[1]).lower())
        case "exists":
            return not is_nullish(args[0])
    raise ValueError(f"Unknown function {name}")


def _binary(op: str, left: Any, right: Any) -> Any:
    match op:
        case "&&":
            return truthy(left) and truthy(right)
        case "||":
            return truthy(left) or truthy(right)
        case "==":
            return loose_equals(left, right)
        case "!=":
            return not loose_equals(left, right)
        case ">" | ">=" | "<" | "<=":
            return compare(op, left, right)
        case "in":
            if not isinstance(right, list):
                return False
            return any(loose_equals(left, item) for item in right)
    raise ValueError(f"Unknown operator {op}")


def evaluate_node(node: Node, scope: Mapping[str, Any], fields: List[ReferencedField]) -> TraceNode:
    match node:
        case Literal(value=value, raw=raw):
            return TraceNode("LITERAL", raw, value)

        case Field(path=path, raw=raw):
            val = resolve_field(path, scope)
            fields.append(ReferencedField(path, val))
            err = f"Field '{path}' is not defined" if val is UNDEFINED else None
            return TraceNode("FIELD", raw, val, error=err)

        case Array(elements=elements, raw=raw):
            children = [evaluate_node(e, scope, fields) for e in elements]
            return TraceNode("ARRAY", raw, [c.value for c in children], children=children)

        case Unary(op=op, operand=operand, raw=raw):
            child = evaluate_node(operand, scope, fields)
            return TraceNode("UNARY", raw, not truthy(child.value), operator=op, children=[child])

        case Call(name=name, args=args, raw=raw):
            children = [evaluate_node(a, scope, fields) for a in args]
            value = _call(name, [c.value for c in children])
            return TraceNode("CALL", raw, value, operator=name, children=children)

        case Binary(op=op, left=left_node, right=right_node, raw=raw):
            left = evaluate_node(left_node, scope, fields)
            if op == "&&" and left.value is False:
                return TraceNode("BINARY", raw, False, operator=op, children=[left], short_circuited=True)
            if op == "||" and left.value is True:
                return TraceNode("BINARY", raw, True, operator=op, children=[left], short_circuited=True)
            right = evaluate_node(right_node, scope, fields)
            err = None
            if op == "in" and not isinstance(right.value, list):
                err = "Right operand of 'in' is not a list"
            return TraceNode(
                "BINARY", raw, _binary(op, left.value, right.value),
                operator=op, children=[left, right], error=err,
            )

    raise TypeError(f"Not an expression node: {node!r}")


# ---------- Expression with values ----------

def _prec(trace: TraceNode) -> int:
    if trace.kind != "BINARY":
        return 4
    return _PRECEDENCE.get(trace.operator or "", 3)


def expression_with_values(trace: TraceNode) -> str:
    """Re-render the expression with every leaf replaced by its resolved value."""
    match trace.kind:
        case "BINARY":
            parent = _prec(trace)
            left = expression_with_values(trace.children[0])
            if _prec(trace.children[0]) < parent:
                left = f"({left})"
            if trace.short_circuited:
                return f"{left} {trace.operator} ..."
            right = expression_with_values(trace.children[1])
            if _prec(trace.children[1]) <= parent and trace.children[1].kind == "BINARY":
                right = f"({right})"
            return f"{left} {trace.operator} {right}"
        case "UNARY":
            inner = expression_with_values(trace.children[0])
            if trace.children[0].kind == "BINARY":
                inner = f"({inner})"
            return f"!{inner}"
        case "ARRAY":
            return "[" + ", ".join(expression_with_values(c) for c in trace.children) + "]"
        case "CALL":
            return f"{trace.operator}(" + ", ".join(expression_with_values(c) for c in trace.children) + ")"
    return render_value(trace.value)


# ---------- Public API ----------

def evaluate_with_trace(expression: str, scope: Mapping[str, Any]) -> ConditionTrace:
    """Evaluate ``expression`` and return the full trace.

    Raises:
        LexError, ParseError: the expression is malformed.
    """
    ast = parse(expression)
    fields: List[ReferencedField] = []
    root = evaluate_node(ast, scope, fields)
    return ConditionTrace(
        expression=expression,
        expression_with_values=expression_with_values(root),
        result=root.value if isinstance(root.value, bool) else None,
        root=root,
        referenced_fields=fields,
        debug_context=scope,
    )


def evaluate_condition(expression: str, scope: Mapping[str, Any]) -> bool:
    """Boolean convenience used for routing: malformed or non-boolean -> False."""
    try:
        trace = evaluate_with_trace(expression, scope)
    except (LexError, ParseError) as e:
        logger.warning("Condition {!r} could not be parsed: {}", expression, e)
        return False
    return trace.result is True
