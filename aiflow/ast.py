# Token and AST types for the AIFlow condition language
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Tuple, Union


class TokenKind(str, Enum):
    NUMBER = "NUMBER"
    STRING = "STRING"
    BOOLEAN = "BOOLEAN"
    NULL = "NULL"
    IDENT = "IDENT"
    OP = "OP"
    LPAREN = "LPAREN"
    RPAREN = "RPAREN"
    LBRACK = "LBRACK"
    RBRACK = "RBRACK"
    COMMA = "COMMA"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    position: int = 0


# Comparison operators share one precedence level
COMPARISON_OPS = ("==", "!=", ">", ">=", "<", "<=", "in")


@dataclass(frozen=True)
class Literal:
    value: Any
    raw: str


@dataclass(frozen=True)
class Field:
    path: str
    raw: str

    @property
    def segments(self) -> Tuple[str, ...]:
        return tuple(self.path.split("."))


@dataclass(frozen=True)
class Unary:
    op: str
    operand: "Node"
    raw: str


@dataclass(frozen=True)
class Binary:
    op: str
    left: "Node"
    right: "Node"
    raw: str


@dataclass(frozen=True)
class Array:
    elements: Tuple["Node", ...]
    raw: str


@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple["Node", ...]
    raw: str


Node = Union[Literal, Field, Unary, Binary, Array, Call]


def with_raw(node: Node, raw: str) -> Node:
    """Return a copy of ``node`` carrying a different source text."""
    match node:
        case Literal(value=value):
            return Literal(value, raw)
        case Field(path=path):
            return Field(path, raw)
        case Unary(op=op, operand=operand):
            return Unary(op, operand, raw)
        case Binary(op=op, left=left, right=right):
            return Binary(op, left, right, raw)
        case Array(elements=elements):
            return Array(elements, raw)
        case Call(name=name, args=args):
            return Call(name, args, raw)
    raise TypeError(f"Not an expression node: {node!r}")
