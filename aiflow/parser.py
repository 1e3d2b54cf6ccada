from __future__ import annotations
from functools import lru_cache
from typing import List, Optional

from .ast import (
    COMPARISON_OPS,
    Array,
    Binary,
    Call,
    Literal,
    Field,
    Node,
    Token,
    TokenKind,
    Unary,
    with_raw,
)
from .errors import ParseError
from .lexer import tokenize

# name -> accepted argument counts
FUNCTIONS = {
    "contains": (2,),
    "startsWith": (2,),
    "endsWith": (2,),
    "exists": (1,),
}


class Parser:
    """Recursive-descent parser for condition expressions.

    Precedence, lowest first: ``||``, ``&&``, comparisons (one flat,
    left-associative level), unary ``!``, primary.
    """

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> Optional[Token]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def advance(self) -> Token:
        tok = self.peek()
        if tok is None:
            raise ParseError("an operand")
        self.pos += 1
        return tok

    def expect(self, kind: TokenKind, what: str) -> Token:
        tok = self.peek()
        if tok is None or tok.kind != kind:
            raise ParseError(what, tok.text if tok else None, tok.position if tok else None)
        self.pos += 1
        return tok

    def _at_op(self, *ops: str) -> bool:
        tok = self.peek()
        return tok is not None and tok.kind == TokenKind.OP and tok.text in ops

    def parse(self) -> Node:
        node = self.parse_or()
        tok = self.peek()
        if tok is not None:
            raise ParseError("end of expression", tok.text, tok.position)
        return node

    def parse_or(self) -> Node:
        node = self.parse_and()
        while self._at_op("||"):
            self.advance()
            right = self.parse_and()
            node = Binary("||", node, right, f"{node.raw} || {right.raw}")
        return node

    def parse_and(self) -> Node:
        node = self.parse_comparison()
        while self._at_op("&&"):
            self.advance()
            right = self.parse_comparison()
            node = Binary("&&", node, right, f"{node.raw} && {right.raw}")
        return node

    def parse_comparison(self) -> Node:
        node = self.parse_unary()
        while self._at_op(*COMPARISON_OPS):
            op = self.advance().text
            right = self.parse_unary()
            node = Binary(op, node, right, f"{node.raw} {op} {right.raw}")
        return node

    def parse_unary(self) -> Node:
        if self._at_op("!"):
            self.advance()
            operand = self.parse_unary()
            return Unary("!", operand, f"!{operand.raw}")
        return self.parse_primary()

    def parse_primary(self) -> Node:
        tok = self.peek()
        if tok is None:
            raise ParseError("an operand")

        match tok.kind:
            case TokenKind.LPAREN:
                self.advance()
                inner = self.parse_or()
                self.expect(TokenKind.RPAREN, "')'")
                return with_raw(inner, f"({inner.raw})")
            case TokenKind.LBRACK:
                self.advance()
                elements = self._parse_list(TokenKind.RBRACK, "']'")
                return Array(tuple(elements), "[" + ", ".join(e.raw for e in elements) + "]")
            case TokenKind.NUMBER:
                self.advance()
                value = float(tok.text) if "." in tok.text else int(tok.text)
                return Literal(value, tok.text)
            case TokenKind.STRING:
                self.advance()
                return Literal(tok.text, f'"{tok.text}"')
            case TokenKind.BOOLEAN:
                self.advance()
                return Literal(tok.text != "false", tok.text)
            case TokenKind.NULL:
                self.advance()
                return Literal(None, "null")
            case TokenKind.IDENT:
                self.advance()
                nxt = self.peek()
                if nxt is not None and nxt.kind == TokenKind.LPAREN:
                    return self._parse_call(tok)
                return Field(tok.text, tok.text)
            case _:
                raise ParseError("an operand", tok.text, tok.position)

    def _parse_list(self, closing: TokenKind, what: str) -> List[Node]:
        items: List[Node] = []
        tok = self.peek()
        if tok is not None and tok.kind == closing:
            self.advance()
            return items
        while True:
            items.append(self.parse_or())
            tok = self.peek()
            if tok is not None and tok.kind == TokenKind.COMMA:
                self.advance()
                continue
            self.expect(closing, what)
            return items

    def _parse_call(self, name_tok: Token) -> Node:
        name = name_tok.text
        if name not in FUNCTIONS:
            raise ParseError("a known function", name, name_tok.position)
        self.advance()  # (
        args = self._parse_list(TokenKind.RPAREN, "')'")
        if len(args) not in FUNCTIONS[name]:
            raise ParseError(
                f"{FUNCTIONS[name][0]} argument(s) for {name}()", str(len(args)), name_tok.position
            )
        return Call(name, tuple(args), f"{name}(" + ", ".join(a.raw for a in args) + ")")


@lru_cache(maxsize=256)
def parse(expression: str) -> Node:
    """Tokenize and parse ``expression``; raises LexError or ParseError."""
    return Parser(tokenize(expression)).parse()
