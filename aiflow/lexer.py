from __future__ import annotations
from typing import Dict, List

from .ast import Token, TokenKind
from .errors import LexError

WHITESPACE = " \t\r\n"
TWO_CHAR_OPS = ("==", "!=", ">=", "<=", "&&", "||")
ONE_CHAR_OPS = ("<", ">", "!")
PUNCTUATION: Dict[str, TokenKind] = {
    "(": TokenKind.LPAREN,
    ")": TokenKind.RPAREN,
    "[": TokenKind.LBRACK,
    "]": TokenKind.RBRACK,
    ",": TokenKind.COMMA,
}
# Word operators accepted alongside the symbolic forms
KEYWORD_OPS: Dict[str, str] = {
    "in": "in",
    "AND": "&&",
    "and": "&&",
    "OR": "||",
    "or": "||",
    "NOT": "!",
    "not": "!",
}


def _is_ident_start(c: str) -> bool:
    return c == "_" or ("a" <= c <= "z") or ("A" <= c <= "Z")


def _is_ident_part(c: str) -> bool:
    return _is_ident_start(c) or c.isdigit() or c == "."


def tokenize(expr: str) -> List[Token]:
    tokens: List[Token] = []
    i = 0
    n = len(expr)
    while i < n:
        c = expr[i]

        if c in WHITESPACE:
            i += 1
            continue

        if c in ("'", '"'):
            start = i
            end = expr.find(c, i + 1)
            if end == -1:
                raise LexError(c, start, f"Unterminated string starting at position {start}")
            tokens.append(Token(TokenKind.STRING, expr[i + 1:end], start))
            i = end + 1
            continue

        if c.isdigit():
            start = i
            seen_dot = False
            i += 1
            while i < n:
                if expr[i].isdigit():
                    i += 1
                elif expr[i] == "." and not seen_dot and i + 1 < n and expr[i + 1].isdigit():
                    seen_dot = True
                    i += 1
                else:
                    break
            tokens.append(Token(TokenKind.NUMBER, expr[start:i], start))
            continue

        if _is_ident_start(c):
            start = i
            i += 1
            while i < n and _is_ident_part(expr[i]):
                i += 1
            word = expr[start:i]
            if word in ("true", "false", "always"):
                tokens.append(Token(TokenKind.BOOLEAN, word, start))
            elif word == "null":
                tokens.append(Token(TokenKind.NULL, word, start))
            elif word in KEYWORD_OPS:
                tokens.append(Token(TokenKind.OP, KEYWORD_OPS[word], start))
            else:
                tokens.append(Token(TokenKind.IDENT, word, start))
            continue

        if c in PUNCTUATION:
            tokens.append(Token(PUNCTUATION[c], c, i))
            i += 1
            continue

        two = expr[i:i + 2]
        if two in TWO_CHAR_OPS:
            tokens.append(Token(TokenKind.OP, two, i))
            i += 2
            continue

        if c in ONE_CHAR_OPS:
            tokens.append(Token(TokenKind.OP, c, i))
            i += 1
            continue

        raise LexError(c, i)

    return tokens
