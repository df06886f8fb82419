"""Parser for the portable filter text syntax.

Grammar (keywords are case-insensitive)::

    expr       := or_expr
    or_expr    := and_expr (("||" | "OR") and_expr)*
    and_expr   := unary (("&&" | "AND") unary)*
    unary      := ("NOT" | "!") unary | primary
    primary    := "(" expr ")" | comparison
    comparison := field op value
    op         := "==" | "!=" | ">" | ">=" | "<" | "<=" | "IN" | "NIN" | "NOT IN"
    value      := literal | "[" [literal ("," literal)*] "]"
    literal    := string | number | "true" | "false"
    field      := identifier ("." identifier)* | string

A chain of the same combinator becomes one n-ary node; a parenthesized
sub-expression stays a node of its own.
"""

import re
from typing import NamedTuple, NoReturn

from vecstore.exceptions import InvalidExpressionError
from vecstore.filters.expression import (
    Comparison,
    Combinator,
    FilterExpression,
    LogicalOperator,
    Not,
    Operator,
    Scalar,
)


class Token(NamedTuple):
    """A lexical token with its offset in the source text."""

    kind: str
    text: str
    position: int


_TOKEN_PATTERN = re.compile(
    r"""
    (?P<WS>\s+)
  | (?P<STRING>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
  | (?P<NUMBER>-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)
  | (?P<OP>==|!=|>=|<=|&&|\|\||>|<|!)
  | (?P<PUNCT>[()\[\],])
  | (?P<WORD>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+)*)
    """,
    re.VERBOSE | re.DOTALL,
)

_ESCAPE = re.compile(r"\\(.)", re.DOTALL)

_COMPARISON_OPS = {
    "==": Operator.EQ,
    "!=": Operator.NE,
    ">": Operator.GT,
    ">=": Operator.GTE,
    "<": Operator.LT,
    "<=": Operator.LTE,
}


def tokenize(text: str) -> list[Token]:
    """Split filter text into tokens, dropping whitespace.

    Raises:
        InvalidExpressionError: On characters outside the grammar.
    """
    tokens: list[Token] = []
    position = 0
    while position < len(text):
        match = _TOKEN_PATTERN.match(text, position)
        if match is None:
            raise InvalidExpressionError(
                f"Unexpected character {text[position]!r} at position {position}",
                details={"position": position},
            )
        kind = match.lastgroup or ""
        if kind != "WS":
            tokens.append(Token(kind, match.group(), position))
        position = match.end()
    tokens.append(Token("EOF", "", len(text)))
    return tokens


class _Parser:
    """Recursive-descent parser over a token list."""

    def __init__(self, text: str) -> None:
        self._tokens = tokenize(text)
        self._index = 0

    # -- token helpers -----------------------------------------------------

    def _peek(self, offset: int = 0) -> Token:
        return self._tokens[min(self._index + offset, len(self._tokens) - 1)]

    def _advance(self) -> Token:
        token = self._peek()
        self._index += 1
        return token

    def _is_word(self, token: Token, *words: str) -> bool:
        return token.kind == "WORD" and token.text.lower() in words

    def _expect(self, kind: str, text: str) -> Token:
        token = self._advance()
        if token.kind != kind or token.text != text:
            self._fail(f"Expected '{text}'", token)
        return token

    def _fail(self, message: str, token: Token) -> NoReturn:
        found = token.text or "end of input"
        raise InvalidExpressionError(
            f"{message} at position {token.position}, found {found!r}",
            details={"position": token.position},
        )

    # -- grammar -----------------------------------------------------------

    def parse(self) -> FilterExpression:
        expression = self._or()
        if self._peek().kind != "EOF":
            self._fail("Unexpected trailing input", self._peek())
        return expression

    def _or(self) -> FilterExpression:
        operands = [self._and()]
        while self._peek().text == "||" or self._is_word(self._peek(), "or"):
            self._advance()
            operands.append(self._and())
        if len(operands) == 1:
            return operands[0]
        return Combinator(operator=LogicalOperator.OR, operands=operands)

    def _and(self) -> FilterExpression:
        operands = [self._unary()]
        while self._peek().text == "&&" or self._is_word(self._peek(), "and"):
            self._advance()
            operands.append(self._unary())
        if len(operands) == 1:
            return operands[0]
        return Combinator(operator=LogicalOperator.AND, operands=operands)

    def _unary(self) -> FilterExpression:
        token = self._peek()
        if token.text == "!" or self._is_word(token, "not"):
            self._advance()
            return Not(operand=self._unary())
        return self._primary()

    def _primary(self) -> FilterExpression:
        if self._peek().text == "(":
            self._advance()
            expression = self._or()
            self._expect("PUNCT", ")")
            return expression
        return self._comparison()

    def _comparison(self) -> Comparison:
        field = self._field()
        operator = self._operator()
        if operator.is_membership:
            value: Scalar | list[Scalar] = self._list()
        else:
            value = self._literal()
        return Comparison(field=field, operator=operator, value=value)

    def _field(self) -> str:
        token = self._advance()
        if token.kind == "STRING":
            return _unquote(token.text)
        if token.kind == "WORD" and token.text.lower() not in ("and", "or", "not", "in", "nin"):
            return token.text
        self._fail("Expected a field name", token)

    def _operator(self) -> Operator:
        token = self._advance()
        if token.kind == "OP" and token.text in _COMPARISON_OPS:
            return _COMPARISON_OPS[token.text]
        if self._is_word(token, "in"):
            return Operator.IN
        if self._is_word(token, "nin"):
            return Operator.NIN
        if self._is_word(token, "not") and self._is_word(self._peek(), "in"):
            self._advance()
            return Operator.NIN
        self._fail("Expected a comparison operator", token)

    def _list(self) -> list[Scalar]:
        self._expect("PUNCT", "[")
        values: list[Scalar] = []
        if self._peek().text == "]":
            self._advance()
            return values
        values.append(self._literal())
        while self._peek().text == ",":
            self._advance()
            values.append(self._literal())
        self._expect("PUNCT", "]")
        return values

    def _literal(self) -> Scalar:
        token = self._advance()
        if token.kind == "STRING":
            return _unquote(token.text)
        if token.kind == "NUMBER":
            if any(marker in token.text for marker in ".eE"):
                return float(token.text)
            return int(token.text)
        if self._is_word(token, "true"):
            return True
        if self._is_word(token, "false"):
            return False
        self._fail("Expected a literal value", token)


def _unquote(text: str) -> str:
    return _ESCAPE.sub(r"\1", text[1:-1])


def parse_filter(text: str) -> FilterExpression:
    """Parse portable filter text into an expression tree.

    Args:
        text: Filter text, e.g. "author in ['john', 'jill'] && year >= 2020".

    Returns:
        The parsed expression.

    Raises:
        InvalidExpressionError: If the text is empty or malformed.
    """
    if not text or not text.strip():
        raise InvalidExpressionError("Filter text is empty")
    return _Parser(text).parse()
