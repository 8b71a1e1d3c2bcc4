import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from basilpp.macros import INT64_MAX, TRUE, FALSE, MacroValue, ValueKind, parse_int64

_TOKEN_RE = re.compile(
    r'(?P<string>"[^"]*")'
    r"|(?P<number>[0-9]+)"
    r"|(?P<ident>[A-Za-z_]\w*)"
    r"|(?P<op>\|\||&&|==|!=|<=|>=|[()!<>])"
)
_COMPARISON_OPS = frozenset({"==", "!=", "<", "<=", ">", ">="})
MAX_PAREN_DEPTH = 32


class ExpressionError(ValueError):
    pass


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    offset: int


def tokenize(expr: str) -> list[_Token]:
    tokens: list[_Token] = []
    index = 0
    while index < len(expr):
        if expr[index].isspace():
            index += 1
            continue
        match = _TOKEN_RE.match(expr, index)
        if match is None:
            if expr[index] == '"':
                raise ExpressionError("unterminated string literal")
            raise ExpressionError(f"unexpected character {expr[index]!r} at offset {index}")
        kind = match.lastgroup
        assert kind is not None
        tokens.append(_Token(kind, match.group(0), index))
        index = match.end()
    return tokens


# Strings sharing their first 8 UTF-8 bytes order as equal.
def text_order_key(text: str) -> int:
    data = text.encode("utf-8")[:8]
    key = int.from_bytes(data, "little")
    if key > INT64_MAX:
        key -= 1 << 64
    return key


def values_equal(left: MacroValue, right: MacroValue) -> bool:
    if left.kind is not right.kind:
        raise ExpressionError(
            f"type mismatch in ==/!=: {left.kind.name.lower()} vs {right.kind.name.lower()}"
        )
    return left.value == right.value


def compare_values(left: MacroValue, right: MacroValue, op: str) -> bool:
    if left.kind is ValueKind.INT and right.kind is ValueKind.INT:
        left_key, right_key = int(left.value), int(right.value)
    elif left.kind is ValueKind.TEXT and right.kind is ValueKind.TEXT:
        left_key, right_key = text_order_key(str(left.value)), text_order_key(str(right.value))
    else:
        raise ExpressionError(
            f"type mismatch: cannot compare {left.kind.name.lower()} "
            f"to {right.kind.name.lower()} with {op}"
        )
    if op == "<":
        return left_key < right_key
    if op == "<=":
        return left_key <= right_key
    if op == ">":
        return left_key > right_key
    return left_key >= right_key


def evaluate(
    expr: str,
    macros: Mapping[str, MacroValue],
    builtins: Mapping[str, MacroValue] | None = None,
) -> MacroValue:
    parser = _ExprParser(tokenize(expr), _make_resolver(macros, builtins or {}))
    return parser.parse()


def is_true(
    expr: str,
    macros: Mapping[str, MacroValue],
    builtins: Mapping[str, MacroValue] | None = None,
) -> bool:
    return evaluate(expr, macros, builtins).is_truthy()


def _make_resolver(
    macros: Mapping[str, MacroValue],
    builtins: Mapping[str, MacroValue],
) -> Callable[[str], MacroValue | None]:
    def resolve(name: str) -> MacroValue | None:
        value = builtins.get(name)
        if value is not None:
            return value
        return macros.get(name)

    return resolve


class _ExprParser:
    def __init__(self, tokens: list[_Token], resolve: Callable[[str], MacroValue | None]) -> None:
        self._tokens = tokens
        self._index = 0
        self._resolve = resolve
        self._depth = 0

    def parse(self) -> MacroValue:
        if not self._tokens:
            raise ExpressionError("expected expression")
        value = self._parse_or()
        token = self._peek()
        if token is not None:
            raise ExpressionError(f"unexpected token {token.text!r} after expression")
        return value

    def _peek(self) -> _Token | None:
        if self._index < len(self._tokens):
            return self._tokens[self._index]
        return None

    def _next(self) -> _Token:
        token = self._peek()
        if token is None:
            raise ExpressionError("unexpected end of expression")
        self._index += 1
        return token

    def _accept(self, text: str) -> bool:
        token = self._peek()
        if token is not None and token.kind == "op" and token.text == text:
            self._index += 1
            return True
        return False

    def _expect(self, text: str) -> None:
        if not self._accept(text):
            token = self._peek()
            found = "end of expression" if token is None else repr(token.text)
            raise ExpressionError(f"expected {text!r}, found {found}")

    def _parse_or(self) -> MacroValue:
        value = self._parse_and()
        while self._accept("||"):
            right = self._parse_and()
            value = TRUE if value.is_truthy() or right.is_truthy() else FALSE
        return value

    def _parse_and(self) -> MacroValue:
        value = self._parse_comparison()
        while self._accept("&&"):
            right = self._parse_comparison()
            value = TRUE if value.is_truthy() and right.is_truthy() else FALSE
        return value

    def _parse_comparison(self) -> MacroValue:
        value = self._parse_unary()
        while True:
            token = self._peek()
            if token is None or token.kind != "op" or token.text not in _COMPARISON_OPS:
                return value
            self._index += 1
            right = self._parse_unary()
            if token.text == "==":
                result = values_equal(value, right)
            elif token.text == "!=":
                result = not values_equal(value, right)
            else:
                result = compare_values(value, right, token.text)
            value = TRUE if result else FALSE

    def _parse_unary(self) -> MacroValue:
        negations = 0
        while self._accept("!"):
            negations += 1
        value = self._parse_primary()
        if negations == 0:
            return value
        return TRUE if value.is_truthy() != (negations % 2 == 1) else FALSE

    def _parse_primary(self) -> MacroValue:
        token = self._next()
        if token.kind == "op":
            if token.text == "(":
                self._depth += 1
                if self._depth > MAX_PAREN_DEPTH:
                    raise ExpressionError(
                        f"parentheses nested too deeply (limit {MAX_PAREN_DEPTH})"
                    )
                value = self._parse_or()
                self._expect(")")
                self._depth -= 1
                return value
            raise ExpressionError(f"expected identifier, literal, or '(' but found {token.text!r}")
        if token.kind == "string":
            return MacroValue.text(token.text[1:-1])
        if token.kind == "number":
            number = parse_int64(token.text)
            if number is None:
                raise ExpressionError(f"integer literal out of range: {token.text}")
            return MacroValue.integer(number)
        if token.text == "defined":
            return self._parse_defined()
        value = self._resolve(token.text)
        if value is None:
            raise ExpressionError(
                f"unknown identifier {token.text!r} (hint: use defined({token.text}))"
            )
        return value

    def _parse_defined(self) -> MacroValue:
        self._expect("(")
        token = self._peek()
        if token is None or token.kind != "ident":
            raise ExpressionError("expected macro name in defined()")
        self._index += 1
        self._expect(")")
        return MacroValue.integer(1 if self._resolve(token.text) is not None else 0)
