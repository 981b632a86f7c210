"""
Field expression language

A deliberately small grammar for per-field transformations, parsed once
and evaluated per row. Nothing here can reach Python builtins or
attributes.

    expr        := or ('?' expr ':' expr)?
    or          := and (('||' | 'or') and)*
    and         := equality (('&&' | 'and') equality)*
    equality    := comparison (('==' | '!=' | '===' | '!==') comparison)*
    comparison  := additive (('<' | '<=' | '>' | '>=') additive)*
    additive    := term (('+' | '-') term)*
    term        := unary (('*' | '/' | '%') unary)*
    unary       := ('-' | '+' | '!' | 'not') unary | primary
    primary     := NUMBER | STRING | 'true' | 'false' | 'null' | 'value'
                 | '${' Sheet '.' KeyColumn '.' ValueColumn '}' | '(' expr ')'

``value`` is the cell's current value. ``+`` concatenates when either side
is a string; other arithmetic coerces numeric strings.
"""
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sheetloader.common.exceptions import InvalidExpressionError


@dataclass(frozen=True)
class Placeholder:
    """``${Sheet.KeyColumn.ValueColumn}`` cross-dataset lookup"""
    sheet: str
    key_column: str
    value_column: str

    def __str__(self) -> str:
        return f"${{{self.sheet}.{self.key_column}.{self.value_column}}}"


# ============================================================
# Tokenizer
# ============================================================

@dataclass
class Token:
    kind: str  # 'number', 'string', 'name', 'placeholder', 'op', 'eof'
    text: str
    position: int
    value: Any = None


_OPERATORS = (
    "===", "!==", "==", "!=", "<=", ">=", "&&", "||",
    "<", ">", "+", "-", "*", "/", "%", "!", "?", ":", "(", ")",
)
_NUMBER = re.compile(r"\d+(\.\d*)?([eE][+-]?\d+)?|\.\d+([eE][+-]?\d+)?")
_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"'}


def _parse_placeholder(body: str, position: int) -> Placeholder:
    parts = [part.strip() for part in body.split(".")]
    if len(parts) != 3 or not all(parts):
        raise InvalidExpressionError(
            f"Invalid placeholder '${{{body}}}' at {position}: expected ${{Sheet.KeyColumn.ValueColumn}}"
        )
    return Placeholder(*parts)


def tokenize(text: str) -> List[Token]:
    tokens = []
    i = 0
    while i < len(text):
        char = text[i]

        if char.isspace():
            i += 1
            continue

        if text.startswith("${", i):
            end = text.find("}", i + 2)
            if end == -1:
                raise InvalidExpressionError(f"Unterminated placeholder at {i}: {text!r}")
            placeholder = _parse_placeholder(text[i + 2:end], i)
            tokens.append(Token("placeholder", text[i:end + 1], i, placeholder))
            i = end + 1
            continue

        if char in ("'", '"'):
            chars = []
            j = i + 1
            while j < len(text) and text[j] != char:
                if text[j] == "\\" and j + 1 < len(text):
                    chars.append(_ESCAPES.get(text[j + 1], text[j + 1]))
                    j += 2
                else:
                    chars.append(text[j])
                    j += 1
            if j >= len(text):
                raise InvalidExpressionError(f"Unterminated string at {i}: {text!r}")
            tokens.append(Token("string", text[i:j + 1], i, "".join(chars)))
            i = j + 1
            continue

        match = _NUMBER.match(text, i)
        if match:
            literal = match.group(0)
            number = float(literal) if any(c in literal for c in ".eE") else int(literal)
            tokens.append(Token("number", literal, i, number))
            i = match.end()
            continue

        match = _NAME.match(text, i)
        if match:
            tokens.append(Token("name", match.group(0), i))
            i = match.end()
            continue

        for op in _OPERATORS:
            if text.startswith(op, i):
                tokens.append(Token("op", op, i))
                i += len(op)
                break
        else:
            raise InvalidExpressionError(f"Unexpected character {char!r} at {i}: {text!r}")

    tokens.append(Token("eof", "", len(text)))
    return tokens


# ============================================================
# Value semantics
# ============================================================

def to_text(value: Any) -> str:
    """Render an evaluation result the way it is stored in a cell"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if value is None:
        return 0
    text = str(value).strip()
    if text == "":
        return 0
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        raise InvalidExpressionError(f"Cannot use {value!r} as a number")


def _truthy(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value != ""
    return bool(value)


def _loose_equals(left: Any, right: Any) -> bool:
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    if left is None or right is None:
        return left is right
    try:
        return _to_number(left) == _to_number(right)
    except InvalidExpressionError:
        return False


def _strict_equals(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    return type(left) is type(right) and left == right


def _compare(op: str, left: Any, right: Any) -> bool:
    if isinstance(left, str) and isinstance(right, str):
        a, b = left, right
    else:
        a, b = _to_number(left), _to_number(right)
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


def _arithmetic(op: str, left: Any, right: Any) -> Any:
    if op == "+" and (isinstance(left, str) or isinstance(right, str)):
        return to_text(left) + to_text(right)

    a, b = _to_number(left), _to_number(right)
    if op == "+":
        return a + b
    if op == "-":
        return a - b
    if op == "*":
        return a * b
    if b == 0:
        raise InvalidExpressionError(f"Division by zero: {to_text(left)} {op} {to_text(right)}")
    if op == "/":
        return a / b
    return math.fmod(a, b)


# ============================================================
# AST
# ============================================================

class Node:
    def evaluate(self, scope: 'Scope') -> Any:
        raise NotImplementedError


@dataclass
class Scope:
    """Per-row evaluation inputs"""
    value: str
    placeholders: Dict[Placeholder, str]


@dataclass
class Literal(Node):
    value: Any

    def evaluate(self, scope: Scope) -> Any:
        return self.value


class CurrentValue(Node):
    def evaluate(self, scope: Scope) -> Any:
        return scope.value


@dataclass
class PlaceholderRef(Node):
    placeholder: Placeholder

    def evaluate(self, scope: Scope) -> Any:
        return scope.placeholders[self.placeholder]


@dataclass
class Unary(Node):
    op: str
    operand: Node

    def evaluate(self, scope: Scope) -> Any:
        value = self.operand.evaluate(scope)
        if self.op in ("!", "not"):
            return not _truthy(value)
        number = _to_number(value)
        return -number if self.op == "-" else number


@dataclass
class Binary(Node):
    op: str
    left: Node
    right: Node

    def evaluate(self, scope: Scope) -> Any:
        if self.op in ("&&", "and"):
            left = self.left.evaluate(scope)
            return self.right.evaluate(scope) if _truthy(left) else left
        if self.op in ("||", "or"):
            left = self.left.evaluate(scope)
            return left if _truthy(left) else self.right.evaluate(scope)

        left = self.left.evaluate(scope)
        right = self.right.evaluate(scope)
        if self.op == "==":
            return _loose_equals(left, right)
        if self.op == "!=":
            return not _loose_equals(left, right)
        if self.op == "===":
            return _strict_equals(left, right)
        if self.op == "!==":
            return not _strict_equals(left, right)
        if self.op in ("<", "<=", ">", ">="):
            return _compare(self.op, left, right)
        return _arithmetic(self.op, left, right)


@dataclass
class Conditional(Node):
    condition: Node
    if_true: Node
    if_false: Node

    def evaluate(self, scope: Scope) -> Any:
        if _truthy(self.condition.evaluate(scope)):
            return self.if_true.evaluate(scope)
        return self.if_false.evaluate(scope)


# ============================================================
# Parser
# ============================================================

_KEYWORDS = {"true": True, "false": False, "null": None}


class Parser:
    """Recursive-descent parser producing a Node tree"""

    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.position = 0
        self.placeholders: List[Placeholder] = []

    @property
    def current(self) -> Token:
        return self.tokens[self.position]

    def _advance(self) -> Token:
        token = self.tokens[self.position]
        self.position += 1
        return token

    def _accept(self, *ops: str) -> Optional[Token]:
        token = self.current
        if (token.kind == "op" or token.kind == "name") and token.text in ops:
            return self._advance()
        return None

    def _expect(self, op: str) -> None:
        if not self._accept(op):
            self._error(f"expected '{op}'")

    def _error(self, message: str):
        token = self.current
        found = token.text or "end of expression"
        raise InvalidExpressionError(f"{message} at {token.position} (found {found!r}): {self.text!r}")

    def parse(self) -> Node:
        node = self._expression()
        if self.current.kind != "eof":
            self._error("unexpected token")
        return node

    def _expression(self) -> Node:
        node = self._binary_level(0)
        if self._accept("?"):
            if_true = self._expression()
            self._expect(":")
            if_false = self._expression()
            return Conditional(node, if_true, if_false)
        return node

    _LEVELS = (
        ("||", "or"),
        ("&&", "and"),
        ("==", "!=", "===", "!=="),
        ("<", "<=", ">", ">="),
        ("+", "-"),
        ("*", "/", "%"),
    )

    def _binary_level(self, level: int) -> Node:
        if level == len(self._LEVELS):
            return self._unary()
        node = self._binary_level(level + 1)
        while True:
            token = self._accept(*self._LEVELS[level])
            if token is None:
                return node
            node = Binary(token.text, node, self._binary_level(level + 1))

    def _unary(self) -> Node:
        token = self._accept("-", "+", "!", "not")
        if token:
            return Unary(token.text, self._unary())
        return self._primary()

    def _primary(self) -> Node:
        token = self.current
        if token.kind in ("number", "string"):
            self._advance()
            return Literal(token.value)
        if token.kind == "placeholder":
            self._advance()
            if token.value not in self.placeholders:
                self.placeholders.append(token.value)
            return PlaceholderRef(token.value)
        if token.kind == "name":
            if token.text in _KEYWORDS:
                self._advance()
                return Literal(_KEYWORDS[token.text])
            if token.text == "value":
                self._advance()
                return CurrentValue()
            self._error(f"unknown name '{token.text}'")
        if self._accept("("):
            node = self._expression()
            self._expect(")")
            return node
        self._error("expected a value")


class CompiledExpression:
    """
    A parsed field expression

    Example:
        expr = compile_expression("${Accounts.Code.Id}")
        expr.evaluate("A-1", {expr.placeholders[0]: "001xx"})  # '001xx'
    """

    def __init__(self, text: str):
        parser = Parser(text)
        self.text = text
        self.root = parser.parse()
        self.placeholders: List[Placeholder] = parser.placeholders

    def evaluate(self, value: str, placeholders: Optional[Dict[Placeholder, str]] = None) -> str:
        """
        Evaluate against one cell

        Args:
            value: Current cell value
            placeholders: Resolved value of every placeholder

        Returns:
            Result rendered as text

        Raises:
            InvalidExpressionError: On type errors or division by zero
        """
        return to_text(self.root.evaluate(Scope(value, placeholders or {})))

    def __repr__(self) -> str:
        return f"CompiledExpression({self.text!r})"


def compile_expression(text: str) -> CompiledExpression:
    """
    Parse an expression

    Raises:
        InvalidExpressionError: If the text is not a valid expression or
            nests too deeply to parse
    """
    try:
        return CompiledExpression(text)
    except RecursionError:
        raise InvalidExpressionError(f"Expression nests too deeply: {text[:40]!r}...") from None
