import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, NamedTuple, Optional, Tuple, Union

from calc_pad.units import NONE, PERCENT, USD, convert_amount, parse_unit_words, scan_unit_after_number

logger = logging.getLogger(__name__)


# --- Values and Results ---


@dataclass(frozen=True)
class Value:
    """A finite amount tagged with a unit id ("none", "usd", "percent", "m", "cm2", "c", ...)."""

    amount: float
    unit: str = NONE


class ResultKind(str, Enum):
    EMPTY = "empty"
    VALUE = "value"
    ERROR = "error"


@dataclass(frozen=True)
class EvalResult:
    kind: ResultKind
    value: Optional[Value] = None
    error: Optional[str] = None

    @classmethod
    def empty(cls) -> "EvalResult":
        return cls(ResultKind.EMPTY)

    @classmethod
    def ok(cls, value: Value) -> "EvalResult":
        return cls(ResultKind.VALUE, value=value)

    @classmethod
    def failed(cls, error: str) -> "EvalResult":
        return cls(ResultKind.ERROR, error=error)


Environment = Dict[str, Value]


# --- Tokens ---


class Token(NamedTuple):
    type: str  # number, ident, op, lparen, rparen, comma
    text: str
    value: Optional[Value] = None


OPERATORS = "+-*/^"

# Comma grouping: first group 1-3 digits, every later group exactly 3
NUMBER_PATTERN = re.compile(r"^(?:\d{1,3}(?:,\d{3})+|\d*)(?:\.\d*)?$")
IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
DIGITS = "0123456789"


def is_group_comma(source: str, index: int) -> bool:
    """A comma belongs to a number only when exactly three digits follow it."""
    group = source[index + 1:index + 4]
    if len(group) != 3 or any(char not in DIGITS for char in group):
        return False
    return index + 4 >= len(source) or source[index + 4] not in DIGITS


def _scan_number(source: str, index: int) -> Tuple[Optional[float], int, Optional[str]]:
    """Scans a numeric literal starting at index. Returns (amount, end, error)."""
    end = index
    seen_dot = False
    while end < len(source):
        char = source[end]
        if char in DIGITS:
            end += 1
        elif char == ".":
            seen_dot = True
            end += 1
        elif char == "," and not seen_dot and is_group_comma(source, end):
            end += 1
        else:
            break

    raw = source[index:end]
    if not NUMBER_PATTERN.match(raw) or not any(char in DIGITS for char in raw):
        return None, end, f"Invalid number: {raw}"

    amount = float(raw.replace(",", ""))
    if not math.isfinite(amount):
        return None, end, f"Invalid number: {raw}"
    return amount, end, None


def tokenize(source: str) -> Tuple[Optional[List[Token]], Optional[str]]:
    """Splits one line's expression into tokens.

    Unit suffixes are part of number tokens: `5 m`, `3cm2`, `2 sq ft`, `15%`.
    A `$` prefix makes a currency literal, which never takes a suffix.
    """
    tokens: List[Token] = []
    index = 0

    while index < len(source):
        char = source[index]

        if char in " \t":
            index += 1
            continue

        if char == "$":
            start = index
            index += 1
            while index < len(source) and source[index] in " \t":
                index += 1
            if index >= len(source) or source[index] not in DIGITS + ".":
                return None, "Expected number after $"
            amount, index, error = _scan_number(source, index)
            if error:
                return None, error
            tokens.append(Token("number", source[start:index], Value(amount, USD)))
            continue

        if char in DIGITS or char == ".":
            start = index
            amount, index, error = _scan_number(source, index)
            if error:
                return None, error

            unit = NONE
            lookahead = index
            while lookahead < len(source) and source[lookahead] in " \t":
                lookahead += 1
            if lookahead < len(source) and source[lookahead] == "%":
                unit = PERCENT
                index = lookahead + 1
            else:
                scanned = scan_unit_after_number(source, index)
                if scanned:
                    unit, index = scanned

            tokens.append(Token("number", source[start:index], Value(amount, unit)))
            continue

        match = IDENTIFIER_PATTERN.match(source, index)
        if match:
            tokens.append(Token("ident", match.group()))
            index = match.end()
            continue

        if char in OPERATORS:
            tokens.append(Token("op", char))
        elif char == "(":
            tokens.append(Token("lparen", char))
        elif char == ")":
            tokens.append(Token("rparen", char))
        elif char == ",":
            tokens.append(Token("comma", char))
        else:
            return None, f"Unexpected character: {char}"
        index += 1

    return tokens, None


# --- Expression Tree ---


@dataclass(frozen=True)
class NumberNode:
    value: Value


@dataclass(frozen=True)
class IdentifierNode:
    name: str


@dataclass(frozen=True)
class UnaryNode:
    op: str
    operand: "Node"


@dataclass(frozen=True)
class BinaryNode:
    op: str
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class CallNode:
    name: str
    args: Tuple["Node", ...]


@dataclass(frozen=True)
class ConvertNode:
    operand: "Node"
    unit: str


Node = Union[NumberNode, IdentifierNode, UnaryNode, BinaryNode, CallNode, ConvertNode]
ParseResult = Tuple[Optional[Node], Optional[str]]

CONVERSION_KEYWORDS = ("to", "in")


# --- Parser ---


class Parser:
    """Recursive-descent parser, lowest precedence first:

        expression := sum [("to" | "in") unit-words]
        sum        := product (("+" | "-") product)*
        product    := unary (("*" | "/") unary)*
        unary      := ("+" | "-") unary | power
        power      := primary ["^" unary]
        primary    := number | identifier | identifier "(" args ")" | "(" sum ")"

    Unary minus wraps the power level, so `-2 ^ 2` is `-(2 ^ 2)`; `^` is
    right-associative because its exponent re-enters at the unary level.
    """

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0

    def current(self) -> Optional[Token]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def consume(self) -> Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def peek_op(self, ops: str) -> Optional[str]:
        token = self.current()
        if token is None or token.type != "op" or token.text not in ops:
            return None
        return token.text

    def parse(self) -> ParseResult:
        node, error = self.parse_sum()
        if error:
            return None, error

        token = self.current()
        if token is not None and token.type == "ident" and token.text.lower() in CONVERSION_KEYWORDS:
            return self.parse_conversion(node)

        if token is not None:
            return None, "Unexpected trailing input"
        return node, None

    def parse_conversion(self, operand: Node) -> ParseResult:
        keyword = self.consume().text
        words = []
        while self.current() is not None:
            token = self.consume()
            if token.type != "ident":
                return None, "Unexpected trailing input"
            words.append(token.text)

        if not words:
            return None, f"Expected unit after {keyword}"

        parsed = parse_unit_words(words)
        if not parsed or parsed[1] != len(words):
            return None, f"Unknown unit: {' '.join(words)}"
        return ConvertNode(operand, parsed[0]), None

    def parse_sum(self) -> ParseResult:
        left, error = self.parse_product()
        if error:
            return None, error

        while True:
            op = self.peek_op("+-")
            if not op:
                break
            self.consume()
            right, error = self.parse_product()
            if error:
                return None, error
            left = BinaryNode(op, left, right)

        return left, None

    def parse_product(self) -> ParseResult:
        left, error = self.parse_unary()
        if error:
            return None, error

        while True:
            op = self.peek_op("*/")
            if not op:
                break
            self.consume()
            right, error = self.parse_unary()
            if error:
                return None, error
            left = BinaryNode(op, left, right)

        return left, None

    def parse_unary(self) -> ParseResult:
        op = self.peek_op("+-")
        if op:
            self.consume()
            operand, error = self.parse_unary()
            if error:
                return None, error
            return UnaryNode(op, operand), None
        return self.parse_power()

    def parse_power(self) -> ParseResult:
        base, error = self.parse_primary()
        if error:
            return None, error

        if self.peek_op("^"):
            self.consume()
            exponent, error = self.parse_unary()
            if error:
                return None, error
            return BinaryNode("^", base, exponent), None

        return base, None

    def parse_primary(self) -> ParseResult:
        token = self.current()
        if token is None:
            return None, "Unexpected end of input"

        if token.type == "number":
            self.consume()
            return NumberNode(token.value), None

        if token.type == "ident":
            self.consume()
            following = self.current()
            if following is not None and following.type == "lparen":
                return self.parse_call(token.text)
            return IdentifierNode(token.text), None

        if token.type == "lparen":
            self.consume()
            node, error = self.parse_sum()
            if error:
                return None, error
            if self.current() is None or self.current().type != "rparen":
                return None, "Missing closing )"
            self.consume()
            return node, None

        return None, f"Unexpected token: {token.text}"

    def parse_call(self, name: str) -> ParseResult:
        self.consume()  # (
        args: List[Node] = []

        if self.current() is not None and self.current().type == "rparen":
            self.consume()
            return CallNode(name, tuple(args)), None

        while True:
            arg, error = self.parse_sum()
            if error:
                return None, error
            args.append(arg)

            token = self.current()
            if token is not None and token.type == "comma":
                self.consume()
                continue
            if token is None or token.type != "rparen":
                return None, "Missing closing )"
            self.consume()
            return CallNode(name, tuple(args)), None


def parse(tokens: List[Token]) -> ParseResult:
    return Parser(tokens).parse()


# --- Unit Algebra ---


def coerce_units(left: Value, right: Value) -> Tuple[Optional[str], Optional[str]]:
    """Common unit for an additive operation; a unitless side is promoted."""
    if left.unit == right.unit:
        return left.unit, None
    if left.unit == NONE:
        return right.unit, None
    if right.unit == NONE:
        return left.unit, None
    return None, "Unit mismatch"


def _finite(amount: float, unit: str, error: str = "Number out of range") -> Tuple[Optional[Value], Optional[str]]:
    if not math.isfinite(amount):
        return None, error
    return Value(amount, unit), None


def add_values(left: Value, right: Value) -> Tuple[Optional[Value], Optional[str]]:
    unit, error = coerce_units(left, right)
    if error:
        return None, error
    return _finite(left.amount + right.amount, unit)


def subtract_values(left: Value, right: Value) -> Tuple[Optional[Value], Optional[str]]:
    unit, error = coerce_units(left, right)
    if error:
        return None, error
    return _finite(left.amount - right.amount, unit)


def multiply_values(left: Value, right: Value) -> Tuple[Optional[Value], Optional[str]]:
    if left.unit != NONE and right.unit != NONE:
        return None, "Cannot multiply two unit values"
    unit = left.unit if left.unit != NONE else right.unit
    return _finite(left.amount * right.amount, unit)


def divide_values(left: Value, right: Value) -> Tuple[Optional[Value], Optional[str]]:
    if right.amount == 0:
        return None, "Division by zero"
    if right.unit == NONE:
        unit = left.unit
    elif left.unit == right.unit:
        unit = NONE
    else:
        return None, "Unit mismatch"
    return _finite(left.amount / right.amount, unit)


def power_values(left: Value, right: Value) -> Tuple[Optional[Value], Optional[str]]:
    if left.unit != NONE or right.unit != NONE:
        return None, "Cannot exponentiate unit values"
    try:
        amount = math.pow(left.amount, right.amount)
    except (ValueError, OverflowError):
        return None, "Invalid exponentiation"
    return _finite(amount, NONE, "Invalid exponentiation")


BINARY_OPERATIONS = {
    "+": add_values,
    "-": subtract_values,
    "*": multiply_values,
    "/": divide_values,
    "^": power_values,
}


def convert_value(value: Value, unit: str) -> Tuple[Optional[Value], Optional[str]]:
    if value.unit == NONE:
        return Value(value.amount, unit), None
    amount, error = convert_amount(value.amount, value.unit, unit)
    if error:
        return None, error
    return _finite(amount, unit)


# --- Functions ---


def _round_half_up(amount: float) -> float:
    floor = math.floor(amount)
    if amount - floor >= 0.5:
        return float(floor + 1)
    return float(floor)


def _pick(args: List[Value], larger: bool) -> Tuple[Optional[Value], Optional[str]]:
    left, right = args
    unit, error = coerce_units(left, right)
    if error:
        return None, error
    if larger:
        amount = right.amount if right.amount > left.amount else left.amount
    else:
        amount = right.amount if right.amount < left.amount else left.amount
    return Value(amount, unit), None


def _amount_function(rule):
    def apply(args: List[Value]) -> Tuple[Optional[Value], Optional[str]]:
        (arg,) = args
        return _finite(rule(arg.amount), arg.unit)

    return apply


def _sqrt(args: List[Value]) -> Tuple[Optional[Value], Optional[str]]:
    (arg,) = args
    if arg.unit != NONE:
        return None, "Cannot take square root of unit values"
    if arg.amount < 0:
        return None, "Invalid square root"
    return Value(math.sqrt(arg.amount), NONE), None


# name -> (arity, implementation)
FUNCTIONS = {
    "max": (2, lambda args: _pick(args, larger=True)),
    "min": (2, lambda args: _pick(args, larger=False)),
    "round": (1, _amount_function(_round_half_up)),
    "ceil": (1, _amount_function(lambda amount: float(math.ceil(amount)))),
    "floor": (1, _amount_function(lambda amount: float(math.floor(amount)))),
    "abs": (1, _amount_function(abs)),
    "sqrt": (1, _sqrt),
}


# --- Evaluator ---


def evaluate(node: Node, env: Environment) -> Tuple[Optional[Value], Optional[str]]:
    """Walks the tree bottom-up; the first error wins."""
    if isinstance(node, NumberNode):
        return node.value, None

    if isinstance(node, IdentifierNode):
        if node.name not in env:
            return None, f"Undefined variable: {node.name}"
        return env[node.name], None

    if isinstance(node, UnaryNode):
        operand, error = evaluate(node.operand, env)
        if error:
            return None, error
        if node.op == "-":
            return Value(-operand.amount, operand.unit), None
        return operand, None

    if isinstance(node, BinaryNode):
        left, error = evaluate(node.left, env)
        if error:
            return None, error
        right, error = evaluate(node.right, env)
        if error:
            return None, error
        return BINARY_OPERATIONS[node.op](left, right)

    if isinstance(node, CallNode):
        if node.name not in FUNCTIONS:
            return None, f"Unknown function: {node.name}"
        arity, implementation = FUNCTIONS[node.name]
        if len(node.args) != arity:
            return None, f"{node.name} expects {arity} argument{'' if arity == 1 else 's'}"
        args = []
        for arg_node in node.args:
            arg, error = evaluate(arg_node, env)
            if error:
                return None, error
            args.append(arg)
        return implementation(args)

    if isinstance(node, ConvertNode):
        operand, error = evaluate(node.operand, env)
        if error:
            return None, error
        return convert_value(operand, node.unit)

    return None, f"Unknown expression: {type(node).__name__}"


def evaluate_expression(source: str, env: Optional[Environment] = None) -> EvalResult:
    """Tokenizes, parses and evaluates one expression against `env`."""
    trimmed = source.strip()
    if not trimmed:
        return EvalResult.empty()

    tokens, error = tokenize(trimmed)
    if error:
        return EvalResult.failed(error)

    tree, error = parse(tokens)
    if error:
        return EvalResult.failed(error)

    value, error = evaluate(tree, env if env is not None else {})
    if error:
        logger.debug(f"Evaluation of '{trimmed}' failed: {error}")
        return EvalResult.failed(error)
    return EvalResult.ok(value)
