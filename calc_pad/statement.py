import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

# Regex for valid variable names (letters, numbers, underscores, not starting with number)
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

RESERVED_NAMES = ("total",)


class StatementKind(str, Enum):
    EMPTY = "empty"
    EXPR = "expr"
    ASSIGN = "assign"
    ERROR = "error"


@dataclass(frozen=True)
class Statement:
    kind: StatementKind
    name: Optional[str] = None
    expr_source: Optional[str] = None
    error: Optional[str] = None


def parse_statement(source: str) -> Statement:
    """Classifies one line's code as empty, a bare expression or `name = expression`."""
    if source.strip() == "":
        return Statement(StatementKind.EMPTY)

    target, equals, expression = source.partition("=")
    if not equals:
        return Statement(StatementKind.EXPR, expr_source=source.strip())

    name = target.strip()
    if not IDENTIFIER_PATTERN.match(name):
        return Statement(StatementKind.ERROR, error="Invalid assignment target")

    if name in RESERVED_NAMES:
        return Statement(StatementKind.ERROR, error=f"Cannot assign to reserved name: {name}")

    if expression.strip() == "":
        return Statement(StatementKind.ERROR, error="Missing assignment expression")

    if "=" in expression:
        return Statement(StatementKind.ERROR, error="Unexpected trailing = in assignment")

    return Statement(StatementKind.ASSIGN, name=name, expr_source=expression.strip())
