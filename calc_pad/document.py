"""Line splitting and whole-document evaluation.

Every pass starts from a fresh environment: lines are evaluated top to
bottom, assignments become visible to later lines, and `total` holds the
running sum of the current block (a run of lines not broken by a blank,
non-comment line).
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from calc_pad.expr import Environment, EvalResult, ResultKind, Value, add_values, evaluate_expression
from calc_pad.formatting import format_value
from calc_pad.statement import StatementKind, parse_statement

logger = logging.getLogger(__name__)

TOTAL = "total"

# (name, value) bound when the line it belongs to fails
Fallback = Tuple[str, Value]


# --- Line Splitting ---


class NodeType(str, Enum):
    CODE = "code"
    COMMENT = "comment"


@dataclass(frozen=True)
class InlineNode:
    type: NodeType
    text: str


@dataclass(frozen=True)
class Line:
    nodes: Tuple[InlineNode, ...]

    @property
    def code(self) -> str:
        return "".join(node.text for node in self.nodes if node.type == NodeType.CODE)

    @property
    def has_comment(self) -> bool:
        return any(node.type == NodeType.COMMENT for node in self.nodes)


def find_inline_comment_start(raw: str) -> int:
    """Index of a `#` that starts a comment (at column 0 or after whitespace), or -1."""
    for index, char in enumerate(raw):
        if char != "#":
            continue
        if index == 0 or raw[index - 1].isspace():
            return index
    return -1


def parse_line(raw: str) -> Line:
    if raw.lstrip().startswith("#"):
        return Line((InlineNode(NodeType.COMMENT, raw),))

    comment_index = find_inline_comment_start(raw)
    if comment_index == -1:
        return Line((InlineNode(NodeType.CODE, raw),))

    nodes = []
    before = raw[:comment_index]
    if before:
        nodes.append(InlineNode(NodeType.CODE, before))
    nodes.append(InlineNode(NodeType.COMMENT, raw[comment_index:]))
    return Line(tuple(nodes))


def parse_document(source: str) -> List[Line]:
    return [parse_line(raw) for raw in re.split(r"\r?\n", source)]


# --- Line Evaluation ---


@dataclass(frozen=True)
class LineEvaluation:
    kind: StatementKind
    name: Optional[str] = None
    expr_source: Optional[str] = None
    result: Optional[EvalResult] = None
    error: Optional[str] = None

    @property
    def value(self) -> Optional[Value]:
        if self.result is not None and self.result.kind == ResultKind.VALUE:
            return self.result.value
        return None

    @property
    def error_message(self) -> Optional[str]:
        if self.kind == StatementKind.ERROR:
            return self.error
        if self.result is not None and self.result.kind == ResultKind.ERROR:
            return self.result.error
        return None


def evaluate_line(code: str, env: Environment, fallback: Optional[Fallback] = None) -> LineEvaluation:
    """Evaluates one line's code against `env`.

    `env` is only written on a successful assignment, or, when the line
    fails and a `fallback` is given for an assignment-looking line, with
    the fallback's last known good binding.
    """
    statement = parse_statement(code)

    if statement.kind == StatementKind.EMPTY:
        return LineEvaluation(StatementKind.EMPTY)

    if statement.kind == StatementKind.ERROR:
        _apply_fallback(code, env, fallback)
        return LineEvaluation(StatementKind.ERROR, error=statement.error)

    result = evaluate_expression(statement.expr_source, env)

    if statement.kind == StatementKind.EXPR:
        return LineEvaluation(StatementKind.EXPR, expr_source=statement.expr_source, result=result)

    if result.kind == ResultKind.VALUE:
        env[statement.name] = result.value
    else:
        _apply_fallback(code, env, fallback)
    return LineEvaluation(
        StatementKind.ASSIGN,
        name=statement.name,
        expr_source=statement.expr_source,
        result=result,
    )


def _apply_fallback(code: str, env: Environment, fallback: Optional[Fallback]) -> None:
    if fallback is None or "=" not in code:
        return
    name, value = fallback
    logger.debug(f"Keeping last good value of '{name}' while its line is broken")
    env[name] = value


# --- Document Evaluation ---


@dataclass(frozen=True)
class LineResult:
    code: str
    value: str
    error: Optional[str] = None
    name: Optional[str] = None
    raw: Optional[Value] = None
    block_total: Value = Value(0.0)

    @property
    def has_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "value": self.value,
            "error": self.error,
            "name": self.name,
            "total": format_value(self.block_total),
        }


def evaluate_document(raw_text: str, fallbacks: Optional[Dict[int, Fallback]] = None) -> List[LineResult]:
    """One full pass over a document, returning a result per line.

    `fallbacks` maps a line index to the binding to keep when that line's
    assignment fails; callers use it for the line being edited.
    """
    fallbacks = fallbacks or {}
    env: Environment = {}
    block_total = Value(0.0)
    results = []

    for index, line in enumerate(parse_document(raw_text)):
        code = line.code
        if code.strip() == "" and not line.has_comment:
            block_total = Value(0.0)
        env[TOTAL] = block_total

        evaluation = evaluate_line(code, env, fallbacks.get(index))
        value = evaluation.value

        if value is not None and evaluation.expr_source != TOTAL:
            folded, error = add_values(block_total, value)
            if error:
                logger.debug(f"Line {index + 1} not added to total: {error}")
            else:
                block_total = folded

        error = evaluation.error_message
        results.append(
            LineResult(
                code=code,
                value=format_value(value) if value is not None else "",
                error=error,
                name=evaluation.name,
                raw=value,
                block_total=block_total,
            )
        )

    return results
