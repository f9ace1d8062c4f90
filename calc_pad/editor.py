"""Editor-side policy on top of the document evaluator.

The evaluator itself never hides anything. While the caret sits on a line
the editor keeps showing that line's last good value, hides its error until
the line has been seen broken at least once, and keeps the line's last good
assignment bound so that later lines do not fail along with it.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from calc_pad.document import Fallback, evaluate_document
from calc_pad.expr import Value
from calc_pad.formatting import format_value

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineView:
    code: str
    display_value: str
    has_error: bool
    show_error: bool
    error_message: Optional[str]

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "display_value": self.display_value,
            "has_error": self.has_error,
            "show_error": self.show_error,
            "error_message": self.error_message,
        }


class EditorState:
    """Per-document memory carried from one evaluation pass to the next."""

    def __init__(self):
        self.last_valid_values: List[Optional[Value]] = []
        self.last_valid_assignments: List[Optional[Fallback]] = []
        self.revealed_error_lines: Set[int] = set()

    def _resize(self, line_count: int) -> None:
        self.last_valid_values = (self.last_valid_values + [None] * line_count)[:line_count]
        self.last_valid_assignments = (self.last_valid_assignments + [None] * line_count)[:line_count]
        self.revealed_error_lines = {index for index in self.revealed_error_lines if index < line_count}

    def sync(self, text: str, active_line: int = 0, has_focus: bool = True) -> List[LineView]:
        line_count = len(text.split("\n"))
        self._resize(line_count)
        active_line = max(0, min(active_line, line_count - 1))

        fallbacks: Dict[int, Fallback] = {}
        fallback = self.last_valid_assignments[active_line]
        if has_focus and fallback is not None and active_line not in self.revealed_error_lines:
            fallbacks[active_line] = fallback
            logger.debug(f"Holding '{fallback[0]}' for active line {active_line + 1}")

        views = []
        for index, result in enumerate(evaluate_document(text, fallbacks)):
            if "=" not in result.code:
                self.last_valid_assignments[index] = None

            if result.code.strip() == "":
                self.last_valid_values[index] = None
                self.last_valid_assignments[index] = None
            elif result.raw is not None:
                self.last_valid_values[index] = result.raw
                if result.name is not None:
                    self.last_valid_assignments[index] = (result.name, result.raw)

            last_value = self.last_valid_values[index]
            has_error = result.has_error and result.code.strip() != ""
            show_error = has_error and (
                not has_focus or index != active_line or index in self.revealed_error_lines
            )
            views.append(
                LineView(
                    code=result.code,
                    display_value=format_value(last_value) if last_value is not None else "",
                    has_error=has_error,
                    show_error=show_error,
                    error_message=result.error if has_error else None,
                )
            )

        # Once an error has been on screen it stays visible, even on the active line.
        for index, view in enumerate(views):
            if not view.has_error:
                self.revealed_error_lines.discard(index)
            elif not has_focus or index != active_line:
                self.revealed_error_lines.add(index)

        return views
