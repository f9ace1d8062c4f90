from typing import List, Tuple

from calc_pad.expr import DIGITS, IDENTIFIER_PATTERN, OPERATORS, is_group_comma
from calc_pad.units import scan_unit_after_number

NUMBER_CHARS = DIGITS + "."


def tokenize_for_highlight(source: str) -> List[Tuple[str, str]]:
    """Splits a line's code into (kind, text) pairs for syntax colouring.

    Unlike the evaluator's tokenizer this never fails: anything it does not
    recognise becomes an `unknown` token, and the texts joined back together
    always give `source`.
    """
    tokens: List[Tuple[str, str]] = []
    index = 0
    after_number = False

    while index < len(source):
        char = source[index]

        if char in " \t":
            end = index + 1
            while end < len(source) and source[end] in " \t":
                end += 1
            tokens.append(("whitespace", source[index:end]))
            index = end
            continue

        if char in DIGITS or char == "$" or (char == "." and source[index + 1:index + 2] in tuple(DIGITS)):
            end = index + 1
            while end < len(source) and (
                source[end] in NUMBER_CHARS or (source[end] == "," and is_group_comma(source, end))
            ):
                end += 1
            tokens.append(("number", source[index:end]))
            index = end
            after_number = char != "$"
            continue

        if after_number:
            after_number = False
            if char == "%":
                tokens.append(("unit", char))
                index += 1
                continue
            scanned = scan_unit_after_number(source, index)
            if scanned:
                _, end = scanned
                tokens.append(("unit", source[index:end]))
                index = end
                continue

        match = IDENTIFIER_PATTERN.match(source, index)
        if match:
            tokens.append(("ident", match.group()))
            index = match.end()
            continue

        if char in OPERATORS or char == "=":
            tokens.append(("operator", char))
        elif char in "()":
            tokens.append(("paren", char))
        elif char == ",":
            tokens.append(("comma", char))
        else:
            tokens.append(("unknown", char))
        index += 1

    return tokens
