import math
from decimal import Decimal
from typing import Union

from calc_pad.expr import Value
from calc_pad.units import NONE, PERCENT, USD, unit_display

SCIENTIFIC_THRESHOLD = 1e9
SMALL_THRESHOLD = 1e-9
MAX_SIGNIFICANT_DIGITS = 7
CURRENCY_SIGNIFICANT_DIGITS = 3
MAX_SAFE_INTEGER = 2 ** 53 - 1


def _trim_fraction(text: str) -> str:
    if "." not in text:
        return text
    return text.rstrip("0").rstrip(".")


def _group_thousands(text: str) -> str:
    sign = ""
    if text.startswith("-"):
        sign, text = "-", text[1:]
    integer, dot, fraction = text.partition(".")
    return f"{sign}{int(integer):,}{dot}{fraction}"


def _scientific(amount: float, significant_digits: int) -> str:
    """Mantissa capped to `significant_digits`, zeros trimmed, no `+` in the exponent."""
    mantissa, exponent = f"{amount:.{significant_digits - 1}e}".split("e")
    return f"{_trim_fraction(mantissa)}e{int(exponent)}"


def _needs_scientific(amount: float) -> bool:
    magnitude = abs(amount)
    return magnitude >= SCIENTIFIC_THRESHOLD or magnitude < SMALL_THRESHOLD


def format_number(amount: float) -> str:
    """Renders a bare amount: `12,345,678`, `0.3`, `1.234568e12`."""
    if not math.isfinite(amount):
        return str(amount)

    if amount == 0:
        return "0"

    if _needs_scientific(amount):
        return _scientific(amount, MAX_SIGNIFICANT_DIGITS)

    if float(amount).is_integer() and abs(amount) <= MAX_SAFE_INTEGER:
        return f"{int(amount):,}"

    # 15 significant digits absorb binary noise (0.30000000000000004 -> 0.3)
    text = format(amount, ".15g")
    if "e" in text:
        text = format(Decimal(text), "f")
    return _group_thousands(_trim_fraction(text))


def format_currency(amount: float) -> str:
    """Dollar amounts keep two decimals unless they are `.00`: `$3`, `$3.50`, `-$1,200.25`."""
    if not math.isfinite(amount):
        return f"${amount}"

    sign = "-" if amount < 0 else ""
    magnitude = abs(amount)

    if magnitude != 0 and _needs_scientific(magnitude):
        return f"{sign}${_scientific(magnitude, CURRENCY_SIGNIFICANT_DIGITS)}"

    text = f"{magnitude:,.2f}"
    if text.endswith(".00"):
        text = text[:-3]
    if text == "0":
        sign = ""
    return f"{sign}${text}"


def format_value(value: Union[Value, float, int]) -> str:
    """Renders a value with its unit suffix, the string shown next to each line."""
    if not isinstance(value, Value):
        return format_number(float(value))

    if value.unit == USD:
        return format_currency(value.amount)

    text = format_number(value.amount)
    if value.unit == NONE:
        return text
    if value.unit == PERCENT:
        return f"{text}%"

    suffix = unit_display(value.unit)
    if suffix.startswith("°"):
        return f"{text}{suffix}"
    return f"{text} {suffix}"
