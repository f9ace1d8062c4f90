import functools
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from pint import UnitRegistry

logger = logging.getLogger(__name__)

# --- Unit Registry ---
# One registry per process
ureg = UnitRegistry()
Q_ = ureg.Quantity

NONE = "none"
USD = "usd"
PERCENT = "percent"

# Power prefixes: "sq cm", "cubic m"
PREFIX_POWERS = {
    "sq": 2,
    "square": 2,
    "cu": 3,
    "cubic": 3,
    "cb": 3,
}

# Canonical unit id -> pint unit name
LENGTH_UNITS = {
    "m": "meter",
    "cm": "centimeter",
    "mm": "millimeter",
    "km": "kilometer",
    "inch": "inch",
    "ft": "foot",
    "yd": "yard",
    "mi": "mile",
}

# (amount, pint unit); pint's own `acre` is the US survey acre
SPECIAL_AREA_UNITS = {
    "hectare": (1, "hectare"),
    "are": (1, "are"),
    "acre": (43560, "foot ** 2"),
}

SPECIAL_VOLUME_UNITS = {
    "l": "liter",
    "ml": "milliliter",
    "gal": "gallon",
    "qt": "quart",
    "pt": "pint",
    "cup": "cup",
    "tbsp": "tablespoon",
    "tsp": "teaspoon",
}

ZERO_CELSIUS_IN_KELVIN = 273.15

# unit -> (reading at the zero point, kelvin at the zero point, kelvin per degree, degrees per kelvin)
TEMPERATURE_UNITS = {
    "k": (0.0, 0.0, 1.0, 1.0),
    "c": (0.0, ZERO_CELSIUS_IN_KELVIN, 1.0, 1.0),
    "f": (32.0, ZERO_CELSIUS_IN_KELVIN, 5 / 9, 9 / 5),
}

DISPLAY_NAMES = {
    "inch": "in",
    "l": "L",
    "ml": "mL",
    "are": "a",
    "k": "K",
    "c": "°C",
    "f": "°F",
}

# Word (lowercase) -> canonical unit id, plurals and full names included
UNIT_ALIASES = {
    "m": "m", "meter": "m", "meters": "m", "metre": "m", "metres": "m",
    "cm": "cm", "centimeter": "cm", "centimeters": "cm",
    "mm": "mm", "millimeter": "mm", "millimeters": "mm",
    "km": "km", "kilometer": "km", "kilometers": "km",
    "inch": "inch", "inches": "inch",
    "ft": "ft", "foot": "ft", "feet": "ft",
    "yd": "yd", "yard": "yd", "yards": "yd",
    "mi": "mi", "mile": "mi", "miles": "mi",
    "l": "l", "liter": "l", "liters": "l", "litre": "l", "litres": "l",
    "ml": "ml", "milliliter": "ml", "milliliters": "ml",
    "gal": "gal", "gallon": "gal", "gallons": "gal",
    "qt": "qt", "quart": "qt", "quarts": "qt",
    "pt": "pt", "pint": "pt", "pints": "pt",
    "cup": "cup", "cups": "cup",
    "tbsp": "tbsp", "tablespoon": "tbsp", "tablespoons": "tbsp",
    "tsp": "tsp", "teaspoon": "tsp", "teaspoons": "tsp",
    "hectare": "hectare", "hectares": "hectare",
    "acre": "acre", "acres": "acre",
    "are": "are", "ares": "are",
    "k": "k", "kelvin": "k", "kelvins": "k",
    "c": "c", "celsius": "c",
    "f": "f", "fahrenheit": "f",
}

POWER_SUFFIX_PATTERN = re.compile(r"^([a-z]+)([23])$", re.IGNORECASE)
MEASURE_UNIT_PATTERN = re.compile(r"^(m|cm|mm|km|inch|ft|yd|mi)([23])?$")
UNIT_WORD_PATTERN = re.compile(r"[A-Za-z0-9_]+")


@dataclass(frozen=True)
class MeasureInfo:
    """A length, area or volume unit with its factor to meters**power."""

    unit: str
    power: int
    to_base: float
    display: str


@dataclass(frozen=True)
class TemperatureInfo:
    """A temperature unit; conversions are affine and go through kelvin, offset first.

    Fixed points map onto each other exactly: 32 °F is 0 °C, -40 °C is -40 °F.
    """

    unit: str
    display: str
    zero_point: float
    zero_point_kelvin: float
    kelvin_per_degree: float
    degrees_per_kelvin: float

    def to_kelvin(self, amount: float) -> float:
        return (amount - self.zero_point) * self.kelvin_per_degree + self.zero_point_kelvin

    def from_kelvin(self, kelvin: float) -> float:
        return (kelvin - self.zero_point_kelvin) * self.degrees_per_kelvin + self.zero_point


def normalize_unit_word(raw: str) -> str:
    return raw.strip().lower()


def normalize_base_unit_word(raw: str) -> Optional[str]:
    """Maps a single unit word (any alias) to its canonical id."""
    return UNIT_ALIASES.get(normalize_unit_word(raw))


def _takes_power(base: str) -> bool:
    return base in LENGTH_UNITS


def parse_power_suffix(raw: str) -> Optional[Tuple[str, int]]:
    match = POWER_SUFFIX_PATTERN.match(raw)
    if not match:
        return None
    return normalize_unit_word(match.group(1)), int(match.group(2))


def parse_unit_words(words: List[str]) -> Optional[Tuple[str, int]]:
    """Parses one or two words into a canonical unit id.

    Returns (unit, words_consumed) or None when the words are not a unit.
    Three forms are accepted: a bare word ("m", "gallons"), a power prefix
    ("sq cm", "cubic m") and a power suffix ("cm2", "m3"). When both a
    prefix and a suffix are present they must agree ("sq cm2").
    """
    if not words:
        return None

    first = normalize_unit_word(words[0])

    prefix_power = PREFIX_POWERS.get(first)
    if prefix_power:
        if len(words) < 2:
            return None
        with_suffix = parse_power_suffix(words[1])
        if with_suffix:
            base = normalize_base_unit_word(with_suffix[0])
            if not base or not _takes_power(base):
                return None
            if with_suffix[1] != prefix_power:
                return None
            return f"{base}{prefix_power}", 2

        base = normalize_base_unit_word(words[1])
        if not base or not _takes_power(base):
            return None
        return f"{base}{prefix_power}", 2

    with_suffix = parse_power_suffix(first)
    if with_suffix:
        base = normalize_base_unit_word(with_suffix[0])
        if not base or not _takes_power(base):
            return None
        return f"{base}{with_suffix[1]}", 1

    base = normalize_base_unit_word(first)
    if not base:
        return None
    return base, 1


def scan_unit_after_number(source: str, start_index: int) -> Optional[Tuple[str, int]]:
    """Looks for a unit phrase right after a number literal in `source`.

    Returns (unit, end_index) where end_index points just past the phrase,
    or None if the text at start_index is not a unit.
    """
    index = start_index
    while index < len(source) and source[index] in " \t":
        index += 1

    first = UNIT_WORD_PATTERN.match(source, index)
    if not first:
        return None

    if normalize_unit_word(first.group()) in PREFIX_POWERS:
        second_start = first.end()
        while second_start < len(source) and source[second_start] in " \t":
            second_start += 1
        second = UNIT_WORD_PATTERN.match(source, second_start)
        if not second:
            return None
        parsed = parse_unit_words([first.group(), second.group()])
        if not parsed:
            return None
        return parsed[0], second.end()

    parsed = parse_unit_words([first.group()])
    if not parsed:
        return None
    return parsed[0], first.end()


@functools.lru_cache(maxsize=None)
def try_get_temperature_info(unit: str) -> Optional[TemperatureInfo]:
    key = normalize_unit_word(unit)
    if key not in TEMPERATURE_UNITS:
        return None
    return TemperatureInfo(key, DISPLAY_NAMES[key], *TEMPERATURE_UNITS[key])


@functools.lru_cache(maxsize=None)
def try_get_measure_info(unit: str) -> Optional[MeasureInfo]:
    key = normalize_unit_word(unit)

    if key in SPECIAL_AREA_UNITS:
        to_base = Q_(*SPECIAL_AREA_UNITS[key]).to("meter ** 2").magnitude
        return MeasureInfo(unit=key, power=2, to_base=to_base, display=DISPLAY_NAMES.get(key, key))

    if key in SPECIAL_VOLUME_UNITS:
        to_base = Q_(1.0, SPECIAL_VOLUME_UNITS[key]).to("meter ** 3").magnitude
        return MeasureInfo(unit=key, power=3, to_base=to_base, display=DISPLAY_NAMES.get(key, key))

    match = MEASURE_UNIT_PATTERN.match(key)
    if not match:
        return None

    base = match.group(1)
    power = int(match.group(2)) if match.group(2) else 1
    to_base = Q_(1.0, f"{LENGTH_UNITS[base]} ** {power}").to(f"meter ** {power}").magnitude

    display = DISPLAY_NAMES.get(base, base)
    if power != 1:
        display = f"{display}^{power}"
    return MeasureInfo(unit=key, power=power, to_base=to_base, display=display)


def get_unit_kind(unit: str) -> str:
    """One of: none, usd, percent, temperature, measure, unknown."""
    if unit in (NONE, USD, PERCENT):
        return unit
    if try_get_temperature_info(unit):
        return "temperature"
    if try_get_measure_info(unit):
        return "measure"
    return "unknown"


def unit_display(unit: str) -> str:
    if unit == NONE:
        return ""
    if unit == USD:
        return "$"
    if unit == PERCENT:
        return "%"
    temperature = try_get_temperature_info(unit)
    if temperature:
        return temperature.display
    measure = try_get_measure_info(unit)
    if measure:
        return measure.display
    return unit


def convert_amount(amount: float, from_unit: str, to_unit: str) -> Tuple[Optional[float], Optional[str]]:
    """Converts an amount between two catalog units of the same dimension."""
    if from_unit == to_unit:
        return amount, None

    from_temperature = try_get_temperature_info(from_unit)
    to_temperature = try_get_temperature_info(to_unit)
    if from_temperature and to_temperature:
        return to_temperature.from_kelvin(from_temperature.to_kelvin(amount)), None

    from_measure = try_get_measure_info(from_unit)
    to_measure = try_get_measure_info(to_unit)
    if from_measure and to_measure and from_measure.power == to_measure.power:
        return amount * from_measure.to_base / to_measure.to_base, None

    logger.debug(f"No conversion from '{from_unit}' to '{to_unit}'")
    return None, f"Cannot convert {unit_display(from_unit) or from_unit} to {unit_display(to_unit) or to_unit}"
