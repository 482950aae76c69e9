"""
Decimal string helpers.

Exchange payloads and reports carry prices and quantities as decimal strings.
Values are parsed on input, computed in floating point, and formatted back
to strings only on output.
"""

from decimal import Decimal
from typing import Any, Optional

from futures_core.core.exceptions import ValidationError

# Enough places for 1e-8 step sizes after float rounding noise is removed
DEFAULT_PRECISION = 8


def parse_decimal(value: Any, field: str = "value") -> float:
    """
    Parse a decimal string (or number) into a float.

    Raises:
        ValidationError: Value is missing or not numeric
    """
    if value is None or value == "":
        raise ValidationError(f"{field} is required", field=field, value=value)
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be numeric, got {value!r}", field=field, value=value)
    if parsed != parsed or parsed in (float("inf"), float("-inf")):
        raise ValidationError(f"{field} must be finite, got {value!r}", field=field, value=value)
    return parsed


def parse_optional_decimal(value: Any, field: str = "value") -> Optional[float]:
    """Parse a decimal string, mapping None / "" / "0" placeholders to None."""
    if value is None or value == "":
        return None
    parsed = parse_decimal(value, field)
    return parsed if parsed != 0 else None


def format_decimal(value: float, precision: int = DEFAULT_PRECISION) -> str:
    """
    Format a float as a plain decimal string without float noise.

    Example:
        >>> format_decimal(0.1 + 0.2)
        '0.3'
        >>> format_decimal(-0.5)
        '-0.5'
        >>> format_decimal(1.0)
        '1'
    """
    quantized = Decimal(repr(round(value, precision))).normalize()
    if quantized == 0:
        return "0"
    text = format(quantized, "f")
    return text
