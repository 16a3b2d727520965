"""
Money helpers for the Resource Costing Engine.

All amounts and volumes are carried as Decimal. Binary floats are only
accepted at the edges and are converted through their string form so that
0.1 stays 0.1. Rounding is applied only when results are published.
"""
import re
from decimal import (
    Decimal,
    InvalidOperation,
    ROUND_CEILING,
    ROUND_DOWN,
    ROUND_FLOOR,
    ROUND_HALF_DOWN,
    ROUND_HALF_EVEN,
    ROUND_HALF_UP,
    ROUND_UP,
)
from typing import Dict, List, Sequence, TypeVar, Union

K = TypeVar("K")

Number = Union[Decimal, int, float, str]

ZERO = Decimal("0")

# Significant digits of intermediate arithmetic; results are rounded only on output
WORKING_PRECISION = 50

ROUNDING_MODES = {
    "HALF_UP": ROUND_HALF_UP,
    "HALF_EVEN": ROUND_HALF_EVEN,
    "HALF_DOWN": ROUND_HALF_DOWN,
    "UP": ROUND_UP,
    "DOWN": ROUND_DOWN,
    "CEILING": ROUND_CEILING,
    "FLOOR": ROUND_FLOOR,
}


def to_decimal(value: Number) -> Decimal:
    """
    Coerce a numeric value to Decimal without binary float drift.

    Raises:
        TypeError: for booleans and non-numeric types
        ValueError: for strings that are not numbers, NaN or infinity
    """
    if isinstance(value, bool):
        raise TypeError("Boolean is not a numeric amount")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"Not a numeric amount: {value!r}")
    else:
        raise TypeError(f"Unsupported numeric type: {type(value).__name__}")

    if not result.is_finite():
        raise ValueError(f"Amount must be finite, got {value!r}")
    return result


def parse_amount(value: Union[str, float, int, Decimal, None]) -> Decimal:
    """
    Parse currency strings to Decimal.

    Handles:
        " 715,643.50 " -> 715643.50
        "$1,234.56"    -> 1234.56
        "-$500.00"     -> -500.00
        "($1,000.00)"  -> -1000.00 (accounting negative)
        "1e3"          -> 1000 (exponent notation)
        " -   " or "-" -> 0
        None, ""       -> 0

    Raises:
        ValueError: when the text cannot be read as an amount
    """
    if value is None:
        return ZERO

    if not isinstance(value, str):
        return to_decimal(value)

    s = value.strip()
    if s == '' or s == '-':
        return ZERO

    # Accounting negatives: parentheses, leading or trailing minus
    negative = False
    if s.startswith('(') and s.endswith(')'):
        negative, s = True, s[1:-1].strip()
    if s.startswith('-'):
        negative, s = True, s[1:].strip()
    elif s.endswith('-'):
        negative, s = True, s[:-1].strip()

    # Only currency decoration is removed; anything else must parse as a number
    s = re.sub(r'[$,\s]', '', s)
    if s == '':
        return ZERO
    if s.count('.') > 1:
        raise ValueError(f"Malformed amount: {value!r}")

    try:
        amount = to_decimal(s)
    except ValueError:
        raise ValueError(f"Malformed amount: {value!r}")
    return -amount if negative else amount


def rounding_mode(name: str) -> str:
    """Resolve a rounding mode name such as 'HALF_UP' to its decimal constant."""
    key = name.upper().replace("ROUND_", "")
    if key not in ROUNDING_MODES:
        raise ValueError(f"Unknown rounding mode: {name}")
    return ROUNDING_MODES[key]


def quantize_amount(value: Decimal, places: int = 2, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Round an amount to a fixed number of decimal places."""
    exponent = Decimal(1).scaleb(-places)
    return value.quantize(exponent, rounding=rounding)


def allocate_largest_remainder(
    total: Decimal,
    weights: Sequence[Decimal],
    places: int = 2,
) -> List[Decimal]:
    """
    Split a rounded total across weights with the Largest Remainder Method.

    Guarantees sum(result) == total exactly when total has at most
    `places` decimal places.

    Example:
        allocate_largest_remainder(Decimal("100.00"), [1, 1, 1])
        -> [Decimal('33.34'), Decimal('33.33'), Decimal('33.33')]
    """
    if not weights:
        return []

    if len(weights) == 1:
        return [total]

    unit = Decimal(1).scaleb(-places)
    units_total = int((total / unit).to_integral_value())

    weight_sum = sum((Decimal(w) for w in weights), ZERO)
    if weight_sum == 0:
        # Equal split when all weights are zero
        base = units_total // len(weights)
        result = [base] * len(weights)
        result[0] += units_total - sum(result)
        return [Decimal(r) * unit for r in result]

    shares = [units_total * Decimal(w) / weight_sum for w in weights]
    floors = [int(share.to_integral_value(rounding=ROUND_FLOOR)) for share in shares]
    remainders = [share - floor for share, floor in zip(shares, floors)]

    shortfall = units_total - sum(floors)
    # Ties go to the earlier position so the split is deterministic
    order = sorted(range(len(weights)), key=lambda i: (-remainders[i], i))
    for i in order[:shortfall]:
        floors[i] += 1

    return [Decimal(f) * unit for f in floors]


def round_preserving_total(
    amounts: Dict[K, Decimal],
    places: int = 2,
    rounding: str = ROUND_HALF_UP,
) -> Dict[K, Decimal]:
    """
    Round every amount so that the rounded values add up to the rounded sum.

    Keys keep their insertion order.
    """
    if not amounts:
        return {}
    keys = list(amounts)
    total = quantize_amount(sum(amounts.values(), ZERO), places, rounding)
    if any(amounts[k] < 0 for k in keys):
        # Largest remainder assumes non-negative weights
        return {k: quantize_amount(amounts[k], places, rounding) for k in keys}
    split = allocate_largest_remainder(total, [amounts[k] for k in keys], places)
    return dict(zip(keys, split))


def format_amount(value: Decimal, places: int = 2) -> str:
    """Format an amount as a display string with thousands separators."""
    rounded = quantize_amount(value, places)
    if rounded < 0:
        return f"-{abs(rounded):,.{places}f}"
    return f"{rounded:,.{places}f}"
