# Coordinate privacy rounding.

from decimal import Decimal, ROUND_HALF_UP


def _quantize(value: float, precision: int) -> Decimal:
    if precision < 0:
        raise ValueError("precision must be non-negative")
    # str() gives the shortest repr, so 12.9716 quantizes as written rather
    # than as its binary approximation.
    exponent = Decimal(1).scaleb(-precision)
    return Decimal(str(value)).quantize(exponent, rounding=ROUND_HALF_UP)


def round_coordinate(value: float, precision: int = 3) -> float:
    """
    Round a latitude or longitude to `precision` decimal places, half away
    from zero (ROUND_HALF_UP in decimal terms is symmetric around zero).

    Precision guide (approximate at equator):
    - 2 decimal places: ~1.11 km
    - 3 decimal places: ~111 m
    - 4 decimal places: ~11 m

    Args:
        value: Latitude or longitude in decimal degrees.
        precision: Number of decimal places to keep.

    Returns:
        The rounded coordinate. Rounding an already rounded value is a no-op.
    """
    rounded = float(_quantize(value, precision))
    return rounded + 0.0  # normalise -0.0


def format_coordinate(value: float, precision: int) -> str:
    """Rounded coordinate as its shortest decimal text ("12.9", "13", "-0.5")."""
    quantized = _quantize(value, precision)
    if quantized.is_zero():
        return "0"
    text = format(quantized.normalize(), "f")
    return text
