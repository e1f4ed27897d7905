from __future__ import annotations

from .units import coerce_number

UNDEFINED = "-"


def format_scientific(value) -> str:
    """Render ``value`` as ``"{sign}{mantissa:.5f} x 10^{exp}"``.

    "-" for None/non-numeric/non-finite, "0" for exact zero. Formatting goes
    through str.format, never the locale module, so the output is always
    ASCII with a '.' separator.
    """
    v = coerce_number(value) if not isinstance(value, str) else None
    if v is None:
        return UNDEFINED
    if v == 0:
        return "0"
    sign = "-" if v < 0 else ""
    # let the e-format do the rounding so 9.999999 carries into the exponent
    mantissa, exponent = "{:.5e}".format(abs(v)).split("e")
    return "{}{} x 10^{}".format(sign, mantissa, int(exponent))


def format_fixed(value, places: int = 5) -> str:
    """Fixed-point rendering used for ratios; "-" when undefined."""
    v = coerce_number(value) if not isinstance(value, str) else None
    if v is None:
        return UNDEFINED
    return "{:.{p}f}".format(v, p=places)
