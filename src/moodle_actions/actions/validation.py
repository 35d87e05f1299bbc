"""Shape checks applied to caller-supplied identifiers before any remote call."""

from typing import Any


def is_positive_int(value: Any) -> bool:
    """Check that a value is an int (not a bool) greater than zero."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def parse_positive_int(value: str | None) -> int | None:
    """Parse a query-string id, returning None unless it is a positive integer."""
    if value is None:
        return None
    value = value.strip()
    # Plain ASCII digits only: no sign, fraction or exponent
    if not (value.isascii() and value.isdigit()):
        return None
    parsed = int(value)
    return parsed if parsed > 0 else None
