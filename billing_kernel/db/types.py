"""
Module: billing_kernel.db.types
Responsibility: Annotated column types and the money/hours rounding helpers.
    Centralizes precision and rounding so that every model and service uses
    identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - round_money() is the ONLY sanctioned rounding function for monetary
      values; ROUND_HALF_UP to 2 places.
    - No floats for money.  Hours, rates and amounts are Decimal.
    - Instants are persisted in UTC (UTCDateTime).
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.types import TypeDecorator

# Monetary amount, 2 decimal places
Money = Annotated[Decimal, Numeric(12, 2)]

# Hourly rate, 4 decimal places
Rate = Annotated[Decimal, Numeric(12, 4)]

# Hours worked, 2 decimal places, at most 24
Hours = Annotated[Decimal, Numeric(5, 2)]

# Short identifier strings
ShortCode = Annotated[str, String(50)]

MONEY_DECIMAL_PLACES = 2
HOURS_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware instant stored normalized to UTC.

    SQLite has no timezone support and silently drops offsets; PostgreSQL
    returns values in the session zone.  Normalizing on the way in and
    re-attaching UTC on the way out makes equality lookups on stored
    period bounds behave identically on both backends.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the specified decimal places.

    This is the ONLY sanctioned rounding function for monetary values.

    Args:
        value: The Decimal value to round.  Must be finite.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def round_hours(value: Decimal) -> Decimal:
    """Round hours worked to 2 decimal places (half up)."""
    return round_money(value, HOURS_DECIMAL_PLACES)
