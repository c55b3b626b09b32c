"""
Values -- the single derivation point for quantities and totals.

Responsibility:
    Coerces incoming quantities, rates and prices into Decimals of the
    engine's fixed precision, and derives every line total and sum.
    ``line_total()`` is the ONLY place ``quantity x rate`` is computed; the
    request item estimate, the purchase order line total, and every
    aggregate total go through it.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - No floats: a float input is rejected rather than silently rounded.
    - ``line_total(q, r)`` is the exact product.  A product that needs more
      than QUANTITY_DECIMAL_PLACES places is refused, never rounded, so a
      stored total always equals quantity x rate.

Failure modes:
    - InvalidQuantityError for floats, non-numeric strings, NaN/Infinity
      and values that need more than QUANTITY_DECIMAL_PLACES places.
    - InvalidQuantityError for totals and sums too large for the decimal
      context or too precise for the stored scale.
"""

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal, Inexact, InvalidOperation, localcontext

from procurement_kernel.exceptions import InvalidQuantityError

QUANTITY_DECIMAL_PLACES = 9
QUANTUM = Decimal(1).scaleb(-QUANTITY_DECIMAL_PLACES)
ZERO = Decimal("0")


def to_quantity(value: Decimal | int | str, field: str = "quantity") -> Decimal:
    """
    Coerce a caller-supplied number into an engine Decimal.

    Preconditions: value is a Decimal, an int, or a numeric string.
    Postconditions: Returns a finite Decimal quantized to 9 places.

    Raises:
        InvalidQuantityError: on floats, junk strings, non-finite values, or
            more precision than the engine stores.
    """
    if isinstance(value, (bool, float)):
        raise InvalidQuantityError(field, value, "use Decimal, int or str, not float")
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise InvalidQuantityError(field, value, "not a number") from None
    if not number.is_finite():
        raise InvalidQuantityError(field, value, "must be finite")
    try:
        quantized = number.quantize(QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidQuantityError(field, value, "too large") from None
    if quantized != number:
        raise InvalidQuantityError(
            field, value, f"more than {QUANTITY_DECIMAL_PLACES} decimal places"
        )
    return quantized


def positive_quantity(value: Decimal | int | str, field: str = "quantity") -> Decimal:
    """``to_quantity`` that additionally requires a strictly positive value."""
    number = to_quantity(value, field)
    if number <= ZERO:
        raise InvalidQuantityError(field, value, "must be greater than zero")
    return number


def non_negative_amount(value: Decimal | int | str, field: str = "rate") -> Decimal:
    """``to_quantity`` that additionally rejects negative values."""
    number = to_quantity(value, field)
    if number < ZERO:
        raise InvalidQuantityError(field, value, "must not be negative")
    return number


def line_total(quantity: Decimal, rate: Decimal, field: str = "total") -> Decimal:
    """
    quantity x rate, exactly, at the stored precision.

    Raises:
        InvalidQuantityError: if the exact product needs more than
            QUANTITY_DECIMAL_PLACES places or does not fit the stored
            precision.
    """
    try:
        with localcontext() as ctx:
            ctx.traps[Inexact] = True
            product = quantity * rate
        total = product.quantize(QUANTUM)
    except (Inexact, InvalidOperation):
        raise InvalidQuantityError(field, f"{quantity} x {rate}", "total too large") from None
    if total != product:
        raise InvalidQuantityError(
            field,
            f"{quantity} x {rate}",
            f"total needs more than {QUANTITY_DECIMAL_PLACES} decimal places",
        )
    return total


def sum_totals(values: Iterable[Decimal], field: str = "total_value") -> Decimal:
    """Exact sum of Decimals at the stored precision; zero for an empty input."""
    try:
        with localcontext() as ctx:
            ctx.traps[Inexact] = True
            total = sum(values, ZERO)
        return total.quantize(QUANTUM)
    except (Inexact, InvalidOperation):
        raise InvalidQuantityError(field, "sum", "total too large") from None


def remaining(ordered: Decimal, delivered: Decimal) -> Decimal:
    """Quantity still to be delivered on a purchase order line."""
    return (ordered - delivered).quantize(QUANTUM)
