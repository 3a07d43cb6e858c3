"""Position sizing — pure math, no I/O.

The scheduler asks a ``PositionSizer`` for the order quantity.  The
default policy spends a fixed quote-currency notional per order; other
policies can be injected without touching the scheduler.
"""

from typing import Protocol, runtime_checkable


QUANTITY_DECIMALS = 6


@runtime_checkable
class PositionSizer(Protocol):
    """Sizing policy interface."""

    def quantity(self, price: float) -> str:
        """Return the order quantity as an exchange-ready decimal string."""
        ...


def calculate_quantity(
    notional: float,
    price: float,
    decimals: int = QUANTITY_DECIMALS,
) -> str:
    """Calculate base-asset quantity for a quote-currency notional.

    Formula::

        quantity = notional / price

    Args:
        notional: Amount of quote currency to spend (e.g. 10.0 USDT).
        price: Current price of one base unit.
        decimals: Decimal places in the returned string.

    Returns:
        Quantity formatted with *decimals* places (e.g. ``"0.000100"``).

    Raises:
        ValueError: If any input is non-positive or the quantity rounds
            to zero.
    """
    if notional <= 0:
        raise ValueError(f"notional must be positive, got {notional}")
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")

    quantity = f"{notional / price:.{decimals}f}"
    if float(quantity) <= 0:
        raise ValueError(
            f"quantity for notional {notional} at price {price} rounds to zero"
        )
    return quantity


class FixedNotionalSizer:
    """Spend the same notional on every order.

    Args:
        notional: Quote-currency amount per order.
    """

    def __init__(self, notional: float) -> None:
        if notional <= 0:
            raise ValueError(f"notional must be positive, got {notional}")
        self._notional = notional

    @property
    def notional(self) -> float:
        return self._notional

    def quantity(self, price: float) -> str:
        return calculate_quantity(self._notional, price)
