"""
StorePilot — Price Guard

Deviation-based risk signal for price changes. A change is an
outlier when it moves the price by strictly more than the threshold
(default 40%).
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_THRESHOLD_PERCENT = 40.0


@dataclass
class PriceCheck:
    is_outlier: bool
    deviation_percent: float
    old_price: float
    new_price: float
    requires_confirmation: bool
    risk_flag: str | None = None
    message: str | None = None


def price_deviation(old_price: float, new_price: float) -> float:
    """|new - old| / old as a percentage. A zero old price counts as 100% if new > 0."""
    if old_price == 0:
        return 100.0 if new_price > 0 else 0.0
    return abs((new_price - old_price) / old_price) * 100


def check_price_outlier(
    old_price: float,
    new_price: float,
    threshold: float = DEFAULT_THRESHOLD_PERCENT,
) -> PriceCheck:
    deviation = price_deviation(old_price, new_price)
    is_outlier = deviation > threshold

    message = None
    if is_outlier:
        change = "increase" if new_price > old_price else "decrease"
        message = (
            f"Large price {change} detected: {deviation:.2f}% "
            f"(${old_price:.2f} → ${new_price:.2f})"
        )

    return PriceCheck(
        is_outlier=is_outlier,
        deviation_percent=deviation,
        old_price=old_price,
        new_price=new_price,
        requires_confirmation=is_outlier,
        risk_flag="PRICE_OUTLIER" if is_outlier else None,
        message=message,
    )


def validate_price_change(
    old_price: float,
    new_price: float,
    threshold: float = DEFAULT_THRESHOLD_PERCENT,
) -> PriceCheck:
    """Outlier check preceded by a sign check (INVALID_PRICE)."""
    if new_price < 0:
        return PriceCheck(
            is_outlier=False,
            deviation_percent=0.0,
            old_price=old_price,
            new_price=new_price,
            requires_confirmation=False,
            risk_flag="INVALID_PRICE",
            message="Price cannot be negative",
        )
    return check_price_outlier(old_price, new_price, threshold)


def confirmation_phrase(sku: str, new_price: float) -> str:
    return f"CONFIRM price change for {sku} to ${new_price:.2f}"


def price_confirmation_message(
    sku: str,
    old_price: float,
    new_price: float,
    deviation_percent: float,
) -> str:
    change = "increase" if new_price > old_price else "drop"
    return (
        f"This is a large price change (from ${old_price:.2f} → ${new_price:.2f}, "
        f"{deviation_percent:.2f}% {change}).\n\n"
        f'Please confirm:\n"{confirmation_phrase(sku, new_price)}"'
    )
