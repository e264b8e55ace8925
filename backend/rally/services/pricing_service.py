"""
Ticket price calculation with an optional Rally Credits reward.

ROUNDING
========
All currency arithmetic rounds to cents, half away from zero, at each step:
the price, then the discount, then the difference. The fee preview and the
final charge both go through calculate_price, so the total a buyer is shown
and the total the gateway charges can never drift by a cent.

Precedence:
  1. No reward                -> price unchanged
  2. event_free_admission     -> price 0, whatever amount/percent the record holds
  3. discount_percent         -> round2(price * percent / 100)
  4. discount_amount (fixed)  -> clamped to the price
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Optional

from rally.core.errors import InvalidRewardDefinition
from rally.models.reward import EVENT_DISCOUNT, EVENT_FREE_ADMISSION
from rally.schemas.checkout import PriceQuote

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # go through str so 0.1 stays 0.1
        return Decimal(str(value))
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidRewardDefinition(f"not a currency amount: {value!r}")


def round2(value: Any) -> Decimal:
    """Round to cents, ties away from zero."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    return int(round2(amount) * 100)


def _validate_discount_fields(reward: Any) -> tuple[Optional[Decimal], Optional[Decimal]]:
    amount = reward.discount_amount
    percent = reward.discount_percent
    if amount is not None and percent is not None:
        raise InvalidRewardDefinition(
            f"reward {reward.id} carries both discount_amount and discount_percent"
        )
    if percent is not None:
        percent = to_decimal(percent)
        if percent < 0 or percent > HUNDRED:
            raise InvalidRewardDefinition(f"reward {reward.id} discount_percent {percent} outside 0-100")
    if amount is not None:
        amount = to_decimal(amount)
        if amount < 0:
            raise InvalidRewardDefinition(f"reward {reward.id} has a negative discount_amount")
    if amount is None and percent is None:
        raise InvalidRewardDefinition(f"reward {reward.id} has no discount value")
    return amount, percent


def calculate_price(original_price: Any, reward: Optional[Any] = None) -> PriceQuote:
    """
    Compute what the buyer owes for a ticket.

    `reward` is anything exposing id, type, discount_amount and
    discount_percent (a Reward row or RewardTerms). Invalid input raises
    InvalidRewardDefinition rather than silently pricing without a discount.
    """
    price = round2(original_price)
    if price < 0:
        raise InvalidRewardDefinition(f"negative ticket price {price}")

    if reward is None:
        return PriceQuote(discounted_price=price, discount_amount=ZERO, is_free=price == 0)

    if reward.type == EVENT_FREE_ADMISSION:
        return PriceQuote(discounted_price=ZERO, discount_amount=price, is_free=True)

    if reward.type != EVENT_DISCOUNT:
        raise InvalidRewardDefinition(f"reward {reward.id} of type {reward.type} does not apply to tickets")

    amount, percent = _validate_discount_fields(reward)

    if percent is not None:
        discount = round2(price * percent / HUNDRED)
    else:
        discount = round2(min(price, amount))

    discounted = max(ZERO, round2(price - discount))
    return PriceQuote(discounted_price=discounted, discount_amount=discount, is_free=discounted == 0)


def format_money(amount: Decimal, currency: str = "usd") -> str:
    if currency.lower() == "usd":
        return f"${round2(amount):.2f}"
    return f"{round2(amount):.2f} {currency.upper()}"


def describe_reward(reward: Any, currency: str = "usd") -> str:
    """Human-readable value of a reward, e.g. '10% off (Event Discount)'."""
    if reward.type == EVENT_FREE_ADMISSION:
        return "Free Admission"

    if reward.discount_percent:
        value = f"{to_decimal(reward.discount_percent).normalize():f}% off"
    elif reward.discount_amount:
        value = f"{format_money(to_decimal(reward.discount_amount), currency)} off"
    else:
        value = "Discount"
    return f"{value} (Event Discount)"
