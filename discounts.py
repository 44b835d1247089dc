"""
Discount resolution engine.

Decides which candidate discounts apply to a cart, in what order, and what
each one is worth. Every function here is pure: inputs are never mutated and
the only ambient dependency is the clock, which callers may inject through
`now`.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from models import (
    AppliedDiscount,
    CartContext,
    Discount,
    DiscountError,
    DiscountScope,
    DiscountType,
    ResolutionResult,
    ValidationResult,
)

logger = logging.getLogger(__name__)

NOT_STACKABLE_REASON = "Cannot stack with non-stackable discount already applied"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def format_usd(amount: float) -> str:
    """50 -> '50', 49.5 -> '49.5', as the storefront prints amounts"""
    if float(amount).is_integer():
        return str(int(amount))
    return repr(float(amount))


def _matching_items(discount: Discount, cart: CartContext):
    if discount.scope == DiscountScope.CATEGORY:
        return [item for item in cart.items if item.category == discount.category]
    if discount.scope == DiscountScope.ITEM:
        target = str(discount.productId)
        return [item for item in cart.items if str(item.id) == target]
    return list(cart.items)


def validate(discount: Discount, cart: CartContext, now: Optional[datetime] = None) -> ValidationResult:
    """
    Check whether `discount` can be applied to `cart` at instant `now`.

    Checks run in a fixed order and stop at the first failure: active flag,
    validity window, usage limit, minimum purchase, then scope.
    """
    now = _as_utc(now) if now is not None else _utcnow()

    if not discount.isActive:
        return ValidationResult(valid=False, reason="Discount is not active")

    if discount.validFrom is not None and discount.validFrom > now:
        return ValidationResult(valid=False, reason="Discount is not yet valid")
    if discount.validUntil is not None and discount.validUntil < now:
        return ValidationResult(valid=False, reason="Discount has expired")

    if discount.usageLimit is not None and discount.usageCount >= discount.usageLimit:
        return ValidationResult(valid=False, reason="Discount usage limit reached")

    if cart.subtotal < discount.minPurchaseUSD:
        return ValidationResult(
            valid=False,
            reason=f"Minimum purchase of ${format_usd(discount.minPurchaseUSD)} required",
        )

    if discount.scope == DiscountScope.CATEGORY and not _matching_items(discount, cart):
        return ValidationResult(
            valid=False,
            reason=f"Discount only applies to {discount.category} items",
        )

    if discount.scope == DiscountScope.ITEM and not _matching_items(discount, cart):
        return ValidationResult(
            valid=False,
            reason="Discount only applies to specific product not in cart",
        )

    return ValidationResult(valid=True, reason="")


def calculate_amount(discount: Discount, cart: CartContext) -> float:
    """
    Monetary effect of an already validated discount, before stacking.

    Percentage discounts on a category or item scope only see the matching
    cart lines. An unrecognized type is worth nothing.
    """
    if discount.type == DiscountType.PERCENTAGE:
        if discount.scope == DiscountScope.SITE_WIDE:
            base = cart.subtotal
        else:
            base = sum(item.line_total for item in _matching_items(discount, cart))
        amount = base * (discount.value / 100)
    elif discount.type == DiscountType.FIXED:
        amount = discount.value
    elif discount.type == DiscountType.FREE_SHIPPING:
        amount = cart.shippingCost or 0
    else:
        logger.warning("Unknown discount type %r on %s, treating as 0", discount.type, discount.code)
        return 0.0

    if discount.maxDiscountUSD is not None:
        amount = min(amount, discount.maxDiscountUSD)

    return max(float(amount), 0.0)


def estimated_value(discount: Discount, subtotal: float) -> float:
    """Rough worth of a discount, used only to order candidates."""
    if discount.type == DiscountType.PERCENTAGE:
        return subtotal * (discount.value / 100)
    return discount.value


def _sort_key(discount: Discount, subtotal: float):
    # non-stackable first, then best estimate first, then by code
    return (discount.stackable, -estimated_value(discount, subtotal), discount.code)


def resolve(
    discounts: Iterable[Discount],
    cart: CartContext,
    now: Optional[datetime] = None,
) -> ResolutionResult:
    """
    Apply a set of candidate discounts to a cart.

    Candidates are evaluated greedily in a single pass: non-stackable ones
    first, then by descending estimated value. Once a non-stackable discount
    has been accepted every later candidate is rejected without validation.
    Rejections are reported in `errors`; nothing is raised.
    """
    now = _as_utc(now) if now is not None else _utcnow()
    order_value = cart.subtotal + cart.shippingCost

    applied: List[AppliedDiscount] = []
    errors: List[DiscountError] = []
    total = 0.0
    non_stackable_applied = False

    for discount in sorted(discounts, key=lambda d: _sort_key(d, cart.subtotal)):
        if non_stackable_applied:
            errors.append(DiscountError(code=discount.code, reason=NOT_STACKABLE_REASON))
            continue

        result = validate(discount, cart, now)
        if not result.valid:
            logger.debug("Rejected %s: %s", discount.code, result.reason)
            errors.append(DiscountError(code=discount.code, reason=result.reason))
            continue

        amount = min(calculate_amount(discount, cart), max(order_value - total, 0.0))
        if amount > 0:
            applied.append(AppliedDiscount(**discount.model_dump(), appliedAmount=amount))
            total += amount

        if not discount.stackable:
            non_stackable_applied = True

    total = min(total, order_value)
    return ResolutionResult(totalDiscount=total, appliedDiscounts=applied, errors=errors)


def order_total(cart: CartContext, total_discount: float) -> float:
    return max(cart.subtotal + cart.shippingCost - total_discount, 0.0)
