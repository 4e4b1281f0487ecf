"""Order amount calculation.

Computes subtotal, tax, shipping, discount and total for a set of
order lines. All arithmetic is exact Decimal, rounded half-up to two
places. Tax, shipping and discount policies are pluggable rules; the
calculator runs once, when the order is created.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol, Sequence

from multistore.domain.base import ValueObject
from multistore.domain.exceptions import BusinessRuleError, ValidationError
from multistore.domain.value_objects import DEFAULT_CURRENCY, Money, quantize_amount

ZERO = Decimal("0.00")


class LineItem(Protocol):
    """Anything that carries a quantity and a unit price."""

    quantity: int
    unit_price: Decimal


# ============================================================================
# Rules
# ============================================================================


class TaxRule(Protocol):
    """Computes the tax owed on a subtotal."""

    def tax_for(self, subtotal: Decimal) -> Decimal: ...


class DiscountRule(Protocol):
    """Computes the discount granted for a subtotal and optional code."""

    def discount_for(self, subtotal: Decimal, code: str | None) -> Decimal: ...


@dataclass(frozen=True)
class ShippingRule:
    """Flat shipping charge, optionally waived above a subtotal threshold.

    Attributes:
        flat_amount: Charge applied to every order.
        free_shipping_threshold: Subtotal at or above which shipping is free.
    """

    flat_amount: Decimal = ZERO
    free_shipping_threshold: Decimal | None = None

    def shipping_for(self, subtotal: Decimal) -> Decimal:
        if self.free_shipping_threshold is not None and subtotal >= self.free_shipping_threshold:
            return ZERO
        return self.flat_amount


@dataclass(frozen=True)
class PercentageTaxRule:
    """Tax as a fixed percentage of the subtotal (e.g. Decimal('5') for 5%)."""

    rate_percent: Decimal

    def tax_for(self, subtotal: Decimal) -> Decimal:
        return subtotal * self.rate_percent / Decimal("100")


@dataclass(frozen=True)
class CouponDiscountRule:
    """Fixed-amount discounts keyed by coupon code.

    Unknown codes grant nothing. Codes are matched case-insensitively.
    """

    coupons: dict[str, Decimal] = field(default_factory=dict)

    def discount_for(self, subtotal: Decimal, code: str | None) -> Decimal:
        if not code:
            return ZERO
        normalized = {k.upper(): v for k, v in self.coupons.items()}
        return normalized.get(code.strip().upper(), ZERO)


# ============================================================================
# Result
# ============================================================================


@dataclass(frozen=True)
class OrderAmounts(ValueObject):
    """Monetary breakdown of an order.

    Invariant: total == subtotal + tax + shipping - discount.
    """

    subtotal: Money
    tax: Money
    shipping: Money
    discount: Money
    total: Money

    @property
    def currency(self) -> str:
        return self.total.currency


# ============================================================================
# Calculator
# ============================================================================


def validate_line_items(items: Sequence[LineItem]) -> None:
    """Check that an order has lines and every line is well-formed.

    Raises:
        ValidationError: If there are no lines, or a line has
            quantity < 1 or a unit price that rounds to zero or less.
    """
    if not items:
        raise ValidationError(
            "Order must contain at least one item",
            field="items",
            message_ar="يجب أن يحتوي الطلب على منتج واحد على الأقل",
        )
    for index, item in enumerate(items):
        if item.quantity is None or item.quantity < 1:
            raise ValidationError(
                f"Item {index}: quantity must be at least 1",
                field=f"items[{index}].quantity",
                message_ar="يجب أن تكون الكمية 1 على الأقل",
            )
        if item.unit_price is None or quantize_amount(item.unit_price) <= 0:
            raise ValidationError(
                f"Item {index}: unit price must be greater than zero",
                field=f"items[{index}].unit_price",
                message_ar="يجب أن يكون سعر الوحدة أكبر من صفر",
            )


def _rule_amount(name: str, value: Decimal) -> Decimal:
    amount = quantize_amount(value)
    if amount < 0:
        raise BusinessRuleError(
            f"{name} rule produced a negative amount: {amount}",
            details={"rule": name, "amount": str(amount)},
        )
    return amount


def compute_amounts(
    items: Sequence[LineItem],
    currency: str = DEFAULT_CURRENCY,
    discount_code: str | None = None,
    shipping_rule: ShippingRule | None = None,
    tax_rule: TaxRule | None = None,
    discount_rule: DiscountRule | None = None,
) -> OrderAmounts:
    """Compute the amounts of an order.

    Args:
        items: Order lines.
        currency: Order currency.
        discount_code: Coupon code entered by the customer.
        shipping_rule: Shipping policy; no charge when omitted.
        tax_rule: Tax policy; no tax when omitted.
        discount_rule: Discount policy; no discount when omitted.

    Returns:
        OrderAmounts with every component rounded to two places.

    Raises:
        ValidationError: If the lines are invalid.
        BusinessRuleError: If a rule yields a negative component, or the
            discount exceeds the order value.
    """
    validate_line_items(items)

    subtotal = sum(
        (quantize_amount(item.unit_price) * item.quantity for item in items),
        start=ZERO,
    )
    subtotal = quantize_amount(subtotal)

    tax = _rule_amount("tax", tax_rule.tax_for(subtotal)) if tax_rule else ZERO
    shipping = _rule_amount("shipping", shipping_rule.shipping_for(subtotal)) if shipping_rule else ZERO
    discount = (
        _rule_amount("discount", discount_rule.discount_for(subtotal, discount_code))
        if discount_rule
        else ZERO
    )

    total = subtotal + tax + shipping - discount
    if total < 0:
        raise BusinessRuleError(
            "discount exceeds order value",
            details={"discount": str(discount), "order_value": str(subtotal + tax + shipping)},
            message_ar="قيمة الخصم تتجاوز قيمة الطلب",
        )

    return OrderAmounts(
        subtotal=Money(subtotal, currency),
        tax=Money(tax, currency),
        shipping=Money(shipping, currency),
        discount=Money(discount, currency),
        total=Money(total, currency),
    )
