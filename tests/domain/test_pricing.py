"""Tests for order amount calculation."""

from dataclasses import dataclass
from decimal import Decimal

import pytest

from multistore.domain import (
    CouponDiscountRule,
    Money,
    PercentageTaxRule,
    ShippingRule,
    compute_amounts,
)
from multistore.domain.exceptions import BusinessRuleError, ValidationError


@dataclass
class Line:
    quantity: int
    unit_price: Decimal


def make_lines() -> list[Line]:
    """Two units at 100.00 and one at 50.00."""
    return [Line(2, Decimal("100.00")), Line(1, Decimal("50.00"))]


class TestComputeAmounts:
    """Tests for compute_amounts."""

    def test_subtotal_and_shipping(self) -> None:
        """Subtotal sums the lines and shipping is added to the total."""
        amounts = compute_amounts(make_lines(), shipping_rule=ShippingRule(Decimal("5.00")))

        assert amounts.subtotal == Money(Decimal("250.00"))
        assert amounts.shipping == Money(Decimal("5.00"))
        assert amounts.tax.is_zero()
        assert amounts.discount.is_zero()
        assert amounts.total == Money(Decimal("255.00"))
        assert amounts.currency == "YER"

    def test_no_rules(self) -> None:
        """Without rules the total equals the subtotal."""
        amounts = compute_amounts(make_lines())
        assert amounts.total.amount == Decimal("250.00")

    def test_percentage_tax(self) -> None:
        """Tax is a percentage of the subtotal, rounded half up."""
        amounts = compute_amounts(
            [Line(1, Decimal("10.05"))],
            tax_rule=PercentageTaxRule(Decimal("5")),
        )
        assert amounts.tax.amount == Decimal("0.50")
        assert amounts.total.amount == Decimal("10.55")

    def test_free_shipping_threshold(self) -> None:
        """Shipping is waived at or above the threshold."""
        rule = ShippingRule(Decimal("5.00"), free_shipping_threshold=Decimal("250.00"))
        assert compute_amounts(make_lines(), shipping_rule=rule).shipping.is_zero()
        assert compute_amounts([Line(1, Decimal("10"))], shipping_rule=rule).shipping == Money(
            Decimal("5.00")
        )

    def test_coupon_discount(self) -> None:
        """Known coupons grant their amount, case-insensitively."""
        rule = CouponDiscountRule({"SAVE20": Decimal("20.00")})
        amounts = compute_amounts(make_lines(), discount_code=" save20 ", discount_rule=rule)
        assert amounts.discount.amount == Decimal("20.00")
        assert amounts.total.amount == Decimal("230.00")

    def test_unknown_coupon(self) -> None:
        """Unknown coupons grant nothing."""
        rule = CouponDiscountRule({"SAVE20": Decimal("20.00")})
        amounts = compute_amounts(make_lines(), discount_code="NOPE", discount_rule=rule)
        assert amounts.discount.is_zero()

    def test_discount_exceeding_value_raises(self) -> None:
        """A discount larger than the order value is a business rule violation."""
        rule = CouponDiscountRule({"BIG": Decimal("1000.00")})
        with pytest.raises(BusinessRuleError) as exc_info:
            compute_amounts(make_lines(), discount_code="BIG", discount_rule=rule)
        assert "discount exceeds order value" in exc_info.value.message

    def test_negative_rule_output_raises(self) -> None:
        """Rules may not produce negative components."""
        with pytest.raises(BusinessRuleError):
            compute_amounts(make_lines(), tax_rule=PercentageTaxRule(Decimal("-5")))

    def test_identity_holds(self) -> None:
        """total == subtotal + tax + shipping - discount."""
        amounts = compute_amounts(
            [Line(3, Decimal("33.33")), Line(1, Decimal("0.01"))],
            shipping_rule=ShippingRule(Decimal("7.50")),
            tax_rule=PercentageTaxRule(Decimal("2.5")),
            discount_code="X",
            discount_rule=CouponDiscountRule({"X": Decimal("1.99")}),
        )
        expected = (
            amounts.subtotal.amount
            + amounts.tax.amount
            + amounts.shipping.amount
            - amounts.discount.amount
        )
        assert amounts.total.amount == expected


class TestLineValidation:
    """Tests for order line validation."""

    def test_empty_order(self) -> None:
        """An order needs at least one line."""
        with pytest.raises(ValidationError) as exc_info:
            compute_amounts([])
        assert exc_info.value.field == "items"

    def test_zero_quantity(self) -> None:
        """Quantity must be at least one."""
        with pytest.raises(ValidationError) as exc_info:
            compute_amounts([Line(1, Decimal("1")), Line(0, Decimal("1"))])
        assert exc_info.value.field == "items[1].quantity"

    def test_non_positive_price(self) -> None:
        """Unit price must be positive."""
        with pytest.raises(ValidationError) as exc_info:
            compute_amounts([Line(1, Decimal("0"))])
        assert exc_info.value.field == "items[0].unit_price"

    def test_price_rounding_to_zero(self) -> None:
        """A sub-cent price that rounds to 0.00 is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            compute_amounts([Line(1, Decimal("10")), Line(3, Decimal("0.004"))])
        assert exc_info.value.field == "items[1].unit_price"

    def test_price_rounding_up_is_kept(self) -> None:
        """A sub-cent price that rounds to a cent is accepted."""
        amounts = compute_amounts([Line(1, Decimal("0.005"))])
        assert amounts.subtotal.amount == Decimal("0.01")
