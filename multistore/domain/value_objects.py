"""Value Objects for the domain layer.

Value objects are immutable objects that are defined by their attributes
rather than identity. They are interchangeable when their values are equal.
"""

import re
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Self
from uuid import UUID, uuid4

from multistore.domain.base import ValueObject
from multistore.domain.exceptions import (
    CurrencyMismatchError,
    NegativeMoneyError,
    ValidationError,
)

DEFAULT_CURRENCY = "YER"

CENTS = Decimal("0.01")


def quantize_amount(value: Decimal | int | str) -> Decimal:
    """Round an amount to two decimal places, half up.

    Args:
        value: Amount to normalise.

    Returns:
        Decimal with exactly two fractional digits.
    """
    try:
        return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError) as e:
        raise ValidationError(f"Invalid amount: {value!r}", field="amount") from e


# ============================================================================
# Typed Identifiers
# ============================================================================


@dataclass(frozen=True)
class EntityId(ValueObject):
    """Strongly-typed UUID identifier.

    Using typed IDs prevents accidentally mixing up different entity IDs.
    Each aggregate gets its own subclass.
    """

    value: UUID

    @classmethod
    def generate(cls) -> Self:
        """Generate a new identifier.

        Returns:
            New identifier with random UUID.
        """
        return cls(value=uuid4())

    @classmethod
    def from_string(cls, value: str) -> Self:
        """Create identifier from string representation.

        Args:
            value: String UUID representation.

        Returns:
            Identifier instance.

        Raises:
            ValidationError: If value is not a UUID.
        """
        try:
            return cls(value=UUID(value))
        except (ValueError, AttributeError, TypeError) as e:
            raise ValidationError(f"Invalid identifier: {value!r}", field="id") from e

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class OrderId(EntityId):
    """Strongly-typed order identifier."""


@dataclass(frozen=True)
class PaymentId(EntityId):
    """Strongly-typed payment identifier."""


@dataclass(frozen=True)
class WalletTransactionId(EntityId):
    """Strongly-typed wallet transaction identifier."""


# ============================================================================
# Money Value Object
# ============================================================================


@dataclass(frozen=True)
class Money(ValueObject):
    """Represents monetary value with currency.

    Amounts are exact decimals rounded to two places, so sums of line
    totals never pick up floating-point drift.

    Attributes:
        amount: Amount in major units (e.g. 250.00).
        currency: ISO 4217 currency code (e.g. 'YER').
    """

    amount: Decimal
    currency: str = DEFAULT_CURRENCY

    def __post_init__(self) -> None:
        """Validate money constraints."""
        amount = quantize_amount(self.amount)
        if amount < 0:
            raise NegativeMoneyError(amount)
        object.__setattr__(self, "amount", amount)
        # Normalize currency to uppercase
        object.__setattr__(self, "currency", self.currency.upper())

    @classmethod
    def zero(cls, currency: str = DEFAULT_CURRENCY) -> Self:
        """Create zero amount money.

        Args:
            currency: Currency code.

        Returns:
            Money with zero amount.
        """
        return cls(amount=Decimal("0"), currency=currency)

    def __add__(self, other: "Money") -> "Money":
        """Add two money amounts.

        Raises:
            CurrencyMismatchError: If currencies don't match.
        """
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: "Money") -> "Money":
        """Subtract money amounts.

        Raises:
            CurrencyMismatchError: If currencies don't match.
            NegativeMoneyError: If result would be negative.
        """
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def __mul__(self, quantity: int) -> "Money":
        return Money(amount=self.amount * quantity, currency=self.currency)

    def __rmul__(self, quantity: int) -> "Money":
        return self.__mul__(quantity)

    def __str__(self) -> str:
        return f"{self.amount:.2f} {self.currency}"

    def is_zero(self) -> bool:
        return self.amount == 0


# ============================================================================
# Address Value Object
# ============================================================================


@dataclass(frozen=True)
class Address(ValueObject):
    """Shipping or billing address.

    Stored on the order as a JSON blob, so every field is optional
    except the street line and the city.

    Attributes:
        line1: Primary address line.
        city: City name.
        line2: Secondary address line.
        district: District or neighbourhood.
        state: Governorate or region.
        postal_code: Postal code, where one exists.
        country: ISO 3166-1 alpha-2 country code.
    """

    line1: str
    city: str
    line2: str | None = None
    district: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str = "YE"

    def __post_init__(self) -> None:
        """Validate address fields."""
        if not self.line1 or not self.line1.strip():
            raise ValidationError("Address line1 cannot be empty", field="line1")
        if not self.city or not self.city.strip():
            raise ValidationError("City cannot be empty", field="city")
        object.__setattr__(self, "country", self.country.upper())

    def format_single_line(self) -> str:
        """Format address as single line.

        Returns:
            Formatted address string.
        """
        parts = [self.line1]
        for part in (self.line2, self.district, self.city, self.state, self.postal_code):
            if part:
                parts.append(part)
        parts.append(self.country)
        return ", ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Address | None":
        if not data:
            return None
        return cls(**data)


# ============================================================================
# Customer Information
# ============================================================================


@dataclass(frozen=True)
class CustomerInfo(ValueObject):
    """Customer contact information for an order.

    Attributes:
        email: Customer email address.
        name: Customer full name.
        phone: Phone number (optional).
    """

    email: str
    name: str | None = None
    phone: str | None = None

    def __post_init__(self) -> None:
        """Validate customer info."""
        if not self.email or "@" not in self.email:
            raise ValidationError("Invalid email address", field="customer_email")


# ============================================================================
# Payment Methods & Wallets
# ============================================================================


class WalletType(str, Enum):
    """Local e-wallet providers and their phone numbering plans."""

    JEEB = "jeeb"
    FLOUSI = "flousi"
    MOBILE_MONEY = "mobile_money"

    @property
    def arabic_name(self) -> str:
        return _WALLET_NAMES_AR[self]

    def supports_phone_number(self, phone_number: str | None) -> bool:
        """Check a phone number against this wallet's numbering plan.

        Non-digits are stripped before checking, but inputs shorter than
        eight characters are rejected outright.

        Args:
            phone_number: Raw phone number as entered.

        Returns:
            True if the number belongs to this wallet's network.
        """
        if phone_number is None or len(phone_number) < 8:
            return False
        digits = _NON_DIGITS.sub("", phone_number)
        if len(digits) != 9:
            return False
        return digits.startswith(_WALLET_PREFIXES[self])


_NON_DIGITS = re.compile(r"[^0-9]")

_WALLET_PREFIXES: dict[WalletType, tuple[str, ...]] = {
    WalletType.JEEB: ("77",),
    WalletType.FLOUSI: ("73",),
    WalletType.MOBILE_MONEY: ("70", "71", "78"),
}

_WALLET_NAMES_AR: dict[WalletType, str] = {
    WalletType.JEEB: "جيب",
    WalletType.FLOUSI: "فلوسي",
    WalletType.MOBILE_MONEY: "موبايل موني",
}


class PaymentMethod(str, Enum):
    """Payment methods accepted at checkout."""

    JEEB = "jeeb"
    FLOUSI = "flousi"
    MOBILE_MONEY = "mobile_money"
    CASH_ON_DELIVERY = "cash_on_delivery"
    BANK_TRANSFER = "bank_transfer"

    def is_e_wallet(self) -> bool:
        """Check if the method is settled through a wallet gateway."""
        return self in {PaymentMethod.JEEB, PaymentMethod.FLOUSI, PaymentMethod.MOBILE_MONEY}

    def is_electronic(self) -> bool:
        """Check if the method is settled without cash changing hands."""
        return self != PaymentMethod.CASH_ON_DELIVERY

    @property
    def wallet_type(self) -> WalletType | None:
        """Wallet type for e-wallet methods, None otherwise."""
        if not self.is_e_wallet():
            return None
        return WalletType(self.value)

    @property
    def gateway_name(self) -> str | None:
        """Gateway identifier recorded on the payment, e.g. 'jeeb_gateway'."""
        if not self.is_e_wallet():
            return None
        return f"{self.value}_gateway"

    @property
    def display_name_ar(self) -> str:
        return _PAYMENT_METHOD_NAMES_AR[self]


_PAYMENT_METHOD_NAMES_AR: dict[PaymentMethod, str] = {
    PaymentMethod.JEEB: "جيب",
    PaymentMethod.FLOUSI: "فلوسي",
    PaymentMethod.MOBILE_MONEY: "موبايل موني",
    PaymentMethod.CASH_ON_DELIVERY: "الدفع عند التسليم",
    PaymentMethod.BANK_TRANSFER: "تحويل بنكي",
}
