"""Domain exceptions.

All domain-level errors that represent business rule violations.
These exceptions are raised by entities, state machines and application
services when invariants are violated or invalid operations are attempted.
The API layer maps each family to an HTTP status and a bilingual message.
"""

from typing import Any


class DomainError(Exception):
    """Base class for all domain exceptions.

    All domain errors should inherit from this class to allow
    catching domain-specific errors at the application layer.

    Attributes:
        error_code: Machine-readable error code.
        message: Human-readable error message (English).
        message_ar: Human-readable error message (Arabic).
        details: Additional error context.
    """

    error_code: str = "DOMAIN_ERROR"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        message_ar: str | None = None,
    ) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
            message_ar: Optional Arabic rendition of the message.
        """
        super().__init__(message)
        self.message = message
        self.message_ar = message_ar
        self.details = details or {}


# ============================================================================
# Validation Errors
# ============================================================================


class ValidationError(DomainError):
    """Raised when input violates a field-level rule."""

    error_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
        message_ar: str | None = None,
    ) -> None:
        """Initialize validation error.

        Args:
            message: Human-readable error message.
            field: Name of the offending field, if any.
            details: Optional additional context.
            message_ar: Optional Arabic message.
        """
        merged = dict(details or {})
        if field:
            merged["field"] = field
        super().__init__(message, details=merged, message_ar=message_ar)
        self.field = field


class InvalidWalletPhoneError(ValidationError):
    """Raised when a wallet phone number does not fit the wallet's numbering plan."""

    error_code = "INVALID_WALLET_PHONE"

    def __init__(self, wallet_type: str, wallet_name_ar: str, phone: str | None) -> None:
        """Initialize invalid wallet phone error.

        Args:
            wallet_type: Wallet type value (e.g. "jeeb").
            wallet_name_ar: Arabic display name of the wallet.
            phone: The rejected phone number.
        """
        super().__init__(
            f"Invalid phone number for {wallet_type} wallet",
            field="wallet_phone",
            details={"wallet_type": wallet_type, "wallet_phone": phone},
            message_ar=f"رقم الهاتف غير صالح لمحفظة {wallet_name_ar}",
        )
        self.wallet_type = wallet_type


# ============================================================================
# Not Found Errors
# ============================================================================


class NotFoundError(DomainError):
    """Raised when a referenced resource does not exist."""

    error_code = "NOT_FOUND"

    def __init__(self, resource: str, field: str, value: Any) -> None:
        """Initialize not found error.

        Args:
            resource: Resource type name (e.g. "Order").
            field: Lookup field (e.g. "id").
            value: Lookup value.
        """
        super().__init__(
            f"{resource} not found with {field}: {value}",
            details={"resource": resource, "field": field, "value": str(value)},
            message_ar=f"لم يتم العثور على {_RESOURCE_NAMES_AR.get(resource, resource)}",
        )
        self.resource = resource


class OrderNotFoundError(NotFoundError):
    """Raised when an order is not found."""

    error_code = "ORDER_NOT_FOUND"

    def __init__(self, value: Any, field: str = "id") -> None:
        super().__init__("Order", field, value)


class PaymentNotFoundError(NotFoundError):
    """Raised when a payment is not found."""

    error_code = "PAYMENT_NOT_FOUND"

    def __init__(self, value: Any, field: str = "id") -> None:
        super().__init__("Payment", field, value)


class WalletTransactionNotFoundError(NotFoundError):
    """Raised when a wallet transaction is not found."""

    error_code = "WALLET_TRANSACTION_NOT_FOUND"

    def __init__(self, value: Any, field: str = "id") -> None:
        super().__init__("WalletTransaction", field, value)


_RESOURCE_NAMES_AR = {
    "Order": "الطلب",
    "Payment": "الدفعة",
    "WalletTransaction": "معاملة المحفظة",
}


# ============================================================================
# State Machine Errors
# ============================================================================


class InvalidStateTransitionError(DomainError):
    """Raised when an invalid state transition is attempted.

    This error indicates that the requested operation cannot be performed
    in the current state of the entity.
    """

    error_code = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        target_state: str,
        allowed_transitions: list[str] | None = None,
        reason: str | None = None,
    ) -> None:
        """Initialize invalid state transition error.

        Args:
            entity_type: Type of entity (e.g., "Order", "Payment").
            entity_id: ID of the entity.
            current_state: Current state of the entity.
            target_state: Attempted target state or operation.
            allowed_transitions: List of allowed target states from current state.
            reason: Extra guard that failed, when the state table alone allows it.
        """
        allowed = allowed_transitions or []
        message = (
            f"Cannot transition {entity_type}({entity_id}) "
            f"from '{current_state}' to '{target_state}'. "
            f"Allowed transitions: {allowed}"
        )
        if reason:
            message = f"{message}. {reason}"
        super().__init__(
            message,
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
                "reason": reason,
            },
            message_ar="لا يمكن تنفيذ هذه العملية في الحالة الحالية",
        )
        self.entity_type = entity_type
        self.current_state = current_state
        self.target_state = target_state


# ============================================================================
# Business Rule Errors
# ============================================================================


class BusinessRuleError(DomainError):
    """Raised when a cross-field business rule is violated."""

    error_code = "BUSINESS_RULE_VIOLATION"


# ============================================================================
# Integrity & Concurrency Errors
# ============================================================================


class IntegrityError(DomainError):
    """Raised when a persistence-level integrity rule is violated."""

    error_code = "INTEGRITY_ERROR"


class DuplicateResourceError(IntegrityError):
    """Raised when a unique key is already taken."""

    error_code = "DUPLICATE_RESOURCE"

    def __init__(self, resource: str, field: str, value: Any) -> None:
        """Initialize duplicate resource error.

        Args:
            resource: Resource type name.
            field: Unique field that collided.
            value: Colliding value.
        """
        super().__init__(
            f"{resource} already exists with {field}: {value}",
            details={"resource": resource, "field": field, "value": str(value)},
            message_ar="المورد موجود مسبقاً",
        )


class ConcurrencyError(IntegrityError):
    """Raised when an aggregate was modified concurrently.

    The stored version differs from the version the caller loaded.
    """

    error_code = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int,
        actual_version: int | None,
    ) -> None:
        """Initialize concurrency error.

        Args:
            entity_type: Type of aggregate.
            entity_id: Aggregate identifier.
            expected_version: Version the caller loaded.
            actual_version: Version currently stored (None if unknown).
        """
        super().__init__(
            f"Optimistic lock error for {entity_type}({entity_id}): "
            f"expected version {expected_version}, but current version is {actual_version}",
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
            message_ar="تم تعديل السجل من قبل عملية أخرى، يرجى المحاولة مرة أخرى",
        )
        self.expected_version = expected_version
        self.actual_version = actual_version


# ============================================================================
# Payment Errors
# ============================================================================


class PaymentProcessingError(DomainError):
    """Raised when dispatching a payment to its method handler failed.

    The payment has already been persisted as FAILED when this is raised.
    """

    error_code = "PAYMENT_PROCESSING_ERROR"

    def __init__(self, payment_id: str, reason: str) -> None:
        super().__init__(
            f"Payment processing failed for {payment_id}: {reason}",
            details={"payment_id": payment_id, "reason": reason},
            message_ar="فشلت معالجة الدفع",
        )


class GatewayError(DomainError):
    """Base class for wallet gateway failures.

    Gateway errors never reach the API; wallet reconciliation turns
    them into a FAILED transaction with a matching failure code.
    """

    error_code = "GATEWAY_ERROR"
    failure_code: str = "gateway_error"


class GatewayDeclinedError(GatewayError):
    """The wallet provider declined the charge."""

    error_code = "GATEWAY_DECLINED"
    failure_code = "declined"


class GatewayTimeoutError(GatewayError):
    """The wallet provider did not answer within the configured timeout."""

    error_code = "GATEWAY_TIMEOUT"
    failure_code = "timeout"


class GatewayUnavailableError(GatewayError):
    """The wallet provider could not be reached or answered with a server error."""

    error_code = "GATEWAY_UNAVAILABLE"
    failure_code = "gateway_error"


# ============================================================================
# Money Errors
# ============================================================================


class MoneyError(DomainError):
    """Base class for money-related errors."""

    error_code = "MONEY_ERROR"


class CurrencyMismatchError(MoneyError):
    """Raised when attempting to combine money with different currencies."""

    error_code = "CURRENCY_MISMATCH"

    def __init__(self, currency1: str, currency2: str) -> None:
        """Initialize currency mismatch error.

        Args:
            currency1: First currency code.
            currency2: Second currency code.
        """
        super().__init__(
            f"Cannot combine money with different currencies: {currency1} and {currency2}",
            details={"currency1": currency1, "currency2": currency2},
        )


class NegativeMoneyError(MoneyError):
    """Raised when attempting to create money with negative amount."""

    error_code = "NEGATIVE_AMOUNT"

    def __init__(self, amount: Any) -> None:
        """Initialize negative money error.

        Args:
            amount: The negative amount.
        """
        super().__init__(
            f"Money amount cannot be negative: {amount}",
            details={"amount": str(amount)},
        )
