"""Tests for the payment application service."""

from decimal import Decimal

import pytest

from multistore.application.order_service import CreateOrderDTO, CreateOrderItemDTO
from multistore.application.payment_service import CreatePaymentDTO, PaymentService
from multistore.domain import (
    Order,
    OrderPaymentStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from multistore.domain.exceptions import (
    InvalidStateTransitionError,
    InvalidWalletPhoneError,
    OrderNotFoundError,
    PaymentNotFoundError,
    PaymentProcessingError,
    ValidationError,
    WalletTransactionNotFoundError,
)


@pytest.fixture
def service(gateway) -> PaymentService:
    return PaymentService()


# ============================================================================
# Helpers
# ============================================================================


async def make_order(service: PaymentService) -> Order:
    return await service.order_service.create_order(
        CreateOrderDTO(
            customer_email="ali@example.com",
            items=[
                CreateOrderItemDTO(
                    product_id="p-1", product_name="Honey", quantity=2, unit_price=Decimal("100.00")
                ),
                CreateOrderItemDTO(
                    product_id="p-2", product_name="Coffee", quantity=1, unit_price=Decimal("50.00")
                ),
            ],
        )
    )


def make_payment_request(order: Order, method: PaymentMethod, **overrides) -> CreatePaymentDTO:
    data = {
        "order_id": str(order.id),
        "payment_method": method,
        "amount": Decimal("255.00"),
    }
    data.update(overrides)
    return CreatePaymentDTO(**data)


# ============================================================================
# Creation & Dispatch
# ============================================================================


class TestCreatePayment:
    """Tests for PaymentService.create_payment."""

    async def test_cash_on_delivery_stays_pending(self, service: PaymentService) -> None:
        """Cash on delivery payments wait for manual confirmation."""
        order = await make_order(service)
        payment = await service.create_payment(
            make_payment_request(order, PaymentMethod.CASH_ON_DELIVERY)
        )

        assert payment.status == PaymentStatus.PENDING
        assert payment.display_id == "PAY-000001"
        assert payment.transaction_id.startswith("TXN-")
        assert payment.payment_gateway is None
        assert payment.currency == order.currency
        with pytest.raises(WalletTransactionNotFoundError):
            await service.get_wallet_transaction(str(payment.id))

    async def test_bank_transfer_keeps_reference(self, service: PaymentService) -> None:
        """Bank transfers record the customer's bank reference."""
        order = await make_order(service)
        payment = await service.create_payment(
            make_payment_request(order, PaymentMethod.BANK_TRANSFER, bank_reference="BNK-42")
        )

        stored = await service.get_payment(str(payment.id))
        assert stored.status == PaymentStatus.PENDING
        assert stored.gateway_transaction_id == "BNK-42"

    async def test_order_currency_wins(self, service: PaymentService) -> None:
        """A payment always uses its order's currency."""
        order = await make_order(service)
        payment = await service.create_payment(
            make_payment_request(order, PaymentMethod.CASH_ON_DELIVERY, currency="USD")
        )
        assert payment.currency == order.currency

    async def test_wallet_payment_returns_processing(
        self, service: PaymentService, gateway
    ) -> None:
        """E-wallet payments return PROCESSING with a wallet transaction."""
        order = await make_order(service)
        payment = await service.create_payment(
            make_payment_request(order, PaymentMethod.MOBILE_MONEY, wallet_phone="780000000")
        )

        transaction = await service.get_wallet_transaction(str(payment.id))
        assert payment.status == PaymentStatus.PROCESSING
        assert payment.payment_gateway == "mobile_money_gateway"
        assert transaction.display_id == "WTX-000001"
        assert transaction.transaction_reference.startswith("WLT-")
        assert transaction.amount == payment.amount

        await service.runner.drain()
        assert gateway.calls == 1

    async def test_wrong_wallet_phone_rejected(self, service: PaymentService) -> None:
        """A number outside the wallet's plan is rejected before anything is stored."""
        order = await make_order(service)
        with pytest.raises(InvalidWalletPhoneError) as exc_info:
            await service.create_payment(
                make_payment_request(order, PaymentMethod.JEEB, wallet_phone="730000000")
            )

        assert exc_info.value.field == "wallet_phone"
        assert "جيب" in exc_info.value.message_ar
        assert await service.list_order_payments(str(order.id)) == []

    async def test_missing_wallet_phone_rejected(self, service: PaymentService) -> None:
        """E-wallet payments need a phone number."""
        order = await make_order(service)
        with pytest.raises(InvalidWalletPhoneError):
            await service.create_payment(make_payment_request(order, PaymentMethod.FLOUSI))

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
    async def test_non_positive_amount_rejected(
        self, service: PaymentService, amount: Decimal
    ) -> None:
        """Amounts must be positive."""
        order = await make_order(service)
        with pytest.raises(ValidationError):
            await service.create_payment(
                make_payment_request(order, PaymentMethod.CASH_ON_DELIVERY, amount=amount)
            )

    async def test_unknown_order_rejected(self, service: PaymentService) -> None:
        """Payments need an existing order."""
        with pytest.raises(OrderNotFoundError):
            await service.create_payment(
                CreatePaymentDTO(
                    order_id="missing",
                    payment_method=PaymentMethod.CASH_ON_DELIVERY,
                    amount=Decimal("10"),
                )
            )

    async def test_dispatch_failure_leaves_payment_failed(
        self, service: PaymentService, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A handler crash surfaces as PaymentProcessingError with the payment FAILED."""
        order = await make_order(service)

        def broken_spawn(coro, name=None):
            coro.close()
            raise RuntimeError("runner unavailable")

        monkeypatch.setattr(service.runner, "spawn", broken_spawn)

        with pytest.raises(PaymentProcessingError):
            await service.create_payment(
                make_payment_request(order, PaymentMethod.JEEB, wallet_phone="770000000")
            )

        [payment] = await service.list_order_payments(str(order.id))
        transaction = await service.get_wallet_transaction(str(payment.id))
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_code == "processing_error"
        assert transaction.status == PaymentStatus.FAILED

    async def test_several_payments_per_order(self, service: PaymentService) -> None:
        """An order may collect more than one payment."""
        order = await make_order(service)
        for _ in range(2):
            await service.create_payment(
                make_payment_request(order, PaymentMethod.CASH_ON_DELIVERY)
            )
        assert len(await service.list_order_payments(str(order.id))) == 2


# ============================================================================
# Manual Transitions
# ============================================================================


class TestManualTransitions:
    """Tests for confirm, reject, refund and cancel."""

    async def test_confirm_marks_order_paid(self, service: PaymentService) -> None:
        """Confirming a payment completes it and confirms the pending order."""
        order = await make_order(service)
        payment = await service.create_payment(
            make_payment_request(order, PaymentMethod.CASH_ON_DELIVERY)
        )

        confirmed = await service.confirm_payment(str(payment.id), gateway_transaction_id="RCPT-1")
        stored_order = await service.order_service.get_order(str(order.id))

        assert confirmed.status == PaymentStatus.COMPLETED
        assert confirmed.gateway_transaction_id == "RCPT-1"
        assert stored_order.payment_status == OrderPaymentStatus.PAID
        assert stored_order.status == OrderStatus.CONFIRMED

    async def test_confirm_twice_rejected(self, service: PaymentService) -> None:
        """A completed payment cannot be confirmed again."""
        order = await make_order(service)
        payment = await service.create_payment(
            make_payment_request(order, PaymentMethod.CASH_ON_DELIVERY)
        )
        await service.confirm_payment(str(payment.id))
        with pytest.raises(InvalidStateTransitionError):
            await service.confirm_payment(str(payment.id))

    async def test_reject_marks_order_payment_failed(self, service: PaymentService) -> None:
        """Rejecting fails the payment and the order payment status."""
        order = await make_order(service)
        payment = await service.create_payment(
            make_payment_request(order, PaymentMethod.BANK_TRANSFER)
        )

        rejected = await service.reject_payment(str(payment.id), "Transfer not received")
        stored_order = await service.order_service.get_order(str(order.id))

        assert rejected.status == PaymentStatus.FAILED
        assert rejected.failure_reason == "Transfer not received"
        assert stored_order.payment_status == OrderPaymentStatus.FAILED
        assert stored_order.status == OrderStatus.PENDING

    async def test_reject_second_payment_keeps_order_paid(self, service: PaymentService) -> None:
        """A rejected extra payment does not unpay the order."""
        order = await make_order(service)
        first = await service.create_payment(
            make_payment_request(order, PaymentMethod.CASH_ON_DELIVERY)
        )
        second = await service.create_payment(
            make_payment_request(order, PaymentMethod.BANK_TRANSFER)
        )
        await service.confirm_payment(str(first.id))
        await service.reject_payment(str(second.id), "duplicate")

        stored_order = await service.order_service.get_order(str(order.id))
        assert stored_order.payment_status == OrderPaymentStatus.PAID

    async def test_refund_marks_order_refunded(self, service: PaymentService) -> None:
        """Refunds set the order payment status only."""
        order = await make_order(service)
        payment = await service.create_payment(
            make_payment_request(order, PaymentMethod.CASH_ON_DELIVERY)
        )
        await service.confirm_payment(str(payment.id))

        refunded = await service.refund_payment(str(payment.id), reason="returned goods")
        stored_order = await service.order_service.get_order(str(order.id))

        assert refunded.status == PaymentStatus.REFUNDED
        assert stored_order.payment_status == OrderPaymentStatus.REFUNDED
        assert stored_order.status == OrderStatus.CONFIRMED

    async def test_new_payment_on_refunded_order_rejected(self, service: PaymentService) -> None:
        """A refunded order takes no new payment; nothing is stored."""
        order = await make_order(service)
        payment = await service.create_payment(
            make_payment_request(order, PaymentMethod.CASH_ON_DELIVERY)
        )
        await service.confirm_payment(str(payment.id))
        await service.refund_payment(str(payment.id))

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await service.create_payment(make_payment_request(order, PaymentMethod.CASH_ON_DELIVERY))

        assert exc_info.value.current_state == "refunded"
        assert await service.payment_store.count() == 1

    async def test_confirm_after_refund_leaves_payment_pending(
        self, service: PaymentService
    ) -> None:
        """A payment opened before the refund cannot be confirmed afterwards."""
        order = await make_order(service)
        first = await service.create_payment(
            make_payment_request(order, PaymentMethod.CASH_ON_DELIVERY)
        )
        second = await service.create_payment(
            make_payment_request(order, PaymentMethod.BANK_TRANSFER)
        )
        await service.confirm_payment(str(first.id))
        await service.refund_payment(str(first.id))

        with pytest.raises(InvalidStateTransitionError):
            await service.confirm_payment(str(second.id))

        stored = await service.get_payment(str(second.id))
        stored_order = await service.order_service.get_order(str(order.id))
        assert stored.status == PaymentStatus.PENDING
        assert stored_order.payment_status == OrderPaymentStatus.REFUNDED

    async def test_refund_pending_rejected(self, service: PaymentService) -> None:
        """Only completed payments can be refunded."""
        order = await make_order(service)
        payment = await service.create_payment(
            make_payment_request(order, PaymentMethod.CASH_ON_DELIVERY)
        )
        with pytest.raises(InvalidStateTransitionError):
            await service.refund_payment(str(payment.id))

    async def test_cancel_leaves_order_alone(self, service: PaymentService) -> None:
        """Cancelling a payment does not touch the order."""
        order = await make_order(service)
        payment = await service.create_payment(
            make_payment_request(order, PaymentMethod.CASH_ON_DELIVERY)
        )

        cancelled = await service.cancel_payment(str(payment.id))
        stored_order = await service.order_service.get_order(str(order.id))

        assert cancelled.status == PaymentStatus.CANCELLED
        assert stored_order.payment_status == OrderPaymentStatus.PENDING
        assert stored_order.version == order.version

    async def test_missing_payment(self, service: PaymentService) -> None:
        """Unknown payment ids raise PaymentNotFoundError."""
        with pytest.raises(PaymentNotFoundError):
            await service.confirm_payment("missing")


# ============================================================================
# Queries
# ============================================================================


class TestPaymentQueries:
    """Tests for lookups and statistics."""

    async def test_lookups(self, service: PaymentService) -> None:
        """Payments are found by display id and transaction id."""
        order = await make_order(service)
        payment = await service.create_payment(
            make_payment_request(order, PaymentMethod.CASH_ON_DELIVERY)
        )
        assert (await service.get_payment_by_display_id(payment.display_id)).id == payment.id
        assert (await service.get_payment_by_transaction_id(payment.transaction_id)).id == payment.id
        with pytest.raises(PaymentNotFoundError):
            await service.get_payment_by_transaction_id("TXN-0-000000")

    async def test_list_by_status_and_method(self, service: PaymentService) -> None:
        """Listings filter by status and by method."""
        order = await make_order(service)
        cod = await service.create_payment(
            make_payment_request(order, PaymentMethod.CASH_ON_DELIVERY)
        )
        await service.create_payment(make_payment_request(order, PaymentMethod.BANK_TRANSFER))
        await service.confirm_payment(str(cod.id))

        completed, completed_total = await service.list_payments_by_status(PaymentStatus.COMPLETED)
        transfers, transfers_total = await service.list_payments_by_method(
            PaymentMethod.BANK_TRANSFER
        )

        assert completed_total == 1 and completed[0].id == cod.id
        assert transfers_total == 1

    async def test_statistics(self, service: PaymentService) -> None:
        """Statistics count payments and sum completed amounts."""
        order = await make_order(service)
        cod = await service.create_payment(
            make_payment_request(order, PaymentMethod.CASH_ON_DELIVERY)
        )
        transfer = await service.create_payment(
            make_payment_request(order, PaymentMethod.BANK_TRANSFER, amount=Decimal("10.00"))
        )
        await service.create_payment(make_payment_request(order, PaymentMethod.BANK_TRANSFER))
        await service.confirm_payment(str(cod.id))
        await service.reject_payment(str(transfer.id), "bounced")

        stats = await service.get_statistics()

        assert stats.total_payments == 3
        assert stats.completed_payments == 1
        assert stats.failed_payments == 1
        assert stats.pending_payments == 1
        assert stats.processing_payments == 0
        assert stats.total_completed_amount == Decimal("255.00")
        assert stats.today_completed_amount == Decimal("255.00")
        assert stats.payments_by_method == {"cash_on_delivery": 1, "bank_transfer": 2}
