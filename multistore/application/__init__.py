"""Application layer module.

Contains application services (use cases) that orchestrate
domain logic and infrastructure.
"""

from multistore.application.order_service import (
    OrderService,
    get_order_service,
)
from multistore.application.payment_service import (
    PaymentService,
    get_payment_service,
)
from multistore.application.wallet_service import (
    WalletPaymentService,
    get_wallet_payment_service,
)

__all__ = [
    "OrderService",
    "get_order_service",
    "PaymentService",
    "get_payment_service",
    "WalletPaymentService",
    "get_wallet_payment_service",
]
