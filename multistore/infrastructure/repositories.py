"""Aggregate stores.

Defines the store interfaces the application services depend on, and
the in-memory implementations used by default and in tests. Each store
persists one aggregate at a time and enforces optimistic concurrency:
``save`` is rejected when the stored version differs from the version
the caller loaded.
"""

import asyncio
import copy
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from multistore.domain.entities import Order, Payment, WalletTransaction
from multistore.domain.exceptions import (
    ConcurrencyError,
    DuplicateResourceError,
    OrderNotFoundError,
    PaymentNotFoundError,
    WalletTransactionNotFoundError,
)
from multistore.domain.state_machines import OrderStatus, PaymentStatus
from multistore.domain.value_objects import PaymentMethod
from multistore.infrastructure.config import settings


# ============================================================================
# Store Interfaces
# ============================================================================


class OrderStore(Protocol):
    """Persistence port for orders."""

    async def add(self, order: Order) -> None: ...

    async def save(self, order: Order, expected_version: int) -> None: ...

    async def get(self, order_id: str) -> Order | None: ...

    async def get_by_display_id(self, display_id: str) -> Order | None: ...

    async def get_by_order_number(self, order_number: str) -> Order | None: ...

    async def list_all(self, page: int = 1, page_size: int = 20) -> tuple[list[Order], int]: ...

    async def list_by_user(
        self, user_id: str, page: int = 1, page_size: int = 20
    ) -> tuple[list[Order], int]: ...

    async def list_by_status(
        self, status: OrderStatus, page: int = 1, page_size: int = 20
    ) -> tuple[list[Order], int]: ...

    async def next_sequence(self) -> int: ...


class PaymentStore(Protocol):
    """Persistence port for payments."""

    async def add(self, payment: Payment) -> None: ...

    async def save(self, payment: Payment, expected_version: int) -> None: ...

    async def get(self, payment_id: str) -> Payment | None: ...

    async def get_by_display_id(self, display_id: str) -> Payment | None: ...

    async def get_by_transaction_id(self, transaction_id: str) -> Payment | None: ...

    async def list_by_order(self, order_id: str) -> list[Payment]: ...

    async def list_by_status(
        self, status: PaymentStatus, page: int = 1, page_size: int = 20
    ) -> tuple[list[Payment], int]: ...

    async def list_by_method(
        self, method: PaymentMethod, page: int = 1, page_size: int = 20
    ) -> tuple[list[Payment], int]: ...

    async def count(self) -> int: ...

    async def count_by_status(self, status: PaymentStatus) -> int: ...

    async def sum_by_status(
        self, status: PaymentStatus, since: datetime | None = None
    ) -> Decimal: ...

    async def count_by_method(self) -> dict[PaymentMethod, int]: ...

    async def next_sequence(self) -> int: ...


class WalletTransactionStore(Protocol):
    """Persistence port for wallet transactions."""

    async def add(self, transaction: WalletTransaction) -> None: ...

    async def save(self, transaction: WalletTransaction, expected_version: int) -> None: ...

    async def get(self, transaction_id: str) -> WalletTransaction | None: ...

    async def get_by_payment_id(self, payment_id: str) -> WalletTransaction | None: ...

    async def get_by_reference(self, reference: str) -> WalletTransaction | None: ...

    async def list_by_status(self, statuses: set[PaymentStatus]) -> list[WalletTransaction]: ...

    async def next_sequence(self) -> int: ...


def _paginate(items: list, page: int, page_size: int) -> tuple[list, int]:
    items.sort(key=lambda a: a.created_at, reverse=True)
    total = len(items)
    start = (page - 1) * page_size
    return items[start:start + page_size], total


def _snapshot(aggregate):
    """Copy an aggregate so callers never share state with the store."""
    snapshot = copy.deepcopy(aggregate)
    snapshot.collect_events()
    return snapshot


# ============================================================================
# In-Memory Order Store
# ============================================================================


class InMemoryOrderStore:
    """In-memory store for orders.

    Keeps deep copies, so an aggregate mutated but never saved does
    not leak into the store.
    """

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._by_display_id: dict[str, str] = {}
        self._by_order_number: dict[str, str] = {}
        self._sequence = 0
        self._lock = asyncio.Lock()

    async def add(self, order: Order) -> None:
        """Insert a new order.

        Raises:
            DuplicateResourceError: If id, display id or order number is taken.
        """
        async with self._lock:
            order_id = str(order.id)
            if order_id in self._orders:
                raise DuplicateResourceError("Order", "id", order_id)
            if order.order_number in self._by_order_number:
                raise DuplicateResourceError("Order", "order_number", order.order_number)
            if order.display_id in self._by_display_id:
                raise DuplicateResourceError("Order", "display_id", order.display_id)
            self._orders[order_id] = _snapshot(order)
            self._by_display_id[order.display_id] = order_id
            self._by_order_number[order.order_number] = order_id

    async def save(self, order: Order, expected_version: int) -> None:
        """Update an existing order.

        Raises:
            OrderNotFoundError: If the order was never added.
            ConcurrencyError: If the stored version is not expected_version.
        """
        async with self._lock:
            order_id = str(order.id)
            stored = self._orders.get(order_id)
            if stored is None:
                raise OrderNotFoundError(order_id)
            if stored.version != expected_version:
                raise ConcurrencyError("Order", order_id, expected_version, stored.version)
            self._orders[order_id] = _snapshot(order)

    async def get(self, order_id: str) -> Order | None:
        order = self._orders.get(order_id)
        return _snapshot(order) if order else None

    async def get_by_display_id(self, display_id: str) -> Order | None:
        order_id = self._by_display_id.get(display_id)
        return await self.get(order_id) if order_id else None

    async def get_by_order_number(self, order_number: str) -> Order | None:
        order_id = self._by_order_number.get(order_number)
        return await self.get(order_id) if order_id else None

    async def list_all(self, page: int = 1, page_size: int = 20) -> tuple[list[Order], int]:
        orders, total = _paginate(list(self._orders.values()), page, page_size)
        return [_snapshot(o) for o in orders], total

    async def list_by_user(
        self, user_id: str, page: int = 1, page_size: int = 20
    ) -> tuple[list[Order], int]:
        matching = [o for o in self._orders.values() if o.user_id == user_id]
        orders, total = _paginate(matching, page, page_size)
        return [_snapshot(o) for o in orders], total

    async def list_by_status(
        self, status: OrderStatus, page: int = 1, page_size: int = 20
    ) -> tuple[list[Order], int]:
        matching = [o for o in self._orders.values() if o.status == status]
        orders, total = _paginate(matching, page, page_size)
        return [_snapshot(o) for o in orders], total

    async def next_sequence(self) -> int:
        async with self._lock:
            self._sequence += 1
            return self._sequence


# ============================================================================
# In-Memory Payment Store
# ============================================================================


class InMemoryPaymentStore:
    """In-memory store for payments."""

    def __init__(self) -> None:
        self._payments: dict[str, Payment] = {}
        self._by_display_id: dict[str, str] = {}
        self._by_transaction_id: dict[str, str] = {}
        self._sequence = 0
        self._lock = asyncio.Lock()

    async def add(self, payment: Payment) -> None:
        """Insert a new payment.

        Raises:
            DuplicateResourceError: If id, display id or transaction id is taken.
        """
        async with self._lock:
            payment_id = str(payment.id)
            if payment_id in self._payments:
                raise DuplicateResourceError("Payment", "id", payment_id)
            if payment.transaction_id in self._by_transaction_id:
                raise DuplicateResourceError("Payment", "transaction_id", payment.transaction_id)
            if payment.display_id in self._by_display_id:
                raise DuplicateResourceError("Payment", "display_id", payment.display_id)
            self._payments[payment_id] = _snapshot(payment)
            self._by_display_id[payment.display_id] = payment_id
            self._by_transaction_id[payment.transaction_id] = payment_id

    async def save(self, payment: Payment, expected_version: int) -> None:
        """Update an existing payment.

        Raises:
            PaymentNotFoundError: If the payment was never added.
            ConcurrencyError: If the stored version is not expected_version.
        """
        async with self._lock:
            payment_id = str(payment.id)
            stored = self._payments.get(payment_id)
            if stored is None:
                raise PaymentNotFoundError(payment_id)
            if stored.version != expected_version:
                raise ConcurrencyError("Payment", payment_id, expected_version, stored.version)
            self._payments[payment_id] = _snapshot(payment)

    async def get(self, payment_id: str) -> Payment | None:
        payment = self._payments.get(payment_id)
        return _snapshot(payment) if payment else None

    async def get_by_display_id(self, display_id: str) -> Payment | None:
        payment_id = self._by_display_id.get(display_id)
        return await self.get(payment_id) if payment_id else None

    async def get_by_transaction_id(self, transaction_id: str) -> Payment | None:
        payment_id = self._by_transaction_id.get(transaction_id)
        return await self.get(payment_id) if payment_id else None

    async def list_by_order(self, order_id: str) -> list[Payment]:
        matching = [p for p in self._payments.values() if p.order_id == order_id]
        matching.sort(key=lambda p: p.created_at, reverse=True)
        return [_snapshot(p) for p in matching]

    async def list_by_status(
        self, status: PaymentStatus, page: int = 1, page_size: int = 20
    ) -> tuple[list[Payment], int]:
        matching = [p for p in self._payments.values() if p.status == status]
        payments, total = _paginate(matching, page, page_size)
        return [_snapshot(p) for p in payments], total

    async def list_by_method(
        self, method: PaymentMethod, page: int = 1, page_size: int = 20
    ) -> tuple[list[Payment], int]:
        matching = [p for p in self._payments.values() if p.payment_method == method]
        payments, total = _paginate(matching, page, page_size)
        return [_snapshot(p) for p in payments], total

    async def count(self) -> int:
        return len(self._payments)

    async def count_by_status(self, status: PaymentStatus) -> int:
        return sum(1 for p in self._payments.values() if p.status == status)

    async def sum_by_status(
        self, status: PaymentStatus, since: datetime | None = None
    ) -> Decimal:
        return sum(
            (
                p.amount
                for p in self._payments.values()
                if p.status == status and (since is None or p.created_at >= since)
            ),
            start=Decimal("0.00"),
        )

    async def count_by_method(self) -> dict[PaymentMethod, int]:
        counts: dict[PaymentMethod, int] = {}
        for payment in self._payments.values():
            counts[payment.payment_method] = counts.get(payment.payment_method, 0) + 1
        return counts

    async def next_sequence(self) -> int:
        async with self._lock:
            self._sequence += 1
            return self._sequence


# ============================================================================
# In-Memory Wallet Transaction Store
# ============================================================================


class InMemoryWalletTransactionStore:
    """In-memory store for wallet transactions."""

    def __init__(self) -> None:
        self._transactions: dict[str, WalletTransaction] = {}
        self._by_payment_id: dict[str, str] = {}
        self._by_reference: dict[str, str] = {}
        self._sequence = 0
        self._lock = asyncio.Lock()

    async def add(self, transaction: WalletTransaction) -> None:
        """Insert a new wallet transaction.

        Raises:
            DuplicateResourceError: If id, payment or reference is taken.
        """
        async with self._lock:
            transaction_id = str(transaction.id)
            if transaction_id in self._transactions:
                raise DuplicateResourceError("WalletTransaction", "id", transaction_id)
            if transaction.payment_id in self._by_payment_id:
                raise DuplicateResourceError(
                    "WalletTransaction", "payment_id", transaction.payment_id
                )
            if transaction.transaction_reference in self._by_reference:
                raise DuplicateResourceError(
                    "WalletTransaction", "transaction_reference", transaction.transaction_reference
                )
            self._transactions[transaction_id] = _snapshot(transaction)
            self._by_payment_id[transaction.payment_id] = transaction_id
            self._by_reference[transaction.transaction_reference] = transaction_id

    async def save(self, transaction: WalletTransaction, expected_version: int) -> None:
        """Update an existing wallet transaction.

        Raises:
            WalletTransactionNotFoundError: If it was never added.
            ConcurrencyError: If the stored version is not expected_version.
        """
        async with self._lock:
            transaction_id = str(transaction.id)
            stored = self._transactions.get(transaction_id)
            if stored is None:
                raise WalletTransactionNotFoundError(transaction_id)
            if stored.version != expected_version:
                raise ConcurrencyError(
                    "WalletTransaction", transaction_id, expected_version, stored.version
                )
            self._transactions[transaction_id] = _snapshot(transaction)

    async def get(self, transaction_id: str) -> WalletTransaction | None:
        transaction = self._transactions.get(transaction_id)
        return _snapshot(transaction) if transaction else None

    async def get_by_payment_id(self, payment_id: str) -> WalletTransaction | None:
        transaction_id = self._by_payment_id.get(payment_id)
        return await self.get(transaction_id) if transaction_id else None

    async def get_by_reference(self, reference: str) -> WalletTransaction | None:
        transaction_id = self._by_reference.get(reference)
        return await self.get(transaction_id) if transaction_id else None

    async def list_by_status(self, statuses: set[PaymentStatus]) -> list[WalletTransaction]:
        matching = [t for t in self._transactions.values() if t.status in statuses]
        matching.sort(key=lambda t: t.created_at)
        return [_snapshot(t) for t in matching]

    async def next_sequence(self) -> int:
        async with self._lock:
            self._sequence += 1
            return self._sequence


# ============================================================================
# Store Singletons
# ============================================================================


_order_store: OrderStore | None = None
_payment_store: PaymentStore | None = None
_wallet_store: WalletTransactionStore | None = None


def _use_sql() -> bool:
    return settings.storage_backend == "sqlalchemy"


def get_order_store() -> OrderStore:
    """Get order store singleton."""
    global _order_store
    if _order_store is None:
        if _use_sql():
            from multistore.infrastructure.sql_repositories import SqlOrderStore

            _order_store = SqlOrderStore()
        else:
            _order_store = InMemoryOrderStore()
    return _order_store


def get_payment_store() -> PaymentStore:
    """Get payment store singleton."""
    global _payment_store
    if _payment_store is None:
        if _use_sql():
            from multistore.infrastructure.sql_repositories import SqlPaymentStore

            _payment_store = SqlPaymentStore()
        else:
            _payment_store = InMemoryPaymentStore()
    return _payment_store


def get_wallet_transaction_store() -> WalletTransactionStore:
    """Get wallet transaction store singleton."""
    global _wallet_store
    if _wallet_store is None:
        if _use_sql():
            from multistore.infrastructure.sql_repositories import SqlWalletTransactionStore

            _wallet_store = SqlWalletTransactionStore()
        else:
            _wallet_store = InMemoryWalletTransactionStore()
    return _wallet_store


def reset_stores() -> None:
    """Reset all stores (for testing)."""
    global _order_store, _payment_store, _wallet_store
    _order_store = None
    _payment_store = None
    _wallet_store = None
