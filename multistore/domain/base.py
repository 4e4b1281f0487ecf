"""Domain building blocks shared by orders, payments and wallet transactions.

Aggregates carry a version that every state change bumps; stores
compare it on save to reject lost updates.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Generic, TypeVar
from uuid import UUID, uuid4


def utcnow() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ValueObject(ABC):
    """Immutable value compared by its fields (ids, money, addresses)."""


IdT = TypeVar("IdT")


@dataclass
class Entity(ABC, Generic[IdT]):
    """Object with identity; equality and hashing use ``id`` only."""

    id: IdT

    def __eq__(self, other: object) -> bool:
        return isinstance(other, self.__class__) and self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)


# ============================================================================
# Aggregates
# ============================================================================


@dataclass(kw_only=True)
class AggregateRoot(Entity[IdT], Generic[IdT]):
    """Consistency boundary for one order, payment or wallet transaction.

    Attributes:
        version: Starts at 1 and grows by one per recorded change.
        created_at: Creation time (UTC).
        updated_at: Time of the last change (UTC).
    """

    version: int = field(default=1, compare=False)
    created_at: datetime = field(default_factory=utcnow, compare=False)
    updated_at: datetime = field(default_factory=utcnow, compare=False)
    _events: list["DomainEvent"] = field(
        default_factory=list, init=False, repr=False, compare=False
    )

    def _record_event(self, event: "DomainEvent") -> None:
        self._events.append(event)

    def collect_events(self) -> list["DomainEvent"]:
        """Hand over the events recorded since the last call.

        Services log them once the aggregate has been saved; stores call
        this on their copies so loaded aggregates start with none.
        """
        events, self._events = self._events, []
        return events

    def _touch(self) -> None:
        self.updated_at = utcnow()
        self.version += 1


# ============================================================================
# Events
# ============================================================================


@dataclass(frozen=True)
class DomainEvent(ABC):
    """Something that happened to an aggregate.

    Subclasses set ``event_type`` (e.g. "order.shipped") and return their
    own fields from ``_payload``.
    """

    event_type: ClassVar[str]

    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=utcnow)
    aggregate_id: str = ""
    aggregate_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type,
            "aggregate_type": self.aggregate_type,
            "aggregate_id": self.aggregate_id,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": self._payload(),
        }

    @abstractmethod
    def _payload(self) -> dict[str, Any]: ...
