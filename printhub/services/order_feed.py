"""
In-process live query feed for orders.

A subscription is a single-predicate query over the orders table. The first
snapshot is pushed as soon as the subscription is registered; after that every
``publish()`` (called by the order services once their transaction committed)
re-runs the live queries and pushes fresh snapshots. Nothing polls. A
subscriber must call the returned unsubscribe function on teardown, otherwise
it keeps receiving snapshots.
"""
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import PersistenceError
from ..models.models import Order
from ..schemas.orders import OrderSummary

logger = structlog.get_logger(__name__)

Snapshot = List[OrderSummary]
SnapshotListener = Callable[[Snapshot], None]
ErrorListener = Callable[[Exception], None]

_FIELDS = {
    "status": Order.status,
    "created_by": Order.created_by,
    "is_quotation": Order.is_quotation,
}


@dataclass(frozen=True)
class OrderQuery:
    """One field predicate (``field in values``), an optional status equality, newest first."""
    field: Optional[str] = None
    values: Tuple[Any, ...] = ()
    status: Optional[str] = None

    def statement(self):
        stmt = select(Order)
        if self.field is not None:
            column = _FIELDS[self.field]
            if len(self.values) == 1:
                stmt = stmt.where(column == self.values[0])
            else:
                stmt = stmt.where(column.in_(self.values))
        if self.status is not None:
            stmt = stmt.where(Order.status == self.status)
        return stmt.order_by(Order.created_at.desc())

    def matches(self, order: Order) -> bool:
        if self.field is not None and getattr(order, self.field) not in self.values:
            return False
        return self.status is None or order.status == self.status

    def fetch(self, db: Session) -> Snapshot:
        rows = db.execute(self.statement()).scalars().all()
        return [OrderSummary.model_validate(row) for row in rows]


@dataclass
class _Subscription:
    id: int
    query: OrderQuery
    on_snapshot: SnapshotListener
    on_error: Optional[ErrorListener]


class OrderFeed:
    def __init__(self, session_factory: Optional[Callable[[], Session]] = None) -> None:
        self._session_factory = session_factory
        self._subscriptions: Dict[int, _Subscription] = {}
        self._lock = threading.Lock()
        self._next_id = 1

    def bind(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def _open_session(self) -> Session:
        if self._session_factory is None:
            from ..db import SessionLocal
            self._session_factory = SessionLocal
        return self._session_factory()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def subscribe(
        self,
        query: OrderQuery,
        on_snapshot: SnapshotListener,
        on_error: Optional[ErrorListener] = None,
    ) -> Callable[[], None]:
        with self._lock:
            sub = _Subscription(self._next_id, query, on_snapshot, on_error)
            self._subscriptions[sub.id] = sub
            self._next_id += 1

        def unsubscribe() -> None:
            with self._lock:
                self._subscriptions.pop(sub.id, None)

        self._deliver(sub)
        return unsubscribe

    def publish(self) -> None:
        with self._lock:
            targets = list(self._subscriptions.values())
        if not targets:
            return
        for sub in targets:
            self._deliver(sub)

    def clear(self) -> None:
        with self._lock:
            self._subscriptions.clear()

    def _deliver(self, sub: _Subscription) -> None:
        db = self._open_session()
        try:
            snapshot = sub.query.fetch(db)
        except SQLAlchemyError as exc:
            logger.warning("order_feed_query_failed", query=str(sub.query), error=str(exc))
            if sub.on_error is not None:
                sub.on_error(PersistenceError(operation="live_query", detail=str(exc)))
            return
        finally:
            db.close()

        # A listener may have unsubscribed while the query ran
        with self._lock:
            if sub.id not in self._subscriptions:
                return
        try:
            sub.on_snapshot(snapshot)
        except Exception:
            logger.exception("order_feed_listener_failed", subscription=sub.id)


# Global singleton feed
feed = OrderFeed()
