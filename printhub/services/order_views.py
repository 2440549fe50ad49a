"""
Read-side authorisation filter over orders.

Which orders a viewer may see depends on role and department:

- CEO and department heads see everything
- sales staff see the orders they created
- accounting staff see payment-stage orders plus quotation orders
- other department staff see orders whose status is in their department's subset

The accounting view is the union of two live queries on different fields.
The live feed only supports one field predicate per subscription, so the two
result sets are merged here: de-duplicated by order id and re-sorted newest
first. Nothing is emitted until both queries delivered their first snapshot.
"""
import threading
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ..models.enums import Department, OrderStatus, UserRole
from .order_feed import ErrorListener, OrderFeed, OrderQuery, Snapshot, SnapshotListener

logger = structlog.get_logger(__name__)

ACCOUNTING_STATUSES: Tuple[str, ...] = (
    OrderStatus.pending_payment.value,
    OrderStatus.payment_confirmed.value,
)

VIEW_STATUSES: Dict[str, Tuple[str, ...]] = {
    Department.design.value: (
        OrderStatus.pending_design.value,
        OrderStatus.in_design.value,
        OrderStatus.design_review.value,
        OrderStatus.design_completed.value,
    ),
    Department.printing.value: (
        OrderStatus.pending_printing.value,
        OrderStatus.in_printing.value,
        OrderStatus.printing_completed.value,
    ),
    Department.accounting.value: ACCOUNTING_STATUSES,
    Department.dispatch.value: (
        OrderStatus.pending_materials.value,
        OrderStatus.materials_in_progress.value,
        OrderStatus.materials_ready.value,
        OrderStatus.ready_for_dispatch.value,
        OrderStatus.in_dispatch.value,
        OrderStatus.delivered.value,
    ),
}


def _value(v: Any) -> Any:
    return getattr(v, "value", v)


def sees_all_orders(viewer) -> bool:
    return _value(viewer.role) == UserRole.ceo.value or bool(viewer.is_head)


def queries_for_viewer(viewer, status: Optional[str] = None) -> List[OrderQuery]:
    status = _value(status)
    if sees_all_orders(viewer):
        return [OrderQuery(status=status)]

    department = _value(viewer.department)
    if department == Department.accounting.value:
        return [
            OrderQuery("status", ACCOUNTING_STATUSES, status),
            OrderQuery("is_quotation", (True,), status),
        ]
    if department == Department.sales.value:
        return [OrderQuery("created_by", (viewer.id,), status)]

    statuses = VIEW_STATUSES.get(department)
    if statuses:
        return [OrderQuery("status", statuses, status)]
    return [OrderQuery(status=status)]


def can_view_order(viewer, order) -> bool:
    """Same rule as the viewer's list: the order must match one of the viewer's queries."""
    return any(query.matches(order) for query in queries_for_viewer(viewer))


def merge_snapshots(snapshots: Iterable[Snapshot]) -> Snapshot:
    unique: Dict[Any, Any] = {}
    for snapshot in snapshots:
        for order in snapshot:
            unique[order.id] = order
    return sorted(unique.values(), key=lambda o: o.created_at.timestamp() if o.created_at else 0.0, reverse=True)


def list_orders_for_viewer(db: Session, viewer, status: Optional[str] = None) -> Snapshot:
    return merge_snapshots(query.fetch(db) for query in queries_for_viewer(viewer, status))


class MergedOrderWatch:
    """Live union of several order queries, gated on every part having loaded once."""

    def __init__(
        self,
        feed: OrderFeed,
        queries: List[OrderQuery],
        on_snapshot: SnapshotListener,
        on_error: Optional[ErrorListener] = None,
    ) -> None:
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._parts: List[Optional[Snapshot]] = [None] * len(queries)
        self._lock = threading.Lock()
        self._unsubscribers: List[Callable[[], None]] = []
        self._closed = False
        for index, query in enumerate(queries):
            self._unsubscribers.append(
                feed.subscribe(query, partial(self._on_part, index), partial(self._on_part_error, index))
            )

    @property
    def ready(self) -> bool:
        with self._lock:
            return all(part is not None for part in self._parts)

    def _on_part(self, index: int, snapshot: Snapshot) -> None:
        with self._lock:
            if self._closed:
                return
            self._parts[index] = snapshot
            if any(part is None for part in self._parts):
                return
            merged = merge_snapshots(self._parts)
        self._on_snapshot(merged)

    def _on_part_error(self, index: int, error: Exception) -> None:
        # A failed part counts as loaded with no rows so the other part still shows up
        logger.warning("order_watch_part_failed", part=index, error=str(error))
        if self._on_error is not None:
            self._on_error(error)
        self._on_part(index, [])

    def close(self) -> None:
        with self._lock:
            self._closed = True
            unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()


def watch_orders(
    feed: OrderFeed,
    viewer,
    on_snapshot: SnapshotListener,
    status: Optional[str] = None,
    on_error: Optional[ErrorListener] = None,
) -> MergedOrderWatch:
    return MergedOrderWatch(feed, queries_for_viewer(viewer, status), on_snapshot, on_error)
