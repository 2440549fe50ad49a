from datetime import timedelta

import pytest

from printhub.errors import PersistenceError
from printhub.models.enums import Department, OrderStatus, UserRole
from printhub.models.models import utcnow
from printhub.services import order_views, order_workflow
from printhub.services.order_feed import OrderFeed, OrderQuery
from printhub.services.order_views import MergedOrderWatch, merge_snapshots, queries_for_viewer


@pytest.fixture()
def accounting_orders(make_order, sales):
    base = utcnow()
    return {
        "payment": make_order(sales, OrderStatus.pending_payment, created_at=base - timedelta(hours=3)),
        "quotation": make_order(sales, OrderStatus.pending_ceo_review, is_quotation=True, created_at=base - timedelta(hours=2)),
        "both": make_order(sales, OrderStatus.payment_confirmed, is_quotation=True, created_at=base - timedelta(hours=1)),
        "other": make_order(sales, OrderStatus.in_printing, created_at=base),
    }


class TestQueriesForViewer:
    def test_ceo_and_heads_see_everything(self, ceo, make_user):
        head = make_user(UserRole.printing_head, Department.printing, "Head", is_head=True)
        assert queries_for_viewer(ceo) == [OrderQuery()]
        assert queries_for_viewer(head) == [OrderQuery()]

    def test_sales_sees_own(self, sales):
        assert queries_for_viewer(sales) == [OrderQuery("created_by", (sales.id,))]

    def test_accounting_has_two_queries(self, accountant):
        queries = queries_for_viewer(accountant)
        assert [q.field for q in queries] == ["status", "is_quotation"]

    def test_department_subset(self, designer):
        (query,) = queries_for_viewer(designer)
        assert query.values == order_views.VIEW_STATUSES["design"]

    def test_status_filter_applies_to_every_query(self, accountant):
        assert all(q.status == "pending_payment" for q in queries_for_viewer(accountant, OrderStatus.pending_payment))

    def test_management_without_subset_sees_all(self, make_user):
        manager = make_user(UserRole.sales, Department.management, "Office manager")
        assert queries_for_viewer(manager) == [OrderQuery()]


class TestCanViewOrder:
    def test_sales_sees_only_own_orders(self, make_order, make_user, sales):
        colleague = make_user(UserRole.sales, Department.sales, "Other Sales")
        own = make_order(sales)
        theirs = make_order(colleague)
        assert order_views.can_view_order(sales, own) is True
        assert order_views.can_view_order(sales, theirs) is False

    def test_accounting_matches_either_query(self, accounting_orders, accountant):
        visible = {name for name, order in accounting_orders.items() if order_views.can_view_order(accountant, order)}
        assert visible == {"payment", "quotation", "both"}

    def test_department_subset_and_ceo(self, make_order, sales, designer, ceo):
        design = make_order(sales, OrderStatus.in_design)
        printing = make_order(sales, OrderStatus.in_printing)
        assert order_views.can_view_order(designer, design) is True
        assert order_views.can_view_order(designer, printing) is False
        assert order_views.can_view_order(ceo, printing) is True


def test_merge_dedupes_and_sorts(db, accounting_orders, accountant):
    snapshots = [q.fetch(db) for q in queries_for_viewer(accountant)]
    merged = merge_snapshots(snapshots)
    ids = [o.id for o in merged]
    assert ids == [accounting_orders[k].id for k in ("both", "quotation", "payment")]
    assert len(ids) == len(set(ids))


def test_list_orders_for_viewer(db, accounting_orders, sales, designer, make_order, make_user):
    other_sales = make_user(UserRole.sales, Department.sales, "Other seller")
    make_order(other_sales, OrderStatus.draft)
    assert len(order_views.list_orders_for_viewer(db, sales)) == 4
    assert order_views.list_orders_for_viewer(db, designer) == []
    printer_view = order_views.list_orders_for_viewer(db, make_user(UserRole.printing, Department.printing, "P"))
    assert [o.id for o in printer_view] == [accounting_orders["other"].id]


class TestLiveFeed:
    def test_initial_snapshot_then_updates(self, db, bound_feed, make_order, sales, ceo):
        received = []
        unsubscribe = bound_feed.subscribe(OrderQuery("created_by", (sales.id,)), received.append)
        assert received == [[]]

        order = make_order(sales, OrderStatus.pending_ceo_review)
        bound_feed.publish()
        assert [o.id for o in received[-1]] == [order.id]

        unsubscribe()
        unsubscribe()
        bound_feed.publish()
        assert len(received) == 2

    def test_service_writes_publish(self, db, bound_feed, make_order, sales, ceo):
        order = make_order(sales, OrderStatus.pending_ceo_review, needs_design=True)
        received = []
        bound_feed.subscribe(OrderQuery("status", (OrderStatus.pending_design.value,)), received.append)
        order_workflow.approve_order(db, order.id, ceo)
        assert [o.id for o in received[-1]] == [order.id]

    def test_query_failure_goes_to_error_listener(self, session_factory):
        errors = []
        feed = OrderFeed(session_factory)

        class Boom(OrderQuery):
            def fetch(self, db):
                from sqlalchemy.exc import OperationalError
                raise OperationalError("SELECT", {}, Exception("no such table"))

        feed.subscribe(Boom(), lambda snapshot: None, errors.append)
        assert len(errors) == 1
        assert isinstance(errors[0], PersistenceError)


class TestMergedWatch:
    def test_waits_for_both_parts(self, db, accounting_orders, accountant, session_factory):
        feed = OrderFeed(session_factory)
        queries = queries_for_viewer(accountant)
        emitted = []

        # Hold back the second query's first snapshot
        real_subscribe = feed.subscribe
        held = {}

        def subscribe(query, on_snapshot, on_error=None):
            if query.field == "is_quotation":
                held["deliver"] = lambda: on_snapshot(query.fetch(db))
                return lambda: None
            return real_subscribe(query, on_snapshot, on_error)

        feed.subscribe = subscribe
        watch = MergedOrderWatch(feed, queries, emitted.append)
        assert emitted == []
        assert watch.ready is False

        held["deliver"]()
        assert watch.ready is True
        assert [o.id for o in emitted[-1]] == [accounting_orders[k].id for k in ("both", "quotation", "payment")]
        watch.close()

    def test_failed_part_counts_as_empty(self, accounting_orders, accountant, session_factory):
        feed = OrderFeed(session_factory)
        emitted, errors = [], []
        real_subscribe = feed.subscribe

        def subscribe(query, on_snapshot, on_error=None):
            if query.field == "is_quotation":
                on_error(PersistenceError(operation="live_query", detail="denied"))
                return lambda: None
            return real_subscribe(query, on_snapshot, on_error)

        feed.subscribe = subscribe
        MergedOrderWatch(feed, queries_for_viewer(accountant), emitted.append, errors.append)
        assert len(errors) == 1
        assert [o.id for o in emitted[-1]] == [accounting_orders[k].id for k in ("both", "payment")]

    def test_close_stops_updates(self, db, accounting_orders, accountant, make_order, sales, session_factory):
        feed = OrderFeed(session_factory)
        emitted = []
        watch = order_views.watch_orders(feed, accountant, emitted.append)
        count = len(emitted)
        watch.close()
        make_order(sales, OrderStatus.pending_payment)
        feed.publish()
        assert len(emitted) == count
        assert feed.subscriber_count == 0
