import uuid

import pytest

from printhub.errors import DepartmentGateError, InvalidTransitionError, NotFoundError, ValidationError
from printhub.models.enums import Department, NotificationType, OrderStatus, StockStatus, UserRole
from printhub.models.models import Notification, OrderTimelineEntry
from printhub.schemas.inventory import MaterialLine
from printhub.schemas.orders import OrderCreate
from printhub.services import inventory_ledger, order_workflow, orders
from printhub.services.order_workflow import STATUS_DEPARTMENT, TERMINAL_STATUSES, TRANSITIONS

S = OrderStatus


def _timeline(db, order):
    return (
        db.query(OrderTimelineEntry)
        .filter(OrderTimelineEntry.order_id == order.id)
        .order_by(OrderTimelineEntry.id)
        .all()
    )


def _forward_pairs():
    pairs = []
    for current, targets in TRANSITIONS.items():
        for target in targets:
            if target not in order_workflow.ESCAPE_STATUSES:
                pairs.append((current, target))
    return pairs


def test_terminal_statuses_have_no_exits():
    for status in TERMINAL_STATUSES:
        assert TRANSITIONS[status] == frozenset()


def test_every_non_terminal_status_can_cancel_or_hold():
    for status, targets in TRANSITIONS.items():
        if status in TERMINAL_STATUSES or status == S.on_hold.value:
            continue
        assert {S.cancelled.value, S.on_hold.value} <= targets


def test_every_status_has_an_owner_except_hold():
    for status in S:
        if status == S.on_hold:
            continue
        assert status.value in STATUS_DEPARTMENT


@pytest.mark.parametrize("current,target", _forward_pairs())
def test_valid_transition_appends_one_entry(db, make_order, make_user, current, target):
    owner = STATUS_DEPARTMENT[current]
    creator = make_user(UserRole.sales, Department.sales, "Creator")
    actor = make_user(UserRole.design, Department(owner), "Owner of status")
    order = make_order(creator, S(current))
    before = len(_timeline(db, order))

    updated = order_workflow.transition_order(db, order.id, target, actor)

    assert updated.status == target
    entries = _timeline(db, order)
    assert len(entries) == before + 1
    assert entries[-1].user_id == actor.id
    assert entries[-1].status == target


@pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES))
def test_terminal_statuses_are_absorbing(db, make_order, ceo, sales, terminal):
    order = make_order(sales, S(terminal))
    with pytest.raises(InvalidTransitionError):
        order_workflow.transition_order(db, order.id, S.pending_ceo_review, ceo)
    with pytest.raises(InvalidTransitionError):
        order_workflow.transition_order(db, order.id, S.cancelled, ceo)


def test_skipping_a_step_is_rejected(db, make_order, sales, ceo):
    order = make_order(sales, S.pending_design)
    with pytest.raises(InvalidTransitionError) as exc_info:
        order_workflow.transition_order(db, order.id, S.delivered, ceo)
    assert exc_info.value.context == {"current": "pending_design", "target": "delivered"}
    db.refresh(order)
    assert order.status == S.pending_design.value
    assert _timeline(db, order) == []


def test_other_department_is_gated(db, make_order, sales, printer):
    order = make_order(sales, S.pending_design)
    with pytest.raises(DepartmentGateError):
        order_workflow.transition_order(db, order.id, S.in_design, printer)
    db.refresh(order)
    assert order.status == S.pending_design.value


def test_ceo_may_move_any_order(db, make_order, sales, ceo):
    order = make_order(sales, S.in_printing)
    assert order_workflow.transition_order(db, order.id, S.printing_completed, ceo).status == S.printing_completed.value


def test_anyone_may_cancel(db, make_order, sales, printer):
    order = make_order(sales, S.pending_design)
    assert order_workflow.transition_order(db, order.id, S.cancelled, printer).status == S.cancelled.value


def test_unknown_order(db, ceo):
    with pytest.raises(NotFoundError):
        order_workflow.transition_order(db, uuid.uuid4(), S.cancelled, ceo)


class TestHold:
    def test_hold_and_resume(self, db, make_order, sales, printer):
        order = make_order(sales, S.in_printing)
        held = order_workflow.transition_order(db, order.id, S.on_hold, sales, notes="Customer asked to wait")
        assert held.status == S.on_hold.value
        assert held.held_from_status == S.in_printing.value

        resumed = order_workflow.transition_order(db, order.id, S.in_printing, printer)
        assert resumed.status == S.in_printing.value
        assert resumed.held_from_status is None
        assert [e.action for e in _timeline(db, order)][-1] == "Order resumed"

    def test_resume_only_to_held_status(self, db, make_order, sales, printer):
        order = make_order(sales, S.in_printing)
        order_workflow.transition_order(db, order.id, S.on_hold, sales)
        with pytest.raises(InvalidTransitionError):
            order_workflow.transition_order(db, order.id, S.printing_completed, printer)

    def test_resume_is_gated_by_held_status_owner(self, db, make_order, sales, designer):
        order = make_order(sales, S.in_printing)
        order_workflow.transition_order(db, order.id, S.on_hold, sales)
        with pytest.raises(DepartmentGateError):
            order_workflow.transition_order(db, order.id, S.in_printing, designer)


class TestCeoReview:
    def test_approve_routes_by_design_need(self, db, make_order, sales, ceo):
        with_design = make_order(sales, S.pending_ceo_review, needs_design=True)
        without_design = make_order(sales, S.pending_ceo_review, needs_design=False)
        assert order_workflow.approve_order(db, with_design.id, ceo).status == S.pending_design.value
        assert order_workflow.approve_order(db, without_design.id, ceo).status == S.pending_printing.value

    def test_reject_needs_reason_and_notifies_creator(self, db, make_order, sales, ceo):
        order = make_order(sales, S.pending_ceo_review)
        with pytest.raises(ValidationError):
            order_workflow.reject_order(db, order.id, ceo, "  ")

        rejected = order_workflow.reject_order(db, order.id, ceo, "Price too low")
        assert rejected.status == S.rejected_by_ceo.value
        assert _timeline(db, order)[-1].notes == "Price too low"
        creator_notes = db.query(Notification).filter(Notification.recipient_id == sales.id).all()
        assert len(creator_notes) == 1
        assert creator_notes[0].type == NotificationType.order_status_changed.value

    def test_return_to_sales_and_resubmit(self, db, make_order, sales, ceo):
        order = make_order(sales, S.pending_ceo_review)
        order_workflow.return_to_sales(db, order.id, ceo, "Add the delivery address")
        resubmitted = order_workflow.transition_order(db, order.id, S.pending_ceo_review, sales)
        assert resubmitted.status == S.pending_ceo_review.value

    def test_sales_cannot_approve(self, db, make_order, sales):
        order = make_order(sales, S.pending_ceo_review)
        with pytest.raises(DepartmentGateError):
            order_workflow.approve_order(db, order.id, sales)


def test_status_change_notifies_ceo(db, make_order, sales, ceo, printer):
    order = make_order(sales, S.in_printing)
    order_workflow.transition_order(db, order.id, S.printing_completed, printer)
    notes = db.query(Notification).filter(Notification.recipient_id == ceo.id).all()
    assert [n.type for n in notes] == [NotificationType.order_status_changed.value]
    assert notes[0].order_id == order.id


def test_cancel_returns_consumed_materials_once(db, make_order, sales, ceo, paper_a4):
    line = MaterialLine(inventory_item_id=paper_a4.id, item_name=paper_a4.name, quantity_used=20, unit="ream")
    inventory_ledger.consume(db, [line])
    order = make_order(sales, S.pending_design, inventory_materials=[line.model_dump(mode="json")])

    order_workflow.transition_order(db, order.id, S.cancelled, ceo)

    db.refresh(paper_a4)
    db.refresh(order)
    assert paper_a4.quantity == 50
    assert paper_a4.status == StockStatus.in_stock.value
    assert order.inventory_returned is True
    assert "Materials returned to inventory" in [e.action for e in _timeline(db, order)]


def test_cancel_returns_only_lines_taken_at_intake(db, sales, ceo, paper_a4):
    # Each line passes the availability check alone; together they exceed the stock
    line = MaterialLine(inventory_item_id=paper_a4.id, item_name=paper_a4.name, quantity_used=30, unit="ream")
    data = OrderCreate(
        customer_name="Al Noor Trading",
        customer_phone="0501234567",
        quantity=200,
        inventory_materials=[line, line],
    )
    result = orders.create_order(db, data, sales)

    db.refresh(paper_a4)
    assert paper_a4.quantity == 20
    assert [e.code for e in result.ledger_errors] == ["insufficient_stock"]
    assert len(result.order.inventory_materials) == 1

    order_workflow.transition_order(db, result.order.id, S.cancelled, ceo)

    db.refresh(paper_a4)
    assert paper_a4.quantity == 50
