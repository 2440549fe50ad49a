import pytest

from printhub.errors import DepartmentGateError, InvalidTransitionError, ValidationError
from printhub.models.enums import NotificationType, PurchaseRequestStatus
from printhub.models.models import Notification
from printhub.schemas.inventory import MissingMaterial
from printhub.services import purchase_requests

P = PurchaseRequestStatus

MISSING = [
    MissingMaterial(item_name="Paper A4", category="paper", requested_quantity=80, available_quantity=50, unit="ream"),
    MissingMaterial(item_name="Gold foil", category="foil", requested_quantity=3, available_quantity=0, unit="roll"),
]


@pytest.fixture()
def request_(db, sales, ceo, monkeypatch):
    monkeypatch.setattr("printhub.services.sequence.current_year", lambda tz_name=None: 2025)
    return purchase_requests.create_purchase_request(
        db,
        MISSING,
        sales,
        "Wedding card order needs more stock",
        priority="high",
        estimated_costs={"Paper A4": 25, "Gold foil": 120},
    )


def test_create_computes_gaps_and_totals(request_, sales):
    assert request_.request_number == "PURCHREQ-2025-0001"
    assert request_.status == P.pending.value
    assert request_.requested_by == sales.id
    paper, foil = request_.items
    assert paper["requested_quantity"] == 30
    assert paper["total_estimated_cost"] == 750
    assert foil["requested_quantity"] == 3
    assert request_.total_estimated_cost == 1110


def test_create_notifies_ceo(db, request_, ceo):
    note = db.query(Notification).filter(Notification.recipient_id == ceo.id).one()
    assert note.type == NotificationType.purchase_request.value
    assert note.priority == "high"
    assert note.is_action_required is True


@pytest.mark.parametrize("reason,missing", [("", MISSING), ("   ", MISSING), ("Need stock", [])])
def test_create_validation(db, sales, reason, missing):
    with pytest.raises(ValidationError):
        purchase_requests.create_purchase_request(db, missing, sales, reason)


def test_approve_notifies_requester(db, request_, ceo, sales):
    approved = purchase_requests.approve_purchase_request(db, request_.id, ceo)
    assert approved.status == P.approved.value
    assert approved.reviewed_by == ceo.id
    note = db.query(Notification).filter(Notification.recipient_id == sales.id).one()
    assert note.type == NotificationType.material_request_approved.value


def test_reject_requires_reason(db, request_, ceo, sales):
    with pytest.raises(ValidationError):
        purchase_requests.reject_purchase_request(db, request_.id, ceo, "")
    rejected = purchase_requests.reject_purchase_request(db, request_.id, ceo, "Supplier closed")
    assert rejected.status == P.rejected.value
    assert rejected.rejected_reason == "Supplier closed"
    note = db.query(Notification).filter(Notification.recipient_id == sales.id).one()
    assert note.type == NotificationType.material_request_rejected.value


def test_only_from_pending(db, request_, ceo):
    purchase_requests.approve_purchase_request(db, request_.id, ceo)
    with pytest.raises(InvalidTransitionError):
        purchase_requests.reject_purchase_request(db, request_.id, ceo, "Too late")


def test_non_management_cannot_review(db, request_, printer):
    with pytest.raises(DepartmentGateError):
        purchase_requests.approve_purchase_request(db, request_.id, printer)


def test_order_and_receive(db, request_, ceo):
    with pytest.raises(InvalidTransitionError):
        purchase_requests.mark_received(db, request_.id, ceo)
    purchase_requests.approve_purchase_request(db, request_.id, ceo)
    ordered = purchase_requests.mark_ordered(db, request_.id, ceo, supplier="Riyadh Paper Co.")
    assert ordered.status == P.ordered.value
    assert ordered.supplier == "Riyadh Paper Co."
    assert purchase_requests.mark_received(db, request_.id, ceo).status == P.received.value
