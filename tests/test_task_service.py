import uuid
from datetime import datetime, timedelta, timezone

import pytest

from printhub.errors import AlreadyCompletedError, InactiveActorError, NotFoundError, NotStartedError
from printhub.models.enums import Department, NotificationType, OrderStatus, UserRole
from printhub.models.models import Notification, OrderAssignment, OrderTimelineEntry
from printhub.services import task_service


def _timeline_count(db, order):
    return db.query(OrderTimelineEntry).filter(OrderTimelineEntry.order_id == order.id).count()


@pytest.fixture()
def design_order(make_order, sales):
    return make_order(sales, OrderStatus.pending_design, needs_design=True)


@pytest.fixture()
def design_head(make_user):
    return make_user(UserRole.design_head, Department.design, "Sara Design Head", is_head=True)


class TestAssign:
    def test_assign_creates_current_assignment(self, db, design_order, designer, design_head):
        assignment = task_service.assign_task(db, design_order.id, designer.id, Department.design, design_head, estimated_duration=4)

        assert assignment.assignee_id == designer.id
        assert assignment.assignee_name == designer.display_name
        assert assignment.assigned_by_id == design_head.id
        assert assignment.started_at is None
        assert assignment.completed_at is None
        assert assignment.estimated_duration == 4
        assert task_service.get_assignment(db, design_order.id, "design").id == assignment.id
        assert _timeline_count(db, design_order) == 1

    def test_assignee_is_notified(self, db, design_order, designer, design_head):
        task_service.assign_task(db, design_order.id, designer.id, Department.design, design_head)
        notes = db.query(Notification).filter(Notification.recipient_id == designer.id).all()
        assert [n.type for n in notes] == [NotificationType.task_assigned.value]
        assert design_order.order_number in notes[0].message

    def test_reassign_supersedes_previous(self, db, design_order, designer, design_head, make_user):
        other = make_user(UserRole.design, Department.design, "Lama Designer")
        first = task_service.assign_task(db, design_order.id, designer.id, Department.design, design_head)
        second = task_service.assign_task(db, design_order.id, other.id, Department.design, design_head)

        db.refresh(first)
        assert first.superseded_at is not None
        assert task_service.get_assignment(db, design_order.id, Department.design).id == second.id
        assert len(task_service.list_assignments(db, design_order.id)) == 2
        assert len(task_service.list_assignments(db, design_order.id, include_history=False)) == 1

    def test_departments_are_independent(self, db, design_order, designer, printer, design_head):
        task_service.assign_task(db, design_order.id, designer.id, Department.design, design_head)
        task_service.assign_task(db, design_order.id, printer.id, Department.printing, design_head)
        assert task_service.get_assignment(db, design_order.id, Department.design).assignee_id == designer.id
        assert task_service.get_assignment(db, design_order.id, Department.printing).assignee_id == printer.id

    def test_inactive_assignee_rejected(self, db, design_order, design_head, make_user):
        retired = make_user(UserRole.design, Department.design, "Retired Designer", is_active=False)
        with pytest.raises(InactiveActorError):
            task_service.assign_task(db, design_order.id, retired.id, Department.design, design_head)
        assert db.query(OrderAssignment).count() == 0

    def test_unknown_order_or_user(self, db, design_order, designer, design_head):
        with pytest.raises(NotFoundError):
            task_service.assign_task(db, uuid.uuid4(), designer.id, Department.design, design_head)
        with pytest.raises(NotFoundError):
            task_service.assign_task(db, design_order.id, uuid.uuid4(), Department.design, design_head)


class TestStartAndComplete:
    def test_complete_before_start_writes_nothing(self, db, design_order, designer, design_head):
        task_service.assign_task(db, design_order.id, designer.id, Department.design, design_head)
        timeline_before = _timeline_count(db, design_order)
        notifications_before = db.query(Notification).count()

        with pytest.raises(NotStartedError):
            task_service.complete_task(db, design_order.id, Department.design, designer)

        assignment = task_service.get_assignment(db, design_order.id, Department.design)
        assert assignment.completed_at is None
        assert assignment.actual_duration is None
        assert _timeline_count(db, design_order) == timeline_before
        assert db.query(Notification).count() == notifications_before

    def test_start_then_complete_records_duration(self, db, design_order, designer, design_head, ceo):
        task_service.assign_task(db, design_order.id, designer.id, Department.design, design_head)
        started = task_service.start_task(db, design_order.id, Department.design, designer)
        assert started.started_at is not None

        # Pretend the work took 90 minutes
        started.started_at = started.started_at - timedelta(minutes=90)
        db.commit()

        done = task_service.complete_task(db, design_order.id, Department.design, designer)
        assert done.completed_at is not None
        assert done.actual_duration == pytest.approx(1.5, abs=0.01)

        assigner_notes = db.query(Notification).filter(Notification.recipient_id == design_head.id).all()
        assert [n.type for n in assigner_notes] == [NotificationType.task_completed.value]
        ceo_notes = db.query(Notification).filter(Notification.recipient_id == ceo.id).all()
        assert [n.type for n in ceo_notes] == [NotificationType.task_completed.value]

    def test_restart_keeps_original_start(self, db, design_order, designer, design_head):
        task_service.assign_task(db, design_order.id, designer.id, Department.design, design_head)
        first = task_service.start_task(db, design_order.id, Department.design, designer).started_at
        again = task_service.start_task(db, design_order.id, Department.design, designer).started_at
        assert again == first

    def test_complete_twice_rejected(self, db, design_order, designer, design_head):
        task_service.assign_task(db, design_order.id, designer.id, Department.design, design_head)
        task_service.start_task(db, design_order.id, Department.design, designer)
        task_service.complete_task(db, design_order.id, Department.design, designer)
        with pytest.raises(AlreadyCompletedError):
            task_service.complete_task(db, design_order.id, Department.design, designer)
        with pytest.raises(AlreadyCompletedError):
            task_service.start_task(db, design_order.id, Department.design, designer)

    def test_start_without_assignment(self, db, design_order):
        with pytest.raises(NotFoundError):
            task_service.start_task(db, design_order.id, Department.printing)


def test_elapsed_hours_handles_aware_values():
    start = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
    end = datetime(2025, 3, 1, 14, 30)
    assert task_service.elapsed_hours(start, end) == 5.5
