"""
Pytest configuration and fixtures.

Every test gets its own SQLite file database; the live order feed and the API
dependency are bound to it.
"""
import itertools
import os

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("AUTO_CREATE_DB", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from printhub.auth.security import create_access_token
from printhub.db import Base, get_db
from printhub.main import app as fastapi_app
from printhub.models.enums import Department, OrderStatus, UserRole
from printhub.models.models import Order, User, utcnow
from printhub.services import inventory_ledger
from printhub.services.order_feed import feed

_order_numbers = itertools.count(1)


@pytest.fixture()
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        future=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def bound_feed(session_factory):
    feed.clear()
    feed.bind(session_factory)
    yield feed
    feed.clear()


@pytest.fixture()
def make_user(db):
    def _make(role: UserRole, department: Department, name: str = None, is_head: bool = False, is_active: bool = True) -> User:
        name = name or f"{role.value} user"
        user = User(
            email=f"{name.replace(' ', '.').lower()}.{next(_order_numbers)}@printhub.test",
            display_name=name,
            role=role.value,
            department=department.value,
            is_head=is_head,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture()
def ceo(make_user):
    return make_user(UserRole.ceo, Department.management, "Faisal CEO")


@pytest.fixture()
def sales(make_user):
    return make_user(UserRole.sales, Department.sales, "Omar Sales")


@pytest.fixture()
def designer(make_user):
    return make_user(UserRole.design, Department.design, "Khalid Designer")


@pytest.fixture()
def printer(make_user):
    return make_user(UserRole.printing, Department.printing, "Yousef Printer")


@pytest.fixture()
def accountant(make_user):
    return make_user(UserRole.accounting, Department.accounting, "Reem Accounting")


@pytest.fixture()
def dispatcher(make_user):
    return make_user(UserRole.dispatch, Department.dispatch, "Majed Dispatch")


@pytest.fixture()
def make_order(db):
    def _make(created_by: User, status: OrderStatus = OrderStatus.pending_ceo_review, **fields) -> Order:
        now = utcnow()
        values = dict(
            order_number=f"TEST-{next(_order_numbers):05d}",
            status=status.value,
            customer_name="Al Noor Trading",
            customer_phone="0500000000",
            created_by=created_by.id,
            created_by_name=created_by.display_name,
            created_at=now,
            updated_at=now,
        )
        values.update(fields)
        order = Order(**values)
        db.add(order)
        db.commit()
        db.refresh(order)
        return order

    return _make


@pytest.fixture()
def paper_a4(db, ceo):
    return inventory_ledger.create_item(
        db,
        name="Paper A4",
        department=Department.printing,
        unit="ream",
        quantity=50,
        min_quantity=10,
        category="paper",
        actor=ceo,
    )


@pytest.fixture()
def client(session_factory):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = _get_db
    with TestClient(fastapi_app) as test_client:
        yield test_client
    fastapi_app.dependency_overrides.clear()


def auth_headers(user: User, **extra) -> dict:
    headers = {"Authorization": f"Bearer {create_access_token(str(user.id))}"}
    headers.update(extra)
    return headers
