"""
Sequence generator for human-readable identifiers.

Counters live in the ``counters`` table, one row per logical sequence. The
increment happens inside the database (``value = value + 1``) in the same
transaction that reads the new value back, so concurrent callers can never be
handed the same number. Numbers are never reused, even if the document that
consumed one is deleted later.
"""
from datetime import datetime
from typing import Optional

import pytz
import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import PersistenceError
from ..models.models import Counter, utcnow

logger = structlog.get_logger(__name__)

ORDERS_COUNTER = "orders"
PURCHASE_REQUESTS_COUNTER = "purchase_requests"

# A lost creation race costs one extra round trip; more than that is a real failure
_MAX_CREATE_ATTEMPTS = 3


def next_value(db: Session, counter_key: str) -> int:
    """
    Atomically increment ``counter_key`` and return the new value.

    The first call for a key creates the counter at 1. When two callers race to
    create the same counter, the loser hits the primary key constraint, rolls
    back and retries the increment.

    Raises:
        PersistenceError: the database rejected the increment.
    """
    for attempt in range(1, _MAX_CREATE_ATTEMPTS + 1):
        try:
            result = db.execute(
                update(Counter)
                .where(Counter.name == counter_key)
                .values(value=Counter.value + 1, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.add(Counter(name=counter_key, value=1, updated_at=utcnow()))
                db.flush()
                value = 1
            else:
                value = db.execute(select(Counter.value).where(Counter.name == counter_key)).scalar_one()
            db.commit()
            return int(value)
        except IntegrityError as exc:
            db.rollback()
            logger.info("counter_create_race", counter=counter_key, attempt=attempt)
            if attempt == _MAX_CREATE_ATTEMPTS:
                raise PersistenceError(operation="next_sequence", detail=str(exc)) from exc
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("counter_increment_failed", counter=counter_key, error=str(exc))
            raise PersistenceError(operation="next_sequence", detail=str(exc)) from exc
    raise PersistenceError(operation="next_sequence", detail=counter_key)


def current_year(tz_name: Optional[str] = None) -> int:
    tz = pytz.timezone(tz_name or settings.tz_default)
    return datetime.now(tz).year


def format_sequence(prefix: str, value: int, year: int, padding: Optional[int] = None) -> str:
    width = padding if padding is not None else settings.sequence_padding
    return f"{prefix}-{year}-{value:0{width}d}"


def next_order_number(db: Session) -> str:
    value = next_value(db, ORDERS_COUNTER)
    return format_sequence(settings.order_number_prefix, value, current_year())


def next_purchase_request_number(db: Session) -> str:
    value = next_value(db, PURCHASE_REQUESTS_COUNTER)
    return format_sequence(settings.purchase_request_prefix, value, current_year())
