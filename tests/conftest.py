import os

# Keep the module-level engine off Postgres when the package is imported.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SWEEPER_ENABLED", "false")

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from ticketbook.api.routes.routes import get_clock, get_db, get_payment_gateway
from ticketbook.domain.exceptions import PaymentVerificationError
from ticketbook.domain.state_machine import EventStatus
from ticketbook.infrastructure.db.models import Base
from ticketbook.infrastructure.db.session import build_engine, build_session_factory
from ticketbook.infrastructure.payments.razorpay_gateway import PaymentHandle
from ticketbook.infrastructure.repositories.event_repository import EventRepository
from ticketbook.main import app


T0 = datetime(2030, 3, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeGateway:
    key_id = "rzp_test_key"

    def __init__(self):
        self.created = []
        self.valid_signature = "good-signature"

    def create_payment_handle(self, order):
        provider_order_id = f"order_rzp_{len(self.created) + 1}"
        self.created.append(order.id)
        return PaymentHandle(
            provider_order_id=provider_order_id,
            amount=order.total_amount,
            currency=order.currency,
            key_id=self.key_id,
        )

    def verify_payment(self, provider_order_id, payment_id, signature):
        if signature != self.valid_signature:
            raise PaymentVerificationError("Invalid payment signature")


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'ticketbook.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def make_event(db):
    """Creates a committed ACTIVE event with the given ticket types."""

    def _make_event(
        ticket_types=(("General", 1000, 10),),
        status=EventStatus.ACTIVE,
        starts_at=T0 + timedelta(days=30),
        duration=timedelta(hours=4),
        max_tickets_per_order=None,
        sale_window=(None, None),
    ):
        repo = EventRepository(db)
        event = repo.create_event(
            title="Test Concert",
            location="Main Hall",
            starts_at=starts_at,
            ends_at=starts_at + duration,
            status=status,
            max_tickets_per_order=max_tickets_per_order,
        )
        types = [
            repo.add_ticket_type(
                event=event,
                name=name,
                price=price,
                total_quantity=quantity,
                sale_starts_at=sale_window[0],
                sale_ends_at=sale_window[1],
            )
            for name, price, quantity in ticket_types
        ]
        db.commit()
        return event, types

    return _make_event


@pytest.fixture
def client(session_factory, clock, gateway):

    def _get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()
