import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.get_db import Base
from core.get_provider import GatewayResolver
from models.enums import ActorRole, PaymentMethodType
from models.models import Property, Provider
from schemas.schema import (
    Actor,
    PaymentInstrumentIn,
    ReservationBookingCreate,
    ViewingBookingCreate,
)
from services.lifecycle import Lifecycle

from helpers import EventRecorder, FakeGateway


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine):
    factory = async_sessionmaker(
        bind=engine, expire_on_commit=False, autoflush=False
    )
    async with factory() as session:
        yield session


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def events():
    return EventRecorder()


@pytest.fixture
def lifecycle(session, gateway, events):
    resolver = GatewayResolver({method: gateway for method in PaymentMethodType})
    return Lifecycle(session, resolver, publisher=events)


def _actor(role):
    return Actor(id=uuid.uuid4(), role=role)


@pytest.fixture
def client_actor():
    return _actor(ActorRole.CLIENT)


@pytest.fixture
def other_client():
    return _actor(ActorRole.CLIENT)


@pytest.fixture
def owner():
    return _actor(ActorRole.OWNER)


@pytest.fixture
def admin():
    return _actor(ActorRole.ADMIN)


@pytest.fixture
def provider_user():
    return _actor(ActorRole.PROVIDER)


@pytest.fixture
async def property_(session, owner):
    prop = Property(id=uuid.uuid4(), owner_id=owner.id, title="Kololo Garden Flat")
    session.add(prop)
    await session.commit()
    return prop


@pytest.fixture
async def provider(session, provider_user):
    record = Provider(
        id=uuid.uuid4(),
        user_id=provider_user.id,
        business_name="Kampala Fixers",
        payout_method=PaymentMethodType.MTN_MOMO,
        payout_account="+256772000111",
        is_verified=True,
        is_kyc_verified=True,
    )
    session.add(record)
    await session.commit()
    return record


@pytest.fixture
async def unverified_provider(session):
    record = Provider(
        id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        business_name="New Plumbers Ltd",
        is_verified=False,
        is_kyc_verified=False,
    )
    session.add(record)
    await session.commit()
    return record


@pytest.fixture
def momo():
    return PaymentInstrumentIn(
        payment_method=PaymentMethodType.MTN_MOMO, phone_number="0772123456"
    )


@pytest.fixture
def viewing_request(property_):
    property_id = property_.id

    def build(**overrides):
        data = dict(
            property_id=property_id,
            name="Jane Nakato",
            email="jane@example.com",
            phone="+256772123456",
            scheduled_date=date.today() + timedelta(days=3),
            scheduled_time="10:30",
            payment_amount=Decimal("20000"),
        )
        data.update(overrides)
        return ViewingBookingCreate(**data)

    return build


@pytest.fixture
def stay_request(property_):
    property_id = property_.id

    def build(**overrides):
        check_in = date.today() + timedelta(days=10)
        data = dict(
            property_id=property_id,
            name="Jane Nakato",
            email="jane@example.com",
            phone="+256772123456",
            check_in_date=check_in,
            check_out_date=check_in + timedelta(days=3),
            guests=2,
            payment_amount=Decimal("450000"),
        )
        data.update(overrides)
        return ReservationBookingCreate(**data)

    return build
