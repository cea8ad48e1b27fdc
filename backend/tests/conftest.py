"""Pytest configuration and fixtures."""

import os

# Settings are read at import time.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./unused-test.db"
os.environ["PRIMARY_API_BASE_URL"] = ""
os.environ["FEED_HEADER_LINES"] = "9"

import uuid
from dataclasses import dataclass
from decimal import Decimal

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from core.auth import current_active_user
from db.database import Base, get_async_session, import_models
from db.inventory.item import PrimaryItem
from db.location import Location
from main import app
from routers.stock import get_stock_service
from services.primary_client import PrimarySystemClient
from services.stock_mutations import StockMutationService

PREAMBLE = "\n".join(
    [
        "Vendor Inventory Report",
        "Generated: 2026-10-01",
        "Account: 4411",
        "",
        "Filters: all locations",
        "Currency: USD",
        "",
        "Page 1",
        "Product Name,Variant,Location,Vendor,SKU,Quantity,List Price,Cost/Unit",
    ]
)


def make_feed(*lines: str) -> bytes:
    return (PREAMBLE + "\n" + "\n".join(lines) + "\n").encode("utf-8")


@dataclass
class FakeUser:
    id: uuid.UUID
    email: str = "operator@example.com"
    is_active: bool = True
    is_superuser: bool = True
    is_verified: bool = True


@pytest.fixture
async def engine(tmp_path):
    """File-backed sqlite so concurrent sessions see each other's commits."""
    import_models()
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def service(session_maker):
    return StockMutationService(session_maker, client=PrimarySystemClient(base_url=""))


@pytest.fixture
def user():
    return FakeUser(id=uuid.uuid4())


@pytest.fixture
async def stores(session_maker):
    """Two locations with the same coffee SKU at each, plus a few single-location items."""
    async with session_maker() as session:
        l1 = Location(name="Downtown", code="DT")
        l2 = Location(name="Uptown", code="UP")
        session.add_all([l1, l2])
        await session.flush()
        items = {
            "coffee_l1": PrimaryItem(
                name="Cold Brew Coffee 32oz", sku="SKU-100", location_id=l1.id,
                quantity_on_hand=Decimal("12"), unit_cost=Decimal("3.10"), reorder_point=Decimal("6"),
            ),
            "honey_l1": PrimaryItem(
                name="Organic Honey 16oz", sku="HNY-16", location_id=l1.id,
                quantity_on_hand=Decimal("4"), unit_cost=Decimal("6.20"), reorder_point=Decimal("5"),
            ),
            "chips_l1": PrimaryItem(
                name="Sea Salt Chips", sku=None, location_id=l1.id,
                quantity_on_hand=Decimal("0"), unit_cost=Decimal("1.05"),
            ),
            "coffee_l2": PrimaryItem(
                name="Cold Brew Coffee 32oz", sku="SKU-100", location_id=l2.id,
                quantity_on_hand=Decimal("3"), unit_cost=Decimal("3.10"),
            ),
        }
        session.add_all(items.values())
        await session.commit()
        return {"l1": l1, "l2": l2, **items}


@pytest.fixture
async def client(session_maker, service, user):
    async def override_get_async_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_get_async_session
    app.dependency_overrides[current_active_user] = lambda: user
    app.dependency_overrides[get_stock_service] = lambda: service
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
