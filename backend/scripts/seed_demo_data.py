import asyncio
import sys
from pathlib import Path
from decimal import Decimal

"""
Seed demo locations, primary items and an admin user.

This script can be run from either:
- backend/: `python scripts/seed_demo_data.py`
- repo root: `python backend/scripts/seed_demo_data.py`
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy import func, select

from db.database import async_session_maker, create_db_and_tables
from db.inventory.item import PrimaryItem
from db.location import Location
from db.users import User

from fastapi_users.password import PasswordHelper


password_helper = PasswordHelper()

DEMO_ITEMS = [
    # (location, name, sku, qty, unit cost, unit price, reorder point)
    ("Downtown", "Organic Honey 16oz", "HNY-16", 14, "6.20", "11.99", 4),
    ("Downtown", "Cold Brew Coffee 32oz", "SKU-100", 12, "3.10", "6.49", 6),
    ("Downtown", "Sea Salt Chips", "CHP-001", 0, "1.05", "2.49", 10),
    ("Uptown", "Cold Brew Coffee 32oz", "SKU-100", 3, "3.10", "6.49", 6),
    ("Uptown", "Organic Honey 16oz", "HNY-16", 8, "6.20", "11.99", 4),
]


async def get_or_create_user(session, email: str, password: str) -> User:
    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = User(
        email=email,
        hashed_password=password_helper.hash(password),
        is_active=True,
        is_superuser=True,
        is_verified=True,
    )
    session.add(user)
    await session.flush()
    return user


async def get_or_create_location(session, name: str) -> Location:
    result = await session.execute(select(Location).where(func.lower(Location.name) == name.strip().lower()))
    location = result.scalar_one_or_none()
    if location:
        return location

    location = Location(name=name.strip())
    session.add(location)
    await session.flush()
    return location


async def upsert_item(session, location_id: int, name: str, sku: str, qty, cost, price, reorder) -> PrimaryItem:
    result = await session.execute(
        select(PrimaryItem).where(PrimaryItem.location_id == location_id, PrimaryItem.sku == sku)
    )
    item = result.scalar_one_or_none()
    if not item:
        item = PrimaryItem(location_id=location_id, name=name, sku=sku)
        session.add(item)
    item.quantity_on_hand = Decimal(qty)
    item.unit_cost = Decimal(cost)
    item.unit_price = Decimal(price)
    item.reorder_point = Decimal(reorder)
    await session.flush()
    return item


async def seed() -> None:
    await create_db_and_tables()
    async with async_session_maker() as session:
        async with session.begin():
            await get_or_create_user(session, "admin@example.com", "admin123")
            for loc_name, name, sku, qty, cost, price, reorder in DEMO_ITEMS:
                location = await get_or_create_location(session, loc_name)
                await upsert_item(session, location.id, name, sku, qty, cost, price, reorder)
    print(f"Seeded {len(DEMO_ITEMS)} items")


if __name__ == "__main__":
    asyncio.run(seed())
