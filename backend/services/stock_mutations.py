"""
Stock mutation engine: increase, decrease and transfer.

Each request goes Requested -> Validated -> Applied | Rejected. Nothing is
written before validation passes. Reads and writes of one (location, item)
pair are serialized with KeyedLocks; a transfer takes both of its keys in
ascending (location id, item id) order. After the local commit the new
absolute quantities are pushed to the primary system. Each push attempt
retakes the keys and re-reads the quantities under them, so a later mutation
can never be overwritten by an older push, and backoff sleeps hold no lock.
A failed push leaves the mutation 'pending' for `retry_pending`.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import settings
from core.errors import (
    DownstreamSyncFailure,
    InsufficientStock,
    InvalidQuantity,
    InvalidTransfer,
    InventoryError,
    ItemNotFound,
    MissingReason,
)
from core.locks import KeyedLocks
from db.database import utcnow
from db.inventory.item import PrimaryItem
from db.inventory.movement import StockMutation
from db.inventory.sync import MutationSync
from services import audit_log
from services.identity_matcher import normalize_name, normalize_sku
from services.primary_client import PrimarySystemClient, item_ref

logger = logging.getLogger(__name__)

OTHER_REASON = "Other"
REASONS: Tuple[str, ...] = (
    "Received Shipment",
    "Customer Return",
    "Count Correction",
    "Damaged",
    "Expired",
    "Theft/Loss",
    "Store Transfer",
    "Vendor Return",
    OTHER_REASON,
)
_REASON_LOOKUP = {r.lower(): r for r in REASONS}

SYNC_SYNCED = "synced"
SYNC_PENDING = "pending"
SYNC_LOCAL = "local"

QUANTITY_STEP = Decimal("0.001")
MAX_QUANTITY = Decimal("1e11")


class MutationType(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"
    TRANSFER = "transfer"


class MutationState(str, Enum):
    REQUESTED = "requested"
    VALIDATED = "validated"
    APPLIED = "applied"
    REJECTED = "rejected"


@dataclass
class MutationRequest:
    type: MutationType
    item_id: int
    quantity: Decimal
    reason: Optional[str]
    other_reason: Optional[str] = None
    notes: Optional[str] = None
    actor_id: Optional[str] = None
    from_location_id: Optional[int] = None
    to_location_id: Optional[int] = None
    state: MutationState = MutationState.REQUESTED
    rejection: Optional[InventoryError] = None


@dataclass
class MutationOutcome:
    mutation: StockMutation
    sync_status: str
    sync_attempts: int = 0
    warning: Optional[str] = None


def normalize_reason(reason: Optional[str], other_reason: Optional[str] = None) -> Tuple[str, Optional[str]]:
    """Return (canonical reason, free text). 'Other' needs the free text."""
    value = (reason or "").strip()
    if not value:
        raise MissingReason("A reason is required for every stock change")
    canonical = _REASON_LOOKUP.get(value.lower())
    if canonical is None:
        raise MissingReason(f"Unknown reason {value!r}; use one of the listed reasons or 'Other'", reason=value)
    text = (other_reason or "").strip() or None
    if canonical == OTHER_REASON and not text:
        raise MissingReason("Reason 'Other' requires a description")
    return canonical, text


def _positive_quantity(quantity) -> Decimal:
    try:
        value = Decimal(str(quantity))
    except Exception:
        raise InvalidQuantity(f"Quantity {quantity!r} is not a number")
    if not value.is_finite() or value <= 0:
        raise InvalidQuantity("Quantity must be greater than zero", quantity=str(quantity))
    # Numeric(14, 3) columns
    if value >= MAX_QUANTITY:
        raise InvalidQuantity("Quantity is too large", quantity=str(quantity))
    if value != value.quantize(QUANTITY_STEP):
        raise InvalidQuantity("Quantity supports at most 3 decimal places", quantity=str(quantity))
    return value


def _key(item: PrimaryItem) -> Tuple[int, int]:
    return (item.location_id, item.id)


class StockMutationService:
    def __init__(
        self,
        session_maker: async_sessionmaker,
        locks: Optional[KeyedLocks] = None,
        client: Optional[PrimarySystemClient] = None,
        max_attempts: Optional[int] = None,
        backoff_min: Optional[float] = None,
        backoff_max: Optional[float] = None,
    ):
        self._session_maker = session_maker
        self._locks = locks or KeyedLocks()
        self._client = client or PrimarySystemClient()
        self._max_attempts = settings.sync_max_attempts if max_attempts is None else max_attempts
        self._backoff_min = settings.sync_backoff_min if backoff_min is None else backoff_min
        self._backoff_max = settings.sync_backoff_max if backoff_max is None else backoff_max

    @property
    def locks(self) -> KeyedLocks:
        return self._locks

    # -- public operations --------------------------------------------------

    async def increase(self, item_id: int, quantity, reason: Optional[str], notes: Optional[str] = None,
                       *, other_reason: Optional[str] = None, actor_id: Optional[str] = None) -> MutationOutcome:
        return await self.submit(MutationRequest(
            type=MutationType.INCREASE, item_id=item_id, quantity=quantity, reason=reason,
            other_reason=other_reason, notes=notes, actor_id=actor_id,
        ))

    async def decrease(self, item_id: int, quantity, reason: Optional[str], notes: Optional[str] = None,
                       *, other_reason: Optional[str] = None, actor_id: Optional[str] = None) -> MutationOutcome:
        return await self.submit(MutationRequest(
            type=MutationType.DECREASE, item_id=item_id, quantity=quantity, reason=reason,
            other_reason=other_reason, notes=notes, actor_id=actor_id,
        ))

    async def transfer(self, item_id: int, from_location_id: Optional[int], to_location_id: Optional[int],
                       quantity, reason: Optional[str], notes: Optional[str] = None,
                       *, other_reason: Optional[str] = None, actor_id: Optional[str] = None) -> MutationOutcome:
        return await self.submit(MutationRequest(
            type=MutationType.TRANSFER, item_id=item_id, quantity=quantity, reason=reason,
            other_reason=other_reason, notes=notes, actor_id=actor_id,
            from_location_id=from_location_id, to_location_id=to_location_id,
        ))

    async def submit(self, req: MutationRequest) -> MutationOutcome:
        try:
            return await self._apply(req)
        except InventoryError as e:
            req.state = MutationState.REJECTED
            req.rejection = e
            logger.info("stock %s on item %s rejected: %s", req.type.value, req.item_id, e.detail)
            raise

    # -- pipeline -----------------------------------------------------------

    def _validate_request(self, req: MutationRequest) -> None:
        req.quantity = _positive_quantity(req.quantity)
        req.reason, req.other_reason = normalize_reason(req.reason, req.other_reason)
        if req.notes is not None:
            req.notes = req.notes.strip() or None
        if req.type == MutationType.TRANSFER:
            if req.to_location_id is None:
                raise InvalidTransfer("A transfer needs a destination location")
            if req.from_location_id is not None and req.from_location_id == req.to_location_id:
                raise InvalidTransfer("Source and destination locations must differ")

    async def _resolve_items(self, db: AsyncSession, req: MutationRequest) -> Tuple[PrimaryItem, Optional[PrimaryItem]]:
        item = await db.get(PrimaryItem, req.item_id)
        if item is None:
            raise ItemNotFound(f"Primary item {req.item_id} not found", item_id=req.item_id)
        if req.type != MutationType.TRANSFER:
            return item, None

        if req.from_location_id is not None and req.from_location_id != item.location_id:
            raise InvalidTransfer(
                f"Item {item.id} is stocked at location {item.location_id}, not {req.from_location_id}",
                item_id=item.id,
            )
        if req.to_location_id == item.location_id:
            raise InvalidTransfer("Source and destination locations must differ")
        dest = await find_equivalent_item(db, item, req.to_location_id)
        if dest is None:
            raise InvalidTransfer(
                f"No record of '{item.name}' exists at location {req.to_location_id}",
                item_id=item.id,
                to_location_id=req.to_location_id,
            )
        return item, dest

    async def _apply(self, req: MutationRequest) -> MutationOutcome:
        self._validate_request(req)

        async with self._session_maker() as db:
            item, dest = await self._resolve_items(db, req)
        keys = [_key(item)] + ([_key(dest)] if dest is not None else [])

        async with self._locks.hold(keys):
            async with self._session_maker() as db:
                async with db.begin():
                    mutation, touched = await self._write(db, req, item.id, dest.id if dest is not None else None)
        req.state = MutationState.APPLIED
        logger.info(
            "stock %s applied: mutation %s item %s qty %s by %s",
            req.type.value, mutation.id, req.item_id, req.quantity, req.actor_id,
        )
        status, attempts, warning = await self._sync(mutation.id, touched)

        return MutationOutcome(mutation=mutation, sync_status=status, sync_attempts=attempts, warning=warning)

    async def _write(
        self, db: AsyncSession, req: MutationRequest, item_id: int, dest_id: Optional[int]
    ) -> Tuple[StockMutation, List[PrimaryItem]]:
        ids = [item_id] + ([dest_id] if dest_id is not None else [])
        res = await db.execute(
            select(PrimaryItem)
            .where(PrimaryItem.id.in_(ids))
            .order_by(PrimaryItem.location_id, PrimaryItem.id)
            .with_for_update()
        )
        locked = {it.id: it for it in res.scalars().all()}
        item = locked.get(item_id)
        if item is None:
            raise ItemNotFound(f"Primary item {item_id} not found", item_id=item_id)
        dest = locked.get(dest_id) if dest_id is not None else None

        before = Decimal(item.quantity_on_hand or 0)
        if req.type == MutationType.INCREASE:
            after = before + req.quantity
        else:
            if req.quantity > before:
                raise InsufficientStock(
                    f"Not enough stock of '{item.name}' at location {item.location_id}. "
                    f"On hand={before} requested={req.quantity}",
                    item_id=item.id,
                    on_hand=str(before),
                    requested=str(req.quantity),
                )
            after = before - req.quantity
        req.state = MutationState.VALIDATED

        item.quantity_on_hand = after
        touched = [item]
        to_before = to_after = None
        if dest is not None:
            to_before = Decimal(dest.quantity_on_hand or 0)
            to_after = to_before + req.quantity
            dest.quantity_on_hand = to_after
            touched.append(dest)

        mutation = StockMutation(
            type=req.type.value,
            item_id=item.id,
            to_item_id=dest.id if dest is not None else None,
            from_location_id=item.location_id,
            to_location_id=dest.location_id if dest is not None else None,
            quantity=req.quantity,
            quantity_before=before,
            quantity_after=after,
            to_quantity_before=to_before,
            to_quantity_after=to_after,
            reason=req.reason,
            other_reason=req.other_reason,
            notes=req.notes,
            actor_id=req.actor_id,
        )
        db.add(mutation)
        await db.flush()

        db.add(MutationSync(
            mutation_id=mutation.id,
            status=SYNC_PENDING if self._client.enabled else SYNC_LOCAL,
        ))
        audit_log.append(
            db,
            f"stock.{req.type.value}",
            _describe(req, item, dest),
            actor_id=req.actor_id,
            item_id=item.id,
            to_item_id=dest.id if dest is not None else None,
            location_id=item.location_id,
            to_location_id=dest.location_id if dest is not None else None,
            mutation_id=mutation.id,
            details={
                "quantity": req.quantity,
                "quantity_before": before,
                "quantity_after": after,
                "to_quantity_before": to_before,
                "to_quantity_after": to_after,
                "reason": req.reason,
                "other_reason": req.other_reason,
                "notes": req.notes,
            },
        )
        return mutation, touched

    # -- primary system signalling -----------------------------------------

    async def _push(self, targets: Sequence[PrimaryItem]) -> Tuple[int, Optional[str]]:
        """Send current quantities; each attempt re-reads them under the targets' locks."""
        ids = [it.id for it in targets]
        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, self._max_attempts)),
                wait=wait_exponential(multiplier=1, min=self._backoff_min, max=self._backoff_max),
                retry=retry_if_exception_type(DownstreamSyncFailure),
                reraise=True,
            ):
                with attempt:
                    attempts += 1
                    async with self._locks.hold([_key(it) for it in targets]):
                        async with self._session_maker() as db:
                            res = await db.execute(select(PrimaryItem).where(PrimaryItem.id.in_(ids)))
                            current = list(res.scalars().all())
                        for it in current:
                            await self._client.patch_quantity(item_ref(it), it.location_id, it.quantity_on_hand)
        except DownstreamSyncFailure as e:
            return attempts, e.detail
        return attempts, None

    async def _sync(self, mutation_id: int, targets: Sequence[PrimaryItem]) -> Tuple[str, int, Optional[str]]:
        """Caller must not hold the targets' locks; `_push` takes them per attempt."""
        if not self._client.enabled:
            return SYNC_LOCAL, 0, None

        attempts, error = await self._push(targets)
        status = SYNC_PENDING if error else SYNC_SYNCED
        warning = None
        if error:
            warning = f"Saved locally; primary system update pending ({error})"
            logger.warning("mutation %s not delivered to primary system after %s attempts: %s",
                           mutation_id, attempts, error)

        async with self._session_maker() as db:
            async with db.begin():
                sync = await db.get(MutationSync, mutation_id)
                sync.status = status
                sync.attempts = int(sync.attempts or 0) + attempts
                sync.last_error = error
                sync.last_attempt_at = utcnow()
                if not error:
                    res = await db.execute(select(PrimaryItem).where(PrimaryItem.id.in_([t.id for t in targets])))
                    for it in res.scalars().all():
                        it.last_sync_at = utcnow()
        return status, attempts, warning

    async def retry_pending(self, limit: int = 50) -> Dict[str, int]:
        """Re-deliver pending mutations, oldest first, pushing current quantities."""
        if not self._client.enabled:
            return {"attempted": 0, "synced": 0, "pending": await self.count_pending()}

        async with self._session_maker() as db:
            res = await db.execute(
                select(MutationSync, StockMutation)
                .join(StockMutation, StockMutation.id == MutationSync.mutation_id)
                .where(MutationSync.status == SYNC_PENDING)
                .order_by(MutationSync.created_at, MutationSync.mutation_id)
                .limit(limit)
            )
            batch = [(m.id, m.item_id, m.to_item_id) for (_sync, m) in res.all()]
            ids = {i for (_m, a, b) in batch for i in (a, b) if i is not None}
            items = {}
            if ids:
                items = {it.id: it for it in (await db.execute(select(PrimaryItem).where(PrimaryItem.id.in_(ids)))).scalars().all()}

        synced = 0
        for mutation_id, item_id, to_item_id in batch:
            involved = [items[i] for i in (item_id, to_item_id) if i is not None and i in items]
            status, _attempts, _warning = await self._sync(mutation_id, involved)
            if status == SYNC_SYNCED:
                synced += 1

        pending = await self.count_pending()
        logger.info("sync retry: %s attempted, %s delivered, %s still pending", len(batch), synced, pending)
        return {"attempted": len(batch), "synced": synced, "pending": pending}

    async def count_pending(self) -> int:
        async with self._session_maker() as db:
            res = await db.execute(select(func.count()).select_from(MutationSync).where(MutationSync.status == SYNC_PENDING))
            return int(res.scalar_one())

    async def refresh_location(self, location_id: int) -> Dict[str, int]:
        """Pull the primary system's stock for a location into the local mirror."""
        remote = await self._client.get_stock_by_location(location_id)

        async with self._session_maker() as db:
            res = await db.execute(select(PrimaryItem).where(PrimaryItem.location_id == location_id))
            existing = {it.external_id: it for it in res.scalars().all() if it.external_id}
        keys = [_key(it) for it in existing.values()]

        created = updated = 0
        async with self._locks.hold(keys):
            async with self._session_maker() as db:
                async with db.begin():
                    res = await db.execute(select(PrimaryItem).where(PrimaryItem.location_id == location_id))
                    local = {it.external_id: it for it in res.scalars().all() if it.external_id}
                    for entry in remote:
                        ext = str(entry.get("id") or "").strip()
                        if not ext:
                            continue
                        it = local.get(ext)
                        if it is None:
                            it = PrimaryItem(external_id=ext, location_id=location_id, name=entry.get("name") or ext)
                            db.add(it)
                            created += 1
                        else:
                            updated += 1
                        it.name = entry.get("name") or it.name
                        it.sku = entry.get("sku") or it.sku
                        it.quantity_on_hand = _dec(entry.get("quantity"), it.quantity_on_hand or 0)
                        it.unit_cost = _dec(entry.get("unit_cost"), it.unit_cost)
                        it.unit_price = _dec(entry.get("unit_price"), it.unit_price)
                        it.reorder_point = _dec(entry.get("reorder_point"), it.reorder_point)
                        it.last_sync_at = utcnow()
        logger.info("refreshed location %s from primary system: %s created, %s updated", location_id, created, updated)
        return {"created": created, "updated": updated}


def _dec(value, default):
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value))
    except Exception:
        return default


def _describe(req: MutationRequest, item: PrimaryItem, dest: Optional[PrimaryItem]) -> str:
    reason = req.reason if not req.other_reason else f"{req.reason}: {req.other_reason}"
    if dest is not None:
        return (f"Transferred {req.quantity} of '{item.name}' from location {item.location_id} "
                f"to location {dest.location_id} ({reason})")
    verb = "Increased" if req.type == MutationType.INCREASE else "Decreased"
    return f"{verb} '{item.name}' at location {item.location_id} by {req.quantity} ({reason})"


async def find_equivalent_item(db: AsyncSession, item: PrimaryItem, location_id: int) -> Optional[PrimaryItem]:
    """Same SKU at the other location, else the same normalized name; lowest id wins."""
    res = await db.execute(
        select(PrimaryItem)
        .where(PrimaryItem.location_id == location_id)
        .where(PrimaryItem.is_active == True)  # noqa: E712
        .order_by(PrimaryItem.id)
    )
    candidates = res.scalars().all()
    wanted_sku = normalize_sku(item.sku)
    if wanted_sku:
        for c in candidates:
            if normalize_sku(c.sku) == wanted_sku:
                return c
    wanted_name = normalize_name(item.name)
    for c in candidates:
        if normalize_name(c.name) == wanted_name:
            return c
    return None


@dataclass(frozen=True)
class StockLevels:
    out_of_stock: List[PrimaryItem]
    low_stock: List[PrimaryItem]


def classify_stock_levels(items: Sequence[PrimaryItem]) -> StockLevels:
    out, low = [], []
    for it in items:
        qty = Decimal(it.quantity_on_hand or 0)
        if qty <= 0:
            out.append(it)
        elif it.reorder_point is not None and qty <= Decimal(it.reorder_point):
            low.append(it)
    return StockLevels(out_of_stock=out, low_stock=low)


async def stock_levels(db: AsyncSession, location_id: Optional[int] = None) -> StockLevels:
    stmt = select(PrimaryItem).where(PrimaryItem.is_active == True)  # noqa: E712
    if location_id is not None:
        stmt = stmt.where(PrimaryItem.location_id == location_id)
    res = await db.execute(stmt.order_by(PrimaryItem.location_id, PrimaryItem.name))
    return classify_stock_levels(res.scalars().all())


async def list_pending(db: AsyncSession, limit: int = 100) -> List[Tuple[MutationSync, StockMutation]]:
    res = await db.execute(
        select(MutationSync, StockMutation)
        .join(StockMutation, StockMutation.id == MutationSync.mutation_id)
        .where(MutationSync.status == SYNC_PENDING)
        .order_by(MutationSync.created_at, MutationSync.mutation_id)
        .limit(limit)
    )
    return [(s, m) for (s, m) in res.all()]
