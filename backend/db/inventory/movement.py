from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text, event

from core.errors import ImmutableRecordError
from ..database import Base, utcnow


class StockMutation(Base):
    """One applied increase/decrease/transfer. Never updated or deleted."""

    __tablename__ = "stock_mutations"

    id = Column(Integer, primary_key=True)
    # 'increase' | 'decrease' | 'transfer'
    type = Column(String, nullable=False, index=True)

    item_id = Column(Integer, ForeignKey("primary_items.id"), nullable=False, index=True)
    to_item_id = Column(Integer, ForeignKey("primary_items.id"), nullable=True, index=True)
    from_location_id = Column(Integer, ForeignKey("locations.id"), nullable=False, index=True)
    to_location_id = Column(Integer, ForeignKey("locations.id"), nullable=True, index=True)

    quantity = Column(Numeric(14, 3), nullable=False)
    quantity_before = Column(Numeric(14, 3), nullable=False)
    quantity_after = Column(Numeric(14, 3), nullable=False)
    to_quantity_before = Column(Numeric(14, 3), nullable=True)
    to_quantity_after = Column(Numeric(14, 3), nullable=True)

    reason = Column(String, nullable=False)
    other_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    actor_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "type": self.type,
            "item_id": self.item_id,
            "to_item_id": self.to_item_id,
            "from_location_id": self.from_location_id,
            "to_location_id": self.to_location_id,
            "quantity": self.quantity,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "to_quantity_before": self.to_quantity_before,
            "to_quantity_after": self.to_quantity_after,
            "reason": self.reason,
            "other_reason": self.other_reason,
            "notes": self.notes,
            "actor_id": self.actor_id,
            "created_at": self.created_at,
        }


@event.listens_for(StockMutation, "before_update")
def _block_mutation_update(mapper, connection, target):
    raise ImmutableRecordError("stock mutations cannot be modified; record a correcting mutation instead")


@event.listens_for(StockMutation, "before_delete")
def _block_mutation_delete(mapper, connection, target):
    raise ImmutableRecordError("stock mutations cannot be deleted; record a correcting mutation instead")
