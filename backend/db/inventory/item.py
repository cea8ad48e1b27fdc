from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String

from ..database import Base


class PrimaryItem(Base):
    __tablename__ = "primary_items"

    id = Column(Integer, primary_key=True)
    # Item id inside the POS; None for records created locally (tests, seeds)
    external_id = Column(String, nullable=True, index=True)

    name = Column(String, nullable=False)
    sku = Column(String, nullable=True, index=True)
    location_id = Column(Integer, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False, index=True)

    quantity_on_hand = Column(Numeric(14, 3), nullable=False, default=0)
    unit_cost = Column(Numeric(14, 4), nullable=True)
    unit_price = Column(Numeric(14, 4), nullable=True)
    reorder_point = Column(Numeric(14, 3), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "external_id": self.external_id,
            "name": self.name,
            "sku": self.sku,
            "location_id": self.location_id,
            "quantity_on_hand": self.quantity_on_hand,
            "unit_cost": self.unit_cost,
            "unit_price": self.unit_price,
            "reorder_point": self.reorder_point,
            "is_active": bool(self.is_active),
        }
