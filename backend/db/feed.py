from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, Numeric, String

from .database import Base, utcnow


class FeedImport(Base):
    """One vendor CSV import run and its counters."""

    __tablename__ = "feed_imports"

    id = Column(Integer, primary_key=True)
    filename = Column(String, nullable=True)
    processed = Column(Integer, nullable=False, default=0)
    updated = Column(Integer, nullable=False, default=0)
    matched = Column(Integer, nullable=False, default=0)
    unmatched = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    errors = Column(JSON, nullable=True)
    actor_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class SecondaryRow(Base):
    """A vendor feed row. The whole table is replaced by every import."""

    __tablename__ = "secondary_rows"

    id = Column(Integer, primary_key=True)
    # Content-derived identity, stable across re-imports of the same feed
    row_key = Column(String, nullable=False, unique=True, index=True)
    import_id = Column(Integer, ForeignKey("feed_imports.id"), nullable=False, index=True)
    line_number = Column(Integer, nullable=True)

    product_name = Column(String, nullable=False)
    variant = Column(String, nullable=True)
    location_name = Column(String, nullable=False)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=True, index=True)
    vendor = Column(String, nullable=True, index=True)
    sku = Column(String, nullable=True, index=True)

    quantity = Column(Numeric(14, 3), nullable=False)
    list_price = Column(Numeric(14, 4), nullable=True)
    cost_unit = Column(Numeric(14, 4), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def display_name(self) -> str:
        if self.variant:
            return f"{self.product_name} {self.variant}"
        return self.product_name

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "row_key": self.row_key,
            "line_number": self.line_number,
            "product_name": self.product_name,
            "variant": self.variant,
            "location_name": self.location_name,
            "location_id": self.location_id,
            "vendor": self.vendor,
            "sku": self.sku,
            "quantity": self.quantity,
            "list_price": self.list_price,
            "cost_unit": self.cost_unit,
        }
