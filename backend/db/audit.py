from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text, event

from core.errors import ImmutableRecordError
from .database import Base, utcnow


class AuditEntry(Base):
    """Append-only audit trail of stock mutations, match decisions and feed imports."""

    __tablename__ = "audit_entries"

    id = Column(Integer, primary_key=True)
    # 'stock.<type>' | 'match.confirmed' | 'match.removed' | 'feed.imported'
    entry_type = Column(String, nullable=False, index=True)

    item_id = Column(Integer, ForeignKey("primary_items.id"), nullable=True, index=True)
    to_item_id = Column(Integer, ForeignKey("primary_items.id"), nullable=True, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=True, index=True)
    to_location_id = Column(Integer, ForeignKey("locations.id"), nullable=True, index=True)

    mutation_id = Column(Integer, ForeignKey("stock_mutations.id"), nullable=True, index=True)
    match_record_id = Column(Integer, ForeignKey("match_records.id"), nullable=True, index=True)

    actor_id = Column(String, nullable=True, index=True)
    summary = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "entry_type": self.entry_type,
            "item_id": self.item_id,
            "to_item_id": self.to_item_id,
            "location_id": self.location_id,
            "to_location_id": self.to_location_id,
            "mutation_id": self.mutation_id,
            "match_record_id": self.match_record_id,
            "actor_id": self.actor_id,
            "summary": self.summary,
            "details": self.details,
            "created_at": self.created_at,
        }


@event.listens_for(AuditEntry, "before_update")
def _block_audit_update(mapper, connection, target):
    raise ImmutableRecordError("audit entries are append-only")


@event.listens_for(AuditEntry, "before_delete")
def _block_audit_delete(mapper, connection, target):
    raise ImmutableRecordError("audit entries are append-only")
