from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, text

from .database import Base, utcnow


class MatchRecord(Base):
    """
    Correspondence between a secondary row (by row_key) and a primary item.

    Records are superseded, never deleted: a row has at most one record with
    superseded_at IS NULL, and so does a primary item.
    """

    __tablename__ = "match_records"
    __table_args__ = (
        Index(
            "ux_match_records_active_row",
            "secondary_row_key",
            unique=True,
            postgresql_where=text("superseded_at IS NULL"),
            sqlite_where=text("superseded_at IS NULL"),
        ),
        Index(
            "ux_match_records_active_item",
            "primary_item_id",
            unique=True,
            postgresql_where=text("superseded_at IS NULL"),
            sqlite_where=text("superseded_at IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True)
    secondary_row_key = Column(String, nullable=False, index=True)
    primary_item_id = Column(Integer, ForeignKey("primary_items.id"), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=True, index=True)

    # 'sku' | 'name-fuzzy' | 'manual'
    method = Column(String, nullable=False)
    score = Column(Integer, nullable=False)

    actor_id = Column(String, nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    superseded_at = Column(DateTime(timezone=True), nullable=True, index=True)
    superseded_by_id = Column(Integer, ForeignKey("match_records.id"), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.superseded_at is None

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "secondary_row_key": self.secondary_row_key,
            "primary_item_id": self.primary_item_id,
            "location_id": self.location_id,
            "method": self.method,
            "score": int(self.score),
            "actor_id": self.actor_id,
            "decided_at": self.decided_at,
            "superseded_at": self.superseded_at,
            "superseded_by_id": self.superseded_by_id,
            "active": self.is_active,
        }
