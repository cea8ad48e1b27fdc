from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from ..database import Base, utcnow


class MutationSync(Base):
    """Delivery state of a StockMutation to the primary (POS) system."""

    __tablename__ = "mutation_syncs"

    mutation_id = Column(Integer, ForeignKey("stock_mutations.id"), primary_key=True)
    # 'synced' | 'pending' | 'local'
    status = Column(String, nullable=False, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def to_schema(self):
        return {
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "last_attempt_at": self.last_attempt_at,
        }
