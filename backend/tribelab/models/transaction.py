"""
Transaction model - append-only payment audit trail.
"""
import uuid
from sqlalchemy import Column, String, DateTime, Float, ForeignKey, Text
from sqlalchemy.dialects.postgresql import UUID, JSONB

from tribelab.core.clock import utcnow
from tribelab.db.base import Base


class Transaction(Base):
    """Captured payment for a community subscription."""

    __tablename__ = "transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(String(255), unique=True, nullable=False, index=True)
    payment_id = Column(String(255), nullable=True, index=True)
    signature = Column(Text, nullable=True)

    amount = Column(Float, nullable=False)  # major currency units
    currency = Column(String(3), default="INR", nullable=False)
    status = Column(String(20), default="created", nullable=False)  # created, authorized, captured, refunded, failed
    payment_type = Column(String(50), default="community_subscription", nullable=False)

    payer_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    community_id = Column(UUID(as_uuid=True), ForeignKey("communities.id"), nullable=True, index=True)

    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSONB, default=dict, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Transaction(id={self.id}, order_id={self.order_id}, status={self.status})>"
