"""
Trial history model - one row per trial granted.
"""
import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID

from tribelab.core.clock import utcnow
from tribelab.db.base import Base


class TrialHistory(Base):
    """Record of a community trial and how it ended."""

    __tablename__ = "trial_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    community_id = Column(UUID(as_uuid=True), ForeignKey("communities.id"), nullable=True, index=True)
    trial_type = Column(String(30), default="community", nullable=False)
    status = Column(String(20), default="active", nullable=False)  # active, converted, cancelled, expired

    started_at = Column(DateTime, default=utcnow, nullable=False)
    ends_at = Column(DateTime, nullable=True)
    converted_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<TrialHistory(id={self.id}, community_id={self.community_id}, status={self.status})>"
