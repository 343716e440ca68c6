"""
In-app notification model.
"""
import uuid
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Text
from sqlalchemy.dialects.postgresql import UUID, JSONB

from tribelab.core.clock import utcnow
from tribelab.db.base import Base


class Notification(Base):
    """Notification shown in the user's in-app inbox."""

    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    community_id = Column(UUID(as_uuid=True), ForeignKey("communities.id"), nullable=True, index=True)

    type = Column(String(50), nullable=False)  # trial_reminder, community_suspended, renewal_reminder, payment_retry
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(String(10), default="normal", nullable=False)  # normal, high
    data = Column(JSONB, default=dict, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<Notification(id={self.id}, user_id={self.user_id}, type={self.type})>"
