"""
NotificationLog model for the delivery audit trail.

One row per push delivery attempt, successful or not. Rows are never
updated after insert; they answer "why did (or didn't) user X get
notified" together with the run summary.
"""

import enum
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from backend.src.models import Base


class DeliveryOutcome(enum.Enum):
    """
    Classified result of a push delivery attempt.

    - SUCCESS: push service accepted the message
    - GONE: endpoint permanently invalid (404/410), subscription removed
    - TRANSIENT: network error, timeout, 5xx or rate limiting; retried next run
    """
    SUCCESS = "success"
    GONE = "gone"
    TRANSIENT = "transient"


class NotificationLog(Base):
    """
    Audit record of a single push delivery attempt.

    Attributes:
        user_id: Recipient user
        sent_at: When the attempt completed
        success: True only for DeliveryOutcome.SUCCESS
        outcome: DeliveryOutcome value
        status_code: HTTP status from the push service, if any
        error: Error text for failed attempts
        event_ids: Occurrence ids included in the message
        categories: Distinct event categories included in the message
        title: Push title sent
        body: Push body sent
    """

    __tablename__ = "notification_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    sent_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    success = Column(Boolean, nullable=False)
    outcome = Column(String(20), nullable=False)
    status_code = Column(Integer, nullable=True)
    error = Column(Text, nullable=True)

    event_ids = Column(JSON, nullable=False, default=list)
    categories = Column(JSON, nullable=False, default=list)
    title = Column(String(200), nullable=False)
    body = Column(String(500), nullable=False)

    user = relationship("User", back_populates="notification_logs")

    __table_args__ = (
        Index("ix_notification_logs_user_sent_at", "user_id", "sent_at"),
    )
