"""
User model for notification recipients.

Accounts are managed by the web application; the dispatch backend only
needs the identity that preferences, subscriptions, event occurrences and
notification logs hang off.
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship

from backend.src.models import Base


class User(Base):
    """
    Notification recipient.

    Relationships:
        notification_preference: One NotificationPreference (one-to-one)
        push_subscription: One PushSubscription (one-to-one)
        notification_logs: Delivery attempts for this user (one-to-many)
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    notification_preference = relationship(
        "NotificationPreference",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
    push_subscription = relationship(
        "PushSubscription",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
    notification_logs = relationship(
        "NotificationLog",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"
