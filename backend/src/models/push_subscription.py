"""
PushSubscription model for Web Push notification subscriptions.

Stores the push service endpoint and encryption keys needed to deliver
push notifications to a user's browser. Each user has at most one
subscription; re-subscribing replaces it.
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from backend.src.models import Base


class PushSubscription(Base):
    """
    Web Push subscription for a specific user.

    Attributes:
        endpoint: Push service URL
        p256dh_key: ECDH public key for payload encryption (Base64url)
        auth_key: Auth secret for message authentication (Base64url)
        last_used_at: Timestamp of last successful push delivery

    Lifecycle:
        Upserted when the user enables notifications in the browser.
        Removed when the user unsubscribes, or when the push service
        returns 404/410 for the endpoint.

    Relationships:
        user: Owning User (one-to-one)
    """

    __tablename__ = "push_subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Owning user (one subscription per user)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    # Push subscription data
    endpoint = Column(String(1024), nullable=False)
    p256dh_key = Column(String(255), nullable=False)
    auth_key = Column(String(255), nullable=False)

    # Tracking
    last_used_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    user = relationship("User", back_populates="push_subscription")
