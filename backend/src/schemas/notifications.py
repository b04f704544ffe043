"""
Pydantic schemas for the notification cron and diagnostics endpoints.

Provides serialization for:
- Dispatch run results (cron trigger)
- Notification audit log entries
- Dispatch status snapshot (diagnostics)
- Test push results
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_serializer


# ============================================================================
# Dispatch Run Schemas
# ============================================================================


class DispatchRunResponse(BaseModel):
    """Response schema for a completed dispatch run."""

    success: bool = True
    timestamp: datetime = Field(..., description="Server-local time the run started")
    match_time: str = Field(..., description="HH:MM the run matched preferences on")
    force: bool = Field(False, description="Whether the time filter was bypassed")
    processed: int = Field(..., description="Users whose notification time matched")
    notifications_sent: int = Field(..., description="Successful push deliveries")
    errors: int = Field(..., description="Delivery attempts that failed")
    skipped: int = Field(0, description="Matched users with nothing to send")
    deadline_reached: bool = Field(
        False, description="True if the run stopped early at its time budget"
    )

    @field_serializer("timestamp")
    @classmethod
    def serialize_timestamp(cls, v: datetime) -> str:
        return v.isoformat()

    model_config = {
        "json_schema_extra": {
            "example": {
                "success": True,
                "timestamp": "2026-02-12T08:00:03",
                "match_time": "08:00",
                "force": False,
                "processed": 12,
                "notifications_sent": 9,
                "errors": 1,
                "skipped": 2,
                "deadline_reached": False,
            }
        }
    }


class DispatchErrorResponse(BaseModel):
    """Response schema for a run that could not start."""

    error: str = Field(..., description="Error class, e.g. configuration_error")
    message: str
    setting: Optional[str] = Field(
        default=None, description="Environment variable that needs attention"
    )


# ============================================================================
# Audit Log Schemas
# ============================================================================


class NotificationLogResponse(BaseModel):
    """Response schema for one notification audit log entry."""

    id: int
    user_id: int
    sent_at: datetime
    success: bool
    outcome: str
    status_code: Optional[int] = None
    error: Optional[str] = None
    event_ids: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    title: str
    body: str

    @field_serializer("sent_at")
    @classmethod
    def serialize_sent_at(cls, v: datetime) -> str:
        return v.isoformat()

    model_config = {"from_attributes": True}


class DispatchStatusResponse(BaseModel):
    """Diagnostics snapshot of the notification system."""

    timestamp: datetime
    enabled_users: int
    users_with_subscription: int
    users_notified_today: int
    failed_attempts_today: int
    recent_logs: List[NotificationLogResponse] = Field(default_factory=list)

    @field_serializer("timestamp")
    @classmethod
    def serialize_timestamp(cls, v: datetime) -> str:
        return v.isoformat()


# ============================================================================
# Test Push Schemas
# ============================================================================


class PushRecipientResponse(BaseModel):
    """User a test push was sent to."""

    user_id: int
    email: Optional[str] = None
    name: Optional[str] = None


class ManualPushResponse(BaseModel):
    """Response schema for a test push."""

    success: bool
    message: str
    timestamp: datetime
    recipient: PushRecipientResponse
    outcome: str = Field(..., description="success, gone or transient")
    status_code: Optional[int] = Field(
        default=None, description="HTTP status returned by the push service"
    )
    error: Optional[str] = None
    subscription_removed: bool = Field(
        False, description="True if the push service reported the subscription gone"
    )

    @field_serializer("timestamp")
    @classmethod
    def serialize_timestamp(cls, v: datetime) -> str:
        return v.isoformat()


class VapidNotConfiguredResponse(BaseModel):
    """Response schema when VAPID keys are missing."""

    error: str = "VAPID keys not configured"
    missing: Dict[str, bool] = Field(
        ..., description="Setting name to True when it is missing"
    )
    message: str = (
        "Please set VAPID_PUBLIC_KEY, VAPID_PRIVATE_KEY, and VAPID_SUBJECT "
        "environment variables"
    )
