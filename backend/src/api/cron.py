"""
Cron API endpoints for scheduled notification dispatch.

Provides endpoints for:
- Triggering a dispatch run (called by the external scheduler)
- Diagnostics on who the next run can reach and recent delivery attempts
- Sending a one-off test push to check a subscription

All endpoints require "Authorization: Bearer <CRON_SECRET>".
"""

import hmac
from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.db.database import get_db, get_session_factory
from backend.src.schemas.notifications import (
    DispatchErrorResponse,
    DispatchRunResponse,
    DispatchStatusResponse,
    ManualPushResponse,
    NotificationLogResponse,
    PushRecipientResponse,
    VapidNotConfiguredResponse,
)
from backend.src.services.dispatch_service import NotificationDispatchService
from backend.src.services.event_source import EventSource, StoredEventSource
from backend.src.services.exceptions import ConfigurationError, NotFoundError
from backend.src.services.notification_log_service import NotificationLogService
from backend.src.utils.logging_config import get_logger


logger = get_logger("api")

router = APIRouter(
    prefix="/cron",
    tags=["Cron"],
)


# ============================================================================
# Dependencies
# ============================================================================


def verify_cron_secret(
    authorization: Optional[str] = Header(default=None),
    settings: AppSettings = Depends(get_settings),
) -> None:
    """Reject requests that do not carry the configured cron secret."""
    if not settings.cron_configured:
        logger.error("CRON_SECRET not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Cron secret not configured",
        )
    expected = f"Bearer {settings.cron_secret}"
    if not hmac.compare_digest((authorization or "").encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


def get_event_source(
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> EventSource:
    """Event source reading resolved occurrences from the database."""
    return StoredEventSource(session_factory)


def get_dispatch_service(
    settings: AppSettings = Depends(get_settings),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    event_source: EventSource = Depends(get_event_source),
) -> NotificationDispatchService:
    """Create NotificationDispatchService from application settings."""
    return NotificationDispatchService.from_settings(
        settings,
        session_factory=session_factory,
        event_source=event_source,
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.get(
    "/notifications",
    response_model=DispatchRunResponse,
    responses={503: {"model": DispatchErrorResponse}},
    summary="Run scheduled notification dispatch",
    dependencies=[Depends(verify_cron_secret)],
)
def run_notifications(
    force: bool = Query(False, description="Process every enabled user regardless of notification time"),
    settings: AppSettings = Depends(get_settings),
    service: NotificationDispatchService = Depends(get_dispatch_service),
):
    """
    Run one notification dispatch batch.

    Matches users on the current server time, or on CRON_MATCH_TIME when the
    scheduler cannot fire at an exact minute. Users already notified today
    are skipped, so repeated or overlapping calls are safe.
    """
    now = datetime.now()
    pinned = settings.pinned_match_time
    hour, minute = pinned if pinned else (now.hour, now.minute)

    try:
        summary = service.run(hour, minute, now=now, force=force)
    except ConfigurationError as e:
        logger.error(
            "Dispatch run aborted: configuration error",
            extra={"setting": e.setting, "error": e.message},
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=DispatchErrorResponse(
                error="configuration_error",
                message=e.message,
                setting=e.setting,
            ).model_dump(),
        )

    return DispatchRunResponse(
        timestamp=now,
        **summary.to_dict(),
    )


@router.get(
    "/notifications/status",
    response_model=DispatchStatusResponse,
    summary="Notification dispatch diagnostics",
    dependencies=[Depends(verify_cron_secret)],
)
def notification_status(
    user_id: Optional[int] = Query(None, description="Only show delivery attempts for this user"),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """
    Snapshot of the notification system for troubleshooting.

    Counts enabled users, users with a push subscription, users notified
    today and failed attempts today, plus the most recent audit log rows.
    """
    now = datetime.now()
    log_service = NotificationLogService(db)
    counters = log_service.get_dispatch_status(now)

    if user_id is not None:
        logs = log_service.list_for_user(user_id, limit=limit)
    else:
        logs = log_service.recent(limit=limit)

    return DispatchStatusResponse(
        timestamp=now,
        recent_logs=[NotificationLogResponse.model_validate(log) for log in logs],
        **counters,
    )


@router.get(
    "/test-push",
    response_model=ManualPushResponse,
    responses={
        404: {"description": "No matching push subscription"},
        500: {"model": VapidNotConfiguredResponse},
    },
    summary="Send a test push notification",
    dependencies=[Depends(verify_cron_secret)],
)
def send_test_push(
    user_id: Optional[int] = Query(
        None, description="Recipient; defaults to the oldest stored subscription"
    ),
    settings: AppSettings = Depends(get_settings),
    service: NotificationDispatchService = Depends(get_dispatch_service),
):
    """
    Send a one-off push to verify a subscription and the VAPID setup.

    Uses the same delivery client as scheduled runs. The attempt is written
    to the audit log and a subscription the push service reports as gone is
    deleted, but the daily dedup marker and badge count are not changed.
    """
    missing = {
        "VAPID_PUBLIC_KEY": not settings.vapid_public_key,
        "VAPID_PRIVATE_KEY": not settings.vapid_private_key,
        "VAPID_SUBJECT": not settings.vapid_subject,
    }
    if any(missing.values()):
        logger.error("Test push aborted: VAPID keys not configured")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=VapidNotConfiguredResponse(missing=missing).model_dump(),
        )

    now = datetime.now()
    try:
        manual = service.send_test_push(user_id=user_id, now=now)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ConfigurationError as e:
        logger.error(
            "Test push aborted: configuration error",
            extra={"setting": e.setting, "error": e.message},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=DispatchErrorResponse(
                error="configuration_error",
                message=e.message,
                setting=e.setting,
            ).model_dump(),
        )

    result = manual.result
    response = ManualPushResponse(
        success=result.success,
        message=(
            "Test push notification sent successfully"
            if result.success
            else "Failed to send push notification"
        ),
        timestamp=now,
        recipient=PushRecipientResponse(
            user_id=manual.user_id,
            email=manual.email,
            name=manual.name,
        ),
        outcome=result.outcome.value,
        status_code=result.status_code,
        error=result.error,
        subscription_removed=manual.subscription_removed,
    )
    if not result.success:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=response.model_dump(mode="json"),
        )
    return response
