"""
Web Push delivery client.

Sends one message to one stored subscription via pywebpush and classifies
the outcome so the dispatch runner can decide what to do with the
subscription:

- SUCCESS: push service accepted the message
- GONE: 404/410, the subscription is dead and must be deleted
- TRANSIENT: anything else (network, timeout, 5xx, 429); retried next run

The client never mutates state; it only performs the network call.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pywebpush import WebPushException, webpush
from requests import RequestException

from backend.src.config.settings import AppSettings
from backend.src.models.notification_log import DeliveryOutcome
from backend.src.services.exceptions import (
    ConfigurationError,
    PushDeliveryError,
    PushGoneError,
)
from backend.src.utils.logging_config import get_logger


logger = get_logger("services")


GONE_STATUS_CODES = (404, 410)


@dataclass(frozen=True)
class SubscriptionInfo:
    """Endpoint and key material of a stored push subscription."""
    endpoint: str
    p256dh: str
    auth: str

    @classmethod
    def from_model(cls, subscription: Any) -> "SubscriptionInfo":
        return cls(
            endpoint=subscription.endpoint,
            p256dh=subscription.p256dh_key,
            auth=subscription.auth_key,
        )

    def as_webpush_info(self) -> Dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "keys": {"p256dh": self.p256dh, "auth": self.auth},
        }

    @property
    def endpoint_short(self) -> str:
        return self.endpoint[:60] if self.endpoint else "?"


@dataclass(frozen=True)
class DeliveryResult:
    """
    Classified outcome of one delivery attempt.

    Attributes:
        outcome: SUCCESS, GONE or TRANSIENT
        status_code: HTTP status from the push service, when one was received
        error: Error description for failed attempts
    """
    outcome: DeliveryOutcome
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome == DeliveryOutcome.SUCCESS


class WebPushClient:
    """
    Delivers Web Push messages signed with the server's VAPID key.

    Args:
        vapid_private_key: VAPID private key for push authentication
        vapid_claims: VAPID claims dict (e.g., {"sub": "mailto:..."})
        timeout: Seconds before a single push request is abandoned
        ttl: Seconds the push service may queue an undelivered message
    """

    def __init__(
        self,
        vapid_private_key: str,
        vapid_claims: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
        ttl: int = 86400,
    ):
        self.vapid_private_key = vapid_private_key
        self.vapid_claims = vapid_claims or {}
        self.timeout = timeout
        self.ttl = ttl

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "WebPushClient":
        return cls(
            vapid_private_key=settings.vapid_private_key,
            vapid_claims=settings.vapid_claims,
            timeout=settings.push_timeout_seconds,
            ttl=settings.push_ttl_seconds,
        )

    def ensure_configured(self) -> None:
        """
        Fail fast when no delivery can possibly succeed.

        Raises:
            ConfigurationError: If the VAPID private key or subject is missing
        """
        if not self.vapid_private_key:
            raise ConfigurationError(
                "VAPID private key is not configured", setting="VAPID_PRIVATE_KEY"
            )
        if not self.vapid_claims.get("sub"):
            raise ConfigurationError(
                "VAPID subject is not configured", setting="VAPID_SUBJECT"
            )

    def deliver(
        self, subscription: SubscriptionInfo, payload: Dict[str, Any]
    ) -> DeliveryResult:
        """
        Send a payload to a subscription and classify the outcome.

        Args:
            subscription: Target push subscription
            payload: JSON-serializable push payload

        Returns:
            DeliveryResult; never raises for delivery failures
        """
        try:
            status_code = self._send_push(subscription, json.dumps(payload))
        except PushGoneError as e:
            logger.info(
                "Push subscription gone",
                extra={"endpoint": subscription.endpoint_short, "status_code": e.status_code},
            )
            return DeliveryResult(
                outcome=DeliveryOutcome.GONE,
                status_code=e.status_code,
                error=str(e),
            )
        except PushDeliveryError as e:
            logger.warning(
                f"Push delivery failed: {e}",
                extra={"endpoint": subscription.endpoint_short, "status_code": e.status_code},
            )
            return DeliveryResult(
                outcome=DeliveryOutcome.TRANSIENT,
                status_code=e.status_code,
                error=str(e),
            )

        logger.debug(
            "Push delivered",
            extra={"endpoint": subscription.endpoint_short, "status_code": status_code},
        )
        return DeliveryResult(outcome=DeliveryOutcome.SUCCESS, status_code=status_code)

    def _send_push(self, subscription: SubscriptionInfo, payload_json: str) -> Optional[int]:
        """
        Send a push notification to a single subscription via pywebpush.

        Args:
            subscription: Target push subscription
            payload_json: JSON-encoded push payload

        Returns:
            HTTP status code of the push service response, if available

        Raises:
            PushGoneError: If subscription returned 404 or 410
            PushDeliveryError: If delivery failed for other reasons
        """
        try:
            response = webpush(
                subscription_info=subscription.as_webpush_info(),
                data=payload_json,
                vapid_private_key=self.vapid_private_key,
                # pywebpush fills in aud/exp on the dict it is given
                vapid_claims=dict(self.vapid_claims),
                ttl=self.ttl,
                timeout=self.timeout,
                headers={"Urgency": "normal"},
            )
        except WebPushException as e:
            status_code = None
            if getattr(e, "response", None) is not None:
                status_code = e.response.status_code
                if status_code in GONE_STATUS_CODES:
                    raise PushGoneError(subscription.endpoint, status_code) from e
            raise PushDeliveryError(str(e), status_code=status_code) from e
        except RequestException as e:
            raise PushDeliveryError(f"Network error: {e}") from e
        except Exception as e:
            raise PushDeliveryError(str(e)) from e

        return getattr(response, "status_code", None)
