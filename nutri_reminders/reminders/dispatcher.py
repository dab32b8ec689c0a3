"""
Delivery sinks: the external mechanism that actually presents a reminder.
"""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional
import json
import logging
import os
import uuid

from firebase_admin import _apps, credentials, initialize_app, messaging  # type: ignore

logger = logging.getLogger(__name__)


class DeliverySink(ABC):
    """``deliver(payload)`` returns True on success, False on failure."""

    name = "sink"

    @abstractmethod
    def deliver(self, payload: Dict[str, Any]) -> bool:
        raise NotImplementedError


class LoggingSink(DeliverySink):
    """Writes each delivery to the log. Default sink for local runs."""

    name = "log"

    def deliver(self, payload: Dict[str, Any]) -> bool:
        logger.info(f"🔔 [Deliver] {payload.get('tag', '-')} {payload.get('title', '')} {payload.get('data', {})}")
        return True


def _ensure_firebase_initialized(project_id: Optional[str], credentials_json: Optional[str]) -> bool:
    if _apps:
        return True

    env_gac_json = os.getenv("GOOGLE_APPLICATION_CREDENTIALS_JSON")
    env_gac = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    creds_json: Optional[str] = credentials_json or env_gac_json or env_gac

    if not creds_json or creds_json.strip() == "":
        logger.warning("⚠️ [FCM] No credentials provided - push delivery disabled")
        return False

    options = {"projectId": project_id} if project_id else None
    try:
        if creds_json.strip().startswith("{"):
            initialize_app(credentials.Certificate(json.loads(creds_json)), options=options)
            logger.info(f"✅ [FCM] Firebase app initialized (inline JSON). apps={len(_apps)}")
        elif os.path.exists(creds_json):
            initialize_app(credentials.Certificate(creds_json), options=options)
            logger.info(f"✅ [FCM] Firebase app initialized (file). apps={len(_apps)}")
        elif project_id:
            initialize_app(options=options)
            logger.info(f"✅ [FCM] Firebase app initialized (projectId only). apps={len(_apps)}")
        else:
            logger.warning(f"⚠️ [FCM] Credentials file not found: {creds_json}")
            return False
    except (ValueError, OSError) as e:
        logger.error(f"❌ [FCM] Failed to initialize Firebase: {e!r}")
        return False
    return bool(_apps)


class FcmSink(DeliverySink):
    """Push delivery through Firebase Cloud Messaging.

    The device token comes from ``payload["fcm_token"]`` or, failing that,
    from ``token_resolver(payload)``.
    """

    name = "fcm"

    def __init__(
        self,
        project_id: Optional[str] = None,
        credentials_json: Optional[str] = None,
        token_resolver: Optional[Callable[[Dict[str, Any]], Optional[str]]] = None,
    ):
        self.project_id = project_id
        self.credentials_json = credentials_json
        self.token_resolver = token_resolver

    def deliver(self, payload: Dict[str, Any]) -> bool:
        if not _ensure_firebase_initialized(self.project_id, self.credentials_json):
            return False

        token = payload.get("fcm_token")
        if not token and self.token_resolver is not None:
            token = self.token_resolver(payload)
        if not token:
            logger.warning(f"❌ [FCM] No device token for {payload.get('tag')}")
            return False

        # Unique id keeps iOS from collapsing consecutive reminders
        notification_id = str(uuid.uuid4())
        data = {k: str(v) for k, v in (payload.get("data") or {}).items()}
        data.update({"tag": str(payload.get("tag", "")), "notification_id": notification_id})

        message = messaging.Message(
            token=token,
            notification=messaging.Notification(
                title=payload.get("title") or "Reminder",
                body=payload.get("body") or "It's time!",
            ),
            data=data,
            apns=messaging.APNSConfig(
                headers={
                    "apns-push-type": "alert",
                    "apns-priority": "10",
                    "apns-collapse-id": notification_id,
                }
            ),
        )
        try:
            result = messaging.send(message, dry_run=False)
        except Exception as e:
            logger.error(f"❌ [FCM] Failed to send notification: {e!r}")
            return False
        logger.info(f"✅ [FCM] Notification sent: {result}")
        return True
