"""
OneSignal push notifications
Every push goes out with the HorseLinc heading and bumps the iOS badge
"""

import logging
from typing import Iterable

import httpx

from ..config import ONESIGNAL_API_KEY, ONESIGNAL_API_URL, ONESIGNAL_APP_ID

logger = logging.getLogger(__name__)

PUSH_HEADING = "HorseLinc"


def collect_device_ids(recipients: Iterable) -> list[str]:
    """Unique device ids across recipients, in first-seen order"""
    device_ids: list[str] = []
    for recipient in recipients:
        if recipient is None:
            continue
        for device_id in recipient.device_ids or []:
            if device_id and device_id not in device_ids:
                device_ids.append(device_id)
    return device_ids


async def create_notification(payload: dict) -> dict:
    """POST a notification to OneSignal"""
    if not ONESIGNAL_APP_ID or not ONESIGNAL_API_KEY:
        logger.warning("⚠️ OneSignal not configured - skipping push")
        return {}

    body = {"app_id": ONESIGNAL_APP_ID, **payload}
    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.post(
            ONESIGNAL_API_URL,
            json=body,
            headers={
                "Authorization": f"Basic {ONESIGNAL_API_KEY}",
                "Content-Type": "application/json",
            },
        )

    if response.status_code not in [200, 201]:
        logger.error(f"❌ OneSignal push failed: HTTP {response.status_code} {response.text}")
        return {}

    return response.json()


async def send_push_notification(recipients: Iterable, message: str) -> bool:
    """
    Push a message to every device registered by the recipients.
    Failures are logged, never raised.
    """
    device_ids = collect_device_ids(recipients)
    if not device_ids:
        return False

    try:
        logger.info(f"📱 Sending push to {len(device_ids)} device(s)")
        await create_notification(
            {
                "include_player_ids": device_ids,
                "headings": {"en": PUSH_HEADING},
                "contents": {"en": message},
                "ios_badgeType": "Increase",
                "ios_badgeCount": 1,
            }
        )
        return True
    except Exception as e:
        logger.error(f"❌ Push notification error: {e}")
        return False
