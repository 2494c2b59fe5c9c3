"""
WebPushSender — Web Push Protocol delivery via pywebpush.

pywebpush is blocking (requests under the hood), so each send runs in the
default executor.  HTTP 404 and 410 from the push service mean the
subscription is gone; everything else is worth retrying on a later tick.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from pywebpush import WebPushException, webpush

from nudge.core.config import PushConfig
from nudge.core.errors import TransportError
from nudge.notifications.base import SendResult, TransportSender
from nudge.notifications.payloads import Payload

logger = logging.getLogger(__name__)

GONE_STATUS_CODES = {404, 410}


class WebPushSender(TransportSender):
    """
    Usage:
        sender = WebPushSender(config.push)
        result = await sender.send(subscription.push_info(), payload)
    """

    def __init__(self, config: PushConfig, timeout: float = 10.0) -> None:
        if not config.configured:
            raise TransportError(
                "Web Push is not configured: set VAPID_PRIVATE_KEY and VAPID_SUBJECT"
            )
        self._private_key = config.vapid_private_key
        self._subject = config.vapid_subject
        self._ttl = config.ttl
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "webpush"

    async def send(self, push_info: dict[str, Any], payload: Payload) -> SendResult:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._send_sync, push_info, payload)

    def _send_sync(self, push_info: dict[str, Any], payload: Payload) -> SendResult:
        try:
            webpush(
                subscription_info={
                    "endpoint": push_info["endpoint"],
                    "keys": push_info.get("keys") or {},
                },
                data=json.dumps(payload.to_dict()),
                vapid_private_key=self._private_key,
                # pywebpush adds aud/exp to the claims dict, so build a fresh one
                vapid_claims={"sub": self._subject},
                ttl=self._ttl,
                timeout=self._timeout,
            )
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code in GONE_STATUS_CODES:
                logger.info(f"Push subscription gone ({status_code}): {push_info['endpoint'][:50]}")
                return SendResult.gone(status_code=status_code)
            logger.warning(f"Web push failed ({status_code}): {e}")
            return SendResult.failed(str(e), status_code=status_code)
        except Exception as e:
            logger.warning(f"Web push failed: {e}")
            return SendResult.failed(str(e))
        logger.debug(f"Web push delivered to {push_info['endpoint'][:50]}")
        return SendResult.success()
