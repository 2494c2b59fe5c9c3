"""
Transport primitives — SendResult and the TransportSender ABC.

A transport sender owns the push protocol (encryption, VAPID, HTTP).
The engine only cares whether a send worked and, if not, whether the
endpoint is gone for good.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from nudge.notifications.payloads import Payload


@dataclass(frozen=True)
class SendResult:
    ok: bool
    permanent_failure: bool = False  # endpoint invalidated by the push service
    reason: str = ""
    status_code: int | None = None

    @classmethod
    def success(cls) -> SendResult:
        return cls(ok=True)

    @classmethod
    def gone(cls, reason: str = "subscription_expired", status_code: int | None = None) -> SendResult:
        return cls(ok=False, permanent_failure=True, reason=reason, status_code=status_code)

    @classmethod
    def failed(cls, reason: str, status_code: int | None = None) -> SendResult:
        return cls(ok=False, reason=reason, status_code=status_code)


class TransportSender(ABC):
    """
    Abstract push transport.

    send() must not raise for delivery failures; it reports them in the
    SendResult.  Timeouts are the sender's business.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier, e.g. 'webpush'."""
        ...

    @abstractmethod
    async def send(self, push_info: dict[str, Any], payload: Payload) -> SendResult:
        """
        Deliver one payload.

        Args:
            push_info: {"endpoint": ..., "keys": {...}}, opaque subscriber credentials
            payload:   what to show
        """
        ...

    async def close(self) -> None:
        """Release transport resources."""
