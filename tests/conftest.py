"""Shared test fixtures for Nudge."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import pytest

from nudge.core.config import NudgeConfig
from nudge.core.types import QueueKind
from nudge.notifications.base import SendResult, TransportSender
from nudge.notifications.payloads import Payload
from nudge.scheduler.dispatcher import Dispatcher
from nudge.service import NotificationService
from nudge.store.factory import Stores
from nudge.store.memory import MemoryScheduleStore, MemorySubscriptionStore

# 19:00 UTC on day 292 of 2026 (an even day)
NOW = datetime(2026, 10, 19, 19, 0, tzinfo=timezone.utc)


class FakeSender(TransportSender):
    """Controllable transport: per-endpoint results, exceptions on demand."""

    def __init__(self) -> None:
        self.results: dict[str, SendResult] = {}
        self.raise_for: set[str] = set()
        self.attempts: list[tuple[str, Payload]] = []

    @property
    def name(self) -> str:
        return "fake"

    @property
    def delivered(self) -> list[tuple[str, Payload]]:
        return [
            (endpoint, payload)
            for endpoint, payload in self.attempts
            if self.results.get(endpoint, SendResult.success()).ok
            and endpoint not in self.raise_for
        ]

    async def send(self, push_info: dict[str, Any], payload: Payload) -> SendResult:
        endpoint = push_info["endpoint"]
        self.attempts.append((endpoint, payload))
        if endpoint in self.raise_for:
            raise RuntimeError("connection reset")
        return self.results.get(endpoint, SendResult.success())


@pytest.fixture(autouse=True)
def restore_nudge_logger():
    """setup_logging rewires the shared "nudge" logger; put it back after each test."""
    logger = logging.getLogger("nudge")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def config():
    """Create a default config without loading from disk."""
    return NudgeConfig()


@pytest.fixture
def stores() -> Stores:
    """Fresh in-memory stores."""
    return Stores(
        subscriptions=MemorySubscriptionStore(),
        followups=MemoryScheduleStore(QueueKind.FOLLOWUP),
        active_checkins=MemoryScheduleStore(QueueKind.ACTIVE_CHECKIN),
    )


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def dispatcher(stores, sender) -> Dispatcher:
    return Dispatcher(stores, sender)


@pytest.fixture
def service(stores, dispatcher) -> NotificationService:
    return NotificationService(stores, dispatcher)
