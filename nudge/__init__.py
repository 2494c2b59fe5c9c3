"""
Nudge — delivery engine for scheduled push notifications.

Public API:
    from nudge import NotificationService, TickDriver, Dispatcher, NudgeConfig
"""

__version__ = "0.1.0"

# Core
from nudge.core.config import NudgeConfig
from nudge.core.preferences import Preferences
from nudge.core.types import QueueKind, ScheduledItem, Subscription

# Engine
from nudge.scheduler.dispatcher import Dispatcher, DispatchOutcome, PassStats
from nudge.scheduler.engine import PassReport, TickDriver
from nudge.service import NotificationService
from nudge.store.factory import Stores, build_stores

__all__ = [
    # Core
    "NudgeConfig",
    "Preferences",
    "QueueKind",
    "ScheduledItem",
    "Subscription",
    # Engine
    "Dispatcher",
    "DispatchOutcome",
    "PassStats",
    "PassReport",
    "TickDriver",
    "NotificationService",
    "Stores",
    "build_stores",
]
