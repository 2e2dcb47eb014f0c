# -*- coding: utf-8 -*-
"""
Trigger state for a notification rule.
Overwritten once per evaluation cycle, read back for reason reporting.
"""
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from loguru import logger


class TriggerStatus(Enum):
    CLEARED = "cleared"
    TRIGGERED = "triggered"


@dataclass(frozen=True)
class TriggerSnapshot:
    """Consistent copy of the trigger state at one point in time."""
    status: TriggerStatus
    last_asset_name: Optional[str]
    last_timestamp: Optional[datetime]

    @property
    def triggered(self) -> bool:
        return self.status is TriggerStatus.TRIGGERED


class TriggerState:
    """
    Two-state machine: CLEARED (initial) and TRIGGERED.

    No hysteresis or debounce: every cycle's result replaces the previous one.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._status = TriggerStatus.CLEARED
        self._last_asset_name: Optional[str] = None
        self._last_timestamp: Optional[datetime] = None

    def set_state(
        self,
        triggered: bool,
        asset_name: Optional[str] = None,
        timestamp: Optional[datetime] = None
    ) -> TriggerStatus:
        """
        Record the result of an evaluation cycle.

        Args:
            triggered: Aggregated decision for the cycle
            asset_name: Asset the decision refers to
            timestamp: Cycle time (defaults to now, UTC)
        """
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)
        elif timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        status = TriggerStatus.TRIGGERED if triggered else TriggerStatus.CLEARED
        with self._lock:
            previous = self._status
            self._status = status
            self._last_asset_name = asset_name
            self._last_timestamp = timestamp.astimezone(timezone.utc)

        if previous is not status:
            logger.info(f"Rule {status.value} (asset={asset_name})")
        return status

    @property
    def status(self) -> TriggerStatus:
        with self._lock:
            return self._status

    def is_triggered(self) -> bool:
        return self.status is TriggerStatus.TRIGGERED

    def snapshot(self) -> TriggerSnapshot:
        with self._lock:
            return TriggerSnapshot(self._status, self._last_asset_name, self._last_timestamp)
