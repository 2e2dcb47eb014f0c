# -*- coding: utf-8 -*-
"""
Reason formatting for rule notifications.
Builds the reason document the dispatcher hands to delivery channels.
"""
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import pytz

from expression_rule.rules.state import TriggerSnapshot


def format_timestamp(dt: Optional[datetime], tz_name: str = "UTC") -> Optional[str]:
    """
    Format a timestamp in the given timezone: 2025-11-11 11:30:00 BRT

    Args:
        dt: datetime object (naive values are assumed UTC); None passes through
        tz_name: IANA timezone name (e.g., "America/Sao_Paulo")

    Returns:
        Formatted string, or None when dt is None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    try:
        tz = pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        tz = pytz.utc

    return dt.astimezone(tz).strftime("%Y-%m-%d %H:%M:%S %Z")


def build_reason(snapshot: TriggerSnapshot, tz_name: str = "UTC") -> Dict[str, Any]:
    """
    Reason document for a trigger snapshot.

    Example:
        {"reason": "triggered", "asset": "tempSensor",
         "timestamp": "2025-11-11 14:30:00 UTC"}
    """
    return {
        "reason": snapshot.status.value,
        "asset": snapshot.last_asset_name,
        "timestamp": format_timestamp(snapshot.last_timestamp, tz_name),
    }


def format_reason(snapshot: TriggerSnapshot, tz_name: str = "UTC") -> str:
    """Reason document serialized as JSON."""
    return json.dumps(build_reason(snapshot, tz_name))
