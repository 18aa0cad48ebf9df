from datetime import datetime, timedelta, timezone

CATEGORY_KEYS = ("diskEncryption", "osUpdates", "antivirus", "sleepSettings")
HEARTBEAT_INTERVAL = timedelta(hours=24)


def _parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def has_state_changed(previous, current) -> bool:
    """
    True if any of the four check categories differs structurally
    between the two snapshots. Timestamps and host metadata are ignored.
    """
    if previous is None:
        return True
    return any(previous.get(key) != current.get(key) for key in CATEGORY_KEYS)


def heartbeat_due(previous, current, now=None, interval=HEARTBEAT_INTERVAL) -> bool:
    if previous is None:
        return True
    last_sent = _parse_timestamp(previous["timestamp"])
    now = _parse_timestamp(now if now is not None else current["timestamp"])
    return now - last_sent >= interval


def should_transmit(previous, current, now=None, heartbeat=HEARTBEAT_INTERVAL) -> bool:
    """
    Decides whether ``current`` should be sent given the last snapshot that
    was successfully transmitted: always on the first run, whenever a
    category changed, and otherwise once per heartbeat interval.
    """
    return (
        previous is None
        or has_state_changed(previous, current)
        or heartbeat_due(previous, current, now=now, interval=heartbeat)
    )
