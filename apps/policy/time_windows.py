"""
Time window evaluation.

Scheduled and temporary windows form a single gate: if any exist for the
actor's scope, at least one of them must be active. Any active cooldown
blocks regardless of the gate.
"""
from dataclasses import dataclass
from datetime import datetime, time
from typing import Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apps.core.exceptions import ValidationError

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class WindowAggregate:
    schedule_gate_pass: bool
    cooldown_blocking: bool


def _seconds(value: time) -> int:
    return value.hour * 3600 + value.minute * 60 + value.second


def weekday_sunday_first(moment: datetime) -> int:
    """0=Sunday .. 6=Saturday."""
    return (moment.weekday() + 1) % 7


def scheduled_active(window, now: datetime) -> bool:
    """
    True when ``now`` in the window's timezone falls on one of its days and
    within ``[start_time, end_time)``.

    A window whose end precedes its start spans midnight. ``days_of_week``
    always refers to the local weekday of ``now``.
    """
    local = now.astimezone(ZoneInfo(window.timezone or 'UTC'))
    start = _seconds(window.start_time)
    end = _seconds(window.end_time)
    current = _seconds(local.time())

    length = (end - start) % SECONDS_PER_DAY
    elapsed = (current - start) % SECONDS_PER_DAY
    if elapsed >= length:
        return False

    return weekday_sunday_first(local) in set(window.days_of_week or [])


def temporary_active(window, now: datetime) -> bool:
    if window.starts_at is not None and now < window.starts_at:
        return False
    if window.expires_at is not None and now > window.expires_at:
        return False
    return True


def cooldown_active(window, now: datetime) -> bool:
    return window.expires_at is not None and now < window.expires_at


def aggregate(windows: Iterable, now: datetime) -> WindowAggregate:
    gate_seen = False
    gate_open = False
    cooldown_blocking = False

    for window in windows:
        if window.window_type == 'cooldown':
            cooldown_blocking = cooldown_blocking or cooldown_active(window, now)
        elif window.window_type == 'scheduled':
            gate_seen = True
            gate_open = gate_open or scheduled_active(window, now)
        elif window.window_type == 'temporary':
            gate_seen = True
            gate_open = gate_open or temporary_active(window, now)

    return WindowAggregate(
        schedule_gate_pass=(not gate_seen) or gate_open,
        cooldown_blocking=cooldown_blocking,
    )


def validate_window(data: dict, now: datetime) -> dict:
    """
    Check window fields for the given ``window_type`` and return the cleaned dict.

    Raises ValidationError on missing or inconsistent fields.
    """
    window_type = data.get('window_type')
    errors = {}

    if window_type == 'scheduled':
        if data.get('start_time') is None or data.get('end_time') is None:
            errors['start_time'] = 'Scheduled windows need start_time and end_time'
        elif data['start_time'] == data['end_time']:
            errors['end_time'] = 'end_time must differ from start_time'

        days = data.get('days_of_week')
        if days is None:
            days = [1, 2, 3, 4, 5]
        if not days or any(not isinstance(day, int) or day < 0 or day > 6 for day in days):
            errors['days_of_week'] = 'days_of_week must be a non-empty list of integers 0 (Sunday) to 6 (Saturday)'
        else:
            data['days_of_week'] = sorted(set(days))

        tz_name = data.get('timezone') or 'UTC'
        try:
            ZoneInfo(tz_name)
            data['timezone'] = tz_name
        except (ZoneInfoNotFoundError, ValueError):
            errors['timezone'] = f"Unknown timezone '{tz_name}'"

    elif window_type == 'temporary':
        starts_at = data.get('starts_at')
        expires_at = data.get('expires_at')
        if starts_at is None and expires_at is None:
            errors['expires_at'] = 'Temporary windows need starts_at, expires_at or both'
        elif starts_at is not None and expires_at is not None and expires_at <= starts_at:
            errors['expires_at'] = 'expires_at must be after starts_at'

    elif window_type == 'cooldown':
        expires_at = data.get('expires_at')
        if expires_at is None:
            errors['expires_at'] = 'Cooldown windows need expires_at'
        elif expires_at <= now:
            errors['expires_at'] = 'expires_at must be in the future'

    else:
        errors['window_type'] = f"Unknown window type '{window_type}'"

    if errors:
        raise ValidationError('Invalid time window', details=errors)
    return data
