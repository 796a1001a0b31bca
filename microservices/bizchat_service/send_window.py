"""
Send Window Rules

Pure functions that validate and compute vendor send times. All business
hours are evaluated in Korean local time and every timestamp handed to the
vendor sits on a 10-minute boundary.

Two modes:
- ATS (demographic) sends must land in [09:00, 19:00)
- Geofence collection windows may send in [09:00, 20:00), and need a
  (start, end, send) triple with fixed minimum gaps
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from .protocols import SendWindowError

logger = logging.getLogger(__name__)


BUSINESS_TZ = ZoneInfo("Asia/Seoul")

GRANULARITY_MINUTES = 10
MIN_LEAD_TIME = timedelta(hours=1)

OPENING_HOUR = 9
ATS_CLOSING_HOUR = 19
GEOFENCE_CLOSING_HOUR = 20

MIN_COLLECTION_TO_SEND = timedelta(hours=2)
MIN_COLLECTION_SPAN = timedelta(minutes=30)
MIN_END_TO_SEND = timedelta(minutes=30)

MAX_RESOLUTION_PASSES = 3


@dataclass(frozen=True)
class CollectionWindow:
    """Geofence audience collection window"""
    start: datetime
    end: datetime
    send: datetime

    def as_unix(self) -> dict:
        return {
            "collStartDate": to_unix_seconds(self.start),
            "collEndDate": to_unix_seconds(self.end),
            "collSndDate": to_unix_seconds(self.send),
        }


def to_unix_seconds(value: datetime) -> int:
    return int(value.timestamp())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_aware(value: datetime, field: str) -> datetime:
    if value.tzinfo is None:
        raise SendWindowError(f"{field} must carry a timezone", field=field, constraint="timezone")
    return value


def to_local(value: datetime) -> datetime:
    return _require_aware(value, "scheduled_at").astimezone(BUSINESS_TZ)


def round_up_to_boundary(value: datetime) -> datetime:
    """Round up to the next 10-minute boundary in local time (no-op when aligned)."""
    local = to_local(value)
    if local.minute % GRANULARITY_MINUTES == 0 and local.second == 0 and local.microsecond == 0:
        return local
    floored = local.replace(
        minute=local.minute - local.minute % GRANULARITY_MINUTES, second=0, microsecond=0
    )
    # Arithmetic on aware datetimes carries minute overflow into the next hour/day
    return (floored + timedelta(minutes=GRANULARITY_MINUTES)).astimezone(BUSINESS_TZ)


def _within_hours(local: datetime, closing_hour: int) -> bool:
    return OPENING_HOUR <= local.hour < closing_hour


def _format(local: datetime) -> str:
    return local.strftime("%Y-%m-%d %H:%M")


def validate_send_time(
    candidate: datetime,
    now: Optional[datetime] = None,
    closing_hour: int = ATS_CLOSING_HOUR,
) -> datetime:
    """Hard-reject validation of an explicit send time.

    Returns the candidate aligned to the 10-minute grid in local time.

    Raises:
        SendWindowError: outside business hours, inside the lead time, or
            pushed past closing by the alignment
    """
    now = now or _utcnow()
    local = to_local(candidate)

    if not _within_hours(local, closing_hour):
        raise SendWindowError(
            f"Send time {_format(local)} is outside business hours "
            f"({OPENING_HOUR:02d}:00-{closing_hour:02d}:00 KST)",
            constraint="business_hours",
        )

    earliest = now + MIN_LEAD_TIME
    if candidate < earliest:
        raise SendWindowError(
            f"Send time must be at least 1 hour from now (earliest {_format(to_local(earliest))} KST)",
            constraint="lead_time",
        )

    aligned = round_up_to_boundary(local)
    if aligned.date() != local.date() or not _within_hours(aligned, closing_hour):
        raise SendWindowError(
            f"Send time {_format(local)} rounds to {_format(aligned)}, past the "
            f"{closing_hour:02d}:00 KST closing time",
            constraint="business_hours",
        )
    return aligned


def resolve_send_time(
    candidate: Optional[datetime] = None,
    now: Optional[datetime] = None,
    closing_hour: int = ATS_CLOSING_HOUR,
) -> datetime:
    """Round-up-and-revalidate resolution of a send time.

    A missing or too-early candidate becomes now + 1h. The result is aligned,
    moved to the opening hour if it falls before it, then checked against
    the closing hour.
    """
    now = now or _utcnow()
    earliest = now + MIN_LEAD_TIME
    if candidate is None or _require_aware(candidate, "scheduled_at") < earliest:
        candidate = earliest

    aligned = round_up_to_boundary(candidate)
    if aligned.hour < OPENING_HOUR:
        aligned = aligned.replace(hour=OPENING_HOUR, minute=0)

    if aligned.hour >= closing_hour:
        raise SendWindowError(
            f"No send time available today: earliest slot {_format(aligned)} is past "
            f"{closing_hour:02d}:00 KST",
            constraint="business_hours",
        )
    return aligned


def _next_window(
    start: datetime, send: datetime, earliest_start: datetime
) -> CollectionWindow:
    """One resolution pass; each rule only ever moves a point later."""
    start = max(start, earliest_start)

    if send < start + MIN_COLLECTION_TO_SEND:
        send = round_up_to_boundary(start + MIN_COLLECTION_TO_SEND)

    if send.hour < OPENING_HOUR:
        send = send.replace(hour=OPENING_HOUR, minute=0)

    end = round_up_to_boundary(send - MIN_END_TO_SEND)
    return CollectionWindow(start=start, end=end, send=send)


def _check_window(window: CollectionWindow) -> None:
    if not _within_hours(window.send, GEOFENCE_CLOSING_HOUR):
        raise SendWindowError(
            f"Collection send time {_format(window.send)} is outside "
            f"{OPENING_HOUR:02d}:00-{GEOFENCE_CLOSING_HOUR:02d}:00 KST; the 2 hour "
            f"collection gap from {_format(window.start)} does not fit",
            field="collection_send",
            constraint="business_hours",
        )
    if window.send < window.start + MIN_COLLECTION_TO_SEND:
        raise SendWindowError(
            "Collection send must be at least 2 hours after collection start",
            field="collection_send",
            constraint="collection_gap",
        )
    if window.end < window.start + MIN_COLLECTION_SPAN:
        raise SendWindowError(
            "Collection must run for at least 30 minutes",
            field="collection_end",
            constraint="collection_span",
        )
    if window.end > window.send - MIN_END_TO_SEND:
        raise SendWindowError(
            "Collection must end at least 30 minutes before the send time",
            field="collection_end",
            constraint="end_to_send",
        )


def compute_collection_window(
    desired_send: Optional[datetime] = None,
    now: Optional[datetime] = None,
    collection_start: Optional[datetime] = None,
) -> CollectionWindow:
    """Resolve the geofence (start, end, send) triple.

    Rules are applied repeatedly until the triple stops moving, capped at
    three passes.

    Raises:
        SendWindowError: the window cannot be resolved, naming the violated constraint
    """
    now = now or _utcnow()
    earliest_start = round_up_to_boundary(now + MIN_LEAD_TIME)

    start = round_up_to_boundary(collection_start) if collection_start else earliest_start
    send = round_up_to_boundary(desired_send) if desired_send else start + MIN_COLLECTION_TO_SEND
    window = CollectionWindow(start=start, end=send, send=send)

    for _ in range(MAX_RESOLUTION_PASSES):
        resolved = _next_window(window.start, window.send, earliest_start)
        if resolved == window:
            break
        window = resolved
    else:
        # Cap reached; accept only if the final pass is a fixed point
        if _next_window(window.start, window.send, earliest_start) != window:
            raise SendWindowError(
                "Collection window did not settle",
                field="collection_send",
                constraint="unresolved",
            )

    _check_window(window)
    logger.debug(
        f"Resolved collection window start={_format(window.start)} "
        f"end={_format(window.end)} send={_format(window.send)}"
    )
    return window


__all__ = [
    "BUSINESS_TZ",
    "GRANULARITY_MINUTES",
    "MIN_LEAD_TIME",
    "ATS_CLOSING_HOUR",
    "GEOFENCE_CLOSING_HOUR",
    "CollectionWindow",
    "to_unix_seconds",
    "to_local",
    "round_up_to_boundary",
    "validate_send_time",
    "resolve_send_time",
    "compute_collection_window",
]
