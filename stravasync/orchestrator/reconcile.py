"""Merge remote activities into the per-day calendar event collection.

Calendar events are stored as ``{"YYYY-MM-DD": [event, ...]}``.  An activity
lands in the bucket of its start date and is skipped when that bucket already
holds an event with the same ``strava_id``, so reconciling the same activity
set twice never produces duplicates.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable, Iterable

from stravasync.orchestrator.base import ActivityRecord, ReconciledEvent, utc_now_iso

logger = logging.getLogger("stravasync.orchestrator.reconcile")

CalendarEvents = dict[str, list[dict]]


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing 'Z'.

    Raises:
        TypeError:  ``value`` is not a string.
        ValueError: ``value`` is not ISO-8601.
    """
    if not isinstance(value, str):
        raise TypeError(f"timestamp must be a string, got {type(value).__name__}")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def date_bucket(activity: ActivityRecord) -> str:
    """Return the calendar day an activity belongs to.

    The athlete-local start time wins when the remote service sends one;
    otherwise the date of the UTC start time is used.
    """
    start = activity.start_date_local or activity.start_date
    return format_date_key(parse_timestamp(start).date())


def format_date_key(day: date) -> str:
    return day.isoformat()


def to_event(
    activity: ActivityRecord,
    label_for: Callable[[str], str],
    synced_at: str | None = None,
) -> ReconciledEvent:
    """Map one activity to a calendar event.

    Args:
        activity:  The remote activity.
        label_for: Maps a remote type code to its display label.
        synced_at: Timestamp to stamp on the event (defaults to now).

    Returns:
        The reconciled event.
    """
    return ReconciledEvent(
        type=label_for(activity.type),
        distance=activity.distance,
        duration=round(activity.moving_time / 60),
        strava_id=activity.id,
        synced_at=synced_at or utc_now_iso(),
    )


def reconcile(
    existing: CalendarEvents,
    activities: Iterable[ActivityRecord],
    label_for: Callable[[str], str],
) -> tuple[CalendarEvents, int]:
    """Merge activities into a copy of ``existing``.

    Args:
        existing:   Current calendar events; left unmodified.
        activities: Remote activities to merge.
        label_for:  Maps a remote type code to its display label.

    Returns:
        (merged events, number of events added)
    """
    merged: CalendarEvents = {day: list(events) for day, events in existing.items()}
    synced_at = utc_now_iso()
    added = 0

    for activity in activities:
        try:
            day = date_bucket(activity)
        except (TypeError, ValueError):
            logger.warning("Skipping activity %s with bad start date %r", activity.id, activity.start_date)
            continue

        bucket = merged.setdefault(day, [])
        if any(ev.get("strava_id") == activity.id for ev in bucket):
            continue

        bucket.append(to_event(activity, label_for, synced_at).to_json())
        added += 1

    logger.debug("Reconciled activities: %d new event(s)", added)
    return merged, added


def parse_activities(payload: dict) -> list[ActivityRecord]:
    """Extract ActivityRecords from an activities endpoint response body.

    Malformed entries are logged and dropped.
    """
    records: list[ActivityRecord] = []
    for raw in payload.get("activities") or []:
        try:
            records.append(ActivityRecord.from_json(raw))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Dropping malformed activity %r: %s", raw, exc)
    return records
