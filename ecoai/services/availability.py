"""Availability engine: business-hours gate, buffered conflict detection and
free-slot scanning for a single persona.

Design
------
* All comparisons happen on *local wall-clock* datetimes: each instant is
  projected into the persona's timezone and its tzinfo dropped.  Naive
  values are treated as already projected, which makes the projection
  idempotent.
* An appointment occupies the busy block ``[start, end + buffer)``; a
  request for ``t`` needs ``[t, t + duration + buffer)``.  Two blocks
  conflict when ``start_a < end_b and end_a > start_b``.
* The slot scan walks the requested day from opening time in 30 minute
  steps, jumping straight to the end of any busy block it runs into, and
  keeps boundaries that are strictly in the future and leave room for the
  service before closing.  At most ``MAX_SLOTS`` are reported.

``evaluate_availability`` is pure; ``AvailabilityService`` loads the
appointments around the requested day from the store and calls it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

from ecoai.models import WEEKDAYS, Appointment, AppointmentStatus, Persona, utcnow
from ecoai.services.store import Store
from ecoai.tools.results import AvailabilityResult

logger = logging.getLogger(__name__)

SLOT_STEP = timedelta(minutes=30)
MAX_SLOTS = 8
SLOT_FORMAT = "%I:%M %p"

SLOT_AVAILABLE_MESSAGE = "Slot available"


@dataclass(frozen=True)
class BusyBlock:
    """A booked interval in local wall-clock time, buffer already included."""

    start: datetime
    end: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end and end > self.start


# ── Time helpers ─────────────────────────────────────────────────────


def to_local_wall_clock(instant: datetime, zone: ZoneInfo) -> datetime:
    """Project *instant* onto the wall clock of *zone* (naive result)."""
    if instant.tzinfo is None:
        return instant
    return instant.astimezone(zone).replace(tzinfo=None)


def parse_requested_datetime(value: str | datetime, zone: ZoneInfo) -> datetime:
    """Parse an ISO-8601 string into an aware datetime.

    Values without an offset are read as wall-clock time in *zone*.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            raise ValueError("No date/time was provided")
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return parsed


def _time_on(day: datetime, hhmm: str) -> datetime:
    """Wall-clock datetime for ``HH:MM`` on *day*; ``24:00`` is midnight after it."""
    hour, minute = (int(part) for part in hhmm.strip().split(":"))
    midnight = datetime.combine(day.date(), time.min)
    return midnight + timedelta(hours=hour, minutes=minute)


def format_slot(slot: datetime) -> str:
    return slot.strftime(SLOT_FORMAT)


# ── Core algorithm ───────────────────────────────────────────────────


def busy_blocks(
    appointments: Iterable[Appointment], zone: ZoneInfo, buffer: timedelta,
) -> list[BusyBlock]:
    """Busy blocks of all non-cancelled appointments, sorted by start."""
    blocks = [
        BusyBlock(
            start=to_local_wall_clock(a.date_time, zone),
            end=to_local_wall_clock(a.end_time, zone) + buffer,
        )
        for a in appointments
        if a.status != AppointmentStatus.CANCELLED
    ]
    return sorted(blocks, key=lambda b: b.start)


def find_conflict(start: datetime, length: timedelta, blocks: list[BusyBlock]) -> BusyBlock | None:
    """Earliest block overlapping ``[start, start + length)``, if any."""
    end = start + length
    return next((b for b in blocks if b.overlaps(start, end)), None)


def scan_free_slots(
    open_at: datetime,
    close_at: datetime,
    now: datetime,
    duration: timedelta,
    buffer: timedelta,
    blocks: list[BusyBlock],
) -> list[datetime]:
    slots: list[datetime] = []
    scan = open_at
    while scan < close_at:
        conflict = find_conflict(scan, duration + buffer, blocks)
        if conflict is not None:
            scan = conflict.end
            continue
        if scan > now and scan + duration <= close_at:
            slots.append(scan)
        scan += SLOT_STEP
    # dict.fromkeys keeps first-seen order
    return list(dict.fromkeys(slots))[:MAX_SLOTS]


def evaluate_availability(
    requested: datetime,
    persona: Persona,
    appointments: Iterable[Appointment],
    now: datetime,
) -> AvailabilityResult:
    """Decide whether *requested* is bookable and list other open slots that day."""
    settings = persona.appointment_settings
    zone = settings.zone
    local_requested = to_local_wall_clock(requested, zone)
    local_now = to_local_wall_clock(now, zone)

    weekday = WEEKDAYS[local_requested.weekday()]
    hours = persona.business.hours_for(weekday)
    if hours is None or not hours.is_bookable:
        return AvailabilityResult(
            available=False, message=f"We are closed on {weekday.capitalize()}s.",
        )

    open_at = _time_on(local_requested, hours.open)
    close_at = _time_on(local_requested, hours.close)
    if not open_at <= local_requested < close_at:
        return AvailabilityResult(
            available=False,
            message=f"That time is outside our business hours ({hours.open} - {hours.close}).",
        )

    duration = timedelta(minutes=settings.default_duration)
    buffer = timedelta(minutes=settings.buffer_time)
    blocks = busy_blocks(appointments, zone, buffer)

    conflict = find_conflict(local_requested, duration + buffer, blocks)
    slots = [format_slot(s) for s in scan_free_slots(open_at, close_at, local_now, duration, buffer, blocks)]

    if conflict is not None:
        return AvailabilityResult(
            available=False,
            message=f"Slot is busy until {format_slot(conflict.end)}.",
            alternative_slots=slots,
        )
    return AvailabilityResult(available=True, message=SLOT_AVAILABLE_MESSAGE, future_slots=slots)


# ── Store-backed service ─────────────────────────────────────────────


class AvailabilityService:
    """Loads the appointments around the requested day and evaluates them."""

    def __init__(self, store: Store, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    def check(self, requested_date_time: str | datetime, persona: Persona) -> AvailabilityResult:
        zone = persona.appointment_settings.zone
        requested = parse_requested_datetime(requested_date_time, zone)
        local_day = to_local_wall_clock(requested, zone).date()

        # Requested day plus one day either side covers blocks crossing midnight
        window_start = datetime.combine(local_day - timedelta(days=1), time.min, tzinfo=zone)
        window_end = datetime.combine(local_day + timedelta(days=2), time.min, tzinfo=zone)
        appointments = self._store.list_appointments(window_start, window_end, owner_id=persona.id)

        result = evaluate_availability(requested, persona, appointments, now=self._clock())
        logger.info(
            "Availability for %s (owner %s): available=%s, %d busy candidates",
            requested.isoformat(), persona.id, result.available, len(appointments),
        )
        return result
