from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from telehealth.core import config
from telehealth.scheduling.errors import NotFoundError, ValidationFailedError
from telehealth.scheduling.repositories import AppointmentStore, AvailabilityStore, TherapistStore
from telehealth.scheduling.timeutils import resolve_zone


@dataclass(frozen=True)
class AvailableSlot:
    start_time: time
    end_time: time
    starts_at: datetime
    ends_at: datetime


def day_of_week(value: date) -> int:
    """Day index counting from Sunday (0) to Saturday (6)."""
    return (value.weekday() + 1) % 7


def iterate_window_slots(window_start: time, window_end: time, slot_minutes: int) -> list[tuple[time, time]]:
    """Split a window into back-to-back slots, dropping a remainder shorter than one slot."""
    anchor = date(2000, 1, 3)
    current = datetime.combine(anchor, window_start)
    end = datetime.combine(anchor, window_end)
    step = timedelta(minutes=slot_minutes)

    slots: list[tuple[time, time]] = []
    while current + step <= end:
        slots.append((current.time(), (current + step).time()))
        current += step

    return slots


def local_to_utc(on_date: date, local_time: time, zone_name: str | None) -> datetime:
    local = datetime.combine(on_date, local_time, tzinfo=resolve_zone(zone_name))
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def local_time_exists(on_date: date, local_time: time, zone_name: str | None) -> bool:
    """False for wall-clock times skipped by a daylight-saving jump."""
    zone = resolve_zone(zone_name)
    local = datetime.combine(on_date, local_time)
    round_trip = local.replace(tzinfo=zone).astimezone(timezone.utc).astimezone(zone)
    return round_trip.replace(tzinfo=None) == local


def overlaps(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    return start < other_end and end > other_start


class AvailabilityService:
    """Answers which of a therapist's slots are free on a given date. Never writes."""

    def __init__(
        self,
        therapists: TherapistStore,
        availability: AvailabilityStore,
        appointments: AppointmentStore,
    ):
        self.therapists = therapists
        self.availability = availability
        self.appointments = appointments

    def get_available_slots(self, therapist_id: str, on_date: date, slot_minutes: int | None = None) -> list[AvailableSlot]:
        if slot_minutes is None:
            slot_minutes = config.DEFAULT_SLOT_MINUTES
        if slot_minutes <= 0:
            raise ValidationFailedError('Slot length must be a positive number of minutes.')

        therapist = self.therapists.get(therapist_id)
        if therapist is None:
            raise NotFoundError('Therapist not found.')

        windows = self.availability.windows_for_day(therapist_id, day_of_week(on_date))
        if not windows:
            return []

        candidates: dict[datetime, AvailableSlot] = {}
        for window in windows:
            for start_time, end_time in iterate_window_slots(window.start_time, window.end_time, slot_minutes):
                if not local_time_exists(on_date, start_time, therapist.timezone):
                    continue
                starts_at = local_to_utc(on_date, start_time, therapist.timezone)
                candidates.setdefault(
                    starts_at,
                    AvailableSlot(
                        start_time=start_time,
                        end_time=end_time,
                        starts_at=starts_at,
                        ends_at=starts_at + timedelta(minutes=slot_minutes),
                    ),
                )

        if not candidates:
            return []

        range_start = min(candidates)
        range_end = max(slot.ends_at for slot in candidates.values())
        blocked = self.availability.blocked_between(therapist_id, range_start, range_end)
        booked_starts = self.appointments.active_starts(therapist_id, range_start, range_end)

        free_slots = [
            slot
            for starts_at, slot in candidates.items()
            if starts_at not in booked_starts
            and not any(overlaps(slot.starts_at, slot.ends_at, block.starts_at, block.ends_at) for block in blocked)
        ]
        return sorted(free_slots, key=lambda slot: slot.starts_at)
