from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    """Normalize to the naive-UTC form stored in the database. Naive input is taken as UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def is_known_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def resolve_zone(name: str | None) -> ZoneInfo:
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return ZoneInfo("UTC")


def format_local_datetime(value: datetime, zone_name: str | None) -> str:
    """Render a stored UTC instant as e.g. ``Sat, Jun 1, 2:00 PM`` in ``zone_name``.

    Unknown zones fall back to UTC.
    """
    local = value.replace(tzinfo=timezone.utc).astimezone(resolve_zone(zone_name))
    hour = local.hour % 12 or 12
    return f"{local:%a, %b} {local.day}, {hour}:{local:%M} {local:%p}"


def isoformat_utc(value: datetime | None) -> str | None:
    if value is None:
        return None
    return to_utc_naive(value).isoformat() + "Z"
