from __future__ import annotations

from datetime import datetime, timedelta, timezone


def parse_datetime(value: str | datetime | None, *, strict: bool = False) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            if strict:
                raise
            return None
    # naive values are the user's wall clock
    if parsed.tzinfo is None:
        local_tz = datetime.now().astimezone().tzinfo
        parsed = parsed.replace(tzinfo=local_tz)
    return parsed


def to_utc_iso(value: str | datetime | None, *, strict: bool = False) -> str | None:
    parsed = parse_datetime(value, strict=strict)
    if parsed is None:
        return None
    return parsed.astimezone(timezone.utc).isoformat()


# minutes east of utc on the clock the value was written in
def utc_offset_minutes(value: str | datetime | None, *, strict: bool = False) -> int | None:
    parsed = parse_datetime(value, strict=strict)
    if parsed is None:
        return None
    offset = parsed.utcoffset()
    if offset is None:
        return 0
    return int(offset.total_seconds() // 60)


def with_utc_offset(value: datetime | None, offset_minutes: int | None) -> datetime | None:
    if value is None or offset_minutes is None:
        return value
    return value.astimezone(timezone(timedelta(minutes=int(offset_minutes))))


def utc_now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()
