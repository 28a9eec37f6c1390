"""
Active Directory timestamp helpers.

`lastLogon` is a FILETIME: a 64-bit count of 100 ns intervals since
1601-01-01 UTC. A value of 0 means the DC never saw a logon for the account;
ldap3 renders that as a 1601-01-01 datetime when it has the schema loaded.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

FILETIME_EPOCH = datetime(1601, 1, 1, tzinfo=timezone.utc)
NEVER_TICKS = 0x7FFFFFFFFFFFFFFF


def datetime_to_filetime(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delta = dt - FILETIME_EPOCH
    return (delta.days * 86400 + delta.seconds) * 10_000_000 + delta.microseconds * 10


def filetime_to_datetime(value) -> Optional[datetime]:
    """Decode a raw lastLogon value into an aware UTC datetime.

    Accepts ints, digit strings, bytes, ISO-8601 strings and datetimes (what
    ldap3 returns once the schema is known). Returns None for the "never"
    sentinel in any of its encodings.
    """
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode('utf-8', errors='replace')

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        if value.year <= 1601 or value.year >= 9999:
            return None
        return value.astimezone(timezone.utc)

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.lstrip('-').isdigit():
            value = int(text)
        else:
            try:
                parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
            except ValueError:
                raise ValueError(f"Unrecognised lastLogon value: {value!r}")
            return filetime_to_datetime(parsed)

    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Unrecognised lastLogon value: {value!r}")

    if value <= 0 or value >= NEVER_TICKS:
        return None
    try:
        decoded = FILETIME_EPOCH + timedelta(microseconds=value // 10)
    except OverflowError:
        return None
    return filetime_to_datetime(decoded)


def is_never(value) -> bool:
    return filetime_to_datetime(value) is None


def parse_when_created(value) -> Optional[datetime]:
    """whenCreated arrives as generalized time, ISO-8601 or an ldap3 datetime."""
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bytes):
        value = value.decode('utf-8', errors='replace')

    text = str(value).strip()
    # Generalized time: 20190304101530.0Z
    if len(text) >= 14 and text[:14].isdigit():
        return datetime.strptime(text[:14], '%Y%m%d%H%M%S').replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
