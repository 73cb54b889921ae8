from datetime import datetime, timedelta, timezone

from util.time import duration_from_nanos, from_unix_nanos, utc_iso


def test_from_unix_nanos_keeps_microseconds():
    assert from_unix_nanos(1704164645123456789) == datetime(
        2024, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc
    )
    assert from_unix_nanos(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)


def test_duration_from_nanos():
    assert duration_from_nanos(1_500_000_000) == timedelta(seconds=1, milliseconds=500)
    assert duration_from_nanos(999) == timedelta(0)
    assert duration_from_nanos(0) == timedelta(0)


def test_utc_iso_uses_z_suffix():
    assert utc_iso(datetime(2024, 1, 1, tzinfo=timezone.utc)) == "2024-01-01T00:00:00Z"
