from datetime import datetime, timedelta, timezone

import pytest

pytestmark = pytest.mark.unit

from rewind.core.atproto.tid import create_tid, parse_tid, tid_for_datetime


def test_create_tid_encodes_timestamp_and_clock():
    assert create_tid(0) == "2222222222222"
    assert create_tid(1) == "2222222222322"
    assert create_tid(0, clock_id=1) == "2222222222223"


def test_create_tid_rejects_out_of_range_values():
    with pytest.raises(ValueError):
        create_tid(-1)
    with pytest.raises(ValueError):
        create_tid(0, clock_id=1024)


def test_tids_sort_like_their_timestamps():
    earlier = tid_for_datetime(datetime(2023, 3, 15, tzinfo=timezone.utc))
    later = tid_for_datetime(datetime(2023, 3, 15, tzinfo=timezone.utc) + timedelta(microseconds=1))
    assert len(earlier) == 13
    assert earlier < later


def test_naive_datetimes_are_utc():
    naive = datetime(2023, 3, 15, 12, 30)
    aware = datetime(2023, 3, 15, 12, 30, tzinfo=timezone.utc)
    assert tid_for_datetime(naive) == tid_for_datetime(aware)


def test_parse_tid_recovers_microseconds():
    moment = datetime(2023, 3, 15, 0, 0, tzinfo=timezone.utc)
    micros, clock_id = parse_tid(tid_for_datetime(moment, clock_id=7))
    assert micros == int(moment.timestamp()) * 1_000_000
    assert clock_id == 7


def test_parse_tid_rejects_garbage():
    with pytest.raises(ValueError):
        parse_tid("not-a-tid")
