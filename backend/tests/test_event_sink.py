"""
Event Sink Tests
"""
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from pymongo.errors import PyMongoError

from services.event_sink import EventSink, accept_ts, clamp_days
from utils.timezone import epoch_ms

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
NOW_MS = epoch_ms(NOW)
DAY_MS = 24 * 60 * 60 * 1000


class TestHelpers:
    @pytest.mark.parametrize("raw,expected", [
        (NOW_MS - 5000, NOW_MS - 5000),
        (str(NOW_MS - 5000), NOW_MS - 5000),
        (NOW_MS + 10 * 60 * 1000, NOW_MS),
        (-1, NOW_MS),
        ("soon", NOW_MS),
        (None, NOW_MS),
        (True, NOW_MS),
    ])
    def test_accept_ts(self, raw, expected):
        assert accept_ts(raw, NOW_MS) == expected

    @pytest.mark.parametrize("raw,expected", [
        (None, 7), ("0", 7), ("x", 7), ("30", 30), (500, 90), (-3, 1),
    ])
    def test_clamp_days(self, raw, expected):
        assert clamp_days(raw) == expected


class TestBuildEvent:
    def test_unknown_type_dropped(self, sink):
        assert sink.build_event("purchase", product_id="p1") is None

    def test_event_without_identifier_dropped(self, sink):
        assert sink.build_event("buy_click") is None

    def test_fields_clamped(self, sink):
        event = sink.build_event(
            "buy_click",
            product_id="p" * 400,
            slug="JANE",
            ref="r" * 2000,
            ua="u" * 1000,
            ip="2001:db8:abcd:12::1",
            ts=NOW_MS - 1000,
            now=NOW,
        )
        assert len(event.productId) == 160
        assert event.slug == "jane"
        assert len(event.ref) == 900
        assert len(event.ua) == 260
        assert event.ip == "2001:db8:abcd::"
        assert event.ts == NOW_MS - 1000


class TestRecord:
    def test_insert_failure_is_swallowed(self):
        db = MagicMock()
        db.__getitem__.return_value.insert_one.side_effect = PyMongoError("down")
        sink = EventSink(db)
        event = sink.build_event("page_view", slug="jane")
        assert sink.record(event) is False

    def test_none_is_noop(self, sink):
        assert sink.record(None) is False


class TestSummarize:
    def _seed(self, sink, edit_token, event_type, product_id, ts):
        sink.record(sink.build_event(event_type, product_id=product_id, edit_token=edit_token, ts=ts, now=NOW))

    def test_counts_per_product_and_type(self, sink):
        for _ in range(3):
            self._seed(sink, "tok", "buy_click", "p1", NOW_MS - 1000)
        self._seed(sink, "tok", "begin_checkout", "p1", NOW_MS - 500)
        self._seed(sink, "tok", "buy_click", "p2", NOW_MS - 2 * DAY_MS)
        self._seed(sink, "tok", "buy_click", "p3", NOW_MS - 30 * DAY_MS)
        self._seed(sink, "other", "buy_click", "p1", NOW_MS - 1000)

        summary = sink.summarize("tok", days=7, now=NOW)
        totals = [(t["productId"], t["type"], t["count"]) for t in summary["totals"]]
        assert totals == [("p1", "buy_click", 3), ("p1", "begin_checkout", 1), ("p2", "buy_click", 1)]
        assert summary["range"]["days"] == 7
        assert summary["range"]["to"] == NOW_MS

    def test_type_filter(self, sink):
        self._seed(sink, "tok", "buy_click", "p1", NOW_MS - 1000)
        self._seed(sink, "tok", "page_view", "", NOW_MS - 1000)
        summary = sink.summarize("tok", types=["page_view", "bogus"], now=NOW)
        assert [t["type"] for t in summary["totals"]] == ["page_view"]
