"""IntegrityLogger 테스트
Feature: index-token-service
Property: 통계 JSON 직렬화 라운드트립
Property: 재연결 기록 완전성
"""

import asyncio
import json
import tempfile

from hypothesis import given, strategies as st, settings

from index_token.integrity_logger import IntegrityLogger


# ── 통계 JSON 라운드트립 ──

class TestJsonRoundtrip:

    @given(
        reconnects=st.lists(st.tuples(st.floats(min_value=1.0, max_value=2e10),
                                      st.text(max_size=30)), max_size=5),
        ticks=st.lists(st.sampled_from(["btcfeed", "ethfeed", "solfeed"]), max_size=30),
    )
    @settings(max_examples=100)
    def test_stats_json_roundtrip(self, reconnects, ticks):
        """get_periodic_stats 결과는 JSON 직렬화 후 역직렬화해도 동일"""
        with tempfile.TemporaryDirectory() as tmpdir:
            il = IntegrityLogger(tmpdir)
            for ts, reason in reconnects:
                il.record_reconnect(ts, reason)
            for feed_id in ticks:
                il.increment_tick_count(feed_id)
            stats = il.get_periodic_stats()
            assert json.loads(json.dumps(stats)) == stats
            assert stats["reconnect_count"] == len(reconnects)
            assert sum(stats["tick_counts"].values()) == len(ticks)


# ── 재연결 기록 완전성 ──

class TestReconnectCompleteness:

    @given(
        timestamp=st.floats(min_value=1.0, max_value=2e10),
        reason=st.text(min_size=1, max_size=50),
    )
    @settings(max_examples=100)
    def test_reconnect_has_all_fields(self, timestamp, reason):
        with tempfile.TemporaryDirectory() as tmpdir:
            il = IntegrityLogger(tmpdir)
            il.record_reconnect(timestamp, reason)
            event = il._reconnects[-1]
            assert event == {"timestamp": timestamp, "reason": reason}


# ── 단위 테스트 ──

class TestIntegrityLoggerUnit:

    def test_dropped_message_buffer_is_bounded(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            il = IntegrityLogger(tmpdir)
            for i in range(IntegrityLogger.MAX_EVENT_BUFFER + 10):
                il.record_dropped_message("bad json", float(i))
            assert len(il._dropped_messages) <= IntegrityLogger.MAX_EVENT_BUFFER
            assert il._dropped_messages[-1]["timestamp"] == float(IntegrityLogger.MAX_EVENT_BUFFER + 9)

    def test_rebalance_and_subscriber_counts(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            il = IntegrityLogger(tmpdir)
            il.record_dropped_subscriber()
            il.record_dropped_subscriber()
            il.record_rebalance("aborted", "이전 리밸런스 레코드 없음")
            stats = il.get_periodic_stats()
            assert stats["dropped_subscriber_count"] == 2
            assert stats["rebalances"][0]["status"] == "aborted"

    def test_write_periodic_log_resets(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            il = IntegrityLogger(tmpdir)
            il.record_reconnect(1000.0, "connection lost")
            il.increment_tick_count("btcfeed")

            log_file = asyncio.run(il.write_periodic_log())
            assert log_file.exists()
            assert log_file.name.startswith("stats_")
            written = json.loads(log_file.read_text())
            assert written["reconnect_count"] == 1
            assert written["tick_counts"] == {"btcfeed": 1}

            stats = il.get_periodic_stats()
            assert stats["reconnect_count"] == 0
            assert stats["tick_counts"] == {}
