"""LivePriceFeed 테스트
Feature: index-token-service
Property: 가격 = 가수 * 10^expo
Property: 동시에 열린 구독은 최대 1개
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from hypothesis import given, strategies as st, settings

from index_token.price_feed import FeedState, LivePriceFeed, parse_price_item


def price_item(feed_id="0xABC", mantissa="6000000000000", expo=-8, publish_time=1700000000):
    return {
        "id": feed_id,
        "price": {"price": mantissa, "conf": "1", "expo": expo,
                  "publish_time": publish_time},
    }


# ── 가짜 WebSocket 연결 ──

class FakeConnection:
    """스크립트된 메시지를 흘려보낸 뒤 종료/예외/대기"""

    def __init__(self, factory, messages, error=None, hang=False):
        self.factory = factory
        self.messages = messages
        self.error = error
        self.hang = hang
        self.sent = []

    async def __aenter__(self):
        self.factory.open_now += 1
        self.factory.max_open = max(self.factory.max_open, self.factory.open_now)
        return self

    async def __aexit__(self, *exc):
        self.factory.open_now -= 1
        return False

    async def send(self, msg):
        self.sent.append(json.loads(msg))

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for m in self.messages:
            yield m
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.Event().wait()


class FakeConnect:
    """websockets.connect 대체. 스크립트 소진 후에는 계속 대기하는 연결"""

    def __init__(self, scripts=()):
        self.scripts = list(scripts)
        self.connections = []
        self.open_now = 0
        self.max_open = 0

    def __call__(self, url, **kwargs):
        if self.scripts:
            script = self.scripts.pop(0)
        else:
            script = {"messages": [], "hang": True}
        conn = FakeConnection(self, **script)
        self.connections.append(conn)
        return conn


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("조건 대기 시간 초과")
        await asyncio.sleep(0.01)


def make_feed(connect, ticks=None, **kwargs):
    received = ticks if ticks is not None else []
    feed = LivePriceFeed("wss://test", received.extend, reconnect_delay=0,
                         connect=connect, **kwargs)
    return feed, received


# ── 파싱 ──

class TestParsePriceItem:

    @given(
        mantissa=st.integers(min_value=1, max_value=10**15),
        expo=st.integers(min_value=-12, max_value=0),
    )
    @settings(max_examples=200)
    def test_price_is_mantissa_scaled_by_exponent(self, mantissa, expo):
        tick = parse_price_item(price_item(mantissa=str(mantissa), expo=expo), 1.0)
        assert tick.price == pytest.approx(mantissa * 10.0 ** expo)

    def test_feed_id_is_normalized(self):
        tick = parse_price_item(price_item(feed_id="0xABCdef"), 1.0)
        assert tick.feed_id == "abcdef"

    def test_btc_price(self):
        tick = parse_price_item(price_item(), 1.0)
        assert tick.price == pytest.approx(60000.0)
        assert tick.observed_at == 1700000000

    def test_missing_publish_time_uses_recv_time(self):
        item = price_item()
        del item["price"]["publish_time"]
        assert parse_price_item(item, 123.5).observed_at == 123.5

    def test_malformed_item_raises(self):
        with pytest.raises(KeyError):
            parse_price_item({"id": "abc"}, 1.0)
        with pytest.raises(ValueError):
            parse_price_item(price_item(mantissa="not-a-number"), 1.0)


class TestParseMessage:

    def test_single_price_update(self):
        feed, received = make_feed(FakeConnect())
        msg = json.dumps({"type": "price_update", "price_feed": price_item()})
        ticks = feed.handle_message(msg)
        assert len(ticks) == 1
        assert received == ticks

    def test_batch_drops_only_bad_items(self):
        integrity = MagicMock()
        feed, received = make_feed(FakeConnect(), integrity_logger=integrity)
        msg = json.dumps({"parsed": [price_item(feed_id="aa"), {"id": "bb"},
                                     price_item(feed_id="cc")]})
        ticks = feed.handle_message(msg)
        assert [t.feed_id for t in ticks] == ["aa", "cc"]
        assert integrity.record_dropped_message.call_count == 1
        assert integrity.increment_tick_count.call_count == 2

    def test_malformed_json_is_dropped(self):
        integrity = MagicMock()
        feed, received = make_feed(FakeConnect(), integrity_logger=integrity)
        assert feed.handle_message("not json{") == []
        assert feed.handle_message(json.dumps([1, 2])) == []
        assert received == []
        assert integrity.record_dropped_message.call_count == 2

    def test_subscription_response_is_ignored(self):
        feed, received = make_feed(FakeConnect())
        assert feed.handle_message(json.dumps({"type": "response", "status": "success"})) == []
        assert received == []


# ── 구독 수명 ──

class TestFeedLifecycle:

    def test_start_with_empty_keys_is_noop(self):
        connect = FakeConnect()
        feed, _ = make_feed(connect)

        async def run():
            await feed.start([])

        asyncio.run(run())
        assert connect.connections == []
        assert not feed.running
        assert feed.state is FeedState.DISCONNECTED

    def test_subscribe_sends_normalized_keys(self):
        connect = FakeConnect()
        feed, _ = make_feed(connect)

        async def run():
            await feed.start(["0xBB", "aa"])
            await wait_until(lambda: feed.state is FeedState.SUBSCRIBED)
            await feed.stop()

        asyncio.run(run())
        assert connect.connections[0].sent == [{"type": "subscribe", "ids": ["aa", "bb"]}]

    def test_restart_closes_previous_subscription_first(self):
        connect = FakeConnect()
        feed, _ = make_feed(connect)

        async def run():
            await feed.start(["aa"])
            await wait_until(lambda: feed.state is FeedState.SUBSCRIBED)
            await feed.start(["bb", "cc"])
            await wait_until(lambda: len(connect.connections) == 2
                             and feed.state is FeedState.SUBSCRIBED)
            await feed.stop()

        asyncio.run(run())
        assert connect.max_open == 1
        assert connect.connections[1].sent[0]["ids"] == ["bb", "cc"]
        assert feed.active_keys == frozenset()

    def test_concurrent_starts_keep_single_subscription(self):
        connect = FakeConnect()
        feed, _ = make_feed(connect)

        async def run():
            await asyncio.gather(feed.start(["aa"]), feed.start(["bb"]), feed.start(["cc"]))
            await wait_until(lambda: feed.state is FeedState.SUBSCRIBED)
            await asyncio.sleep(0.05)
            await feed.stop()

        asyncio.run(run())
        assert connect.max_open == 1
        assert connect.open_now == 0

    def test_reconnects_with_last_keys_after_drop(self):
        connect = FakeConnect([
            {"messages": [json.dumps({"type": "price_update",
                                      "price_feed": price_item(feed_id="aa")})],
             "error": ConnectionError("network down")},
            {"messages": [json.dumps({"type": "price_update",
                                      "price_feed": price_item(feed_id="aa",
                                                               mantissa="6100000000000")})],
             "hang": True},
        ])
        integrity = MagicMock()
        telegram = MagicMock()
        telegram.send_disconnect_alert = AsyncMock()
        telegram.send_reconnect_alert = AsyncMock()
        feed, received = make_feed(connect, integrity_logger=integrity, telegram=telegram)

        async def run():
            await feed.start(["aa"])
            await wait_until(lambda: len(received) == 2)
            await feed.stop()

        asyncio.run(run())
        assert len(connect.connections) == 2
        assert connect.max_open == 1
        assert connect.connections[0].sent == connect.connections[1].sent
        assert received[-1].price == pytest.approx(61000.0)
        integrity.record_reconnect.assert_called_once()
        telegram.send_disconnect_alert.assert_awaited_once_with("network down")
        telegram.send_reconnect_alert.assert_awaited_once()

    def test_server_close_triggers_reconnect(self):
        connect = FakeConnect([{"messages": []}])
        feed, _ = make_feed(connect)

        async def run():
            await feed.start(["aa"])
            await wait_until(lambda: len(connect.connections) == 2)
            await feed.stop()

        asyncio.run(run())
        assert connect.max_open == 1

    def test_stop_prevents_reconnect(self):
        connect = FakeConnect()
        feed, _ = make_feed(connect)

        async def run():
            await feed.start(["aa"])
            await wait_until(lambda: feed.state is FeedState.SUBSCRIBED)
            await feed.stop()
            await asyncio.sleep(0.05)

        asyncio.run(run())
        assert len(connect.connections) == 1
        assert connect.open_now == 0
        assert feed.state is FeedState.STOPPED
        assert not feed.running

    def test_stop_during_reconnect_wait(self):
        connect = FakeConnect([{"messages": [], "error": OSError("refused")}] * 3)
        feed = LivePriceFeed("wss://test", lambda ticks: None, reconnect_delay=30,
                             connect=connect)

        async def run():
            await feed.start(["aa"])
            await wait_until(lambda: len(connect.connections) == 1
                             and feed.state is FeedState.DISCONNECTED)
            await feed.stop()

        asyncio.run(run())
        assert len(connect.connections) == 1
        assert feed.state is FeedState.STOPPED
