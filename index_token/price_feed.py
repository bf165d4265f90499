"""실시간 가격 피드 모듈 - Pyth Hermes WebSocket 구독, 틱 파싱, 재연결 감독"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable

import websockets

from index_token.feed_directory import normalize_feed_id
from index_token.models import LivePriceTick

if TYPE_CHECKING:
    from index_token.integrity_logger import IntegrityLogger
    from index_token.telegram_reporter import TelegramReporter

logger = logging.getLogger(__name__)


class FeedState(str, Enum):
    """구독 상태 (DISCONNECTED → CONNECTING → SUBSCRIBED → DISCONNECTED 재시도)"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    STOPPED = "stopped"


def parse_price_item(item: dict, recv_time: float) -> LivePriceTick:
    """가격 항목 1건 파싱: price = 가수 * 10^expo. 형식 오류 시 예외"""
    price = item["price"]
    mantissa = int(price["price"])
    exponent = int(price["expo"])
    return LivePriceTick(
        feed_id=normalize_feed_id(str(item["id"])),
        price=mantissa * 10.0 ** exponent,
        observed_at=float(price.get("publish_time") or recv_time),
    )


class LivePriceFeed:
    """소비자당 활성 구독 1개만 유지하는 가격 피드"""

    def __init__(self, ws_url: str,
                 on_ticks: Callable[[list[LivePriceTick]], None],
                 reconnect_delay: float = 5.0,
                 integrity_logger: IntegrityLogger | None = None,
                 telegram: TelegramReporter | None = None,
                 connect: Callable = websockets.connect):
        self.ws_url = ws_url
        self.on_ticks = on_ticks
        self.reconnect_delay = reconnect_delay
        self.integrity_logger = integrity_logger
        self.telegram = telegram
        self._connect = connect
        self.state = FeedState.DISCONNECTED
        self.active_keys: frozenset[str] = frozenset()
        self._task: asyncio.Task | None = None
        self._disconnect_time: float | None = None
        self._lock = asyncio.Lock()  # start/stop 직렬화 (동시 구독 2개 방지)

    async def start(self, feed_keys: Iterable[str]) -> None:
        """기존 구독을 먼저 닫고 새 키 집합으로 구독. 빈 집합이면 no-op"""
        keys = frozenset(normalize_feed_id(k) for k in feed_keys)
        if not keys:
            return
        async with self._lock:
            await self._close_current()
            self.active_keys = keys
            self.state = FeedState.DISCONNECTED
            self._task = asyncio.create_task(self._supervise())
        logger.info(f"[피드] {len(keys)}개 피드 구독 시작")

    async def stop(self) -> None:
        """의도적 종료: 키 비우고 연결/재연결 대기 취소, 이후 자동 재연결 없음"""
        async with self._lock:
            self.active_keys = frozenset()
            await self._close_current()
            self.state = FeedState.STOPPED

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _close_current(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _supervise(self) -> None:
        """연결 → 구독 → 수신, 끊기면 고정 대기 후 마지막 키 집합으로 재연결"""
        while self.active_keys:
            keys = self.active_keys
            self.state = FeedState.CONNECTING
            try:
                async with self._connect(self.ws_url, ping_interval=20) as ws:
                    await ws.send(json.dumps({"type": "subscribe", "ids": sorted(keys)}))
                    self.state = FeedState.SUBSCRIBED
                    await self._on_subscribed()
                    async for raw_msg in ws:
                        self.handle_message(raw_msg)
                reason = "서버가 연결 종료"
            except asyncio.CancelledError:
                raise
            except Exception as e:
                reason = str(e) or type(e).__name__
            finally:
                if self.state is not FeedState.STOPPED:
                    self.state = FeedState.DISCONNECTED

            if not self.active_keys:
                break
            await self._on_disconnected(reason)
            await asyncio.sleep(self.reconnect_delay)

    async def _on_subscribed(self) -> None:
        if self._disconnect_time is not None:
            downtime = time.time() - self._disconnect_time
            self._disconnect_time = None
            logger.info(f"[피드] 재연결 성공 (다운타임 {downtime:.1f}초)")
            if self.telegram:
                await self.telegram.send_reconnect_alert(downtime)
        else:
            logger.info("[연결] Hermes WebSocket 구독 성공")

    async def _on_disconnected(self, reason: str) -> None:
        self._disconnect_time = self._disconnect_time or time.time()
        logger.error(f"[에러-피드] {reason}, {self.reconnect_delay}초 후 재연결...")
        if self.integrity_logger:
            self.integrity_logger.record_reconnect(time.time(), reason)
        if self.telegram:
            await self.telegram.send_disconnect_alert(reason)

    def handle_message(self, raw_msg: str | bytes) -> list[LivePriceTick]:
        """수신 메시지 파싱 후 콜백 전달. 잘못된 항목만 버리고 나머지는 반영"""
        ticks = self.parse_message(raw_msg)
        if ticks:
            if self.integrity_logger:
                for tick in ticks:
                    self.integrity_logger.increment_tick_count(tick.feed_id)
            self.on_ticks(ticks)
        return ticks

    def parse_message(self, raw_msg: str | bytes) -> list[LivePriceTick]:
        """단건(price_update) / 배치(parsed) 메시지 모두 처리"""
        recv_time = time.time()
        try:
            data = json.loads(raw_msg)
        except (TypeError, ValueError):
            self._drop("JSON 파싱 실패", recv_time)
            return []
        if not isinstance(data, dict):
            self._drop("객체가 아닌 메시지", recv_time)
            return []

        msg_type = data.get("type")
        if msg_type == "price_update":
            items = [data.get("price_feed")]
        elif "parsed" in data:
            items = data.get("parsed") or []
        elif msg_type == "response":
            if data.get("status") != "success":
                logger.warning(f"[피드] 구독 응답 오류: {data.get('error')}")
            return []
        else:
            return []

        ticks = []
        for item in items:
            try:
                ticks.append(parse_price_item(item, recv_time))
            except (KeyError, TypeError, ValueError) as e:
                self._drop(f"가격 항목 오류: {e!r}", recv_time)
        return ticks

    def _drop(self, reason: str, timestamp: float) -> None:
        logger.warning(f"[피드] 메시지 버림: {reason}")
        if self.integrity_logger:
            self.integrity_logger.record_dropped_message(reason, timestamp)
