"""인덱스 서비스 모듈 - 인덱스 상품 1개의 실시간 가격 맵, 바스켓, 스냅샷 캐시 소유"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable

import websockets

from index_token.broadcaster import Broadcaster
from index_token.feed_directory import FeedDirectory
from index_token.price_feed import LivePriceFeed
from index_token.snapshot_cache import BasketSnapshotStore, SnapshotCache
from index_token.valuator import compute_index_snapshot, feed_symbol

if TYPE_CHECKING:
    from index_token.config import Config
    from index_token.integrity_logger import IntegrityLogger
    from index_token.models import BasketSnapshot, IndexSnapshot, LivePriceTick
    from index_token.telegram_reporter import TelegramReporter

logger = logging.getLogger(__name__)


class IndexService:
    """피드 핸들러, 가격 계산, 브로드캐스터가 공유하는 상태의 단일 소유자"""

    def __init__(self, config: Config, integrity_logger: IntegrityLogger | None = None,
                 telegram: TelegramReporter | None = None,
                 connect: Callable = websockets.connect):
        self.config = config
        self.live_prices: dict[str, float] = {}
        self.baskets = BasketSnapshotStore()
        self.cache = SnapshotCache()
        self.directory = FeedDirectory(config)
        self.feed = LivePriceFeed(
            config.hermes_ws_url, self.apply_ticks,
            reconnect_delay=config.feed_reconnect_delay,
            integrity_logger=integrity_logger, telegram=telegram, connect=connect,
        )
        self.broadcaster = Broadcaster(
            self.cache, config.broadcast_interval,
            send_timeout=config.broadcast_send_timeout,
            integrity_logger=integrity_logger,
        )
        self._tasks: list[asyncio.Task] = []
        self._shutdown_started = False

    def apply_ticks(self, ticks: list[LivePriceTick]) -> None:
        """피드 틱 반영 (키별 마지막 값 우선) 후 전체 재계산"""
        for tick in ticks:
            self.live_prices[tick.feed_id] = tick.price
        self.recompute()

    def recompute(self) -> IndexSnapshot | None:
        snapshot = compute_index_snapshot(
            self.config.token_name, self.baskets.current,
            self.directory.by_symbol, self.live_prices, self.config.total_supply,
        )
        if snapshot is not None:
            self.cache.replace(snapshot)
        return snapshot

    def feed_keys(self, basket: BasketSnapshot) -> set[str]:
        """바스켓 종목 중 디렉터리에 'SYMBOL/USD' 피드가 있는 것만"""
        keys = set()
        for coin in basket.constituents:
            feed_id = self.directory.by_symbol.get(feed_symbol(coin.symbol))
            if feed_id:
                keys.add(feed_id)
            else:
                logger.warning(f"[서비스] {coin.symbol}/USD 피드 없음, 가격 없이 계산")
        return keys

    async def on_basket_refreshed(self, basket: BasketSnapshot) -> None:
        """바스켓 통째로 교체, 키 집합이 바뀌면 피드 재구독 (빈 집합이면 중지), 재계산"""
        self.baskets.replace(basket)
        keys = self.feed_keys(basket)
        for stale in set(self.live_prices) - keys:
            del self.live_prices[stale]
        if not keys:
            # 피드가 하나도 없으면 이전 바스켓 구독을 닫는다
            if self.feed.running:
                logger.warning("[서비스] 바스켓에 구독할 피드 없음, 가격 피드 중지")
            await self.feed.stop()
        elif keys != self.feed.active_keys or not self.feed.running:
            await self.feed.start(keys)
        self.recompute()

    def start_jobs(self, jobs: list[Awaitable]) -> list[asyncio.Task]:
        """주기 작업 등록 (shutdown 시 가장 먼저 중지)"""
        tasks = [asyncio.ensure_future(job) for job in jobs]
        self._tasks.extend(tasks)
        return tasks

    async def shutdown(self) -> None:
        """주기 작업 중지 → 구독자 종료 → 피드 종료 → 메모리 상태 해제 (중복 호출 안전)"""
        if self._shutdown_started:
            return
        self._shutdown_started = True

        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        await self.broadcaster.close()
        await self.feed.stop()

        self.live_prices.clear()
        self.baskets.clear()
        self.cache.clear()
        logger.info(f"[서비스] {self.config.token_name} 종료 완료")
