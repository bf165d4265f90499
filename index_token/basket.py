"""바스켓 갱신 모듈 - 심볼 디렉터리 재로드, 구성 종목 기준값 주기 갱신"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable

if TYPE_CHECKING:
    from index_token.config import Config
    from index_token.feed_directory import FeedDirectory
    from index_token.market_data import MarketDataProvider
    from index_token.models import BasketSnapshot
    from index_token.rebalance_store import JsonRebalanceStore

logger = logging.getLogger(__name__)


class BasketRefresher:
    """basket_refresh_interval 주기로 바스켓 재구성.

    구성 종목은 최신 리밸런스 레코드의 토큰 ID를 따르고,
    레코드가 아직 없으면 상위 종목 listings로 초기 바스켓을 만든다.
    """

    def __init__(self, config: Config, provider: MarketDataProvider,
                 directory: FeedDirectory, store: JsonRebalanceStore,
                 on_refreshed: Callable[[BasketSnapshot], Awaitable[None]]):
        self.config = config
        self.provider = provider
        self.directory = directory
        self.store = store
        self.on_refreshed = on_refreshed

    async def run(self) -> None:
        """즉시 1회 실행 후 주기 반복"""
        while True:
            try:
                await self.refresh_once()
            except Exception as e:
                logger.error(f"[바스켓 에러] {e}")
            await asyncio.sleep(self.config.basket_refresh_interval)

    async def refresh_once(self) -> BasketSnapshot | None:
        """갱신 실패 시 기존 바스켓/스냅샷을 그대로 두고 None 반환"""
        if not await self.directory.refresh():
            logger.warning("[바스켓] 심볼 디렉터리 갱신 실패, 이전 디렉터리 사용")

        latest = await self.store.latest()
        if latest is not None and latest.allocated_tokens:
            ids = [t.id for t in latest.allocated_tokens]
            basket = await self.provider.fetch_basket(ids)
        else:
            logger.info("[바스켓] 리밸런스 레코드 없음, 상위 종목으로 초기 바스켓 구성")
            basket = await self.provider.fetch_top_basket()

        if basket is None:
            logger.warning("[바스켓] 갱신 실패, 이전 바스켓 유지")
            return None

        await self.on_refreshed(basket)
        logger.info(
            f"[바스켓] {self.config.token_name} 갱신 완료: "
            f"{[c.symbol for c in basket.constituents]}"
        )
        return basket
