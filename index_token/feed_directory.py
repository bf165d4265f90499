"""오라클 심볼 디렉터리 모듈 - Pyth Hermes price_feeds 조회 및 심볼 → 피드 ID 매핑"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import aiohttp

from index_token.models import FeedEntry

if TYPE_CHECKING:
    from index_token.config import Config

logger = logging.getLogger(__name__)


def normalize_feed_id(feed_id: str) -> str:
    """'0xABC..' / 'abc..' → 'abc..' (웹소켓 메시지는 0x 없이 옴)"""
    feed_id = feed_id.lower()
    return feed_id[2:] if feed_id.startswith("0x") else feed_id


class FeedDirectory:
    """display_symbol(대문자) → 피드 ID 디렉터리"""

    PRICE_FEEDS_PATH = "/v2/price_feeds"

    def __init__(self, config: Config):
        self.config = config
        self.max_retries = 3
        self.by_symbol: dict[str, str] = {}

    def load(self, entries: list[FeedEntry]) -> None:
        """디렉터리 통째로 교체"""
        self.by_symbol = {
            e.display_symbol.upper(): normalize_feed_id(e.feed_id) for e in entries
        }

    @staticmethod
    def parse_entries(payload: list[dict]) -> list[FeedEntry]:
        """Hermes 응답 → FeedEntry 목록 (형식 오류 항목은 제외)"""
        entries = []
        for item in payload:
            try:
                entries.append(FeedEntry(
                    feed_id=str(item["id"]),
                    display_symbol=str(item["attributes"]["display_symbol"]),
                ))
            except (KeyError, TypeError):
                continue
        return entries

    async def refresh(self) -> bool:
        """Hermes에서 crypto 피드 목록 재조회. 실패 시 기존 디렉터리 유지"""
        url = f"{self.config.hermes_url}{self.PRICE_FEEDS_PATH}"
        for attempt in range(self.max_retries):
            try:
                async with aiohttp.ClientSession() as session:
                    async with session.get(
                        url,
                        params={"asset_type": "crypto"},
                        timeout=aiohttp.ClientTimeout(total=10),
                    ) as resp:
                        if resp.status == 200:
                            payload = await resp.json()
                            entries = self.parse_entries(payload)
                            self.load(entries)
                            logger.info(f"[디렉터리] 피드 {len(entries)}개 로드")
                            return True
                        logger.warning(f"[디렉터리] HTTP {resp.status} (시도 {attempt+1}/{self.max_retries})")
            except Exception as e:
                logger.warning(f"[디렉터리] 조회 실패 (시도 {attempt+1}/{self.max_retries}): {e}")
            if attempt < self.max_retries - 1:
                await asyncio.sleep(2 ** attempt)
        return False
