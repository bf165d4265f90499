"""시장 데이터 조회 모듈 - CoinMarketCap 상위 종목 / 종목별 시세 REST 조회"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import aiohttp

from index_token.models import BasketSnapshot, ConstituentRef

if TYPE_CHECKING:
    from index_token.config import Config

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """외부 조회 결과 (성공 시 data, 실패 시 error)"""
    data: list = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_coin(entry: dict) -> ConstituentRef | None:
    """CoinMarketCap 항목 → ConstituentRef. 필드 누락 시 None"""
    try:
        usd = entry["quote"]["USD"]
        return ConstituentRef(
            id=int(entry["id"]),
            symbol=str(entry["symbol"]),
            name=str(entry["name"]),
            reference_price=float(usd["price"] or 0.0),
            reference_market_cap=float(usd["market_cap"] or 0.0),
        )
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"[시장데이터] 항목 파싱 실패, 건너뜀: {e}")
        return None


def select_top_constituents(entries: list[dict], excluded_tags: list[str],
                            size: int) -> list[ConstituentRef]:
    """제외 태그(스테이블코인 등) 필터 후 시가총액 상위 size개"""
    excluded = set(excluded_tags)
    eligible = [
        e for e in entries
        if not excluded.intersection(e.get("tags") or [])
    ]
    coins = [c for c in (parse_coin(e) for e in eligible) if c is not None]
    coins.sort(key=lambda c: c.reference_market_cap, reverse=True)
    return coins[:size]


class MarketDataProvider:
    """CoinMarketCap REST 조회 (최대 3회 재시도)"""

    LISTINGS_PATH = "/v1/cryptocurrency/listings/latest"
    QUOTES_PATH = "/v2/cryptocurrency/quotes/latest"

    def __init__(self, config: Config):
        self.config = config
        self.max_retries = 3

    async def fetch_listings(self) -> FetchResult:
        """시가총액 순 상위 listings_limit개 원본 항목 조회"""
        result = await self._get_json(
            self.LISTINGS_PATH, {"limit": str(self.config.listings_limit)}
        )
        if not result.ok:
            return result
        return FetchResult(data=list(result.data))

    async def fetch_quotes(self, ids: list[int]) -> FetchResult:
        """종목 ID 목록의 최신 시세 조회 → ConstituentRef 목록"""
        if not ids:
            return FetchResult(error="조회할 종목 ID 없음")
        result = await self._get_json(
            self.QUOTES_PATH, {"id": ",".join(str(i) for i in ids)}
        )
        if not result.ok:
            return result
        coins = [c for c in (parse_coin(e) for e in result.data) if c is not None]
        # 요청한 ID 순서 유지
        order = {coin_id: i for i, coin_id in enumerate(ids)}
        coins.sort(key=lambda c: order.get(c.id, len(order)))
        return FetchResult(data=coins)

    async def fetch_top_basket(self) -> BasketSnapshot | None:
        """신규 후보 바스켓 (상위 N, 제외 태그 필터)"""
        result = await self.fetch_listings()
        if not result.ok:
            logger.error(f"[시장데이터] listings 조회 실패: {result.error}")
            return None
        coins = select_top_constituents(
            result.data, self.config.excluded_tags, self.config.basket_size
        )
        if not coins:
            return None
        return BasketSnapshot(
            timestamp=datetime.now(timezone.utc).isoformat(),
            constituents=tuple(coins),
        )

    async def fetch_basket(self, ids: list[int]) -> BasketSnapshot | None:
        """현재 구성 종목의 최신 기준값으로 바스켓 재구성"""
        result = await self.fetch_quotes(ids)
        if not result.ok:
            logger.error(f"[시장데이터] quotes 조회 실패: {result.error}")
            return None
        if not result.data:
            return None
        return BasketSnapshot(
            timestamp=datetime.now(timezone.utc).isoformat(),
            constituents=tuple(result.data),
        )

    async def _get_json(self, path: str, params: dict) -> FetchResult:
        """GET 요청 후 data 필드 반환 (dict 응답은 값 목록으로 평탄화)"""
        url = f"{self.config.coinmarketcap_url}{path}"
        headers = {"X-CMC_PRO_API_KEY": self.config.coinmarketcap_api_key}
        last_error = "unknown"
        for attempt in range(self.max_retries):
            try:
                async with aiohttp.ClientSession() as session:
                    async with session.get(
                        url,
                        params=params,
                        headers=headers,
                        timeout=aiohttp.ClientTimeout(total=10),
                    ) as resp:
                        if resp.status == 200:
                            body = await resp.json()
                            data = body.get("data", [])
                            if isinstance(data, dict):
                                data = _flatten_quotes(data)
                            return FetchResult(data=data)
                        last_error = f"HTTP {resp.status}"
                        logger.warning(f"[시장데이터] {path} {last_error} (시도 {attempt+1}/{self.max_retries})")
            except Exception as e:
                last_error = str(e)
                logger.warning(f"[시장데이터] {path} 조회 실패 (시도 {attempt+1}/{self.max_retries}): {e}")
            # 429 등 HTTP 에러도 예외와 같은 백오프
            if attempt < self.max_retries - 1:
                await asyncio.sleep(2 ** attempt)
        return FetchResult(error=last_error)


def _flatten_quotes(data: dict) -> list[dict]:
    """quotes 응답 {id: entry | [entry, ...]} → 항목 목록"""
    entries = []
    for value in data.values():
        if isinstance(value, list):
            entries.extend(value)
        else:
            entries.append(value)
    return entries
