"""인덱스 가격 계산 모듈 - 바스켓 + 실시간 가격 → IndexSnapshot (순수 함수)"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Mapping

from index_token.models import BasketSnapshot, ConstituentValuation, IndexSnapshot


def feed_symbol(symbol: str) -> str:
    """오라클 디렉터리 조인 키: 'btc' → 'BTC/USD'"""
    return f"{symbol.upper()}/USD"


def compute_index_snapshot(token: str, basket: BasketSnapshot | None,
                           feed_ids: Mapping[str, str],
                           live_prices: Mapping[str, float],
                           total_supply: float,
                           timestamp: str | None = None) -> IndexSnapshot | None:
    """IndexSnapshot 재계산. 빈 바스켓이면 None.

    feed_ids: 'BTC/USD' 형태 대문자 심볼 → 피드 ID
    live_prices: 피드 ID → 최신 가격

    가격이 없는 종목은 시가총액 합에서 빠지고 비중도 None (부분 스냅샷 허용).
    비중은 가격이 있는 종목 합 기준이며 전체로 재정규화하지 않는다.
    """
    if basket is None or not basket.constituents:
        return None

    rows = []
    for coin in basket.constituents:
        feed_id = feed_ids.get(feed_symbol(coin.symbol))
        current_price = live_prices.get(feed_id) if feed_id else None
        supply = coin.circulating_supply
        market_cap = current_price * supply if current_price and supply else None
        if not market_cap or market_cap < 0:
            market_cap = None
        rows.append((coin, feed_id, current_price, market_cap))

    total_market_cap = sum(mc for *_, mc in rows if mc)

    constituents = tuple(
        ConstituentValuation(
            id=coin.id,
            symbol=coin.symbol,
            name=coin.name,
            circulating_supply=coin.circulating_supply,
            feed_id=feed_id,
            current_price=current_price,
            current_market_cap=market_cap,
            weight_percent=(
                market_cap / total_market_cap * 100
                if market_cap and total_market_cap > 0 else None
            ),
        )
        for coin, feed_id, current_price, market_cap in rows
    )

    return IndexSnapshot(
        token=token,
        timestamp=timestamp or datetime.now(timezone.utc).isoformat(),
        index_price=total_market_cap / total_supply * 100 if total_supply else 0.0,
        constituents=constituents,
    )
