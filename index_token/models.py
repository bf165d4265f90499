"""데이터 모델 정의 - 바스켓, 가격 틱, 인덱스 스냅샷, 리밸런스 레코드"""

from __future__ import annotations

from dataclasses import dataclass, asdict


# ── 바스켓 관련 ──

@dataclass(frozen=True)
class ConstituentRef:
    """시장 데이터 제공자가 준 구성 종목 기준값 (다음 갱신까지 불변)"""
    id: int
    symbol: str
    name: str
    reference_price: float
    reference_market_cap: float

    @property
    def circulating_supply(self) -> float:
        """유통량 = 기준 시가총액 / 기준 가격 (가격 0이면 0)"""
        if self.reference_price == 0:
            return 0.0
        return self.reference_market_cap / self.reference_price


@dataclass(frozen=True)
class BasketSnapshot:
    """인덱스 상품 하나의 구성 종목 목록 (통째로 교체)"""
    timestamp: str
    constituents: tuple[ConstituentRef, ...] = ()


# ── 가격 피드 관련 ──

@dataclass(frozen=True)
class LivePriceTick:
    """오라클 가격 업데이트 (price = 가수 * 10^지수 정규화 후)"""
    feed_id: str
    price: float
    observed_at: float           # publish_time 또는 로컬 수신 시각 (unix)


# ── 인덱스 스냅샷 관련 ──

@dataclass(frozen=True)
class ConstituentValuation:
    """스냅샷 내 구성 종목별 계산 결과 (가격 없으면 None)"""
    id: int
    symbol: str
    name: str
    circulating_supply: float
    feed_id: str | None = None
    current_price: float | None = None
    current_market_cap: float | None = None
    weight_percent: float | None = None


@dataclass(frozen=True)
class IndexSnapshot:
    """한 시점의 인덱스 가격 및 구성 비중 (부분 수정 없이 통째로 교체)"""
    token: str
    timestamp: str
    index_price: float
    constituents: tuple[ConstituentValuation, ...] = ()

    def to_payload(self) -> dict:
        """pull API / 푸시 채널 공통 JSON 형태. 값이 없는 선택 필드는 생략"""
        data = []
        for c in self.constituents:
            entry = {
                "id": c.id,
                "name": c.name,
                "symbol": c.symbol,
                "circulatingSupply": c.circulating_supply,
            }
            optional = {
                "pythFeedId": c.feed_id,
                "currentPrice": c.current_price,
                "currentMarketCap": c.current_market_cap,
                "weightPercent": c.weight_percent,
            }
            entry.update({k: v for k, v in optional.items() if v is not None})
            data.append(entry)
        return {
            "token": self.token,
            "tokenPrice": self.index_price,
            "timestamp": self.timestamp,
            "data": data,
        }

    def composition(self) -> dict:
        """구성 비중 뷰 (token, weightPercent만)"""
        return {
            "token": self.token,
            "composition": [
                {
                    "id": c.id,
                    "name": c.name,
                    "symbol": c.symbol,
                    "weightPercent": c.weight_percent,
                }
                for c in self.constituents
            ],
        }


# ── 리밸런스 관련 ──

@dataclass(frozen=True)
class AllocatedToken:
    """리밸런스 시 할당된 종목별 수량"""
    id: int
    symbol: str
    name: str
    price: float
    market_cap: float
    quantity: float

    @classmethod
    def from_dict(cls, d: dict) -> "AllocatedToken":
        return cls(
            id=d["id"],
            symbol=d.get("symbol", ""),
            name=d.get("name", ""),
            price=float(d.get("price", 0.0)),
            market_cap=float(d.get("market_cap", 0.0)),
            quantity=float(d.get("quantity", 0.0)),
        )


@dataclass(frozen=True)
class RebalanceRecord:
    """리밸런스 1회 결과 (생성 후 불변, append-only 저장)"""
    timestamp: str
    index_value_at_rebalance: float
    collateral_value_per_index_token: float
    allocated_tokens: tuple[AllocatedToken, ...] = ()
    added: tuple[AllocatedToken, ...] = ()
    removed: tuple[AllocatedToken, ...] = ()
    retained: tuple[AllocatedToken, ...] = ()

    def to_dict(self) -> dict:
        d = asdict(self)
        for key in ("allocated_tokens", "added", "removed", "retained"):
            d[key] = list(d[key])
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "RebalanceRecord":
        def tokens(key: str) -> tuple[AllocatedToken, ...]:
            return tuple(AllocatedToken.from_dict(t) for t in d.get(key, []))

        return cls(
            timestamp=d["timestamp"],
            index_value_at_rebalance=float(d.get("index_value_at_rebalance", 0.0)),
            collateral_value_per_index_token=float(d.get("collateral_value_per_index_token", 0.0)),
            allocated_tokens=tokens("allocated_tokens"),
            added=tokens("added"),
            removed=tokens("removed"),
            retained=tokens("retained"),
        )


# ── 피드 디렉터리 관련 ──

@dataclass(frozen=True)
class FeedEntry:
    """오라클 심볼 디렉터리 항목 (예: display_symbol='BTC/USD')"""
    feed_id: str
    display_symbol: str
