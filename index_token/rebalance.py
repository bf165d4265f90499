"""리밸런스 엔진 모듈 - 담보 가치 산정, 바스켓 선정, 수량 할당, 이전 바스켓 대비 분류

단계: 이전 상태 로드 → 담보 가치 계산 → 바스켓 선정 → 수량 할당 → 이전 대비 분류 → 저장.
필요한 이전 데이터가 하나라도 없으면 해당 주기를 중단하고 아무것도 저장하지 않는다.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Awaitable, Callable

from index_token.models import (
    AllocatedToken, BasketSnapshot, ConstituentRef, IndexSnapshot, RebalanceRecord,
)

if TYPE_CHECKING:
    from index_token.config import Config
    from index_token.integrity_logger import IntegrityLogger
    from index_token.rebalance_store import CollateralPriceStore, JsonRebalanceStore
    from index_token.snapshot_cache import SnapshotCache
    from index_token.telegram_reporter import TelegramReporter

logger = logging.getLogger(__name__)


class RebalanceAborted(Exception):
    """리밸런스 전제 조건 미충족 (해당 주기만 중단)"""


def compute_collateral_value(snapshot: IndexSnapshot,
                             prior_tokens: tuple[AllocatedToken, ...],
                             collateral_base: float) -> float:
    """인덱스 토큰 1개당 담보 가치.

    이전 리밸런스에서 보유한 종목별 현재 가치(현재가 * 이전 수량) 중 양수 값의 평균을
    담보 기준가에 더한다. 이전 보유가 없는 종목은 평균 분모에서 제외.
    """
    prior_by_id = {t.id: t for t in prior_tokens}
    values = []
    for coin in snapshot.constituents:
        held = prior_by_id.get(coin.id)
        if held is None or coin.current_price is None:
            continue
        value = coin.current_price * held.quantity
        if value > 0:
            values.append(value)
    growth = sum(values) / len(values) if values else 0.0
    return growth + collateral_base


def allocate_quantities(candidates: tuple[ConstituentRef, ...],
                        collateral_value: float) -> tuple[AllocatedToken, ...]:
    """quantity_i = 담보 가치 * (시총_i / 시총 합) / 가격_i. 시총 합 0이면 전부 0"""
    total_market_cap = sum(c.reference_market_cap for c in candidates)
    allocated = []
    for coin in candidates:
        if total_market_cap > 0 and coin.reference_price > 0:
            weight = coin.reference_market_cap / total_market_cap
            quantity = collateral_value * weight / coin.reference_price
        else:
            quantity = 0.0
        allocated.append(AllocatedToken(
            id=coin.id,
            symbol=coin.symbol,
            name=coin.name,
            price=coin.reference_price,
            market_cap=coin.reference_market_cap,
            quantity=quantity,
        ))
    return tuple(allocated)


def diff_against_prior(allocated: tuple[AllocatedToken, ...],
                       prior_tokens: tuple[AllocatedToken, ...]
                       ) -> tuple[tuple[AllocatedToken, ...], tuple[AllocatedToken, ...],
                                  tuple[AllocatedToken, ...]]:
    """ID 기준 분류 → (added, removed, retained). retained는 새 수량 사용"""
    prior_ids = {t.id for t in prior_tokens}
    candidate_ids = {t.id for t in allocated}
    added = tuple(t for t in allocated if t.id not in prior_ids)
    removed = tuple(t for t in prior_tokens if t.id not in candidate_ids)
    retained = tuple(t for t in allocated if t.id in prior_ids)
    return added, removed, retained


def seconds_until_next(weekday: int, hour: int, now: datetime) -> float:
    """다음 주간 실행 시각(weekday, hour UTC)까지 남은 초"""
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    target += timedelta(days=(weekday - now.weekday()) % 7)
    if target <= now:
        target += timedelta(days=7)
    return (target - now).total_seconds()


class RebalanceEngine:
    """주간 리밸런스 실행기"""

    def __init__(self, config: Config, cache: SnapshotCache,
                 store: JsonRebalanceStore, collateral: CollateralPriceStore,
                 select_basket: Callable[[], Awaitable[BasketSnapshot | None]],
                 integrity_logger: IntegrityLogger | None = None,
                 telegram: TelegramReporter | None = None,
                 on_record_persisted: Callable[[RebalanceRecord], Awaitable[None]] | None = None):
        self.config = config
        self.cache = cache
        self.store = store
        self.collateral = collateral
        self.select_basket = select_basket
        self.integrity_logger = integrity_logger
        self.telegram = telegram
        self.on_record_persisted = on_record_persisted  # 바스켓 즉시 갱신용 콜백

    async def run(self) -> None:
        """매주 rebalance_weekday rebalance_hour(UTC)에 실행"""
        while True:
            wait = seconds_until_next(
                self.config.rebalance_weekday, self.config.rebalance_hour,
                datetime.now(timezone.utc),
            )
            logger.info(f"[리밸런스] 다음 실행까지 {wait / 3600:.1f}시간")
            await asyncio.sleep(wait)
            try:
                await self.rebalance_once()
            except Exception as e:
                logger.error(f"[리밸런스 에러] {e}")
                if self.integrity_logger:
                    self.integrity_logger.record_rebalance("failed", str(e))

    async def rebalance_once(self) -> RebalanceRecord | None:
        """1회 실행. 중단 시 None, 성공 시 저장된 레코드 반환"""
        try:
            record = await self.build_record()
        except RebalanceAborted as e:
            logger.error(f"[리밸런스] 중단, 이전 레코드 유지: {e}")
            if self.integrity_logger:
                self.integrity_logger.record_rebalance("aborted", str(e))
            if self.telegram:
                await self.telegram.send_rebalance_aborted(self.config.token_name, str(e))
            return None

        await self.store.append(record)
        logger.info(
            f"[리밸런스] 완료: 담보가치={record.collateral_value_per_index_token:.4f} "
            f"added={len(record.added)} removed={len(record.removed)} "
            f"retained={len(record.retained)}"
        )
        if self.integrity_logger:
            self.integrity_logger.record_rebalance("persisted", record.timestamp)
        if self.telegram:
            await self.telegram.send_rebalance_report(self.config.token_name, record)
        if self.on_record_persisted:
            await self.on_record_persisted(record)
        return record

    async def build_record(self) -> RebalanceRecord:
        """저장 전 레코드 구성. 전제 조건 미충족 시 RebalanceAborted"""
        # 이전 상태
        prior = await self.store.latest()
        if prior is None:
            raise RebalanceAborted("이전 리밸런스 레코드 없음")
        snapshot = self.cache.get_latest()
        if snapshot is None:
            raise RebalanceAborted("실시간 인덱스 스냅샷 없음")
        collateral_base = await self.collateral.price_of_token_to_buy(self.config.token_name)
        if collateral_base is None:
            raise RebalanceAborted(f"{self.config.token_name} 담보 기준가 없음")

        # 담보 가치
        collateral_value = compute_collateral_value(
            snapshot, prior.allocated_tokens, collateral_base
        )

        # 바스켓 선정
        candidate = await self.select_basket()
        if candidate is None or not candidate.constituents:
            raise RebalanceAborted("후보 바스켓 없음")

        # 수량 할당 및 분류
        allocated = allocate_quantities(candidate.constituents, collateral_value)
        added, removed, retained = diff_against_prior(allocated, prior.allocated_tokens)

        return RebalanceRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            index_value_at_rebalance=snapshot.index_price,
            collateral_value_per_index_token=collateral_value,
            allocated_tokens=allocated,
            added=added,
            removed=removed,
            retained=retained,
        )
