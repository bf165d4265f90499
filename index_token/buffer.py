"""스냅샷 이력 버퍼 모듈 - 인덱스 스냅샷 샘플을 메모리에 모았다가 플러시"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from index_token.models import IndexSnapshot

logger = logging.getLogger(__name__)


def snapshot_rows(snapshot: IndexSnapshot) -> list[dict]:
    """스냅샷 1개 → 구성 종목별 행 목록"""
    return [
        {
            "timestamp": snapshot.timestamp,
            "token": snapshot.token,
            "token_price": snapshot.index_price,
            "id": c.id,
            "symbol": c.symbol,
            "current_price": c.current_price,
            "current_market_cap": c.current_market_cap,
            "weight_percent": c.weight_percent,
        }
        for c in snapshot.constituents
    ]


class HistoryBuffer:
    """메모리 버퍼 - 스냅샷 이력 행 저장"""

    def __init__(self):
        self._rows: list[dict] = []
        self._last_timestamp: str | None = None
        self._lock = asyncio.Lock()

    async def add_snapshot(self, snapshot: IndexSnapshot) -> int:
        """같은 스냅샷(timestamp 동일)은 중복 저장하지 않음. 추가된 행 수 반환"""
        async with self._lock:
            if snapshot.timestamp == self._last_timestamp:
                return 0
            rows = snapshot_rows(snapshot)
            self._rows.extend(rows)
            self._last_timestamp = snapshot.timestamp
            return len(rows)

    async def flush(self) -> list[dict]:
        """모든 행을 반환하고 버퍼 초기화"""
        async with self._lock:
            rows = self._rows
            self._rows = []
            return rows

    def __len__(self) -> int:
        return len(self._rows)
