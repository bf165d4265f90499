"""리밸런스 기록 저장 모듈 - append-only JSON 이력, 담보 기준가 조회"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path

from index_token.models import RebalanceRecord

logger = logging.getLogger(__name__)


def _atomic_write_json(filepath: Path, data) -> None:
    """임시 파일에 먼저 쓰고 rename (원자적 저장)"""
    tmp_fd, tmp_path = tempfile.mkstemp(suffix=".json.tmp", dir=filepath.parent)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, filepath)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class JsonRebalanceStore:
    """리밸런스 레코드 이력 (과거 레코드는 수정하지 않고 추가만)"""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _read_all(self) -> list[dict]:
        if not self.path.exists():
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _append_sync(self, record: RebalanceRecord) -> None:
        entries = self._read_all()
        entries.append(record.to_dict())
        _atomic_write_json(self.path, entries)

    async def history(self) -> list[RebalanceRecord]:
        loop = asyncio.get_running_loop()
        entries = await loop.run_in_executor(None, self._read_all)
        return [RebalanceRecord.from_dict(e) for e in entries]

    async def latest(self) -> RebalanceRecord | None:
        """가장 최근 레코드 (없으면 None)"""
        loop = asyncio.get_running_loop()
        entries = await loop.run_in_executor(None, self._read_all)
        if not entries:
            return None
        return RebalanceRecord.from_dict(entries[-1])

    async def append(self, record: RebalanceRecord) -> None:
        """레코드 1건을 하나의 원자 단위로 추가"""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._append_sync, record)
        logger.info(f"[저장] 리밸런스 레코드 추가: {record.timestamp}")


class CollateralPriceStore:
    """토큰명 → price_of_token_to_buy 매핑 (JSON)"""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f) or {}

    async def price_of_token_to_buy(self, token_name: str) -> float | None:
        """담보 기준가. 항목 없으면 None"""
        loop = asyncio.get_running_loop()
        prices = await loop.run_in_executor(None, self._read)
        value = prices.get(token_name)
        if value is None:
            return None
        return float(value)
