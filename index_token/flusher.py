"""스냅샷 이력 Parquet 저장 모듈 - 주기 샘플링, 파일명 생성, snappy 압축, 체크섬"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import pandas as pd

if TYPE_CHECKING:
    from index_token.buffer import HistoryBuffer
    from index_token.config import Config
    from index_token.snapshot_cache import SnapshotCache

logger = logging.getLogger(__name__)


class HistoryFlusher:
    """스냅샷 이력 샘플링 및 주기적 Parquet 파일 저장"""

    def __init__(self, config: Config, cache: SnapshotCache, buffer: HistoryBuffer):
        self.config = config
        self.cache = cache
        self.buffer = buffer
        self.data_dir = Path(config.data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    async def run_sampler(self) -> None:
        """history_sample_interval마다 최신 스냅샷을 버퍼에 추가"""
        while True:
            await asyncio.sleep(self.config.history_sample_interval)
            await self.sample_now()

    async def run(self) -> None:
        """주기적 플러시 루프"""
        while True:
            await asyncio.sleep(self.config.history_flush_interval)
            try:
                await self.flush_now()
            except Exception as e:
                logger.error(f"[플러시 에러] {e}")

    async def sample_now(self) -> int:
        snapshot = self.cache.get_latest()
        if snapshot is None:
            return 0
        return await self.buffer.add_snapshot(snapshot)

    async def flush_now(self) -> Path | None:
        """즉시 플러시, 생성된 파일 경로 반환 (행이 없으면 None)"""
        rows = await self.buffer.flush()
        if not rows:
            return None
        now = datetime.now(timezone.utc)
        fpath = self.data_dir / self._generate_filename(self.config.token_name, now)
        loop = asyncio.get_running_loop()
        count = await loop.run_in_executor(None, self._save_parquet, rows, fpath)
        file_size = fpath.stat().st_size
        logger.info(f"[저장] {fpath} ({count}건)")

        sha256 = self.compute_checksum(fpath)
        self.record_checksum(fpath, sha256, count, file_size)
        return fpath

    @staticmethod
    def _generate_filename(token: str, timestamp: datetime) -> str:
        """파일명 생성: {TOKEN}_history_{YYYYMMDD}_{HHMM}.parquet ('.'은 '_'로)"""
        safe_token = token.upper().replace(".", "_")
        return f"{safe_token}_history_{timestamp.strftime('%Y%m%d_%H%M')}.parquet"

    @staticmethod
    def _save_parquet(data: list[dict], filepath: Path) -> int:
        """Parquet 저장 (snappy 압축), 레코드 수 반환. 원자적 저장."""
        df = pd.DataFrame(data)
        tmp_fd, tmp_path = tempfile.mkstemp(
            suffix=".parquet.tmp", dir=filepath.parent
        )
        os.close(tmp_fd)
        try:
            df.to_parquet(tmp_path, index=False, compression="snappy")
            os.replace(tmp_path, filepath)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        return len(df)

    @staticmethod
    def compute_checksum(filepath: Path) -> str:
        """SHA-256 해시 계산"""
        h = hashlib.sha256()
        with open(filepath, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                h.update(chunk)
        return h.hexdigest()

    def record_checksum(self, filepath: Path, sha256: str,
                        record_count: int, file_size: int) -> None:
        """checksums.json에 체크섬 기록 추가"""
        checksum_file = self.data_dir / "checksums.json"
        entries = []
        if checksum_file.exists():
            with open(checksum_file, "r") as f:
                entries = json.load(f)
        entries.append({
            "filename": filepath.name,
            "sha256": sha256,
            "record_count": record_count,
            "file_size": file_size,
            "created_at": datetime.now(timezone.utc).isoformat(),
        })
        with open(checksum_file, "w") as f:
            json.dump(entries, f, indent=2)
