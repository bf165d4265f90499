"""데이터 무결성 로깅 모듈 - 피드 재연결, 누락 메시지, 틱 카운트, 리밸런스 결과"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


class IntegrityLogger:
    """피드/브로드캐스트/리밸런스 무결성 통계"""

    MAX_EVENT_BUFFER = 10000  # 이벤트 기록 최대 보관 수

    def __init__(self, log_dir: Path | str):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._reconnects: list[dict] = []
        self._dropped_messages: list[dict] = []
        self._dropped_subscribers: int = 0
        self._rebalances: list[dict] = []
        self._tick_counts: dict[str, int] = defaultdict(int)

    def record_reconnect(self, timestamp: float, reason: str) -> None:
        """피드 재연결 이벤트 기록"""
        self._reconnects.append({
            "timestamp": timestamp,
            "reason": reason,
        })

    def record_dropped_message(self, reason: str, timestamp: float) -> None:
        """파싱 불가 메시지/항목 기록"""
        if len(self._dropped_messages) >= self.MAX_EVENT_BUFFER:
            self._dropped_messages = self._dropped_messages[-self.MAX_EVENT_BUFFER // 2:]
        self._dropped_messages.append({
            "timestamp": timestamp,
            "reason": reason,
        })

    def record_dropped_subscriber(self) -> None:
        self._dropped_subscribers += 1

    def record_rebalance(self, status: str, detail: str = "") -> None:
        """리밸런스 결과 기록 (persisted / aborted)"""
        self._rebalances.append({
            "status": status,
            "detail": detail,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def increment_tick_count(self, feed_id: str) -> None:
        """피드별 틱 수신 카운트 증가"""
        self._tick_counts[feed_id] += 1

    def get_periodic_stats(self) -> dict:
        """현재 주기 통계 반환"""
        now = datetime.now(timezone.utc)
        return {
            "timestamp": now.isoformat(),
            "reconnect_count": len(self._reconnects),
            "reconnects": list(self._reconnects),
            "dropped_message_count": len(self._dropped_messages),
            "dropped_subscriber_count": self._dropped_subscribers,
            "rebalances": list(self._rebalances),
            "tick_counts": dict(self._tick_counts),
        }

    async def write_periodic_log(self) -> Path:
        """주기적 통계 JSON 로그 작성 후 리셋"""
        stats = self.get_periodic_stats()
        now = datetime.now(timezone.utc)
        log_file = self.log_dir / f"stats_{now.strftime('%Y%m%d_%H')}.json"
        with open(log_file, "w") as f:
            json.dump(stats, f, indent=2, default=str)
        self._reconnects.clear()
        self._dropped_messages.clear()
        self._dropped_subscribers = 0
        self._rebalances.clear()
        self._tick_counts.clear()
        logger.info(f"[로그] {log_file}")
        return log_file
