"""푸시 브로드캐스트 모듈 - WebSocket 구독자에게 최신 스냅샷 주기 전송"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING

import websockets
from websockets.protocol import State

if TYPE_CHECKING:
    from index_token.integrity_logger import IntegrityLogger
    from index_token.snapshot_cache import SnapshotCache

logger = logging.getLogger(__name__)


class Broadcaster:
    """고정 주기 팬아웃 (구독자별 전송 독립, 실패한 구독자만 제거)"""

    def __init__(self, cache: SnapshotCache, interval: float = 1.0,
                 send_timeout: float = 5.0,
                 integrity_logger: IntegrityLogger | None = None):
        self.cache = cache
        self.interval = interval
        self.send_timeout = send_timeout
        self.integrity_logger = integrity_logger
        self.subscribers: set = set()
        self._server = None
        self._closed = False
        self._closing: set[asyncio.Task] = set()

    async def serve(self, host: str, port: int) -> None:
        """WebSocket 서버 시작 (ping/pong은 라이브러리가 처리)"""
        self._server = await websockets.serve(self.handler, host, port)
        logger.info(f"[브로드캐스트] ws://{host}:{port} 대기 중")

    async def handler(self, ws) -> None:
        """연결 1개 수명 동안 구독 유지. 클라이언트 수신 메시지는 무시"""
        await self.register(ws)
        try:
            async for _ in ws:
                pass
        except websockets.ConnectionClosed:
            pass
        finally:
            self.subscribers.discard(ws)

    async def register(self, ws) -> None:
        """구독자 추가 후 최신 스냅샷이 있으면 즉시 전송"""
        self.subscribers.add(ws)
        snapshot = self.cache.get_latest()
        if snapshot is not None:
            await self._send(ws, self.serialize(snapshot.to_payload()))

    @staticmethod
    def serialize(payload: dict) -> str:
        return json.dumps(payload)

    async def run(self) -> None:
        """주기 브로드캐스트 루프"""
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.broadcast_once()
            except Exception as e:
                logger.error(f"[브로드캐스트 에러] {e}")

    async def broadcast_once(self) -> int:
        """구독자 0명 또는 스냅샷 없음이면 건너뜀. 전송 성공 수 반환"""
        if not self.subscribers:
            return 0
        snapshot = self.cache.get_latest()
        if snapshot is None:
            return 0

        payload = self.serialize(snapshot.to_payload())
        targets = list(self.subscribers)
        results = await asyncio.gather(*(self._send(ws, payload) for ws in targets))
        return sum(1 for ok in results if ok)

    async def _send(self, ws, payload: str) -> bool:
        """단일 구독자 전송. 닫혔거나 실패/지연 시 구독자 제거"""
        if ws.state is not State.OPEN:
            self._drop(ws)
            return False
        try:
            await asyncio.wait_for(ws.send(payload), timeout=self.send_timeout)
            return True
        except Exception as e:
            logger.warning(f"[브로드캐스트] 구독자 전송 실패, 제거: {e!r}")
            self._drop(ws, close=True)
            return False

    def _drop(self, ws, close: bool = False) -> None:
        """구독 해제. close=True면 클라이언트가 재접속하도록 연결도 닫음 (백그라운드)"""
        if ws in self.subscribers:
            self.subscribers.discard(ws)
            if self.integrity_logger:
                self.integrity_logger.record_dropped_subscriber()
        if close:
            task = asyncio.ensure_future(self._close_quietly(ws))
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)

    async def _close_quietly(self, ws) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.warning(f"[브로드캐스트] 구독자 종료 실패: {e!r}")

    async def close(self) -> None:
        """모든 구독자 연결 및 서버 종료 (중복 호출 안전)"""
        if self._closed:
            return
        self._closed = True
        targets = list(self.subscribers)
        self.subscribers.clear()
        for ws in targets:
            await self._close_quietly(ws)
        if self._closing:
            await asyncio.gather(*self._closing)
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info(f"[브로드캐스트] 종료 (구독자 {len(targets)}명 해제)")
