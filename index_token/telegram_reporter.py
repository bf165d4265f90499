"""텔레그램 봇을 통한 상태 리포트 및 알림 모듈"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import aiohttp

from index_token.config import Config

if TYPE_CHECKING:
    from index_token.models import RebalanceRecord

logger = logging.getLogger(__name__)


class TelegramReporter:
    """텔레그램 봇을 통한 서비스 상태/리밸런스 알림"""

    def __init__(self, config: Config):
        self.bot_token = config.telegram_bot_token
        self.chat_id = config.telegram_chat_id
        self.enabled = bool(self.bot_token and self.chat_id)

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")

    @staticmethod
    def _symbols(tokens) -> str:
        if not tokens:
            return "-"
        return " ".join(f"<code>{t.symbol}</code>" for t in tokens)

    async def send_message(self, text: str) -> None:
        """텔레그램 메시지 전송 (실패 시 로깅만, 서비스에 영향 없음)"""
        if not self.enabled:
            return
        try:
            url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
            payload = {"chat_id": self.chat_id, "text": text, "parse_mode": "HTML"}
            async with aiohttp.ClientSession() as session:
                async with session.post(url, json=payload, timeout=aiohttp.ClientTimeout(total=10)) as resp:
                    if resp.status != 200:
                        body = await resp.text()
                        logger.warning("텔레그램 전송 실패 (status=%d): %s", resp.status, body)
        except Exception:
            logger.warning("텔레그램 메시지 전송 중 예외 발생", exc_info=True)

    async def send_startup_report(self, config: Config) -> None:
        """서비스 시작 알림"""
        if not self.enabled:
            return
        text = (
            "━━━━━━━━━━━━━━━━━━━━\n"
            "🚀 <b>INDEX SERVICE ONLINE</b>\n"
            "━━━━━━━━━━━━━━━━━━━━\n"
            f"🕐 {self._now_str()}\n"
            "\n"
            f"📌 토큰: <code>{config.token_name}</code>\n"
            f"🧺 바스켓: 상위 <b>{config.basket_size}</b>개\n"
            f"🔄 바스켓 갱신: <code>{config.basket_refresh_interval}s</code>\n"
            f"📡 브로드캐스트: <code>{config.broadcast_interval}s</code>\n"
            "━━━━━━━━━━━━━━━━━━━━"
        )
        await self.send_message(text)

    async def send_disconnect_alert(self, reason: str) -> None:
        """가격 피드 연결 끊김"""
        if not self.enabled:
            return
        text = (
            "━━━━━━━━━━━━━━━━━━━━\n"
            "⚠️ <b>PRICE FEED LOST</b>\n"
            "━━━━━━━━━━━━━━━━━━━━\n"
            f"🕐 {self._now_str()}\n"
            "\n"
            f"📡 <b>사유</b>: {reason}\n"
            "🔄 자동 재연결 시도 중...\n"
            "━━━━━━━━━━━━━━━━━━━━"
        )
        await self.send_message(text)

    async def send_reconnect_alert(self, downtime_seconds: float) -> None:
        """가격 피드 재연결 성공"""
        if not self.enabled:
            return
        if downtime_seconds < 10:
            severity = "🟢 경미"
        elif downtime_seconds < 60:
            severity = "🟡 보통"
        else:
            severity = "🔴 심각"
        text = (
            "━━━━━━━━━━━━━━━━━━━━\n"
            "✅ <b>PRICE FEED RECONNECTED</b>\n"
            "━━━━━━━━━━━━━━━━━━━━\n"
            f"🕐 {self._now_str()}\n"
            "\n"
            f"⏱ 다운타임: <b>{downtime_seconds:.1f}s</b>\n"
            f"📊 심각도: {severity}\n"
            "━━━━━━━━━━━━━━━━━━━━"
        )
        await self.send_message(text)

    async def send_rebalance_report(self, token: str, record: RebalanceRecord) -> None:
        """리밸런스 완료 리포트"""
        if not self.enabled:
            return
        text = (
            "━━━━━━━━━━━━━━━━━━━━\n"
            f"⚖️ <b>{token} REBALANCED</b>\n"
            "━━━━━━━━━━━━━━━━━━━━\n"
            f"🕐 {self._now_str()}\n"
            "\n"
            f"💰 담보 가치: <b>{record.collateral_value_per_index_token:,.4f}</b> USD\n"
            f"📈 인덱스 값: <b>{record.index_value_at_rebalance:,.6f}</b>\n"
            "\n"
            f"➕ 편입 ({len(record.added)}): {self._symbols(record.added)}\n"
            f"➖ 편출 ({len(record.removed)}): {self._symbols(record.removed)}\n"
            f"🔁 유지 ({len(record.retained)}): {self._symbols(record.retained)}\n"
            "━━━━━━━━━━━━━━━━━━━━"
        )
        await self.send_message(text)

    async def send_rebalance_aborted(self, token: str, reason: str) -> None:
        """리밸런스 중단 알림 (이전 레코드 유지)"""
        if not self.enabled:
            return
        text = (
            "━━━━━━━━━━━━━━━━━━━━\n"
            f"🔴 <b>{token} REBALANCE ABORTED</b>\n"
            "━━━━━━━━━━━━━━━━━━━━\n"
            f"🕐 {self._now_str()}\n"
            "\n"
            f"❌ 사유: {reason}\n"
            "📌 이전 바스켓 유지, 다음 주기에 재시도\n"
            "━━━━━━━━━━━━━━━━━━━━"
        )
        await self.send_message(text)
