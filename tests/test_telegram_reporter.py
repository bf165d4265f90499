"""TelegramReporter 테스트 - 전송 실패 격리 + 메시지 포맷"""

import asyncio
from unittest.mock import AsyncMock, patch, MagicMock

import pytest
from hypothesis import given, strategies as st, settings

from index_token.config import Config
from index_token.models import AllocatedToken, RebalanceRecord
from index_token.telegram_reporter import TelegramReporter


@pytest.fixture
def reporter():
    return TelegramReporter(Config(telegram_bot_token="test-bot-token", telegram_chat_id="12345"))


@pytest.fixture
def disabled_reporter():
    return TelegramReporter(Config(telegram_bot_token="", telegram_chat_id=""))


RECORD = RebalanceRecord(
    timestamp="2024-01-05T10:00:00+00:00",
    index_value_at_rebalance=4.8,
    collateral_value_per_index_token=145.0,
    allocated_tokens=(AllocatedToken(2, "ETH", "Ethereum", 3000.0, 3e11, 0.03),
                      AllocatedToken(3, "SOL", "Solana", 100.0, 1e11, 0.3)),
    added=(AllocatedToken(3, "SOL", "Solana", 100.0, 1e11, 0.3),),
    removed=(AllocatedToken(1, "BTC", "Bitcoin", 50000.0, 1e12, 0.001),),
    retained=(AllocatedToken(2, "ETH", "Ethereum", 3000.0, 3e11, 0.03),),
)


# --- 전송 실패 격리 ---

exception_types = st.sampled_from([
    ConnectionError, TimeoutError, ValueError, RuntimeError,
    OSError, TypeError, KeyError, BrokenPipeError, Exception,
])


class TestFailureIsolation:
    """전송 중 어떤 예외가 나도 호출자(피드/리밸런스 루프)로 전파되지 않아야 한다"""

    @given(exc_type=exception_types, exc_msg=st.text(max_size=50))
    @settings(max_examples=50)
    def test_session_exception_is_swallowed(self, exc_type, exc_msg):
        reporter = TelegramReporter(Config(telegram_bot_token="tok", telegram_chat_id="1"))
        mock_session = MagicMock()
        mock_session.__aenter__ = AsyncMock(side_effect=exc_type(exc_msg))
        mock_session.__aexit__ = AsyncMock(return_value=False)

        with patch("aiohttp.ClientSession", return_value=mock_session):
            asyncio.run(reporter.send_disconnect_alert("timeout"))

    def test_non_200_is_logged_not_raised(self, reporter):
        mock_resp = MagicMock()
        mock_resp.status = 400
        mock_resp.text = AsyncMock(return_value="Bad Request")
        mock_resp.__aenter__ = AsyncMock(return_value=mock_resp)
        mock_resp.__aexit__ = AsyncMock(return_value=False)
        mock_session = MagicMock()
        mock_session.post = MagicMock(return_value=mock_resp)
        mock_session.__aenter__ = AsyncMock(return_value=mock_session)
        mock_session.__aexit__ = AsyncMock(return_value=False)

        with patch("aiohttp.ClientSession", return_value=mock_session):
            asyncio.run(reporter.send_message("hello"))

        _, kwargs = mock_session.post.call_args
        assert kwargs["json"] == {"chat_id": "12345", "text": "hello", "parse_mode": "HTML"}


# --- 비활성화 ---

class TestDisabledWhenNoToken:

    @pytest.mark.parametrize("token,chat_id", [("", ""), ("tok", ""), ("", "123")])
    def test_disabled(self, token, chat_id):
        assert TelegramReporter(Config(telegram_bot_token=token,
                                       telegram_chat_id=chat_id)).enabled is False

    def test_enabled_when_both_set(self, reporter):
        assert reporter.enabled is True

    @pytest.mark.parametrize("call", [
        lambda r: r.send_message("hello"),
        lambda r: r.send_startup_report(Config()),
        lambda r: r.send_disconnect_alert("timeout"),
        lambda r: r.send_reconnect_alert(5.0),
        lambda r: r.send_rebalance_report("BIT10.TOP", RECORD),
        lambda r: r.send_rebalance_aborted("BIT10.TOP", "no prior"),
    ])
    def test_noop_when_disabled(self, disabled_reporter, call):
        with patch("aiohttp.ClientSession") as mock_cls:
            asyncio.run(call(disabled_reporter))
            mock_cls.assert_not_called()


# --- 메시지 포맷 ---

class TestMessageFormat:

    @pytest.fixture(autouse=True)
    def capture_send(self, reporter):
        self.sent_messages = []

        async def capture(text):
            self.sent_messages.append(text)

        reporter.send_message = capture
        self.reporter = reporter

    def test_startup_report(self):
        asyncio.run(self.reporter.send_startup_report(Config(basket_size=7)))
        msg = self.sent_messages[0]
        assert "BIT10.TOP" in msg
        assert "<b>7</b>" in msg

    def test_disconnect_alert_contains_reason(self):
        asyncio.run(self.reporter.send_disconnect_alert("connection reset"))
        assert "connection reset" in self.sent_messages[0]

    @pytest.mark.parametrize("downtime,severity", [(3.0, "경미"), (30.0, "보통"), (120.0, "심각")])
    def test_reconnect_severity(self, downtime, severity):
        asyncio.run(self.reporter.send_reconnect_alert(downtime))
        msg = self.sent_messages[0]
        assert f"{downtime:.1f}s" in msg
        assert severity in msg

    def test_rebalance_report_lists_changes(self):
        asyncio.run(self.reporter.send_rebalance_report("BIT10.TOP", RECORD))
        msg = self.sent_messages[0]
        assert "BIT10.TOP REBALANCED" in msg
        assert "145.0000" in msg
        assert "편입 (1): <code>SOL</code>" in msg
        assert "편출 (1): <code>BTC</code>" in msg
        assert "유지 (1): <code>ETH</code>" in msg

    def test_rebalance_aborted_contains_reason(self):
        asyncio.run(self.reporter.send_rebalance_aborted("BIT10.TOP", "이전 리밸런스 레코드 없음"))
        msg = self.sent_messages[0]
        assert "ABORTED" in msg
        assert "이전 리밸런스 레코드 없음" in msg
