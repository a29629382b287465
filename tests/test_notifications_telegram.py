"""Tests for notifications/telegram.py and notifications/logging.py."""
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from core.models import CloseReason, Position, Side, Trade
from notifications.logging import (
    emit_close_console_log,
    emit_forward_console_log,
    emit_open_console_log,
)
from notifications.telegram import (
    create_send_fn,
    send_telegram_message,
    strip_ansi_codes,
    verify_bot_token,
)


def _response(status_code=200, text="", payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.json.return_value = payload
    return response


class TestStripAnsiCodes:
    """Tests for strip_ansi_codes function."""

    def test_removes_color_codes(self):
        """Should remove ANSI color codes."""
        assert strip_ansi_codes("\x1b[31mRed\x1b[0m") == "Red"

    def test_handles_plain_text(self):
        assert strip_ansi_codes("plain text") == "plain text"


class TestSendTelegramMessage:
    """Tests for send_telegram_message function."""

    @patch("notifications.telegram.requests.post")
    def test_sends_message(self, mock_post):
        """Should post text and chat id to sendMessage."""
        mock_post.return_value = _response(200)

        assert send_telegram_message(bot_token="test_token", chat_id="123456", text="Hello") is True

        url = mock_post.call_args[0][0]
        assert url.endswith("/bottest_token/sendMessage")
        assert mock_post.call_args[1]["json"] == {
            "chat_id": "123456",
            "text": "Hello",
            "parse_mode": "Markdown",
        }
        assert mock_post.call_args[1]["timeout"] == 10

    @patch("notifications.telegram.requests.post")
    def test_plain_text_omits_parse_mode(self, mock_post):
        mock_post.return_value = _response(200)

        send_telegram_message(bot_token="t", chat_id="1", text="*x*", parse_mode=None)

        assert "parse_mode" not in mock_post.call_args[1]["json"]

    @patch("notifications.telegram.requests.post")
    def test_skips_without_token_or_chat(self, mock_post):
        assert send_telegram_message(bot_token="", chat_id="1", text="x") is False
        assert send_telegram_message(bot_token="t", chat_id=" ", text="x") is False
        mock_post.assert_not_called()

    @patch("notifications.telegram.requests.post")
    def test_falls_back_to_plain_text_on_parse_error(self, mock_post):
        """Should retry without parse_mode when Telegram rejects the Markdown."""
        mock_post.side_effect = [
            _response(400, "Bad Request: can't parse entities"),
            _response(200),
        ]

        assert send_telegram_message(bot_token="t", chat_id="1", text="\x1b[31m*bad\x1b[0m") is True

        assert mock_post.call_count == 2
        fallback = mock_post.call_args_list[1][1]["json"]
        assert "parse_mode" not in fallback
        assert fallback["text"] == "*bad"

    @patch("notifications.telegram.requests.post")
    def test_other_http_error_returns_false(self, mock_post):
        mock_post.return_value = _response(403, "Forbidden: bot was kicked")

        assert send_telegram_message(bot_token="t", chat_id="1", text="x") is False
        assert mock_post.call_count == 1

    @patch("notifications.telegram.requests.post")
    def test_network_error_returns_false(self, mock_post, caplog):
        mock_post.side_effect = requests.exceptions.ConnectionError("refused")

        assert send_telegram_message(bot_token="t", chat_id="1", text="x") is False
        assert "Error sending Telegram message" in caplog.text


class TestCreateSendFn:
    @patch("notifications.telegram.send_telegram_message")
    def test_binds_token_and_parse_mode(self, mock_send):
        mock_send.return_value = True
        send = create_send_fn("tok", parse_mode=None)

        assert send("42", "hi") is True
        mock_send.assert_called_once_with(bot_token="tok", chat_id="42", text="hi", parse_mode=None)


class TestVerifyBotToken:
    @patch("notifications.telegram.requests.get")
    def test_returns_username(self, mock_get):
        mock_get.return_value = _response(200, payload={"ok": True, "result": {"id": 1, "username": "relay_bot"}})
        assert verify_bot_token("tok") == "relay_bot"

    @patch("notifications.telegram.requests.get")
    def test_rejected_token(self, mock_get):
        mock_get.return_value = _response(401, "Unauthorized")
        assert verify_bot_token("tok") is None

    @patch("notifications.telegram.requests.get")
    def test_ok_false(self, mock_get):
        mock_get.return_value = _response(200, payload={"ok": False, "description": "nope"})
        assert verify_bot_token("tok") is None

    @patch("notifications.telegram.requests.get")
    def test_network_error(self, mock_get):
        mock_get.side_effect = requests.exceptions.Timeout()
        assert verify_bot_token("tok") is None

    def test_empty_token(self):
        assert verify_bot_token("") is None


# ═══════════════════════════════════════════════════════════════════
# CONSOLE OUTPUT
# ═══════════════════════════════════════════════════════════════════

@pytest.fixture
def position() -> Position:
    return Position(
        id=7,
        symbol="BTCUSDT",
        side=Side.SHORT,
        entry_price=50000.0,
        quantity=0.02,
        margin=100.0,
        leverage=10,
        liquidation_price=54800.0,
        open_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
        commission=0.4,
    )


class TestConsoleLogs:
    def test_open_lines(self, position):
        lines = []
        emit_open_console_log(position, user_id="1", balance=9900.0, print_fn=lines.append)

        text = strip_ansi_codes("\n".join(lines))
        assert "[OPEN] BTCUSDT SHORT 10x @ $50000.0000" in text
        assert "Liquidation: $54800.0000" in text
        assert "TP:" not in text
        assert "User 1 | Balance: $9900.00" in text

    def test_close_lines(self, position):
        trade = Trade(
            id=7,
            symbol="BTCUSDT",
            side=Side.SHORT,
            entry_price=50000.0,
            exit_price=49000.0,
            quantity=0.02,
            margin=100.0,
            leverage=10,
            liquidation_price=54800.0,
            open_time=position.open_time,
            close_time=datetime(2024, 1, 1, 1, tzinfo=timezone.utc),
            take_profit=49000.0,
            stop_loss=None,
            gross_pnl=200.0,
            pnl=199.2,
            roi=200.0,
            entry_commission=0.4,
            close_commission=0.4,
            status=CloseReason.TAKE_PROFIT,
        )
        lines = []
        emit_close_console_log(trade, user_id="1", balance=10099.2, print_fn=lines.append)

        text = strip_ansi_codes("\n".join(lines))
        assert "[CLOSE] BTCUSDT SHORT" in text
        assert "Net PnL: $199.20" in text
        assert "Reason: Take Profit Hit" in text

    def test_forward_lines(self):
        lines = []
        emit_forward_console_log(
            sender="Bank",
            number="+1555",
            otp="482913",
            delivered=["100"],
            failed=["200"],
            print_fn=lines.append,
        )

        text = strip_ansi_codes("\n".join(lines))
        assert "[FORWARD] Bank -> +1555" in text
        assert "OTP: 482913" in text
        assert "Failed: 200" in text
        assert "Delivered: 1/2" in text
