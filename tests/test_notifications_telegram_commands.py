"""
Tests for notifications/commands/base.py.

Covers update polling, command parsing, intent parsing and the dispatch
loop shared by both bots.
"""
from __future__ import annotations

from enum import Enum
from unittest.mock import MagicMock, patch

import pytest
import requests

from notifications.commands.base import (
    CommandResult,
    Intent,
    TelegramCommand,
    TelegramCommandHandler,
    build_dispatch_table,
    build_help_message,
    parse_command_text,
    parse_intent,
    process_telegram_commands,
    register_telegram_commands,
    trim_decimal,
)


def _updates_response(updates, ok=True, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.text = ""
    response.json.return_value = {"ok": ok, "result": updates}
    return response


def _update(update_id, text, chat_id=123, user_id=42):
    return {
        "update_id": update_id,
        "message": {
            "message_id": update_id * 10,
            "chat": {"id": chat_id},
            "from": {"id": user_id},
            "text": text,
        },
    }


def _cmd(text: str, chat_id: str = "123") -> TelegramCommand:
    if text.startswith("/"):
        command, args = parse_command_text(text)
    else:
        command, args = "", text.split()
    return TelegramCommand(command=command, args=args, chat_id=chat_id, message_id=1, raw_text=text)


# ═══════════════════════════════════════════════════════════════════
# PARSING
# ═══════════════════════════════════════════════════════════════════

class TestParseCommandText:
    def test_plain_command(self):
        assert parse_command_text("/positions") == ("positions", [])

    def test_arguments(self):
        assert parse_command_text("/trade btc long 100 10") == ("trade", ["btc", "long", "100", "10"])

    def test_bot_suffix_and_case(self):
        assert parse_command_text("/Price@PaperBot eth") == ("price", ["eth"])

    def test_bare_slash(self):
        assert parse_command_text("/") == ("", [])


class TestTelegramCommandHandler:
    """Tests for getUpdates polling."""

    @patch("notifications.commands.base.requests.get")
    def test_returns_commands_and_advances_offset(self, mock_get):
        mock_get.return_value = _updates_response([_update(5, "/status"), _update(6, "/price btc")])
        handler = TelegramCommandHandler("tok")

        commands = handler.poll_commands()

        assert [c.command for c in commands] == ["status", "price"]
        assert commands[1].args == ["btc"]
        assert commands[0].chat_id == "123"
        assert commands[0].user_id == "42"
        assert handler.last_update_id == 6
        assert "offset" not in mock_get.call_args[1]["params"]

        mock_get.return_value = _updates_response([])
        handler.poll_commands()
        assert mock_get.call_args[1]["params"]["offset"] == 7

    @patch("notifications.commands.base.requests.get")
    def test_plain_text_ignored_by_default(self, mock_get):
        mock_get.return_value = _updates_response([_update(1, "hello")])
        handler = TelegramCommandHandler("tok")

        assert handler.poll_commands() == []
        assert handler.last_update_id == 1

    @patch("notifications.commands.base.requests.get")
    def test_plain_text_returned_as_reply(self, mock_get):
        mock_get.return_value = _updates_response([_update(1, "  long  ")])
        handler = TelegramCommandHandler("tok", include_text=True)

        [reply] = handler.poll_commands()

        assert reply.command == ""
        assert reply.is_command is False
        assert reply.args == ["long"]
        assert reply.raw_text == "long"

    @patch("notifications.commands.base.requests.get")
    def test_unauthorized_chat_filtered(self, mock_get):
        mock_get.return_value = _updates_response([_update(1, "/clear", chat_id=999), _update(2, "/clear")])
        handler = TelegramCommandHandler("tok", allowed_chat_id="123")

        commands = handler.poll_commands()

        assert [c.chat_id for c in commands] == ["123"]

    @patch("notifications.commands.base.requests.get")
    def test_non_message_updates_skipped(self, mock_get):
        mock_get.return_value = _updates_response([{"update_id": 3, "callback_query": {}}])
        handler = TelegramCommandHandler("tok")

        assert handler.poll_commands() == []
        assert handler.last_update_id == 3

    @patch("notifications.commands.base.requests.get")
    def test_http_error_returns_empty(self, mock_get):
        mock_get.return_value = _updates_response([], status_code=409)
        assert TelegramCommandHandler("tok").poll_commands() == []

    @patch("notifications.commands.base.requests.get")
    def test_network_error_returns_empty(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError("down")
        assert TelegramCommandHandler("tok").poll_commands() == []

    @patch("notifications.commands.base.requests.get")
    def test_missing_token_skips_request(self, mock_get):
        assert TelegramCommandHandler("").poll_commands() == []
        mock_get.assert_not_called()


# ═══════════════════════════════════════════════════════════════════
# INTENTS AND DISPATCH
# ═══════════════════════════════════════════════════════════════════

class Kind(Enum):
    PING = "ping"
    REPLY = "__reply__"
    UNKNOWN = "__unknown__"


COMMAND_MAP = {"ping": Kind.PING}


def _parse(cmd: TelegramCommand) -> Intent:
    return parse_intent(cmd, COMMAND_MAP, reply_kind=Kind.REPLY, unknown_kind=Kind.UNKNOWN)


class TestParseIntent:
    def test_known_command(self):
        assert _parse(_cmd("/ping")).kind is Kind.PING

    def test_unknown_command(self):
        assert _parse(_cmd("/pong")).kind is Kind.UNKNOWN

    def test_free_text_is_reply(self):
        intent = _parse(_cmd("hello"))
        assert intent.kind is Kind.REPLY
        assert intent.command.raw_text == "hello"


class TestBuildDispatchTable:
    def test_complete_table(self):
        handler = MagicMock()
        table = build_dispatch_table(Kind, {kind: handler for kind in Kind})
        assert set(table) == set(Kind)

    def test_missing_kind_rejected(self):
        with pytest.raises(ValueError, match="REPLY"):
            build_dispatch_table(Kind, {Kind.PING: MagicMock(), Kind.UNKNOWN: MagicMock()})


class TestProcessTelegramCommands:
    def _table(self):
        return {
            Kind.PING: lambda cmd: CommandResult(True, "pong", action="PONG"),
            Kind.REPLY: lambda cmd: CommandResult(False, "", action="REPLY_IGNORED"),
            Kind.UNKNOWN: lambda cmd: CommandResult(False, "unknown", action="UNKNOWN_COMMAND"),
        }

    def test_replies_to_originating_chat(self):
        reply = MagicMock()

        results = process_telegram_commands(
            [_cmd("/ping", chat_id="7"), _cmd("/nope", chat_id="8")],
            parse_fn=_parse,
            dispatch_table=self._table(),
            reply_fn=reply,
        )

        assert [r.action for r in results] == ["PONG", "UNKNOWN_COMMAND"]
        assert [c.args for c in reply.call_args_list] == [("7", "pong"), ("8", "unknown")]

    def test_empty_message_not_sent(self):
        reply = MagicMock()
        process_telegram_commands([_cmd("hi")], parse_fn=_parse, dispatch_table=self._table(), reply_fn=reply)
        reply.assert_not_called()

    def test_handler_exception_becomes_failure_reply(self, caplog):
        def _boom(cmd):
            raise RuntimeError("boom")

        reply = MagicMock()
        table = self._table()
        table[Kind.PING] = _boom

        [result] = process_telegram_commands(
            [_cmd("/ping")],
            parse_fn=_parse,
            dispatch_table=table,
            reply_fn=reply,
        )

        assert result.success is False
        assert result.action == "COMMAND_FAILED"
        assert "Something went wrong" in reply.call_args[0][1]
        assert "Error processing Telegram command /ping" in caplog.text

    def test_reply_failure_does_not_stop_batch(self):
        reply = MagicMock(side_effect=[RuntimeError("send failed"), True])

        results = process_telegram_commands(
            [_cmd("/ping"), _cmd("/ping")],
            parse_fn=_parse,
            dispatch_table=self._table(),
            reply_fn=reply,
        )

        assert len(results) == 2
        assert reply.call_count == 2


# ═══════════════════════════════════════════════════════════════════
# HELP AND REGISTRATION
# ═══════════════════════════════════════════════════════════════════

class TestHelpAndRegistration:
    REGISTRY = [("/price SYMBOL", "Price"), ("/help", "Help"), ("/price", "Duplicate")]

    def test_build_help_message(self):
        text = build_help_message("Commands", self.REGISTRY[:2])
        assert text == "Commands\n\n/price SYMBOL - Price\n/help - Help"

    @patch("notifications.commands.base.requests.post")
    def test_register_commands_deduplicates(self, mock_post):
        mock_post.return_value.status_code = 200
        mock_post.return_value.json.return_value = {"ok": True}

        register_telegram_commands("tok", self.REGISTRY)

        assert mock_post.call_args[0][0].endswith("/bottok/setMyCommands")
        assert mock_post.call_args[1]["json"]["commands"] == [
            {"command": "price", "description": "Price"},
            {"command": "help", "description": "Help"},
        ]

    @patch("notifications.commands.base.requests.post")
    def test_register_without_token_is_noop(self, mock_post):
        register_telegram_commands("", self.REGISTRY)
        mock_post.assert_not_called()

    def test_trim_decimal(self):
        assert trim_decimal(50000.0) == "50000"
        assert trim_decimal(0.12345678, max_decimals=6) == "0.123457"
        assert trim_decimal(1.5) == "1.5"
