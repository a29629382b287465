"""Tests for the SMS relay bot command handlers."""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from notifications.commands.base import TelegramCommand, parse_command_text
from notifications.commands.relay import (
    PRIVILEGED_INTENTS,
    RelayIntentKind,
    create_relay_handlers,
    parse_relay_intent,
)
from relay.destinations import DestinationRegistry
from relay.relay import SmsRelay
from relay.sms_client import SmsFetchError, SmsRecord


class FakeSmsClient:
    def __init__(self) -> None:
        self.records = [SmsRecord(dt="t1", num="1", cli="Bank", message="code 1234")]
        self.error = False

    def fetch_latest(self, records: int):
        if self.error:
            raise SmsFetchError("down")
        return list(self.records)


@pytest.fixture
def send() -> MagicMock:
    return MagicMock(return_value=True)


@pytest.fixture
def registry(tmp_path, send) -> DestinationRegistry:
    return DestinationRegistry("100", tmp_path / "destinations.json", send)


@pytest.fixture
def relay(tmp_path, registry, send) -> SmsRelay:
    return SmsRelay(
        FakeSmsClient(),
        registry,
        send,
        seen_ids_path=tmp_path / "seen.json",
        sleep_fn=lambda _seconds: None,
        print_fn=lambda _line: None,
    )


@pytest.fixture
def run(relay, registry):
    table = create_relay_handlers(relay, registry)

    def _run(text: str, chat_id: str = "100"):
        if text.startswith("/"):
            command, args = parse_command_text(text)
        else:
            command, args = "", text.split()
        cmd = TelegramCommand(command=command, args=args, chat_id=chat_id, message_id=1, raw_text=text)
        return table[parse_relay_intent(cmd).kind](cmd)

    return _run


class TestRelayIntents:
    def test_every_kind_has_a_handler(self, relay, registry):
        assert set(create_relay_handlers(relay, registry)) == set(RelayIntentKind)

    def test_privileged_set(self):
        assert PRIVILEGED_INTENTS == {
            RelayIntentKind.ADD,
            RelayIntentKind.REMOVE,
            RelayIntentKind.LIST,
            RelayIntentKind.CLEAR,
        }

    def test_free_text_gets_no_reply(self, run):
        result = run("hello bot")
        assert result.message == ""

    def test_unknown_command(self, run):
        assert run("/frobnicate").action == "UNKNOWN_COMMAND"


class TestPublicCommands:
    def test_start_and_help_from_any_chat(self, run):
        assert run("/start", chat_id="555").success is True
        assert "/add CHAT_ID" in run("/help", chat_id="555").message

    def test_status(self, run, relay):
        assert "Connection: unknown" in run("/status").message

        relay.run_cycle()
        message = run("/status", chat_id="555").message
        assert "Connection: connected" in message
        assert "Initialized: yes" in message
        assert "Seen messages: 1" in message
        assert "Destinations: 1" in message


class TestPrivilegedCommands:
    @pytest.mark.parametrize("text", ["/add 200", "/remove 200", "/list", "/clear"])
    def test_rejected_outside_primary(self, run, registry, text):
        result = run(text, chat_id="555")
        assert result.success is False
        assert result.action == "PERMISSION_DENIED"
        assert registry.list() == ["100"]

    def test_add_and_remove(self, run, registry, send):
        result = run("/add 200")
        assert result.success is True
        assert result.message.startswith("✅")
        assert registry.list() == ["100", "200"]

        result = run("/remove 200")
        assert result.action == "DESTINATION_REMOVED"
        assert registry.list() == ["100"]

    def test_add_probe_failure(self, run, registry, send):
        send.return_value = False
        result = run("/add 300")
        assert result.action == "DESTINATION_ADD_REJECTED"
        assert result.message.startswith("❌")

    def test_remove_primary_rejected(self, run):
        assert run("/remove 100").action == "DESTINATION_REMOVE_REJECTED"

    def test_usage(self, run):
        assert run("/add").action == "ADD_USAGE"
        assert run("/remove").action == "REMOVE_USAGE"

    def test_list_marks_primary(self, run):
        run("/add 200")
        message = run("/list").message
        assert "• 100 (primary)" in message
        assert "• 200" in message

    def test_clear_rearms_initialization(self, run, relay):
        relay.run_cycle()
        assert relay.status().initialized is True

        result = run("/clear")

        assert result.action == "SEEN_CLEARED"
        status = relay.status()
        assert status.initialized is False
        assert status.seen == 0
