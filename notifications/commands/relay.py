"""
Command handlers for the SMS relay bot.

/add, /remove, /list and /clear change who receives SMS and are accepted
only from the primary chat.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, List, Tuple

from notifications.commands.base import (
    CommandFn,
    CommandResult,
    Intent,
    TelegramCommand,
    build_dispatch_table,
    build_help_message,
    parse_intent,
)
from relay.destinations import DestinationRegistry
from relay.relay import SmsRelay

RELAY_COMMAND_REGISTRY: List[Tuple[str, str]] = [
    ("/start", "About this bot"),
    ("/status", "Relay connection and counters"),
    ("/add CHAT_ID", "Forward SMS to another chat (primary only)"),
    ("/remove CHAT_ID", "Stop forwarding to a chat (primary only)"),
    ("/list", "List destinations (primary only)"),
    ("/clear", "Forget seen messages and re-initialize (primary only)"),
    ("/help", "Show this help"),
]


class RelayIntentKind(Enum):
    START = "start"
    STATUS = "status"
    ADD = "add"
    REMOVE = "remove"
    LIST = "list"
    CLEAR = "clear"
    HELP = "help"
    REPLY = "__reply__"
    UNKNOWN = "__unknown__"


PRIVILEGED_INTENTS = frozenset(
    {RelayIntentKind.ADD, RelayIntentKind.REMOVE, RelayIntentKind.LIST, RelayIntentKind.CLEAR}
)

RELAY_COMMAND_MAP: Dict[str, RelayIntentKind] = {
    kind.value: kind
    for kind in RelayIntentKind
    if kind not in (RelayIntentKind.REPLY, RelayIntentKind.UNKNOWN)
}


def parse_relay_intent(cmd: TelegramCommand) -> Intent:
    return parse_intent(
        cmd,
        RELAY_COMMAND_MAP,
        reply_kind=RelayIntentKind.REPLY,
        unknown_kind=RelayIntentKind.UNKNOWN,
    )


def handle_start_command(cmd: TelegramCommand) -> CommandResult:
    message = (
        "📨 SMS Relay\n\n"
        "New SMS messages are forwarded here with any OTP code highlighted.\n"
        "Send /help for the command list."
    )
    return CommandResult(success=True, message=message, action="START")


def handle_help_command(cmd: TelegramCommand) -> CommandResult:
    return CommandResult(
        success=True,
        message=build_help_message("📖 Available commands", RELAY_COMMAND_REGISTRY),
        action="HELP_DISPLAYED",
    )


def handle_unknown_command(cmd: TelegramCommand) -> CommandResult:
    if not cmd.is_command:
        return CommandResult(success=False, message="", action="REPLY_IGNORED")
    return CommandResult(
        success=False,
        message=f"❓ Unknown command: /{cmd.command}\nSend /help for the command list.",
        action="UNKNOWN_COMMAND",
    )


def handle_status_command(cmd: TelegramCommand, *, relay: SmsRelay) -> CommandResult:
    status = relay.status()
    last_fetch = status.last_fetch.strftime("%Y-%m-%d %H:%M:%S UTC") if status.last_fetch else "never"
    message = "\n".join(
        [
            "📊 Relay status",
            f"Connection: {status.connection.value}",
            f"Initialized: {'yes' if status.initialized else 'no'}",
            f"Seen messages: {status.seen}",
            f"Forwarded since start: {status.forwarded_total}",
            f"Destinations: {status.destinations}",
            f"Last successful fetch: {last_fetch}",
        ]
    )
    return CommandResult(success=True, message=message, action="STATUS")


def handle_add_command(cmd: TelegramCommand, *, registry: DestinationRegistry) -> CommandResult:
    if not cmd.args:
        return CommandResult(success=False, message="Usage: /add CHAT_ID", action="ADD_USAGE")
    result = registry.add(cmd.args[0])
    return CommandResult(
        success=result.success,
        message=("✅ " if result.success else "❌ ") + result.message,
        state_changed=result.success,
        action="DESTINATION_ADDED" if result.success else "DESTINATION_ADD_REJECTED",
    )


def handle_remove_command(cmd: TelegramCommand, *, registry: DestinationRegistry) -> CommandResult:
    if not cmd.args:
        return CommandResult(success=False, message="Usage: /remove CHAT_ID", action="REMOVE_USAGE")
    result = registry.remove(cmd.args[0])
    return CommandResult(
        success=result.success,
        message=("✅ " if result.success else "❌ ") + result.message,
        state_changed=result.success,
        action="DESTINATION_REMOVED" if result.success else "DESTINATION_REMOVE_REJECTED",
    )


def handle_list_command(cmd: TelegramCommand, *, registry: DestinationRegistry) -> CommandResult:
    lines = ["📋 Destinations", ""]
    for chat_id in registry.list():
        suffix = " (primary)" if chat_id == registry.primary else ""
        lines.append(f"• {chat_id}{suffix}")
    return CommandResult(success=True, message="\n".join(lines), action="DESTINATIONS_LISTED")


def handle_clear_command(cmd: TelegramCommand, *, relay: SmsRelay) -> CommandResult:
    relay.clear()
    return CommandResult(
        success=True,
        message="🧹 Seen messages cleared. Current inbox will be skipped on the next fetch.",
        state_changed=True,
        action="SEEN_CLEARED",
    )


def create_relay_handlers(
    relay: SmsRelay,
    registry: DestinationRegistry,
) -> Dict[RelayIntentKind, CommandFn]:
    """Bind every relay intent to its handler, guarding privileged ones."""
    k = RelayIntentKind

    def _privileged(kind: RelayIntentKind, fn: CommandFn) -> CommandFn:
        def _handler(cmd: TelegramCommand) -> CommandResult:
            if cmd.chat_id != registry.primary:
                logging.warning(
                    "Rejected privileged /%s from chat %s",
                    kind.value,
                    cmd.chat_id,
                )
                return CommandResult(
                    success=False,
                    message="⛔ This command is only available in the primary chat.",
                    action="PERMISSION_DENIED",
                )
            return fn(cmd)

        return _handler

    handlers: Dict[RelayIntentKind, CommandFn] = {
        k.START: handle_start_command,
        k.HELP: handle_help_command,
        k.STATUS: lambda cmd: handle_status_command(cmd, relay=relay),
        k.ADD: lambda cmd: handle_add_command(cmd, registry=registry),
        k.REMOVE: lambda cmd: handle_remove_command(cmd, registry=registry),
        k.LIST: lambda cmd: handle_list_command(cmd, registry=registry),
        k.CLEAR: lambda cmd: handle_clear_command(cmd, relay=relay),
        k.REPLY: handle_unknown_command,
        k.UNKNOWN: handle_unknown_command,
    }
    for kind in PRIVILEGED_INTENTS:
        handlers[kind] = _privileged(kind, handlers[kind])
    return build_dispatch_table(RelayIntentKind, handlers)
