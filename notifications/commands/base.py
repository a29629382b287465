"""
Shared plumbing for the chat side of both bots.

Messages arrive through getUpdates polling, are turned into
TelegramCommand objects, tagged with an Intent and handed to the handler
registered for that intent. Replies go back to the chat they came from.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

import requests

from notifications.telegram import TELEGRAM_API_BASE


@dataclass
class TelegramCommand:
    """One incoming chat message.

    Attributes:
        command: Lower-cased name after the slash ("trade" for "/trade BTC").
            Empty when the message is plain text.
        args: Whitespace-separated words after the command, or every word of
            a plain-text message.
        chat_id: Chat the message came from; replies and account lookups use it.
        message_id: Telegram message id.
        raw_text: Stripped message text.
        raw_update: The update object as received.
        user_id: Sender's Telegram user id.
    """
    command: str
    args: List[str]
    chat_id: str
    message_id: int
    raw_text: str
    raw_update: Dict[str, Any] = field(default_factory=dict)
    user_id: str = ""

    @property
    def is_command(self) -> bool:
        return bool(self.command)


@dataclass
class CommandResult:
    """What a handler produced.

    Attributes:
        success: False when the request was rejected or failed.
        message: Reply text; an empty string means no reply is sent.
        state_changed: True when an account, draft or destination list changed.
        action: Short tag written to the log (e.g. "POSITION_OPENED").
    """
    success: bool
    message: str
    state_changed: bool = False
    action: Optional[str] = None


def _call_bot_api(
    bot_token: str,
    method: str,
    *,
    params: Optional[Dict[str, Any]] = None,
    payload: Optional[Dict[str, Any]] = None,
    timeout: float = 10,
) -> Optional[Any]:
    """Call a Bot API method and return its "result", or None on any failure.

    GET is used when payload is None, POST with a JSON body otherwise.
    """
    url = f"{TELEGRAM_API_BASE}/bot{bot_token}/{method}"
    try:
        if payload is None:
            response = requests.get(url, params=params, timeout=timeout)
        else:
            response = requests.post(url, json=payload, timeout=timeout)
    except requests.exceptions.Timeout:
        logging.warning("Telegram %s timed out after %ss", method, timeout)
        return None
    except requests.exceptions.RequestException as exc:
        logging.warning("Telegram %s failed: %s", method, exc)
        return None

    if response.status_code != 200:
        body = response.text[:200] if response.text else "(empty)"
        logging.warning("Telegram %s returned HTTP %d: %s", method, response.status_code, body)
        return None
    try:
        data = response.json()
    except ValueError as exc:
        logging.warning("Telegram %s sent invalid JSON: %s", method, exc)
        return None
    if not data.get("ok"):
        logging.warning("Telegram %s not ok: %s", method, data.get("description", "no description"))
        return None
    return data.get("result")


class TelegramCommandHandler:
    """Short-polls getUpdates and converts messages into TelegramCommand objects.

    The offset advances past every update seen, including ones that are
    filtered out, so nothing is delivered twice.
    """

    DEFAULT_TIMEOUT = 5
    DEFAULT_LIMIT = 10

    def __init__(
        self,
        bot_token: str,
        allowed_chat_id: Optional[str] = None,
        last_update_id: int = 0,
        *,
        include_text: bool = False,
        timeout: int = DEFAULT_TIMEOUT,
        limit: int = DEFAULT_LIMIT,
    ) -> None:
        """
        Args:
            bot_token: Bot API token; polling is a no-op without it.
            allowed_chat_id: Drop messages from every other chat when set.
            last_update_id: Highest update id already handled.
            include_text: Return plain-text messages too, with an empty command.
            timeout: getUpdates long-poll timeout; the HTTP timeout adds 5s.
            limit: Maximum updates requested per poll.
        """
        self._token = bot_token
        self._allowed_chat_id = str(allowed_chat_id).strip() if allowed_chat_id else ""
        self._offset_id = last_update_id
        self._include_text = include_text
        self._timeout = timeout
        self._limit = limit

    @property
    def last_update_id(self) -> int:
        return self._offset_id

    def poll_commands(self) -> List[TelegramCommand]:
        """Fetch pending updates. Failures are logged and yield []."""
        if not self._token:
            logging.debug("Skipping getUpdates: no bot token")
            return []

        params: Dict[str, Any] = {"timeout": self._timeout, "limit": self._limit}
        if self._offset_id > 0:
            params["offset"] = self._offset_id + 1
        updates = _call_bot_api(
            self._token,
            "getUpdates",
            params=params,
            timeout=self._timeout + 5,
        )
        if not isinstance(updates, list):
            return []

        commands: List[TelegramCommand] = []
        for update in updates:
            if isinstance(update.get("update_id"), int):
                self._offset_id = max(self._offset_id, update["update_id"])
            cmd = self._to_command(update)
            if cmd is not None:
                commands.append(cmd)
        if commands:
            logging.debug("Polled %d message(s); offset now %d", len(commands), self._offset_id)
        return commands

    def _to_command(self, update: Dict[str, Any]) -> Optional[TelegramCommand]:
        # Edited messages, callbacks and channel posts carry no "message".
        message = update.get("message")
        if not message:
            return None

        chat_id = str((message.get("chat") or {}).get("id", ""))
        if self._allowed_chat_id and chat_id != self._allowed_chat_id:
            logging.warning(
                "Dropping message from chat %s (only %s is allowed), update %s",
                chat_id,
                self._allowed_chat_id,
                update.get("update_id"),
            )
            return None

        text = (message.get("text") or "").strip()
        if text.startswith("/"):
            command, args = parse_command_text(text)
        elif text and self._include_text:
            command, args = "", text.split()
        else:
            return None

        return TelegramCommand(
            command=command,
            args=args,
            chat_id=chat_id,
            message_id=message.get("message_id", 0),
            raw_text=text,
            raw_update=update,
            user_id=str((message.get("from") or {}).get("id", "")),
        )


def parse_command_text(text: str) -> Tuple[str, List[str]]:
    """Split "/name@Bot a b" into ("name", ["a", "b"]).

    Examples:
        "/positions" -> ("positions", [])
        "/close 1700000000000" -> ("close", ["1700000000000"])
        "/Price@PaperBot btc" -> ("price", ["btc"])
    """
    words = text[1:].split()
    if not words:
        return ("", [])
    name = words[0].partition("@")[0]
    return (name.lower(), words[1:])


# ═══════════════════════════════════════════════════════════════════
# INTENTS AND DISPATCH
# ═══════════════════════════════════════════════════════════════════

K = TypeVar("K", bound=Enum)

CommandFn = Callable[[TelegramCommand], CommandResult]


@dataclass(frozen=True)
class Intent:
    """A parsed message tagged with what the sender wants to do."""

    kind: Enum
    command: TelegramCommand


def parse_intent(
    cmd: TelegramCommand,
    command_map: Mapping[str, K],
    *,
    reply_kind: K,
    unknown_kind: K,
) -> Intent:
    """Map a message to an Intent: free text becomes reply_kind."""
    if not cmd.is_command:
        return Intent(kind=reply_kind, command=cmd)
    return Intent(kind=command_map.get(cmd.command, unknown_kind), command=cmd)


def build_dispatch_table(kinds: Type[K], handlers: Mapping[K, CommandFn]) -> Dict[K, CommandFn]:
    """Return the handler table, refusing one that leaves any kind unhandled."""
    missing = [kind.name for kind in kinds if kind not in handlers]
    if missing:
        raise ValueError(f"No handler registered for: {', '.join(missing)}")
    return {kind: handlers[kind] for kind in kinds}


def process_telegram_commands(
    commands: Sequence[TelegramCommand],
    *,
    parse_fn: Callable[[TelegramCommand], Intent],
    dispatch_table: Mapping[Any, CommandFn],
    reply_fn: Callable[[str, str], Any],
) -> List[CommandResult]:
    """Dispatch each command and send its reply to the originating chat.

    Note:
        All exceptions are caught and logged so a failing handler cannot stop
        the polling loop.
    """
    results: List[CommandResult] = []
    for cmd in commands:
        try:
            intent = parse_fn(cmd)
            result = dispatch_table[intent.kind](cmd)
        except Exception as exc:
            logging.error(
                "Error processing Telegram command /%s: %s",
                cmd.command,
                exc,
                exc_info=True,
            )
            result = CommandResult(
                success=False,
                message="⚠️ Something went wrong while processing that command. Please try again.",
                action="COMMAND_FAILED",
            )
        if result.action:
            logging.info(
                "Telegram command handled: /%s | chat_id=%s | action=%s | success=%s",
                cmd.command or "(reply)",
                cmd.chat_id,
                result.action,
                result.success,
            )
        results.append(result)
        if result.message:
            try:
                reply_fn(cmd.chat_id, result.message)
            except Exception as exc:
                logging.error("Failed to send Telegram response: %s", exc)
    return results


# ═══════════════════════════════════════════════════════════════════
# HELP AND COMMAND REGISTRATION
# ═══════════════════════════════════════════════════════════════════


def build_help_message(title: str, registry: Sequence[Tuple[str, str]]) -> str:
    lines = [title, ""]
    lines.extend(f"{usage} - {description}" for usage, description in registry)
    return "\n".join(lines)


def register_telegram_commands(bot_token: str, registry: Sequence[Tuple[str, str]]) -> None:
    """Publish the command menu via setMyCommands; the first entry per name wins."""
    if not bot_token:
        return
    menu: Dict[str, str] = {}
    for usage, description in registry:
        head = usage.split()[0]
        name = head[1:].lower() if head.startswith("/") else ""
        if name:
            menu.setdefault(name, description)
    if not menu:
        return
    result = _call_bot_api(
        bot_token,
        "setMyCommands",
        payload={"commands": [{"command": n, "description": d} for n, d in menu.items()]},
    )
    if result is not None:
        logging.info("Registered %d Telegram command(s)", len(menu))


def trim_decimal(value: float, *, max_decimals: int = 4) -> str:
    """Fixed-point text without trailing zeros: 50000.0 -> "50000"."""
    text = f"{value:.{max_decimals}f}"
    return text.rstrip("0").rstrip(".") if "." in text else text
