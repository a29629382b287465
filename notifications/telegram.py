"""
Telegram transport.

Thin wrappers around the Bot API sendMessage and getMe methods shared by
both bots.
"""
from __future__ import annotations

import logging
import re
from typing import Callable, Optional

import requests

TELEGRAM_API_BASE = "https://api.telegram.org"

ANSI_ESCAPE_RE = re.compile(r"\x1B\[[0-?]*[ -/]*[@-~]")


def strip_ansi_codes(text: str) -> str:
    """Remove ANSI color codes so Telegram receives plain text."""
    return ANSI_ESCAPE_RE.sub("", text)


def send_telegram_message(
    *,
    bot_token: str,
    chat_id: str,
    text: str,
    parse_mode: Optional[str] = "Markdown",
) -> bool:
    """Send a message; returns True when Telegram accepted it.

    A 400 "can't parse entities" answer to a formatted message triggers one
    more attempt as plain text with ANSI codes removed.
    """
    target = str(chat_id or "").strip()
    if not bot_token or not target:
        logging.debug("Telegram message not sent: missing bot_token or chat_id")
        return False

    url = f"{TELEGRAM_API_BASE}/bot{bot_token}/sendMessage"
    attempts = [{"chat_id": target, "text": text}]
    if parse_mode:
        attempts[0]["parse_mode"] = parse_mode
        attempts.append({"chat_id": target, "text": strip_ansi_codes(text)})

    for number, payload in enumerate(attempts, start=1):
        try:
            response = requests.post(url, json=payload, timeout=10)
        except requests.exceptions.RequestException as exc:
            logging.error("Error sending Telegram message to %s: %s", target, exc)
            return False
        if response.status_code == 200:
            return True
        logging.warning(
            "Telegram message to %s failed on attempt %d (%s): %s",
            target,
            number,
            response.status_code,
            response.text,
        )
        if response.status_code != 400 or "can't parse entities" not in response.text.lower():
            return False
    return False


def create_send_fn(
    bot_token: str,
    *,
    parse_mode: Optional[str] = "Markdown",
) -> Callable[[str, str], bool]:
    """Bind a token and parse mode into a send_fn(chat_id, text) -> bool."""

    def _send(chat_id: str, text: str) -> bool:
        return send_telegram_message(
            bot_token=bot_token,
            chat_id=chat_id,
            text=text,
            parse_mode=parse_mode,
        )

    return _send


def verify_bot_token(bot_token: str) -> Optional[str]:
    """Call getMe; returns the bot username, or None if the token is rejected."""
    if not bot_token:
        return None
    try:
        response = requests.get(f"{TELEGRAM_API_BASE}/bot{bot_token}/getMe", timeout=10)
    except requests.exceptions.RequestException as exc:
        logging.error("Telegram getMe request failed: %s", exc)
        return None
    if response.status_code != 200:
        logging.error(
            "Telegram rejected bot token: HTTP %d | response=%s",
            response.status_code,
            response.text[:200] if response.text else "(empty)",
        )
        return None
    try:
        data = response.json()
    except ValueError as exc:
        logging.error("Failed to parse Telegram getMe response: %s", exc)
        return None
    if not data.get("ok"):
        logging.error("Telegram getMe returned ok=false: %s", data.get("description", "unknown error"))
        return None
    result = data.get("result") or {}
    return str(result.get("username") or result.get("id") or "")
