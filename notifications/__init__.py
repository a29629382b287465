"""Notifications: Telegram transport and console output."""
from notifications.telegram import (
    create_send_fn,
    send_telegram_message,
    strip_ansi_codes,
    verify_bot_token,
)
from notifications.logging import (
    emit_close_console_log,
    emit_forward_console_log,
    emit_open_console_log,
)

__all__ = [
    # Telegram
    "create_send_fn",
    "send_telegram_message",
    "strip_ansi_codes",
    "verify_bot_token",
    # Console
    "emit_close_console_log",
    "emit_forward_console_log",
    "emit_open_console_log",
]
