"""
Telegram command handlers.

base holds the update poller, intent parsing and the dispatch loop;
trading and relay hold the handlers of each bot.
"""

from notifications.commands.base import (
    TelegramCommand,
    TelegramCommandHandler,
    CommandResult,
    Intent,
    build_dispatch_table,
    build_help_message,
    parse_intent,
    process_telegram_commands,
    register_telegram_commands,
    trim_decimal,
)
from notifications.commands.trading import (
    TRADING_COMMAND_REGISTRY,
    TradingIntentKind,
    create_trading_handlers,
    parse_trading_intent,
)
from notifications.commands.relay import (
    RELAY_COMMAND_REGISTRY,
    RelayIntentKind,
    create_relay_handlers,
    parse_relay_intent,
)

__all__ = [
    # Core classes
    "TelegramCommand",
    "TelegramCommandHandler",
    "CommandResult",
    "Intent",
    # Dispatch
    "build_dispatch_table",
    "build_help_message",
    "parse_intent",
    "process_telegram_commands",
    "register_telegram_commands",
    "trim_decimal",
    # Trading bot
    "TRADING_COMMAND_REGISTRY",
    "TradingIntentKind",
    "create_trading_handlers",
    "parse_trading_intent",
    # Relay bot
    "RELAY_COMMAND_REGISTRY",
    "RelayIntentKind",
    "create_relay_handlers",
    "parse_relay_intent",
]
