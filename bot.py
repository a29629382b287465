#!/usr/bin/env python3
"""
Paper futures trading Telegram bot.

Polls Telegram for commands on the main thread and runs the auto-close
monitor on a background thread. Account state lives in memory only.
"""
from __future__ import annotations

import logging
import time
from typing import Optional

# ───────────────────────── LOGGING SETUP ─────────────────────────
logging.basicConfig(
    format="%(asctime)s | %(levelname)s | %(message)s",
    level=logging.INFO
)

# ───────────────────────── CONFIGURATION ─────────────────────────
from config.settings import (
    TradingBotConfig,
    emit_early_env_warnings,
    load_trading_bot_config_from_env,
)
from core.accounting import DEFAULT_POLICY
from core.models import Account, Trade
from core.monitor import AutoCloseMonitor
from core.scheduler import PeriodicWorker
from core.state import AccountStore, DraftStore
from core.trading import PaperTradingService
from exchange.market_data import BinanceMarketDataClient, create_binance_client
from notifications.commands import (
    TRADING_COMMAND_REGISTRY,
    TelegramCommandHandler,
    create_trading_handlers,
    parse_trading_intent,
    process_telegram_commands,
    register_telegram_commands,
)
from notifications.commands.trading import build_auto_close_message
from notifications.telegram import create_send_fn, verify_bot_token


def build_service(config: TradingBotConfig) -> PaperTradingService:
    client = create_binance_client(config.binance_api_key, config.binance_api_secret)
    if client is None:
        logging.critical("Unable to initialize Binance client; exiting")
        raise SystemExit(1)
    store = AccountStore(config.start_capital)
    return PaperTradingService(store, BinanceMarketDataClient(client), policy=DEFAULT_POLICY)


def main(config: Optional[TradingBotConfig] = None) -> None:
    config = config or load_trading_bot_config_from_env()
    emit_early_env_warnings()

    if not config.bot_token:
        logging.critical("TRADING_BOT_TOKEN is not set; exiting")
        raise SystemExit(1)
    bot_name = verify_bot_token(config.bot_token)
    if not bot_name:
        logging.critical("Telegram rejected the trading bot token; exiting")
        raise SystemExit(1)
    logging.info("Telegram bot authenticated as @%s", bot_name)

    service = build_service(config)
    drafts = DraftStore()
    reply = create_send_fn(config.bot_token, parse_mode=None)

    def _notify_auto_close(user_id: str, trade: Trade, account: Account) -> None:
        reply(user_id, build_auto_close_message(trade, account))

    monitor = AutoCloseMonitor(service, notify_fn=_notify_auto_close)
    monitor_worker = PeriodicWorker("AutoCloseMonitorThread", config.monitor_interval, monitor.sweep)

    dispatch_table = create_trading_handlers(service, drafts)
    handler = TelegramCommandHandler(config.bot_token, include_text=True)
    register_telegram_commands(config.bot_token, TRADING_COMMAND_REGISTRY)

    monitor_worker.start()
    logging.info(
        "Paper trading bot started | start capital=%.2f | monitor interval=%ss",
        config.start_capital,
        config.monitor_interval,
    )
    try:
        while True:
            try:
                commands = handler.poll_commands()
                if commands:
                    logging.info("Telegram commands received: %d command(s)", len(commands))
                    process_telegram_commands(
                        commands,
                        parse_fn=parse_trading_intent,
                        dispatch_table=dispatch_table,
                        reply_fn=reply,
                    )
            except Exception as exc:
                # Catch all exceptions to keep polling alive
                logging.error("Error in Telegram polling loop: %s", exc, exc_info=True)
            time.sleep(config.command_poll_interval)
    except KeyboardInterrupt:
        print("\n\nShutting down...")
    finally:
        monitor_worker.stop(timeout=5)


if __name__ == "__main__":
    main()
