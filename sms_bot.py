#!/usr/bin/env python3
"""
SMS relay Telegram bot.

Polls the SMS API on a background thread and forwards new messages to the
registered destinations; admin commands are polled on the main thread.
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
    SmsRelayConfig,
    emit_early_env_warnings,
    load_sms_relay_config_from_env,
)
from core.scheduler import PeriodicWorker
from notifications.commands import (
    RELAY_COMMAND_REGISTRY,
    TelegramCommandHandler,
    create_relay_handlers,
    parse_relay_intent,
    process_telegram_commands,
    register_telegram_commands,
)
from notifications.telegram import create_send_fn, verify_bot_token
from relay.destinations import DestinationRegistry
from relay.relay import SmsRelay
from relay.sms_client import SmsApiClient


def _require(value: str, name: str) -> None:
    if not value:
        logging.critical("%s is not set; exiting", name)
        raise SystemExit(1)


def main(config: Optional[SmsRelayConfig] = None) -> None:
    config = config or load_sms_relay_config_from_env()
    emit_early_env_warnings()

    _require(config.bot_token, "SMS_BOT_TOKEN")
    _require(config.primary_chat_id, "SMS_PRIMARY_CHAT_ID")
    _require(config.api_url, "SMS_API_URL")
    bot_name = verify_bot_token(config.bot_token)
    if not bot_name:
        logging.critical("Telegram rejected the SMS bot token; exiting")
        raise SystemExit(1)
    logging.info("Telegram bot authenticated as @%s", bot_name)

    # Forwarded SMS bodies are arbitrary text, so everything goes out unformatted.
    send = create_send_fn(config.bot_token, parse_mode=None)

    registry = DestinationRegistry(config.primary_chat_id, config.destinations_path, send)
    registry.load()
    relay = SmsRelay(
        SmsApiClient(config.api_url, config.api_token, timeout=config.fetch_timeout),
        registry,
        send,
        seen_ids_path=config.seen_ids_path,
        records=config.records,
        forward_delay=config.forward_delay,
    )
    relay.load()
    relay_worker = PeriodicWorker("SmsRelayThread", config.poll_interval, relay.run_cycle)

    dispatch_table = create_relay_handlers(relay, registry)
    handler = TelegramCommandHandler(config.bot_token)
    register_telegram_commands(config.bot_token, RELAY_COMMAND_REGISTRY)

    relay_worker.start()
    logging.info(
        "SMS relay started | destinations=%d | poll interval=%ss",
        len(registry),
        config.poll_interval,
    )
    try:
        while True:
            try:
                commands = handler.poll_commands()
                if commands:
                    process_telegram_commands(
                        commands,
                        parse_fn=parse_relay_intent,
                        dispatch_table=dispatch_table,
                        reply_fn=send,
                    )
            except Exception as exc:
                # Catch all exceptions to keep polling alive
                logging.error("Error in Telegram polling loop: %s", exc, exc_info=True)
            time.sleep(1)
    except KeyboardInterrupt:
        print("\n\nShutting down...")
    finally:
        relay_worker.stop(timeout=config.fetch_timeout + 5)
        relay.flush()


if __name__ == "__main__":
    main()
