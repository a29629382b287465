"""
Bot configuration and global constants.

Settings come from the process environment, optionally seeded from a .env
file next to the project root. Bad values never abort startup: they fall
back to defaults and leave a note in EARLY_ENV_WARNINGS, which the entry
points log once logging is configured.
"""
from __future__ import annotations

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, TypeVar, Union

from dotenv import load_dotenv


# ───────────────────────── ENV READERS ─────────────────────────
EARLY_ENV_WARNINGS: List[str] = []

N = TypeVar("N", int, float)


def _env_str(name: str, default: str = "") -> str:
    """Stripped value of name, or default when unset or blank."""
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip() or default


def _env_number(
    name: str,
    cast: Callable[[str], N],
    default: N,
    *,
    minimum: Optional[Union[int, float]] = None,
    maximum: Optional[Union[int, float]] = None,
) -> N:
    """Parse name with cast; unparsable or out-of-range values yield default.

    Bounds are inclusive.
    """
    raw = _env_str(name)
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        EARLY_ENV_WARNINGS.append(f"{name}={raw!r} is not a valid number; using {default}")
        return default
    if (minimum is not None and value < minimum) or (maximum is not None and value > maximum):
        bounds = f"[{'-inf' if minimum is None else minimum}, {'inf' if maximum is None else maximum}]"
        EARLY_ENV_WARNINGS.append(f"{name}={raw} is outside {bounds}; using {default}")
        return default
    return value


def emit_early_env_warnings() -> None:
    """Log the collected configuration warnings, then forget them."""
    global EARLY_ENV_WARNINGS
    pending, EARLY_ENV_WARNINGS = EARLY_ENV_WARNINGS, []
    for note in pending:
        logging.warning(note)


# ───────────────────────── PATH SETUP ─────────────────────────
BASE_DIR = Path(__file__).resolve().parent.parent
DOTENV_PATH = BASE_DIR / ".env"

if DOTENV_PATH.exists():
    load_dotenv(dotenv_path=DOTENV_PATH, override=True)
else:
    load_dotenv(override=True)

DATA_DIR = Path(os.getenv("BOT_DATA_DIR", str(BASE_DIR / "data"))).expanduser()

# ───────────────────────── TRADING CONSTANTS ─────────────────────────
INITIAL_BALANCE = 10000.0
MIN_LEVERAGE = 1
MAX_LEVERAGE = 125
COMMISSION_RATE = 0.0004          # 0.04% per side, on notional
MAINTENANCE_MARGIN_RATE = 0.004   # 0.4%
QUOTE_ASSET = "USDT"
TRENDING_LIMIT = 15

# Quick TP/SL distances from entry, in percent
QUICK_TAKE_PROFIT_PCT = 10.0
QUICK_STOP_LOSS_PCT = 5.0

# Suggestions shown in the guided trade flow
QUICK_MARGIN_AMOUNTS = [50, 100, 250, 500, 1000, 2500]
QUICK_LEVERAGES = [2, 5, 10, 20, 25, 50, 75, 100]

DEFAULT_MONITOR_INTERVAL = 10
DEFAULT_COMMAND_POLL_INTERVAL = 1

# ───────────────────────── SMS RELAY CONSTANTS ─────────────────────────
DEFAULT_SMS_RECORDS = 10
DEFAULT_SMS_POLL_INTERVAL = 5
DEFAULT_SMS_FETCH_TIMEOUT = 10
DEFAULT_SMS_FORWARD_DELAY = 1.0

SEEN_IDS_JSON = DATA_DIR / "seen_sms_ids.json"
DESTINATIONS_JSON = DATA_DIR / "sms_destinations.json"


# ───────────────────────── CONFIG DATACLASSES ─────────────────────────
@dataclass
class TradingBotConfig:
    bot_token: str
    start_capital: float
    monitor_interval: int
    command_poll_interval: int
    binance_api_key: str
    binance_api_secret: str


@dataclass
class SmsRelayConfig:
    bot_token: str
    primary_chat_id: str
    api_url: str
    api_token: str
    records: int
    poll_interval: int
    fetch_timeout: int
    forward_delay: float
    seen_ids_path: Path
    destinations_path: Path


def load_trading_bot_config_from_env() -> TradingBotConfig:
    """Read the paper trading bot settings.

    TRADING_BOT_TOKEN wins over TELEGRAM_BOT_TOKEN. Binance keys are optional
    because only public market data endpoints are used.
    """
    return TradingBotConfig(
        bot_token=_env_str("TRADING_BOT_TOKEN") or _env_str("TELEGRAM_BOT_TOKEN"),
        start_capital=_env_number(
            "PAPER_START_CAPITAL", float, INITIAL_BALANCE, minimum=0.01
        ),
        monitor_interval=_env_number(
            "TRADEBOT_MONITOR_INTERVAL", int, DEFAULT_MONITOR_INTERVAL, minimum=1
        ),
        command_poll_interval=_env_number(
            "TRADEBOT_COMMAND_POLL_INTERVAL", int, DEFAULT_COMMAND_POLL_INTERVAL, minimum=0
        ),
        binance_api_key=_env_str("BN_API_KEY"),
        binance_api_secret=_env_str("BN_SECRET"),
    )


def load_sms_relay_config_from_env() -> SmsRelayConfig:
    """Read the SMS relay bot settings; required values are checked by the caller."""
    return SmsRelayConfig(
        bot_token=_env_str("SMS_BOT_TOKEN"),
        primary_chat_id=_env_str("SMS_PRIMARY_CHAT_ID"),
        api_url=_env_str("SMS_API_URL"),
        api_token=_env_str("SMS_API_TOKEN"),
        records=_env_number("SMS_RECORDS", int, DEFAULT_SMS_RECORDS, minimum=1),
        poll_interval=_env_number("SMS_POLL_INTERVAL", int, DEFAULT_SMS_POLL_INTERVAL, minimum=1),
        fetch_timeout=_env_number("SMS_FETCH_TIMEOUT", int, DEFAULT_SMS_FETCH_TIMEOUT, minimum=1),
        forward_delay=_env_number(
            "SMS_FORWARD_DELAY", float, DEFAULT_SMS_FORWARD_DELAY, minimum=0.0, maximum=60.0
        ),
        seen_ids_path=SEEN_IDS_JSON,
        destinations_path=DESTINATIONS_JSON,
    )
