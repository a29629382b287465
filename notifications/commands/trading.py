"""
Command handlers for the paper trading bot.

Accounts are keyed by chat id. A trade can be placed in one message
("/trade BTC long 100 10") or through a guided flow where /trade SYMBOL
starts a draft and plain-text replies fill in side, margin and leverage.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Dict, List, Optional

from config.settings import (
    MAX_LEVERAGE,
    MIN_LEVERAGE,
    QUICK_LEVERAGES,
    QUICK_MARGIN_AMOUNTS,
    QUICK_STOP_LOSS_PCT,
    QUICK_TAKE_PROFIT_PCT,
)
from core.accounting import (
    DEFAULT_POLICY,
    AccountingError,
    AccountingPolicy,
    InsufficientBalanceError,
    calculate_commission,
    calculate_liquidation_price,
    calculate_pnl,
)
from core.models import Account, Position, Side, Trade
from core.state import DraftStep, DraftStore, TradeDraft
from core.trading import PaperTradingService
from exchange.market_data import MarketDataError, normalize_symbol
from notifications.commands.base import (
    CommandFn,
    CommandResult,
    Intent,
    TelegramCommand,
    build_dispatch_table,
    build_help_message,
    parse_intent,
    trim_decimal,
)

TRADING_COMMAND_REGISTRY: List[tuple[str, str]] = [
    ("/start", "Open your paper trading account"),
    ("/menu", "Account overview"),
    ("/price SYMBOL", "Current price and 24h stats"),
    ("/markets", "Most traded futures markets"),
    ("/trade SYMBOL [long|short MARGIN LEVERAGE]", "Open a position"),
    ("/cancel", "Abandon the trade being set up"),
    ("/positions", "List open positions"),
    ("/position ID", "Position details"),
    ("/close ID", "Close a position at market"),
    ("/closeall", "Close every open position"),
    ("/tp ID PRICE", "Set take profit"),
    ("/sl ID PRICE", "Set stop loss"),
    ("/tpsl ID [clear]", f"Quick TP {QUICK_TAKE_PROFIT_PCT:g}% / SL {QUICK_STOP_LOSS_PCT:g}%, or clear both"),
    ("/portfolio", "Balance, equity and open PnL"),
    ("/history", "Recent closed trades"),
    ("/analysis", "Performance statistics"),
    ("/settings", "Show settings"),
    ("/toggle autotp|autosl|notifications", "Switch a setting on or off"),
    ("/reset confirm", "Start over with a fresh account"),
    ("/help", "Show this help"),
]

HISTORY_LIMIT = 10

_TOGGLE_NAMES: Dict[str, str] = {
    "autotp": "auto_tp",
    "autosl": "auto_sl",
    "notifications": "notifications",
}

_CONFIRM_WORDS = {"yes", "y", "confirm", "ok"}
_CANCEL_WORDS = {"no", "n", "cancel"}


class TradingIntentKind(Enum):
    START = "start"
    MENU = "menu"
    HELP = "help"
    PRICE = "price"
    MARKETS = "markets"
    TRADE = "trade"
    CANCEL = "cancel"
    POSITIONS = "positions"
    POSITION = "position"
    CLOSE = "close"
    CLOSE_ALL = "closeall"
    TAKE_PROFIT = "tp"
    STOP_LOSS = "sl"
    QUICK_TPSL = "tpsl"
    PORTFOLIO = "portfolio"
    HISTORY = "history"
    ANALYSIS = "analysis"
    SETTINGS = "settings"
    TOGGLE = "toggle"
    RESET = "reset"
    REPLY = "__reply__"
    UNKNOWN = "__unknown__"


TRADING_COMMAND_MAP: Dict[str, TradingIntentKind] = {
    kind.value: kind
    for kind in TradingIntentKind
    if kind not in (TradingIntentKind.REPLY, TradingIntentKind.UNKNOWN)
}


def parse_trading_intent(cmd: TelegramCommand) -> Intent:
    return parse_intent(
        cmd,
        TRADING_COMMAND_MAP,
        reply_kind=TradingIntentKind.REPLY,
        unknown_kind=TradingIntentKind.UNKNOWN,
    )


# ═══════════════════════════════════════════════════════════════════
# FORMATTING
# ═══════════════════════════════════════════════════════════════════


def _money(value: float) -> str:
    return f"${value:,.2f}"


def _signed(value: float) -> str:
    sign = "+" if value >= 0 else "-"
    return f"{sign}${abs(value):,.2f}"


def _price(value: Optional[float]) -> str:
    if value is None:
        return "not set"
    return trim_decimal(value, max_decimals=6)


def format_position(
    position: Position,
    current_price: Optional[float] = None,
    *,
    policy: AccountingPolicy = DEFAULT_POLICY,
) -> str:
    lines = [
        f"#{position.id} {position.symbol} {position.side.value} {position.leverage}x",
        f"Entry: {_price(position.entry_price)} | Margin: {_money(position.margin)}",
        f"Size: {_money(position.position_size)} | Qty: {trim_decimal(position.quantity, max_decimals=6)}",
        f"Liquidation: {_price(position.liquidation_price)}",
        f"TP: {_price(position.take_profit)} | SL: {_price(position.stop_loss)}",
    ]
    if current_price is not None:
        pnl, roi = calculate_pnl(position, current_price, policy=policy)
        lines.append(f"Mark: {_price(current_price)} | PnL: {_signed(pnl)} ({roi:+.2f}%)")
    return "\n".join(lines)


def format_trade(trade: Trade) -> str:
    icon = "🟢" if trade.pnl >= 0 else "🔴"
    return (
        f"{icon} #{trade.id} {trade.symbol} {trade.side.value} {trade.leverage}x | "
        f"{_price(trade.entry_price)} → {_price(trade.exit_price)} | "
        f"{_signed(trade.pnl)} ({trade.roi:+.2f}%) | {trade.status.value}"
    )


def build_auto_close_message(trade: Trade, account: Account) -> str:
    """Notification sent when the monitor closes a position."""
    return "\n".join(
        [
            f"🔔 {trade.status.value}",
            "",
            f"#{trade.id} {trade.symbol} {trade.side.value} {trade.leverage}x",
            f"Entry: {_price(trade.entry_price)} | Exit: {_price(trade.exit_price)}",
            f"Net PnL: {_signed(trade.pnl)} ({trade.roi:+.2f}%)",
            f"Held: {trade.duration_minutes}m",
            f"Fees: {_money(trade.total_commission)}",
            f"Balance: {_money(account.balance)}",
        ]
    )


def _account_overview(account: Account) -> str:
    stats = account.stats
    return "\n".join(
        [
            f"💰 Balance: {_money(account.balance)}",
            f"📂 Open positions: {len(account.positions)}",
            f"📊 Trades: {stats.total_trades} | Win rate: {stats.win_rate:.1f}%",
            f"💵 Net PnL: {_signed(stats.net_pnl)}",
        ]
    )


def _parse_position_id(args: List[str]) -> Optional[int]:
    if not args:
        return None
    try:
        return int(args[0].lstrip("#"))
    except ValueError:
        return None


def _parse_float(raw: str) -> Optional[float]:
    try:
        value = float(raw.replace(",", "").lstrip("$"))
    except ValueError:
        return None
    if value != value:
        return None
    return value


def _parse_leverage(raw: str) -> Optional[int]:
    try:
        value = int(raw.lower().rstrip("x"))
    except ValueError:
        return None
    if value < MIN_LEVERAGE or value > MAX_LEVERAGE:
        return None
    return value


def _fail(message: str, action: str) -> CommandResult:
    return CommandResult(success=False, message=message, action=action)


# ═══════════════════════════════════════════════════════════════════
# ACCOUNT AND MARKET COMMANDS
# ═══════════════════════════════════════════════════════════════════


def handle_start_command(cmd: TelegramCommand, *, service: PaperTradingService) -> CommandResult:
    account = service.account(cmd.chat_id)
    message = (
        "🤖 Paper Futures Trading\n\n"
        f"Practice leveraged futures trading with {_money(account.initial_balance)} "
        "of virtual funds and live Binance prices.\n\n"
        f"{_account_overview(account)}\n\n"
        "Send /help to see every command."
    )
    return CommandResult(success=True, message=message, action="START")


def handle_menu_command(cmd: TelegramCommand, *, service: PaperTradingService) -> CommandResult:
    account = service.account(cmd.chat_id)
    return CommandResult(success=True, message=_account_overview(account), action="MENU")


def handle_help_command(cmd: TelegramCommand) -> CommandResult:
    return CommandResult(
        success=True,
        message=build_help_message("📖 Available commands", TRADING_COMMAND_REGISTRY),
        action="HELP_DISPLAYED",
    )


def handle_unknown_command(cmd: TelegramCommand) -> CommandResult:
    logging.info(
        "Telegram unknown command received: /%s | chat_id=%s",
        cmd.command,
        cmd.chat_id,
    )
    message = (
        f"❓ Unknown command: /{cmd.command}\n\n"
        f"{build_help_message('📖 Available commands', TRADING_COMMAND_REGISTRY)}"
    )
    return CommandResult(success=False, message=message, action="UNKNOWN_COMMAND")


def handle_price_command(cmd: TelegramCommand, *, service: PaperTradingService) -> CommandResult:
    if not cmd.args:
        return _fail("Usage: /price SYMBOL (e.g. /price BTC)", "PRICE_USAGE")
    try:
        details = service.quote(cmd.args[0])
    except MarketDataError as exc:
        return _fail(f"❌ {exc}", "PRICE_FAILED")
    arrow = "📈" if details.price_change_percent >= 0 else "📉"
    message = "\n".join(
        [
            f"{arrow} {details.symbol}",
            f"Price: {_price(details.price)}",
            f"24h change: {details.price_change_percent:+.2f}% ({trim_decimal(details.price_change, max_decimals=6)})",
            f"24h high: {_price(details.high_price)} | low: {_price(details.low_price)}",
            f"24h volume: {_money(details.quote_volume)}",
        ]
    )
    return CommandResult(success=True, message=message, action="PRICE")


def handle_markets_command(cmd: TelegramCommand, *, service: PaperTradingService) -> CommandResult:
    try:
        coins = service.trending()
    except MarketDataError as exc:
        return _fail(f"❌ {exc}", "MARKETS_FAILED")
    if not coins:
        return _fail("No market data available right now.", "MARKETS_EMPTY")
    lines = ["🔥 Most traded markets (24h)", ""]
    for index, coin in enumerate(coins, start=1):
        lines.append(f"{index}. {coin.symbol} {coin.price_change_percent:+.2f}%")
    return CommandResult(success=True, message="\n".join(lines), action="MARKETS")


def handle_portfolio_command(cmd: TelegramCommand, *, service: PaperTradingService) -> CommandResult:
    snapshot = service.portfolio(cmd.chat_id)
    message = "\n".join(
        [
            "💼 Portfolio",
            f"Balance: {_money(snapshot.balance)}",
            f"Margin in use: {_money(snapshot.margin_in_use)}",
            f"Unrealized PnL: {_signed(snapshot.unrealized_pnl)}",
            f"Equity: {_money(snapshot.equity)}",
            f"Open positions: {snapshot.positions}",
            f"Realized PnL: {_signed(snapshot.stats['net_pnl'])}",
        ]
    )
    return CommandResult(success=True, message=message, action="PORTFOLIO")


def handle_history_command(cmd: TelegramCommand, *, service: PaperTradingService) -> CommandResult:
    account = service.account(cmd.chat_id)
    with service.store.lock_for(cmd.chat_id):
        trades = list(account.trade_history[-HISTORY_LIMIT:])
    if not trades:
        return CommandResult(success=True, message="No closed trades yet.", action="HISTORY")
    lines = [f"📜 Last {len(trades)} trade(s)", ""]
    lines.extend(format_trade(trade) for trade in reversed(trades))
    return CommandResult(success=True, message="\n".join(lines), action="HISTORY")


def handle_analysis_command(cmd: TelegramCommand, *, service: PaperTradingService) -> CommandResult:
    summary = service.portfolio(cmd.chat_id).stats
    if not summary["total_trades"]:
        return CommandResult(
            success=True,
            message="No closed trades yet. Close a position to see your statistics.",
            action="ANALYSIS",
        )
    message = "\n".join(
        [
            "📊 Performance",
            f"Trades: {summary['total_trades']} ({summary['winning_trades']}W / {summary['losing_trades']}L)",
            f"Win rate: {summary['win_rate']:.1f}%",
            f"Net PnL: {_signed(summary['net_pnl'])} ({summary['total_roi']:+.2f}%)",
            f"Average win: {_signed(summary['avg_win'])} | Average loss: {_signed(summary['avg_loss'])}",
            f"Profit factor: {summary['profit_factor']:.2f}",
            f"Best: {_signed(summary['best_trade'])} | Worst: {_signed(summary['worst_trade'])}",
            f"Fees paid: {_money(summary['total_commission'])}",
            f"Rating: {summary['rating']}",
        ]
    )
    return CommandResult(success=True, message=message, action="ANALYSIS")


def handle_settings_command(cmd: TelegramCommand, *, service: PaperTradingService) -> CommandResult:
    settings = service.account(cmd.chat_id).settings

    def _flag(value: bool) -> str:
        return "✅" if value else "❌"

    message = "\n".join(
        [
            "⚙️ Settings",
            f"{_flag(settings.auto_tp)} Auto take profit: {settings.default_tp_pct:g}% (autotp)",
            f"{_flag(settings.auto_sl)} Auto stop loss: {settings.default_sl_pct:g}% (autosl)",
            f"{_flag(settings.notifications)} Auto-close notifications (notifications)",
            "",
            "Use /toggle NAME to switch a setting.",
        ]
    )
    return CommandResult(success=True, message=message, action="SETTINGS")


def handle_toggle_command(cmd: TelegramCommand, *, service: PaperTradingService) -> CommandResult:
    name = cmd.args[0].lower() if cmd.args else ""
    attribute = _TOGGLE_NAMES.get(name)
    if attribute is None:
        return _fail("Usage: /toggle autotp|autosl|notifications", "TOGGLE_USAGE")
    enabled = service.toggle_setting(cmd.chat_id, attribute)
    return CommandResult(
        success=True,
        message=f"{name} is now {'ON' if enabled else 'OFF'}.",
        state_changed=True,
        action="SETTING_TOGGLED",
    )


def handle_reset_command(cmd: TelegramCommand, *, service: PaperTradingService) -> CommandResult:
    if not cmd.args or cmd.args[0].lower() != "confirm":
        return _fail(
            "⚠️ This wipes your positions, history and statistics.\n"
            "Send /reset confirm to continue.",
            "RESET_CONFIRM_REQUIRED",
        )
    account = service.reset(cmd.chat_id)
    return CommandResult(
        success=True,
        message=f"🔄 Account reset. Balance: {_money(account.balance)}",
        state_changed=True,
        action="ACCOUNT_RESET",
    )


# ═══════════════════════════════════════════════════════════════════
# POSITION COMMANDS
# ═══════════════════════════════════════════════════════════════════


def handle_positions_command(cmd: TelegramCommand, *, service: PaperTradingService) -> CommandResult:
    account = service.account(cmd.chat_id)
    with service.store.lock_for(cmd.chat_id):
        positions = list(account.positions)
    if not positions:
        return CommandResult(success=True, message="No open positions.", action="POSITIONS")
    prices = service.mark_prices(account)
    blocks = [f"📂 Open positions ({len(positions)})"]
    for position in positions:
        blocks.append(format_position(position, prices.get(position.symbol), policy=service.policy))
    return CommandResult(success=True, message="\n\n".join(blocks), action="POSITIONS")


def handle_position_command(cmd: TelegramCommand, *, service: PaperTradingService) -> CommandResult:
    position_id = _parse_position_id(cmd.args)
    if position_id is None:
        return _fail("Usage: /position ID", "POSITION_USAGE")
    account = service.account(cmd.chat_id)
    with service.store.lock_for(cmd.chat_id):
        position = account.find_position(position_id)
    if position is None:
        return _fail(f"❌ Position {position_id} not found", "POSITION_NOT_FOUND")
    price: Optional[float]
    try:
        price = service.price_source.get_price(position.symbol).price
    except MarketDataError as exc:
        logging.warning("Mark price unavailable for %s: %s", position.symbol, exc)
        price = None
    return CommandResult(success=True, message=format_position(position, price, policy=service.policy), action="POSITION")


def handle_close_command(cmd: TelegramCommand, *, service: PaperTradingService) -> CommandResult:
    position_id = _parse_position_id(cmd.args)
    if position_id is None:
        return _fail("Usage: /close ID", "CLOSE_USAGE")
    try:
        trade = service.close_trade(cmd.chat_id, position_id)
    except (AccountingError, MarketDataError) as exc:
        return _fail(f"❌ {exc}", "CLOSE_FAILED")
    account = service.account(cmd.chat_id)
    message = "\n".join(
        [
            "✅ Position closed",
            format_trade(trade),
            f"Fees: {_money(trade.total_commission)}",
            f"Balance: {_money(account.balance)}",
        ]
    )
    return CommandResult(success=True, message=message, state_changed=True, action="POSITION_CLOSED")


def handle_close_all_command(cmd: TelegramCommand, *, service: PaperTradingService) -> CommandResult:
    closed, failed = service.close_all(cmd.chat_id)
    if not closed and not failed:
        return CommandResult(success=True, message="No open positions.", action="CLOSE_ALL")
    total = sum(trade.pnl for trade in closed)
    lines = [f"✅ Closed {len(closed)} position(s) | Net: {_signed(total)}"]
    lines.extend(format_trade(trade) for trade in closed)
    for position, error in failed:
        lines.append(f"⚠️ #{position.id} {position.symbol} not closed: {error}")
    lines.append(f"Balance: {_money(service.account(cmd.chat_id).balance)}")
    return CommandResult(
        success=not failed,
        message="\n".join(lines),
        state_changed=bool(closed),
        action="CLOSE_ALL",
    )


def _handle_level_command(
    cmd: TelegramCommand,
    *,
    service: PaperTradingService,
    label: str,
    field_name: str,
) -> CommandResult:
    position_id = _parse_position_id(cmd.args)
    price = _parse_float(cmd.args[1]) if len(cmd.args) > 1 else None
    if position_id is None or price is None:
        return _fail(f"Usage: /{cmd.command} ID PRICE", f"{field_name.upper()}_USAGE")
    try:
        position = service.set_tpsl(cmd.chat_id, position_id, **{field_name: price})
    except AccountingError as exc:
        return _fail(f"❌ {exc}", f"{field_name.upper()}_FAILED")
    return CommandResult(
        success=True,
        message=f"✅ {label} for #{position.id} set at {_price(price)}",
        state_changed=True,
        action=f"{field_name.upper()}_SET",
    )


def handle_take_profit_command(cmd: TelegramCommand, *, service: PaperTradingService) -> CommandResult:
    return _handle_level_command(cmd, service=service, label="Take profit", field_name="take_profit")


def handle_stop_loss_command(cmd: TelegramCommand, *, service: PaperTradingService) -> CommandResult:
    return _handle_level_command(cmd, service=service, label="Stop loss", field_name="stop_loss")


def handle_quick_tpsl_command(cmd: TelegramCommand, *, service: PaperTradingService) -> CommandResult:
    position_id = _parse_position_id(cmd.args)
    if position_id is None:
        return _fail("Usage: /tpsl ID [clear]", "TPSL_USAGE")
    clear = len(cmd.args) > 1 and cmd.args[1].lower() == "clear"
    try:
        if clear:
            position = service.clear_tpsl(cmd.chat_id, position_id)
        else:
            position = service.quick_tpsl(cmd.chat_id, position_id)
    except AccountingError as exc:
        return _fail(f"❌ {exc}", "TPSL_FAILED")
    if clear:
        message = f"🧹 TP/SL cleared for #{position.id}"
    else:
        message = (
            f"🎯 #{position.id} TP {_price(position.take_profit)} | "
            f"SL {_price(position.stop_loss)}"
        )
    return CommandResult(success=True, message=message, state_changed=True, action="TPSL_SET")


# ═══════════════════════════════════════════════════════════════════
# TRADE ENTRY
# ═══════════════════════════════════════════════════════════════════


def _open_and_report(
    cmd: TelegramCommand,
    *,
    service: PaperTradingService,
    symbol: str,
    side: Side,
    margin: float,
    leverage: int,
) -> CommandResult:
    try:
        position = service.open_trade(
            cmd.chat_id,
            symbol=symbol,
            side=side,
            margin=margin,
            leverage=leverage,
        )
    except (AccountingError, MarketDataError) as exc:
        return _fail(f"❌ {exc}", "OPEN_FAILED")
    account = service.account(cmd.chat_id)
    message = "\n".join(
        [
            "✅ Position opened",
            format_position(position, policy=service.policy),
            f"Fee: {_money(position.commission)}",
            f"Balance: {_money(account.balance)}",
        ]
    )
    return CommandResult(success=True, message=message, state_changed=True, action="POSITION_OPENED")


def _confirmation_text(
    symbol: str, side: Side, margin: float, leverage: int, price: Optional[float]
) -> str:
    size = margin * leverage
    lines = [
        "📝 Confirm trade",
        f"{symbol} {side.value} {leverage}x",
        f"Margin: {_money(margin)} | Size: {_money(size)}",
        f"Fee: {_money(calculate_commission(size))}",
    ]
    if price is not None:
        lines.append(f"Entry ≈ {_price(price)}")
        lines.append(
            f"Liquidation ≈ {_price(calculate_liquidation_price(price, leverage, side))}"
        )
    lines.append("")
    lines.append("Reply yes to open or no to cancel.")
    return "\n".join(lines)


def handle_trade_command(
    cmd: TelegramCommand,
    *,
    service: PaperTradingService,
    drafts: DraftStore,
) -> CommandResult:
    if not cmd.args:
        return _fail(
            "Usage: /trade SYMBOL [long|short MARGIN LEVERAGE]\n"
            "Example: /trade BTC long 100 10",
            "TRADE_USAGE",
        )
    symbol = normalize_symbol(cmd.args[0])

    if len(cmd.args) >= 4:
        try:
            side = Side.parse(cmd.args[1])
        except ValueError:
            return _fail("Side must be long or short.", "TRADE_INVALID_SIDE")
        margin = _parse_float(cmd.args[2])
        if margin is None:
            return _fail("Margin must be a number.", "TRADE_INVALID_MARGIN")
        leverage = _parse_leverage(cmd.args[3])
        if leverage is None:
            return _fail(
                f"Leverage must be a whole number between {MIN_LEVERAGE} and {MAX_LEVERAGE}.",
                "TRADE_INVALID_LEVERAGE",
            )
        drafts.pop(cmd.chat_id)
        return _open_and_report(
            cmd, service=service, symbol=symbol, side=side, margin=margin, leverage=leverage
        )

    try:
        quote = service.price_source.get_price(symbol)
    except MarketDataError as exc:
        return _fail(f"❌ {exc}", "TRADE_INVALID_SYMBOL")
    drafts.put(cmd.chat_id, TradeDraft(symbol=quote.symbol))
    return CommandResult(
        success=True,
        message=(
            f"🆕 New trade: {quote.symbol} @ {_price(quote.price)}\n\n"
            "Reply long or short."
        ),
        action="TRADE_DRAFT_STARTED",
    )


def handle_cancel_command(cmd: TelegramCommand, *, drafts: DraftStore) -> CommandResult:
    if drafts.pop(cmd.chat_id) is None:
        return CommandResult(success=True, message="Nothing to cancel.", action="CANCEL")
    return CommandResult(success=True, message="❎ Trade cancelled.", action="TRADE_DRAFT_CANCELLED")


def handle_reply(
    cmd: TelegramCommand,
    *,
    service: PaperTradingService,
    drafts: DraftStore,
) -> CommandResult:
    """Advance the guided trade flow with a plain-text reply."""
    draft = drafts.get(cmd.chat_id)
    if draft is None:
        return CommandResult(
            success=False,
            message="Send /help to see what I can do.",
            action="REPLY_IGNORED",
        )
    text = cmd.raw_text.strip()
    lowered = text.lower()
    if lowered in _CANCEL_WORDS and draft.step is not DraftStep.CONFIRM:
        drafts.pop(cmd.chat_id)
        return CommandResult(success=True, message="❎ Trade cancelled.", action="TRADE_DRAFT_CANCELLED")

    if draft.step is DraftStep.SIDE:
        try:
            draft.side = Side.parse(lowered)
        except ValueError:
            return _fail("Reply long or short.", "DRAFT_INVALID_SIDE")
        draft.step = DraftStep.AMOUNT
        drafts.put(cmd.chat_id, draft)
        amounts = ", ".join(trim_decimal(a) for a in QUICK_MARGIN_AMOUNTS)
        return CommandResult(
            success=True,
            message=f"💵 Margin in USD? (e.g. {amounts} or max)",
            action="DRAFT_SIDE_SET",
        )

    if draft.step is DraftStep.AMOUNT:
        balance = service.account(cmd.chat_id).balance
        margin = balance if lowered == "max" else _parse_float(text)
        if margin is None or margin <= 0:
            return _fail("❌ Invalid amount. Please enter a valid number:", "DRAFT_INVALID_MARGIN")
        if margin > balance:
            return _fail(
                f"❌ {InsufficientBalanceError(margin, balance)}\nPlease enter a lower amount:",
                "DRAFT_INSUFFICIENT_BALANCE",
            )
        draft.margin = margin
        draft.step = DraftStep.LEVERAGE
        drafts.put(cmd.chat_id, draft)
        leverages = ", ".join(f"{lev}x" for lev in QUICK_LEVERAGES)
        return CommandResult(
            success=True,
            message=f"⚡ Leverage {MIN_LEVERAGE}-{MAX_LEVERAGE}? (e.g. {leverages})",
            action="DRAFT_MARGIN_SET",
        )

    if draft.side is None or draft.margin is None or (
        draft.step is DraftStep.CONFIRM and draft.leverage is None
    ):
        drafts.pop(cmd.chat_id)
        return _fail("❌ Trade draft is incomplete. Start again with /trade.", "DRAFT_INCOMPLETE")

    if draft.step is DraftStep.LEVERAGE:
        leverage = _parse_leverage(text)
        if leverage is None:
            return _fail(
                f"❌ Invalid leverage. Enter a number between {MIN_LEVERAGE} and {MAX_LEVERAGE}:",
                "DRAFT_INVALID_LEVERAGE",
            )
        draft.leverage = leverage
        draft.step = DraftStep.CONFIRM
        drafts.put(cmd.chat_id, draft)
        try:
            price: Optional[float] = service.price_source.get_price(draft.symbol).price
        except MarketDataError:
            price = None
        return CommandResult(
            success=True,
            message=_confirmation_text(draft.symbol, draft.side, draft.margin, leverage, price),
            action="DRAFT_LEVERAGE_SET",
        )

    # DraftStep.CONFIRM
    if lowered in _CONFIRM_WORDS:
        drafts.pop(cmd.chat_id)
        return _open_and_report(
            cmd,
            service=service,
            symbol=draft.symbol,
            side=draft.side,
            margin=draft.margin,
            leverage=draft.leverage,
        )
    if lowered in _CANCEL_WORDS:
        drafts.pop(cmd.chat_id)
        return CommandResult(success=True, message="❎ Trade cancelled.", action="TRADE_DRAFT_CANCELLED")
    return _fail("Reply yes to open or no to cancel.", "DRAFT_AWAITING_CONFIRMATION")


# ═══════════════════════════════════════════════════════════════════
# DISPATCH TABLE
# ═══════════════════════════════════════════════════════════════════


def create_trading_handlers(
    service: PaperTradingService,
    drafts: DraftStore,
) -> Dict[TradingIntentKind, CommandFn]:
    """Bind every trading intent to its handler."""
    k = TradingIntentKind

    def _bind(fn: Callable[..., CommandResult], **kwargs: object) -> CommandFn:
        return lambda cmd: fn(cmd, **kwargs)

    handlers: Dict[TradingIntentKind, CommandFn] = {
        k.START: _bind(handle_start_command, service=service),
        k.MENU: _bind(handle_menu_command, service=service),
        k.HELP: handle_help_command,
        k.PRICE: _bind(handle_price_command, service=service),
        k.MARKETS: _bind(handle_markets_command, service=service),
        k.TRADE: _bind(handle_trade_command, service=service, drafts=drafts),
        k.CANCEL: _bind(handle_cancel_command, drafts=drafts),
        k.POSITIONS: _bind(handle_positions_command, service=service),
        k.POSITION: _bind(handle_position_command, service=service),
        k.CLOSE: _bind(handle_close_command, service=service),
        k.CLOSE_ALL: _bind(handle_close_all_command, service=service),
        k.TAKE_PROFIT: _bind(handle_take_profit_command, service=service),
        k.STOP_LOSS: _bind(handle_stop_loss_command, service=service),
        k.QUICK_TPSL: _bind(handle_quick_tpsl_command, service=service),
        k.PORTFOLIO: _bind(handle_portfolio_command, service=service),
        k.HISTORY: _bind(handle_history_command, service=service),
        k.ANALYSIS: _bind(handle_analysis_command, service=service),
        k.SETTINGS: _bind(handle_settings_command, service=service),
        k.TOGGLE: _bind(handle_toggle_command, service=service),
        k.RESET: _bind(handle_reset_command, service=service),
        k.REPLY: _bind(handle_reply, service=service, drafts=drafts),
        k.UNKNOWN: handle_unknown_command,
    }
    return build_dispatch_table(TradingIntentKind, handlers)
