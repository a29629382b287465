"""
Position accounting engine.

Pure calculations (liquidation price, PnL/ROI, commission) and the
position lifecycle operations that mutate an Account: open, close,
TP/SL updates and account reset.

Callers are responsible for serializing access to a given Account; see
core.state.AccountStore.lock_for.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from config.settings import (
    COMMISSION_RATE,
    MAINTENANCE_MARGIN_RATE,
    MAX_LEVERAGE,
    MIN_LEVERAGE,
    QUICK_STOP_LOSS_PCT,
    QUICK_TAKE_PROFIT_PCT,
)
from core.models import Account, CloseReason, Position, Settings, Side, Stats, Trade


# ───────────────────────── ERRORS ─────────────────────────
class AccountingError(Exception):
    """Base class for rejected account operations."""


class InsufficientBalanceError(AccountingError):
    def __init__(self, required: float, available: float) -> None:
        super().__init__(
            f"Insufficient balance: required {required:.2f}, available {available:.2f}"
        )
        self.required = required
        self.available = available


class InvalidOrderError(AccountingError):
    """Invalid numeric input for an order or TP/SL update."""


class PositionNotFoundError(AccountingError):
    def __init__(self, position_id: int) -> None:
        super().__init__(f"Position {position_id} not found")
        self.position_id = position_id


# ───────────────────────── POLICY ─────────────────────────
@dataclass(frozen=True)
class AccountingPolicy:
    """Switches for the known quirks of the PnL model.

    Attributes:
        double_count_leverage: Multiply PnL by leverage even though quantity
            already embeds it. True reproduces the legacy bot's numbers.
        settle_entry_commission: Subtract the entry commission from the net
            PnL realized at close, so a flat round trip costs both commissions.
        cap_loss_at_margin: Never realize more than the margin as a loss, so
            the balance cannot go negative. With double counting a 1/L move
            already wipes the margin, well before the liquidation price.
    """

    double_count_leverage: bool = True
    settle_entry_commission: bool = True
    cap_loss_at_margin: bool = True


DEFAULT_POLICY = AccountingPolicy()


# ───────────────────────── PURE CALCULATIONS ─────────────────────────
def calculate_liquidation_price(entry_price: float, leverage: float, side: Side) -> float:
    """Return the price at which the position is forcibly closed."""
    if side is Side.LONG:
        return entry_price * (1 - (1 / leverage) + MAINTENANCE_MARGIN_RATE)
    return entry_price * (1 + (1 / leverage) - MAINTENANCE_MARGIN_RATE)


def calculate_pnl(
    position: Position,
    current_price: float,
    *,
    policy: AccountingPolicy = DEFAULT_POLICY,
) -> Tuple[float, float]:
    """Return (gross_pnl, roi_pct) for a position at the given price."""
    price_diff = current_price - position.entry_price
    pnl = price_diff * position.side.direction * position.quantity
    if policy.double_count_leverage:
        pnl *= position.leverage
    roi = (pnl / position.margin) * 100 if position.margin else 0.0
    return pnl, roi


def calculate_commission(position_size: float) -> float:
    return position_size * COMMISSION_RATE


def _validate_leverage(leverage: Any) -> int:
    if isinstance(leverage, bool):
        raise InvalidOrderError("Leverage must be an integer")
    if isinstance(leverage, float):
        if not leverage.is_integer():
            raise InvalidOrderError("Leverage must be an integer")
        leverage = int(leverage)
    if not isinstance(leverage, int):
        raise InvalidOrderError("Leverage must be an integer")
    if leverage < MIN_LEVERAGE or leverage > MAX_LEVERAGE:
        raise InvalidOrderError(
            f"Leverage must be between {MIN_LEVERAGE} and {MAX_LEVERAGE}"
        )
    return leverage


def _validate_positive(value: Optional[float], label: str) -> None:
    if value is None:
        return
    if value != value or value <= 0:
        raise InvalidOrderError(f"{label} must be a positive number")


def _now(now: Optional[datetime]) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


def take_profit_price(entry_price: float, side: Side, pct: float) -> float:
    """TP price pct% in the holder's favor."""
    return entry_price * (1 + side.direction * pct / 100)


def stop_loss_price(entry_price: float, side: Side, pct: float) -> float:
    """SL price pct% against the holder."""
    return entry_price * (1 - side.direction * pct / 100)


# ───────────────────────── LIFECYCLE ─────────────────────────
def open_position(
    account: Account,
    *,
    symbol: str,
    side: Side,
    margin: float,
    leverage: int,
    entry_price: float,
    position_id: int,
    now: Optional[datetime] = None,
) -> Position:
    """Open a new position, debiting margin from the account balance.

    Raises:
        InvalidOrderError: margin/entry price not positive or leverage out of range.
        InsufficientBalanceError: margin exceeds the available balance.
    """
    _validate_positive(margin, "Margin")
    _validate_positive(entry_price, "Entry price")
    leverage = _validate_leverage(leverage)
    if margin > account.balance:
        raise InsufficientBalanceError(margin, account.balance)

    position_size = margin * leverage
    commission = calculate_commission(position_size)
    position = Position(
        id=position_id,
        symbol=symbol,
        side=side,
        entry_price=entry_price,
        quantity=position_size / entry_price,
        margin=margin,
        leverage=leverage,
        liquidation_price=calculate_liquidation_price(entry_price, leverage, side),
        open_time=_now(now),
        commission=commission,
    )

    settings = account.settings
    if settings.auto_tp:
        position.take_profit = take_profit_price(entry_price, side, settings.default_tp_pct)
    if settings.auto_sl:
        position.stop_loss = stop_loss_price(entry_price, side, settings.default_sl_pct)

    account.balance -= margin
    account.stats.total_commission += commission
    account.positions.append(position)

    logging.info(
        "Position opened | user=%s | id=%d | %s %s | entry=%.6f | margin=%.2f | "
        "leverage=%dx | liq=%.6f | fee=%.4f",
        account.user_id,
        position.id,
        position.symbol,
        position.side.value,
        entry_price,
        margin,
        leverage,
        position.liquidation_price,
        commission,
    )
    return position


def _record_result(stats: Stats, net_pnl: float) -> None:
    stats.total_trades += 1
    if net_pnl >= 0:
        stats.winning_trades += 1
        stats.total_profit += net_pnl
        if net_pnl > stats.best_trade:
            stats.best_trade = net_pnl
    else:
        stats.losing_trades += 1
        stats.total_loss += net_pnl
        if net_pnl < stats.worst_trade:
            stats.worst_trade = net_pnl


def close_position(
    account: Account,
    position_id: int,
    exit_price: float,
    reason: CloseReason = CloseReason.CLOSED,
    *,
    now: Optional[datetime] = None,
    policy: AccountingPolicy = DEFAULT_POLICY,
) -> Trade:
    """Close an open position at exit_price and record the trade.

    A LIQUIDATED close forfeits the whole margin regardless of the computed PnL.
    Any other loss is capped at the margin unless the policy says otherwise.

    Raises:
        PositionNotFoundError: no open position with that id.
        InvalidOrderError: exit price not positive.
    """
    position = account.find_position(position_id)
    if position is None:
        raise PositionNotFoundError(position_id)
    _validate_positive(exit_price, "Exit price")

    gross_pnl, roi = calculate_pnl(position, exit_price, policy=policy)
    close_commission = calculate_commission(position.margin * position.leverage)
    if reason is CloseReason.LIQUIDATED:
        net_pnl = -position.margin
    else:
        net_pnl = gross_pnl - close_commission
        if policy.settle_entry_commission:
            net_pnl -= position.commission
        if policy.cap_loss_at_margin:
            net_pnl = max(net_pnl, -position.margin)

    account.balance += position.margin + net_pnl
    account.stats.total_commission += close_commission
    _record_result(account.stats, net_pnl)

    trade = Trade(
        id=position.id,
        symbol=position.symbol,
        side=position.side,
        entry_price=position.entry_price,
        exit_price=exit_price,
        quantity=position.quantity,
        margin=position.margin,
        leverage=position.leverage,
        liquidation_price=position.liquidation_price,
        open_time=position.open_time,
        close_time=_now(now),
        take_profit=position.take_profit,
        stop_loss=position.stop_loss,
        gross_pnl=gross_pnl,
        pnl=net_pnl,
        roi=roi,
        entry_commission=position.commission,
        close_commission=close_commission,
        status=reason,
    )
    account.positions.remove(position)
    account.trade_history.append(trade)

    logging.info(
        "Position closed | user=%s | id=%d | %s %s | exit=%.6f | gross=%.4f | "
        "net=%.4f | reason=%s | balance=%.2f",
        account.user_id,
        trade.id,
        trade.symbol,
        trade.side.value,
        exit_price,
        gross_pnl,
        net_pnl,
        reason.value,
        account.balance,
    )
    return trade


_UNSET: Any = object()


def set_take_profit_stop_loss(
    account: Account,
    position_id: int,
    *,
    take_profit: Optional[float] = _UNSET,
    stop_loss: Optional[float] = _UNSET,
) -> Position:
    """Update TP and/or SL on an open position; omitted fields are left alone."""
    position = account.find_position(position_id)
    if position is None:
        raise PositionNotFoundError(position_id)
    if take_profit is not _UNSET:
        _validate_positive(take_profit, "Take profit")
    if stop_loss is not _UNSET:
        _validate_positive(stop_loss, "Stop loss")

    if take_profit is not _UNSET:
        position.take_profit = take_profit
    if stop_loss is not _UNSET:
        position.stop_loss = stop_loss
    return position


def clear_take_profit_stop_loss(account: Account, position_id: int) -> Position:
    return set_take_profit_stop_loss(account, position_id, take_profit=None, stop_loss=None)


def apply_quick_take_profit_stop_loss(account: Account, position_id: int) -> Position:
    """Set TP 10% in favor and SL 5% against, measured from entry."""
    position = account.find_position(position_id)
    if position is None:
        raise PositionNotFoundError(position_id)
    return set_take_profit_stop_loss(
        account,
        position_id,
        take_profit=take_profit_price(position.entry_price, position.side, QUICK_TAKE_PROFIT_PCT),
        stop_loss=stop_loss_price(position.entry_price, position.side, QUICK_STOP_LOSS_PCT),
    )


def reset_account(account: Account) -> None:
    """Wipe positions, history and stats and restore the initial balance."""
    account.balance = account.initial_balance
    account.positions.clear()
    account.trade_history.clear()
    account.stats = Stats()
    account.settings = Settings()


# ───────────────────────── PORTFOLIO METRICS ─────────────────────────
def margin_in_use(account: Account) -> float:
    return sum(p.margin for p in account.positions)


def unrealized_pnl(
    account: Account,
    prices: Mapping[str, float],
    *,
    policy: AccountingPolicy = DEFAULT_POLICY,
) -> float:
    """Sum gross PnL of open positions whose symbol has a price in prices."""
    total = 0.0
    for position in account.positions:
        price = prices.get(position.symbol)
        if price is None:
            continue
        pnl, _ = calculate_pnl(position, price, policy=policy)
        total += pnl
    return total


def account_equity(account: Account, unrealized: float) -> float:
    """Balance plus unrealized PnL, matching the legacy portfolio view."""
    return account.balance + unrealized


def performance_rating(win_rate: float, profit_factor: float) -> str:
    if win_rate >= 60 and profit_factor >= 2:
        return "Exceptional"
    if win_rate >= 55 and profit_factor >= 1.5:
        return "Excellent"
    if win_rate >= 50 and profit_factor >= 1.2:
        return "Good"
    if win_rate >= 45 and profit_factor >= 1:
        return "Developing"
    return "Keep Learning"


def performance_summary(account: Account) -> Dict[str, Any]:
    """Aggregate analysis figures derived from the account stats."""
    stats = account.stats
    avg_win = stats.total_profit / stats.winning_trades if stats.winning_trades else 0.0
    avg_loss = stats.total_loss / stats.losing_trades if stats.losing_trades else 0.0
    profit_factor = abs(stats.total_profit / stats.total_loss) if stats.total_loss else 0.0
    net_pnl = stats.net_pnl
    total_roi = (net_pnl / account.initial_balance) * 100 if account.initial_balance else 0.0
    return {
        "total_trades": stats.total_trades,
        "winning_trades": stats.winning_trades,
        "losing_trades": stats.losing_trades,
        "win_rate": stats.win_rate,
        "net_pnl": net_pnl,
        "total_roi": total_roi,
        "avg_win": avg_win,
        "avg_loss": avg_loss,
        "profit_factor": profit_factor,
        "best_trade": stats.best_trade,
        "worst_trade": stats.worst_trade,
        "total_commission": stats.total_commission,
        "rating": performance_rating(stats.win_rate, profit_factor),
    }


def iter_open_positions(accounts: Iterable[Account]) -> Iterable[Tuple[Account, Position]]:
    """Yield (account, position) pairs over a snapshot of each open list."""
    for account in accounts:
        for position in list(account.positions):
            yield account, position
