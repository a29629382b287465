"""
Paper trading domain models.

Accounts, open positions, closed trades and the running statistics that
the accounting engine mutates.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from config.settings import INITIAL_BALANCE


class Side(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def direction(self) -> int:
        """+1 for LONG, -1 for SHORT."""
        return 1 if self is Side.LONG else -1

    @classmethod
    def parse(cls, raw: str) -> "Side":
        """Parse 'long'/'short' (any case); raises ValueError otherwise."""
        normalized = (raw or "").strip().upper()
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown side '{raw}'") from None


class CloseReason(str, Enum):
    """Trade status recorded when a position leaves the open list."""

    CLOSED = "CLOSED"
    TAKE_PROFIT = "Take Profit Hit"
    STOP_LOSS = "Stop Loss Hit"
    LIQUIDATED = "LIQUIDATED"


@dataclass
class Position:
    """An open leveraged position.

    Attributes:
        id: Monotonic, creation-time based identifier.
        symbol: Futures symbol, e.g. "BTCUSDT".
        side: LONG or SHORT.
        entry_price: Price at open (> 0).
        quantity: Contracts held, position_size / entry_price.
        margin: Collateral debited from balance at open (> 0).
        leverage: Integer multiplier in [1, 125].
        liquidation_price: Fixed at open.
        open_time: UTC timestamp of the open.
        commission: Entry commission charged on notional.
        take_profit: Optional TP price, mutable while open.
        stop_loss: Optional SL price, mutable while open.
    """

    id: int
    symbol: str
    side: Side
    entry_price: float
    quantity: float
    margin: float
    leverage: int
    liquidation_price: float
    open_time: datetime
    commission: float = 0.0
    take_profit: Optional[float] = None
    stop_loss: Optional[float] = None

    @property
    def position_size(self) -> float:
        """Notional size, margin * leverage."""
        return self.margin * self.leverage


@dataclass(frozen=True)
class Trade:
    """Immutable snapshot of a closed position."""

    id: int
    symbol: str
    side: Side
    entry_price: float
    exit_price: float
    quantity: float
    margin: float
    leverage: int
    liquidation_price: float
    open_time: datetime
    close_time: datetime
    take_profit: Optional[float]
    stop_loss: Optional[float]
    gross_pnl: float
    pnl: float
    roi: float
    entry_commission: float
    close_commission: float
    status: CloseReason

    @property
    def total_commission(self) -> float:
        return self.entry_commission + self.close_commission

    @property
    def duration_minutes(self) -> int:
        return int((self.close_time - self.open_time).total_seconds() // 60)


@dataclass
class Stats:
    """Running aggregates; profit and loss are kept as separate signed sums."""

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    total_profit: float = 0.0
    total_loss: float = 0.0
    best_trade: float = 0.0
    worst_trade: float = 0.0
    total_commission: float = 0.0

    @property
    def net_pnl(self) -> float:
        return self.total_profit + self.total_loss

    @property
    def win_rate(self) -> float:
        if self.total_trades <= 0:
            return 0.0
        return self.winning_trades / self.total_trades * 100


@dataclass
class Settings:
    auto_tp: bool = False
    auto_sl: bool = False
    default_tp_pct: float = 10.0
    default_sl_pct: float = 5.0
    notifications: bool = True


@dataclass
class Account:
    """Per-user paper trading account, created on first interaction."""

    user_id: str
    balance: float = INITIAL_BALANCE
    initial_balance: float = INITIAL_BALANCE
    positions: List[Position] = field(default_factory=list)
    trade_history: List[Trade] = field(default_factory=list)
    stats: Stats = field(default_factory=Stats)
    settings: Settings = field(default_factory=Settings)

    def find_position(self, position_id: int) -> Optional[Position]:
        for position in self.positions:
            if position.id == position_id:
                return position
        return None
