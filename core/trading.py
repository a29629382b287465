"""
Paper trading service.

Glues the price source to the accounting engine: every operation that
needs a live price fetches it first, then mutates the account while
holding that account's lock.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from core.accounting import (
    DEFAULT_POLICY,
    AccountingPolicy,
    PositionNotFoundError,
    account_equity,
    apply_quick_take_profit_stop_loss,
    clear_take_profit_stop_loss,
    close_position,
    margin_in_use,
    open_position,
    performance_summary,
    reset_account,
    set_take_profit_stop_loss,
    unrealized_pnl,
)
from core.models import Account, CloseReason, Position, Side, Trade
from core.state import AccountStore, get_current_time
from exchange.market_data import (
    CoinDetails,
    MarketDataError,
    PriceQuote,
    TrendingCoin,
    normalize_symbol,
)
from notifications.logging import emit_close_console_log, emit_open_console_log


class PriceSource(Protocol):
    def get_price(self, symbol: str) -> PriceQuote:
        ...

    def get_details(self, symbol: str) -> CoinDetails:
        ...

    def get_trending(self, limit: int = ...) -> List[TrendingCoin]:
        ...


@dataclass
class PortfolioSnapshot:
    balance: float
    equity: float
    unrealized_pnl: float
    margin_in_use: float
    positions: int
    stats: Dict[str, Any]


class PaperTradingService:
    """Entry point for every account mutation in the trading bot."""

    def __init__(
        self,
        store: AccountStore,
        price_source: PriceSource,
        *,
        policy: AccountingPolicy = DEFAULT_POLICY,
        print_fn: Callable[[str], None] = print,
    ) -> None:
        self.store = store
        self.price_source = price_source
        self.policy = policy
        self._print = print_fn

    def account(self, user_id: str) -> Account:
        return self.store.get_or_create(user_id)

    def open_trade(
        self,
        user_id: str,
        *,
        symbol: str,
        side: Side,
        margin: float,
        leverage: int,
    ) -> Position:
        """Fetch the entry price and open a position.

        Raises:
            MarketDataError: symbol unknown or price source unavailable.
            AccountingError: order rejected; the account is unchanged.
        """
        quote = self.price_source.get_price(symbol)
        account = self.store.get_or_create(user_id)
        with self.store.lock_for(user_id):
            position = open_position(
                account,
                symbol=quote.symbol,
                side=side,
                margin=margin,
                leverage=leverage,
                entry_price=quote.price,
                position_id=self.store.id_generator.next_id(),
                now=get_current_time(),
            )
            balance = account.balance
        emit_open_console_log(position, user_id=account.user_id, balance=balance, print_fn=self._print)
        return position

    def close_trade(
        self,
        user_id: str,
        position_id: int,
        *,
        reason: CloseReason = CloseReason.CLOSED,
        exit_price: Optional[float] = None,
    ) -> Trade:
        """Close a position at exit_price, or at the current price when omitted."""
        account = self.store.get_or_create(user_id)
        if exit_price is None:
            with self.store.lock_for(user_id):
                position = account.find_position(position_id)
                if position is None:
                    raise PositionNotFoundError(position_id)
                symbol = position.symbol
            exit_price = self.price_source.get_price(symbol).price
        with self.store.lock_for(user_id):
            trade = close_position(
                account,
                position_id,
                exit_price,
                reason,
                now=get_current_time(),
                policy=self.policy,
            )
            balance = account.balance
        emit_close_console_log(trade, user_id=account.user_id, balance=balance, print_fn=self._print)
        return trade

    def close_if_open(
        self,
        user_id: str,
        position_id: int,
        exit_price: float,
        reason: CloseReason,
    ) -> Optional[Trade]:
        """Close at exit_price unless the position is already gone.

        Presence is checked under the account lock, so a position closed
        manually between a price check and this call is left alone.
        """
        account = self.store.get_or_create(user_id)
        with self.store.lock_for(user_id):
            if account.find_position(position_id) is None:
                return None
            return self.close_trade(user_id, position_id, reason=reason, exit_price=exit_price)

    def close_all(self, user_id: str) -> Tuple[List[Trade], List[Tuple[Position, str]]]:
        """Close every open position; failures are reported, not raised."""
        account = self.store.get_or_create(user_id)
        with self.store.lock_for(user_id):
            positions = list(account.positions)
        closed: List[Trade] = []
        failed: List[Tuple[Position, str]] = []
        for position in positions:
            try:
                closed.append(self.close_trade(user_id, position.id))
            except (MarketDataError, PositionNotFoundError) as exc:
                logging.warning(
                    "Close-all skipped position %d for user %s: %s",
                    position.id,
                    user_id,
                    exc,
                )
                failed.append((position, str(exc)))
        return closed, failed

    def set_tpsl(
        self,
        user_id: str,
        position_id: int,
        *,
        take_profit: Optional[float] = None,
        stop_loss: Optional[float] = None,
    ) -> Position:
        account = self.store.get_or_create(user_id)
        kwargs: Dict[str, float] = {}
        if take_profit is not None:
            kwargs["take_profit"] = take_profit
        if stop_loss is not None:
            kwargs["stop_loss"] = stop_loss
        with self.store.lock_for(user_id):
            return set_take_profit_stop_loss(account, position_id, **kwargs)

    def quick_tpsl(self, user_id: str, position_id: int) -> Position:
        account = self.store.get_or_create(user_id)
        with self.store.lock_for(user_id):
            return apply_quick_take_profit_stop_loss(account, position_id)

    def clear_tpsl(self, user_id: str, position_id: int) -> Position:
        account = self.store.get_or_create(user_id)
        with self.store.lock_for(user_id):
            return clear_take_profit_stop_loss(account, position_id)

    def reset(self, user_id: str) -> Account:
        account = self.store.get_or_create(user_id)
        with self.store.lock_for(user_id):
            reset_account(account)
        logging.info("Account reset | user=%s", user_id)
        return account

    def toggle_setting(self, user_id: str, name: str) -> bool:
        """Flip a boolean setting and return its new value."""
        account = self.store.get_or_create(user_id)
        with self.store.lock_for(user_id):
            current = getattr(account.settings, name)
            if not isinstance(current, bool):
                raise AttributeError(name)
            setattr(account.settings, name, not current)
            return not current

    def mark_prices(self, account: Account) -> Dict[str, float]:
        symbols = [p.symbol for p in list(account.positions)]
        get_prices = getattr(self.price_source, "get_prices", None)
        if get_prices is not None:
            return get_prices(symbols)
        prices: Dict[str, float] = {}
        for symbol in symbols:
            try:
                prices[symbol] = self.price_source.get_price(symbol).price
            except MarketDataError as exc:
                logging.warning("Skipping price for %s: %s", symbol, exc)
        return prices

    def portfolio(self, user_id: str) -> PortfolioSnapshot:
        account = self.store.get_or_create(user_id)
        prices = self.mark_prices(account)
        with self.store.lock_for(user_id):
            unrealized = unrealized_pnl(account, prices, policy=self.policy)
            return PortfolioSnapshot(
                balance=account.balance,
                equity=account_equity(account, unrealized),
                unrealized_pnl=unrealized,
                margin_in_use=margin_in_use(account),
                positions=len(account.positions),
                stats=performance_summary(account),
            )

    def quote(self, symbol: str) -> CoinDetails:
        return self.price_source.get_details(normalize_symbol(symbol))

    def trending(self) -> List[TrendingCoin]:
        return self.price_source.get_trending()
