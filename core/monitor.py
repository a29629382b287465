"""
Auto-close monitor.

Periodically sweeps every open position of every account and closes the
ones whose take profit, stop loss or liquidation price has been crossed.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional

from core.accounting import iter_open_positions
from core.models import Account, CloseReason, Position, Side, Trade
from core.trading import PaperTradingService
from exchange.market_data import MarketDataError


NotifyFn = Callable[[str, Trade, Account], None]


def evaluate_close_reason(position: Position, price: float) -> Optional[CloseReason]:
    """Return why the position should close at price, or None.

    Conditions are checked in a fixed order (take profit, stop loss,
    liquidation) and a later match replaces an earlier one. Unset or zero
    TP/SL levels are ignored.
    """
    reason: Optional[CloseReason] = None
    if position.side is Side.LONG:
        if position.take_profit and price >= position.take_profit:
            reason = CloseReason.TAKE_PROFIT
        if position.stop_loss and price <= position.stop_loss:
            reason = CloseReason.STOP_LOSS
        if price <= position.liquidation_price:
            reason = CloseReason.LIQUIDATED
    else:
        if position.take_profit and price <= position.take_profit:
            reason = CloseReason.TAKE_PROFIT
        if position.stop_loss and price >= position.stop_loss:
            reason = CloseReason.STOP_LOSS
        if price >= position.liquidation_price:
            reason = CloseReason.LIQUIDATED
    return reason


class AutoCloseMonitor:
    """Sweeps open positions and closes triggered ones.

    A sweep that starts while the previous one is still running is skipped.
    """

    def __init__(
        self,
        service: PaperTradingService,
        *,
        notify_fn: Optional[NotifyFn] = None,
    ) -> None:
        self.service = service
        self._notify_fn = notify_fn
        self._sweep_lock = threading.Lock()

    def sweep(self) -> int:
        """Run one pass; returns the number of positions closed (-1 if skipped)."""
        if not self._sweep_lock.acquire(blocking=False):
            logging.warning("Auto-close sweep still in progress; skipping this tick")
            return -1
        try:
            return self._sweep()
        finally:
            self._sweep_lock.release()

    def _sweep(self) -> int:
        prices: Dict[str, float] = {}
        failed_symbols = set()
        closed = 0
        for account, position in iter_open_positions(self.service.store.accounts()):
            symbol = position.symbol
            if symbol in failed_symbols:
                continue
            if symbol not in prices:
                try:
                    prices[symbol] = self.service.price_source.get_price(symbol).price
                except MarketDataError as exc:
                    logging.warning("Auto-close price check failed for %s: %s", symbol, exc)
                    failed_symbols.add(symbol)
                    continue
            price = prices[symbol]

            reason = evaluate_close_reason(position, price)
            if reason is None:
                continue
            trade = self.service.close_if_open(account.user_id, position.id, price, reason)
            if trade is None:
                continue
            closed += 1
            logging.info(
                "Auto-closed position %d for user %s: %s @ %.6f",
                trade.id,
                account.user_id,
                reason.value,
                price,
            )
            self._notify(account, trade)
        return closed

    def _notify(self, account: Account, trade: Trade) -> None:
        if self._notify_fn is None or not account.settings.notifications:
            return
        try:
            self._notify_fn(account.user_id, trade, account)
        except Exception as exc:
            logging.error(
                "Failed to notify user %s about auto-close of %d: %s",
                account.user_id,
                trade.id,
                exc,
            )
