"""Tests for core/trading.py and core/state.py."""
import threading
from datetime import datetime, timezone
from typing import Dict, List

import pytest

from core.accounting import AccountingPolicy, InsufficientBalanceError, PositionNotFoundError
from core.models import Side
from core.state import (
    AccountStore,
    DraftStore,
    PositionIdGenerator,
    TradeDraft,
    get_current_time,
    set_time_provider,
)
from core.trading import PaperTradingService
from exchange.market_data import InvalidSymbolError, PriceQuote, normalize_symbol


class FakePriceSource:
    def __init__(self, prices: Dict[str, float]) -> None:
        self.prices = dict(prices)

    def get_price(self, symbol: str) -> PriceQuote:
        normalized = normalize_symbol(symbol)
        if normalized not in self.prices:
            raise InvalidSymbolError(normalized)
        return PriceQuote(symbol=normalized, price=self.prices[normalized])


@pytest.fixture
def prices() -> FakePriceSource:
    return FakePriceSource({"BTCUSDT": 50000.0, "ETHUSDT": 2000.0})


@pytest.fixture
def printed() -> List[str]:
    return []


@pytest.fixture
def service(prices, printed) -> PaperTradingService:
    return PaperTradingService(AccountStore(10000.0), prices, print_fn=printed.append)


class TestPositionIdGenerator:
    def test_ids_strictly_increase_with_frozen_clock(self):
        generator = PositionIdGenerator(clock=lambda: 1700000000.0)
        ids = [generator.next_id() for _ in range(5)]
        assert ids == [1700000000000 + i for i in range(5)]

    def test_ids_follow_clock(self):
        ticks = iter([1.0, 2.0])
        generator = PositionIdGenerator(clock=lambda: next(ticks))
        assert generator.next_id() == 1000
        assert generator.next_id() == 2000


class TestAccountStore:
    def test_account_created_on_first_use(self):
        store = AccountStore(5000.0)
        assert store.get("9") is None
        account = store.get_or_create("9")
        assert account.balance == 5000.0
        assert account.initial_balance == 5000.0
        assert store.get_or_create("9") is account
        assert len(store) == 1

    def test_lock_is_per_account_and_reentrant(self):
        store = AccountStore()
        lock = store.lock_for("1")
        assert store.lock_for("1") is lock
        assert store.lock_for("2") is not lock
        with lock:
            with store.lock_for("1"):
                pass

    def test_concurrent_get_or_create_returns_one_account(self):
        store = AccountStore()
        seen = []

        def _worker():
            seen.append(store.get_or_create("7"))

        threads = [threading.Thread(target=_worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(store) == 1
        assert all(account is seen[0] for account in seen)


class TestTimeProvider:
    def test_override_and_restore(self):
        fixed = datetime(2024, 5, 1, tzinfo=timezone.utc)
        set_time_provider(lambda: fixed)
        try:
            assert get_current_time() == fixed
        finally:
            set_time_provider(None)
        assert get_current_time() != fixed


class TestDraftStore:
    def test_put_get_pop(self):
        drafts = DraftStore()
        drafts.put("1", TradeDraft(symbol="BTCUSDT"))
        assert drafts.get("1").symbol == "BTCUSDT"
        assert drafts.pop("1").symbol == "BTCUSDT"
        assert drafts.get("1") is None
        assert drafts.pop("1") is None


class TestPaperTradingService:
    def test_open_uses_live_price(self, service, printed):
        position = service.open_trade("1", symbol="btc", side=Side.LONG, margin=100.0, leverage=10)

        assert position.symbol == "BTCUSDT"
        assert position.entry_price == 50000.0
        assert service.account("1").balance == pytest.approx(9900.0)
        assert any("[OPEN] BTCUSDT LONG 10x" in line for line in printed)

    def test_open_unknown_symbol(self, service):
        with pytest.raises(InvalidSymbolError):
            service.open_trade("1", symbol="NOPE", side=Side.LONG, margin=100.0, leverage=10)
        assert service.account("1").balance == 10000.0

    def test_open_insufficient_balance(self, service):
        with pytest.raises(InsufficientBalanceError):
            service.open_trade("1", symbol="BTC", side=Side.LONG, margin=20000.0, leverage=10)

    def test_close_at_market(self, service, prices, printed):
        position = service.open_trade("1", symbol="BTC", side=Side.LONG, margin=100.0, leverage=10)
        prices.prices["BTCUSDT"] = 51000.0

        trade = service.close_trade("1", position.id)

        assert trade.exit_price == 51000.0
        assert trade.pnl == pytest.approx(199.2)
        assert any("[CLOSE] BTCUSDT LONG" in line for line in printed)

    def test_close_unknown_position(self, service):
        with pytest.raises(PositionNotFoundError):
            service.close_trade("1", 12345)

    def test_close_all_reports_failures(self, service, prices):
        service.open_trade("1", symbol="BTC", side=Side.LONG, margin=100.0, leverage=10)
        eth = service.open_trade("1", symbol="ETH", side=Side.SHORT, margin=50.0, leverage=5)
        del prices.prices["ETHUSDT"]

        closed, failed = service.close_all("1")

        assert len(closed) == 1
        assert [position.id for position, _ in failed] == [eth.id]
        assert [p.id for p in service.account("1").positions] == [eth.id]

    def test_policy_is_applied(self, prices):
        service = PaperTradingService(
            AccountStore(10000.0),
            prices,
            policy=AccountingPolicy(double_count_leverage=False),
            print_fn=lambda _line: None,
        )
        position = service.open_trade("1", symbol="BTC", side=Side.LONG, margin=100.0, leverage=10)
        prices.prices["BTCUSDT"] = 51000.0
        trade = service.close_trade("1", position.id)
        assert trade.gross_pnl == pytest.approx(20.0)

    def test_set_and_clear_tpsl(self, service):
        position = service.open_trade("1", symbol="BTC", side=Side.LONG, margin=100.0, leverage=10)
        service.set_tpsl("1", position.id, take_profit=52000.0)
        service.set_tpsl("1", position.id, stop_loss=48000.0)
        assert (position.take_profit, position.stop_loss) == (52000.0, 48000.0)

        service.clear_tpsl("1", position.id)
        assert (position.take_profit, position.stop_loss) == (None, None)

    def test_quick_tpsl(self, service):
        position = service.open_trade("1", symbol="BTC", side=Side.SHORT, margin=100.0, leverage=10)
        service.quick_tpsl("1", position.id)
        assert position.take_profit == pytest.approx(45000.0)
        assert position.stop_loss == pytest.approx(52500.0)

    def test_toggle_setting(self, service):
        assert service.toggle_setting("1", "auto_tp") is True
        assert service.toggle_setting("1", "auto_tp") is False
        with pytest.raises(AttributeError):
            service.toggle_setting("1", "default_tp_pct")

    def test_portfolio_snapshot(self, service, prices):
        service.open_trade("1", symbol="BTC", side=Side.LONG, margin=100.0, leverage=10)
        prices.prices["BTCUSDT"] = 50500.0

        snapshot = service.portfolio("1")

        assert snapshot.balance == pytest.approx(9900.0)
        assert snapshot.unrealized_pnl == pytest.approx(100.0)
        assert snapshot.equity == pytest.approx(10000.0)
        assert snapshot.margin_in_use == pytest.approx(100.0)
        assert snapshot.positions == 1
        assert snapshot.stats["total_trades"] == 0

    def test_reset(self, service):
        service.open_trade("1", symbol="BTC", side=Side.LONG, margin=100.0, leverage=10)
        account = service.reset("1")
        assert account.balance == 10000.0
        assert account.positions == []
