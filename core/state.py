"""
Trading state management.

Holds the in-memory account repository, the per-user conversation state
of the guided trade flow, position id generation and the time provider.
State lives for the process lifetime only.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from config.settings import INITIAL_BALANCE
from core.models import Account, Side


# ──────────────────────── TIME PROVIDER ─────────────────────
def _default_time_provider() -> datetime:
    """Return current UTC time; overridable for testing."""
    return datetime.now(timezone.utc)


_current_time_provider: Callable[[], datetime] = _default_time_provider


def get_current_time() -> datetime:
    """Return the current time from the active provider."""
    return _current_time_provider()


def set_time_provider(provider: Optional[Callable[[], datetime]]) -> None:
    """Override the time provider; pass None to restore wall-clock time."""
    global _current_time_provider
    _current_time_provider = provider or _default_time_provider


# ──────────────────────── POSITION IDS ─────────────────────
class PositionIdGenerator:
    """Millisecond-timestamp ids, bumped so they are strictly increasing."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            candidate = int(self._clock() * 1000)
            if candidate <= self._last:
                candidate = self._last + 1
            self._last = candidate
            return candidate


# ──────────────────────── ACCOUNT STORE ─────────────────────
class AccountStore:
    """Repository of per-user accounts with one lock per account.

    Every read-modify-write of an Account must happen while holding
    lock_for(user_id).
    """

    def __init__(
        self,
        initial_balance: float = INITIAL_BALANCE,
        *,
        id_generator: Optional[PositionIdGenerator] = None,
    ) -> None:
        self._initial_balance = initial_balance
        self._accounts: Dict[str, Account] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()
        self.id_generator = id_generator or PositionIdGenerator()

    @property
    def initial_balance(self) -> float:
        return self._initial_balance

    def get_or_create(self, user_id: str) -> Account:
        """Return the user's account, creating it on first interaction."""
        key = str(user_id)
        with self._registry_lock:
            account = self._accounts.get(key)
            if account is None:
                account = Account(
                    user_id=key,
                    balance=self._initial_balance,
                    initial_balance=self._initial_balance,
                )
                self._accounts[key] = account
                self._locks[key] = threading.RLock()
                logging.info(
                    "Account created | user=%s | balance=%.2f",
                    key,
                    self._initial_balance,
                )
            return account

    def get(self, user_id: str) -> Optional[Account]:
        with self._registry_lock:
            return self._accounts.get(str(user_id))

    def lock_for(self, user_id: str) -> threading.RLock:
        key = str(user_id)
        self.get_or_create(key)
        with self._registry_lock:
            return self._locks[key]

    def accounts(self) -> List[Account]:
        """Snapshot list of all accounts."""
        with self._registry_lock:
            return list(self._accounts.values())

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._accounts)


# ──────────────────────── GUIDED TRADE FLOW ─────────────────────
class DraftStep(str, Enum):
    SIDE = "side"
    AMOUNT = "amount"
    LEVERAGE = "leverage"
    CONFIRM = "confirm"


@dataclass
class TradeDraft:
    """Partially specified order collected across chat replies."""

    symbol: str
    step: DraftStep = DraftStep.SIDE
    side: Optional[Side] = None
    margin: Optional[float] = None
    leverage: Optional[int] = None


class DraftStore:
    """Per-user pending trade drafts."""

    def __init__(self) -> None:
        self._drafts: Dict[str, TradeDraft] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[TradeDraft]:
        with self._lock:
            return self._drafts.get(str(user_id))

    def put(self, user_id: str, draft: TradeDraft) -> None:
        with self._lock:
            self._drafts[str(user_id)] = draft

    def pop(self, user_id: str) -> Optional[TradeDraft]:
        with self._lock:
            return self._drafts.pop(str(user_id), None)
