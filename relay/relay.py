"""
SMS relay.

Each cycle fetches the latest SMS records, forwards the ones not seen
before to every registered destination and reports connectivity changes.
The first successful fetch after start (or after clear()) only marks the
current records as seen, so history is never replayed.
"""
from __future__ import annotations

import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Set, Tuple

from core.persistence import load_json_list, save_json_list
from notifications.logging import emit_forward_console_log
from relay.destinations import DestinationRegistry
from relay.otp import extract_otp
from relay.sms_client import SmsApiClient, SmsFetchError, SmsRecord

DISCONNECTED_NOTICE = "⚠️ SMS API connection lost. Retrying every cycle."
RECONNECTED_NOTICE = "✅ SMS API connection restored."

SendFn = Callable[[str, str], bool]


class ConnectionStatus(str, Enum):
    UNKNOWN = "unknown"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(slots=True)
class CycleResult:
    fetched: int = 0
    forwarded: int = 0
    skipped: bool = False
    error: Optional[str] = None


@dataclass(slots=True)
class RelayStatus:
    connection: ConnectionStatus
    initialized: bool
    seen: int
    destinations: int
    forwarded_total: int
    last_fetch: Optional[datetime]


def sms_dedup_key(record: SmsRecord) -> str:
    """Stable id for a record: md5 of dt + num + message."""
    raw = f"{record.dt}{record.num}{record.message}"
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


def format_sms_message(record: SmsRecord) -> str:
    """Plain-text body forwarded to destinations."""
    lines = [
        "📩 New SMS",
        f"From: {record.cli or 'unknown'}",
        f"Number: {record.num}",
        f"Time: {record.dt}",
    ]
    otp = extract_otp(record.message)
    if otp:
        lines.append(f"OTP: {otp}")
    lines.append("")
    lines.append(record.message)
    return "\n".join(lines)


class SmsRelay:
    def __init__(
        self,
        client: SmsApiClient,
        registry: DestinationRegistry,
        send_fn: SendFn,
        *,
        seen_ids_path: Path,
        records: int = 10,
        forward_delay: float = 1.0,
        sleep_fn: Callable[[float], None] = time.sleep,
        print_fn: Callable[[str], None] = print,
    ) -> None:
        self._client = client
        self._registry = registry
        self._send = send_fn
        self._seen_ids_path = seen_ids_path
        self._records = records
        self._forward_delay = forward_delay
        self._sleep = sleep_fn
        self._print = print_fn

        self._cycle_guard = threading.Lock()
        self._lock = threading.Lock()
        self._seen: Set[str] = set()
        self._initialized = False
        self._connection = ConnectionStatus.UNKNOWN
        self._forwarded_total = 0
        self._last_fetch: Optional[datetime] = None

    def load(self) -> int:
        """Restore the seen set from disk; returns its size."""
        loaded = set(load_json_list(self._seen_ids_path))
        with self._lock:
            self._seen = loaded
        logging.info("Loaded %d seen SMS id(s) from %s", len(loaded), self._seen_ids_path)
        return len(loaded)

    def flush(self) -> bool:
        with self._lock:
            snapshot = sorted(self._seen)
        return save_json_list(self._seen_ids_path, snapshot)

    def clear(self) -> None:
        """Forget every seen id and re-arm the initialization latch."""
        with self._lock:
            self._seen.clear()
            self._initialized = False
        save_json_list(self._seen_ids_path, [])
        logging.info("SMS seen set cleared; next fetch will re-initialize")

    def status(self) -> RelayStatus:
        with self._lock:
            return RelayStatus(
                connection=self._connection,
                initialized=self._initialized,
                seen=len(self._seen),
                destinations=len(self._registry),
                forwarded_total=self._forwarded_total,
                last_fetch=self._last_fetch,
            )

    def run_cycle(self) -> CycleResult:
        """Fetch once and forward unseen records. Overlapping calls are skipped."""
        if not self._cycle_guard.acquire(blocking=False):
            logging.warning("SMS relay cycle still in progress; skipping this tick")
            return CycleResult(skipped=True)
        try:
            return self._run_cycle()
        finally:
            self._cycle_guard.release()

    def _run_cycle(self) -> CycleResult:
        # Network calls and sleeps stay outside self._lock.
        try:
            records = self._client.fetch_latest(self._records)
        except SmsFetchError as exc:
            logging.warning("SMS fetch failed: %s", exc)
            if self._set_connection(ConnectionStatus.DISCONNECTED) is not ConnectionStatus.DISCONNECTED:
                self._broadcast(DISCONNECTED_NOTICE)
            return CycleResult(error=str(exc))

        if self._set_connection(ConnectionStatus.CONNECTED) is ConnectionStatus.DISCONNECTED:
            self._broadcast(RECONNECTED_NOTICE)

        result = CycleResult(fetched=len(records))
        # API lists newest first.
        fresh, snapshot = self._claim_unseen(list(reversed(records)))
        for record in fresh:
            self._forward(record)
            result.forwarded += 1
        if snapshot is not None:
            save_json_list(self._seen_ids_path, snapshot)
        return result

    def _set_connection(self, status: ConnectionStatus) -> ConnectionStatus:
        """Record the new state and return the previous one."""
        with self._lock:
            previous, self._connection = self._connection, status
            if status is ConnectionStatus.CONNECTED:
                self._last_fetch = datetime.now(timezone.utc)
        return previous

    def _claim_unseen(self, ordered: List[SmsRecord]) -> Tuple[List[SmsRecord], Optional[List[str]]]:
        """Mark records as seen; returns the ones to forward and the set to save, if it changed."""
        with self._lock:
            before = len(self._seen)
            if not self._initialized:
                self._seen.update(sms_dedup_key(record) for record in ordered)
                self._initialized = True
                logging.info(
                    "SMS relay initialized: %d existing record(s) marked as seen",
                    len(self._seen) - before,
                )
                fresh: List[SmsRecord] = []
            else:
                fresh = []
                for record in ordered:
                    key = sms_dedup_key(record)
                    if key not in self._seen:
                        self._seen.add(key)
                        fresh.append(record)
            snapshot = sorted(self._seen) if len(self._seen) != before else None
        return fresh, snapshot

    def _forward(self, record: SmsRecord) -> None:
        text = format_sms_message(record)
        delivered: List[str] = []
        failed: List[str] = []
        for chat_id in self._registry.list():
            if self._deliver(chat_id, text):
                delivered.append(chat_id)
            else:
                failed.append(chat_id)
            self._sleep(self._forward_delay)
        with self._lock:
            self._forwarded_total += 1
        logging.info(
            "Forwarded SMS from %s to %d/%d destination(s)",
            record.cli or record.num,
            len(delivered),
            len(delivered) + len(failed),
        )
        emit_forward_console_log(
            sender=record.cli or "unknown",
            number=record.num,
            otp=extract_otp(record.message),
            delivered=delivered,
            failed=failed,
            print_fn=self._print,
        )

    def _broadcast(self, text: str) -> None:
        for chat_id in self._registry.list():
            self._deliver(chat_id, text)

    def _deliver(self, chat_id: str, text: str) -> bool:
        try:
            ok = bool(self._send(chat_id, text))
        except Exception as exc:
            logging.error("Failed to deliver SMS relay message to %s: %s", chat_id, exc)
            return False
        if not ok:
            logging.warning("SMS relay delivery to %s failed", chat_id)
        return ok
