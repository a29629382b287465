"""
Destination registry for the SMS relay.

An ordered, persisted list of Telegram chat ids. The primary chat is always
present and always first.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List

from core.persistence import load_json_list, save_json_list

PROBE_MESSAGE = "✅ This chat is now receiving forwarded SMS messages."

SendFn = Callable[[str, str], bool]


@dataclass(slots=True)
class RegistryResult:
    success: bool
    message: str


class DestinationRegistry:
    def __init__(self, primary: str, path: Path, send_fn: SendFn) -> None:
        self.primary = str(primary).strip()
        self._path = path
        self._send = send_fn
        self._lock = threading.Lock()
        self._destinations: List[str] = [self.primary]

    def load(self) -> List[str]:
        """Read the persisted list, dropping blanks and duplicates."""
        loaded = load_json_list(self._path)
        destinations = [self.primary]
        for chat_id in loaded:
            chat_id = chat_id.strip()
            if chat_id and chat_id not in destinations:
                destinations.append(chat_id)
        with self._lock:
            self._destinations = destinations
        if loaded != destinations:
            save_json_list(self._path, destinations)
        logging.info("Loaded %d SMS destination(s) from %s", len(destinations), self._path)
        return list(destinations)

    def add(self, chat_id: str) -> RegistryResult:
        """Register chat_id after a probe message reaches it."""
        chat_id = str(chat_id or "").strip()
        if not chat_id:
            return RegistryResult(False, "Chat id is required.")
        with self._lock:
            if chat_id in self._destinations:
                return RegistryResult(False, f"{chat_id} is already registered.")
            if not self._send(chat_id, PROBE_MESSAGE):
                logging.warning("Destination probe failed for chat %s; not registered", chat_id)
                return RegistryResult(
                    False,
                    f"Could not deliver a test message to {chat_id}. "
                    "Make sure the bot was added to that chat.",
                )
            self._destinations.append(chat_id)
            snapshot = list(self._destinations)
        save_json_list(self._path, snapshot)
        logging.info("SMS destination added: %s (total %d)", chat_id, len(snapshot))
        return RegistryResult(True, f"Added {chat_id}.")

    def remove(self, chat_id: str) -> RegistryResult:
        chat_id = str(chat_id or "").strip()
        if chat_id == self.primary:
            return RegistryResult(False, "The primary destination cannot be removed.")
        with self._lock:
            if chat_id not in self._destinations:
                return RegistryResult(False, f"{chat_id} is not registered.")
            self._destinations.remove(chat_id)
            snapshot = list(self._destinations)
        save_json_list(self._path, snapshot)
        logging.info("SMS destination removed: %s (total %d)", chat_id, len(snapshot))
        return RegistryResult(True, f"Removed {chat_id}.")

    def list(self) -> List[str]:
        with self._lock:
            return list(self._destinations)

    def __len__(self) -> int:
        with self._lock:
            return len(self._destinations)
