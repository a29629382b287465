"""
JSON persistence for the relay's small state files.

Both files (seen SMS ids and destination chat ids) are plain JSON arrays of
strings, rewritten in full on every change.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, List


def load_json_list(path: Path) -> List[str]:
    """Load a JSON array of strings; a missing or unreadable file yields []."""
    if not path.exists():
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        logging.error("Failed to load %s: %s", path, exc, exc_info=True)
        return []
    if not isinstance(data, list):
        logging.warning("Ignoring %s: expected a JSON array, got %s", path, type(data).__name__)
        return []
    return [str(item) for item in data if item is not None]


def save_json_list(path: Path, items: Iterable[str]) -> bool:
    """Rewrite path with the given items. Errors are logged, never raised."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(list(items), f, indent=2)
        return True
    except (OSError, TypeError, ValueError) as exc:
        logging.error("Failed to save %s: %s", path, exc, exc_info=True)
        return False
