"""
Snapshot stores for coordinator state.

The coordinator hands a JSON-compatible dict to save() after every change and
reads it back with load() when it starts.
"""
import copy
import json
import os
from typing import Any, Dict, Optional


class MemoryStore:
    """Keeps the last snapshot in memory."""

    def __init__(self):
        self._snapshot: Optional[Dict[str, Any]] = None

    def load(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._snapshot)

    def save(self, snapshot: Dict[str, Any]) -> None:
        self._snapshot = copy.deepcopy(snapshot)

    def clear(self) -> None:
        self._snapshot = None


class JsonFileStore:
    """Keeps the last snapshot in a JSON file."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return None
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def save(self, snapshot: Dict[str, Any]) -> None:
        tmp_path = self.path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(snapshot, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.path)

    def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
