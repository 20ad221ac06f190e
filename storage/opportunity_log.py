"""Bounded JSON log of detected opportunities."""
from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
from pathlib import Path
from typing import Optional

from analysis.models import Opportunity
from constants import OPPORTUNITY_LOG_MAX_ENTRIES

logger = logging.getLogger(__name__)


class OpportunityLog:
    """A JSON array on disk, oldest first, trimmed to the newest ``max_entries``."""

    def __init__(self, path: Path | str, max_entries: int = OPPORTUNITY_LOG_MAX_ENTRIES) -> None:
        self.path = Path(path)
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self._entries: list[dict] = self._load()

    def _load(self) -> list[dict]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable opportunity log %s: %s", self.path, exc)
            return []
        if not isinstance(data, list):
            logger.warning("Ignoring opportunity log %s: not a JSON array", self.path)
            return []
        return data[-self.max_entries:]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def append(self, opportunity: Opportunity) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._append_sync, opportunity.to_dict())

    def _append_sync(self, entry: dict) -> None:
        with self._lock:
            self._entries.append(entry)
            if len(self._entries) > self.max_entries:
                del self._entries[: len(self._entries) - self.max_entries]
            self._write_locked()

    def _write_locked(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self._entries, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def entries(self) -> list[dict]:
        with self._lock:
            return list(self._entries)

    def recent(self, limit: Optional[int] = None) -> list[Opportunity]:
        """Newest last."""
        with self._lock:
            entries = list(self._entries)
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return [Opportunity.from_dict(entry) for entry in entries]
