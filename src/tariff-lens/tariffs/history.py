"""Report history — past deep research tasks, kept in a scoped key-value store.

The history is one versioned JSON document under a single key: records in
insertion order, oldest first, capped at ``max_items``.  Adding past the cap
drops the oldest records.  A payload written under another version is
ignored rather than migrated.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

HISTORY_VERSION = 1
HISTORY_SCOPE = "tariff-lens:reports"
HISTORY_MAX_ITEMS = 20


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ReportRecord:
    task_id: str
    ticker: str | None = None
    company_name: str | None = None
    status: str = "queued"
    created_at: str = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "taskId": self.task_id,
            "ticker": self.ticker,
            "companyName": self.company_name,
            "status": self.status,
            "createdAt": self.created_at,
        }


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStore:
    """Process-local store, lost on restart."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileStore:
    """Keys and values in one JSON file, rewritten atomically on every set."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable history file %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".history-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp, self.path)
        except BaseException:
            os.unlink(tmp)
            raise


class ReportHistory:
    def __init__(
        self,
        store: KeyValueStore,
        scope: str = HISTORY_SCOPE,
        max_items: int = HISTORY_MAX_ITEMS,
    ) -> None:
        self.store = store
        self.scope = scope
        self.max_items = max_items

    def _load(self) -> list[ReportRecord]:
        raw = self.store.get(self.scope)
        if not raw:
            return []
        try:
            payload = json.loads(raw)
        except ValueError:
            logger.warning("Discarding malformed report history under %s", self.scope)
            return []
        if not isinstance(payload, dict) or payload.get("version") != HISTORY_VERSION:
            return []
        return [ReportRecord(**item) for item in payload.get("items", [])]

    def _save(self, records: list[ReportRecord]) -> None:
        payload = {"version": HISTORY_VERSION, "items": [asdict(r) for r in records]}
        self.store.set(self.scope, json.dumps(payload))

    def record(self, item: ReportRecord) -> ReportRecord:
        """Append *item*; a record with the same task id is replaced in place."""
        records = self._load()
        for i, existing in enumerate(records):
            if existing.task_id == item.task_id:
                records[i] = item
                break
        else:
            records.append(item)
        if len(records) > self.max_items:
            records = records[-self.max_items:]
        self._save(records)
        return item

    def update_status(self, task_id: str, status: str) -> bool:
        records = self._load()
        for record in records:
            if record.task_id == task_id:
                if record.status != status:
                    record.status = status
                    self._save(records)
                return True
        return False

    def list(self, filter_key: str | None = None) -> list[ReportRecord]:
        """Records newest first, optionally only those for one ticker."""
        records = list(reversed(self._load()))
        if filter_key:
            key = filter_key.upper()
            records = [r for r in records if (r.ticker or "").upper() == key]
        return records
