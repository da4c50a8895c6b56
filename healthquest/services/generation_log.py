"""Per-user record of the last goal generation, kept in a local JSON file"""
import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from healthquest.config import DATA_PATH

logger = logging.getLogger(__name__)

LOG_FILENAME = "goal_generation.json"


class GenerationLog:
    """
    Key-value store: user id -> ISO timestamp of the last goal generation.

    Local to this process's data directory; nothing is written to the
    shared store. File I/O runs in a worker thread, and updates are
    serialized so concurrent writers never drop each other's entries.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else DATA_PATH / LOG_FILENAME
        self._write_lock = asyncio.Lock()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Unreadable generation log {self.path}, starting empty: {e}")
            return {}

    def _store(self, user_id: str, timestamp: str) -> None:
        entries = self._load()
        entries[user_id] = timestamp

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(entries, indent=2), encoding="utf-8")
        tmp_path.replace(self.path)

    async def last_generated(self, user_id: str) -> Optional[datetime]:
        entries = await asyncio.to_thread(self._load)
        value = entries.get(user_id)
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            logger.warning(f"Ignoring malformed generation timestamp for user {user_id}: {value!r}")
            return None

    async def record(self, user_id: str, when: datetime) -> None:
        async with self._write_lock:
            await asyncio.to_thread(self._store, user_id, when.isoformat())
        logger.debug(f"Recorded goal generation for user {user_id} at {when.isoformat()}")
