from __future__ import annotations

import asyncio
import json
import logging
import os

from topicquota.core.models import WorkflowCheckpoint

logger = logging.getLogger(__name__)


class WorkflowJournal:
    """Append-only JSONL journal of license workflow checkpoints.

    Each successful (or failed) step appends one line; the last line for an
    account is the state a restarted process resumes from.
    """

    def __init__(self, path: str) -> None:
        """Initialize the journal at the given path.

        Args:
            path: File path for the journal JSONL file
        """
        self.path = path
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        open(self.path, "a").close()
        self._lock = asyncio.Lock()

    async def append(self, checkpoint: WorkflowCheckpoint) -> None:
        """Append a checkpoint atomically."""
        line = checkpoint.to_json_line()
        async with self._lock:
            await asyncio.to_thread(self._write_line, self.path, line)

    async def load_last(self, account_id: str) -> WorkflowCheckpoint | None:
        """Return the latest checkpoint recorded for ``account_id``."""
        async with self._lock:
            return await asyncio.to_thread(self._scan_last, self.path, account_id)

    @staticmethod
    def _write_line(path: str, line: str) -> None:
        """Write a line to file with immediate flush and sync."""
        with open(path, "a", buffering=1) as f:
            f.write(line)
            f.flush()
            os.fsync(f.fileno())

    @staticmethod
    def _scan_last(path: str, account_id: str) -> WorkflowCheckpoint | None:
        last: WorkflowCheckpoint | None = None
        with open(path) as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    rec = WorkflowCheckpoint.from_json_line(line)
                except (json.JSONDecodeError, TypeError) as e:
                    logger.warning("Skipping unreadable journal line %d in %s: %s", lineno, path, e)
                    continue
                if rec.account_id == account_id:
                    last = rec
        return last
