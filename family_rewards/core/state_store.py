"""
JSON-file StateStore for Family Rewards.

This is the **authoritative source of truth** for member balances, carousel
positions and redemption counts.  The whole ``StateDocument`` lives in one
JSON file and is rewritten on every mutation.

Key principles:
1. Full-document persistence - no partial updates, callers load/mutate/save
2. Serialized writers - ``transaction()`` holds a single lock across
   load -> mutate -> save so concurrent requests cannot lose updates
3. Durable saves - temp file + fsync + atomic rename before ``save`` returns
4. Forgiving reads - an unreadable file degrades to an empty document
5. Writes only under the lock - ``load()`` never touches the file, so a
   snapshot read cannot clobber a concurrent save
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from pydantic import ValidationError

from family_rewards.core.errors import PersistenceError
from family_rewards.models.state import StateDocument

logger = logging.getLogger(__name__)


class JsonStateStore:
    """
    Single-document store backed by a JSON file.

    Usage:
        store = JsonStateStore(Path("data/state.json"))

        async with store.transaction() as document:
            document.member("zoe").stars += 5
        # saved here; an exception inside the block skips the save
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    # =========================================================================
    # Public API
    # =========================================================================

    async def initialize(self) -> None:
        """Create an empty document on disk if none exists yet."""
        async with self._lock:
            await asyncio.to_thread(self._ensure)

    async def load(self) -> StateDocument:
        """Read the document. A missing file reads as an empty document."""
        return await asyncio.to_thread(self._read)

    async def save(self, document: StateDocument) -> None:
        """Overwrite the document. Raises PersistenceError if the write fails."""
        await asyncio.to_thread(self._write, document)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StateDocument]:
        """Load the document under the store lock and save it on clean exit."""
        async with self._lock:
            document = await self.load()
            yield document
            await self.save(document)

    @property
    def locked(self) -> bool:
        """True while a transaction is in flight."""
        return self._lock.locked()

    # =========================================================================
    # File I/O (runs in a worker thread)
    # =========================================================================

    def _ensure(self) -> None:
        if self.path.exists():
            return
        logger.info(f"Creating empty state document at {self.path}")
        self._write(StateDocument())

    def _read(self) -> StateDocument:
        if not self.path.exists():
            return StateDocument()
        try:
            raw = self.path.read_text(encoding="utf-8")
            return StateDocument.model_validate(json.loads(raw))
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning(f"Could not read {self.path}, using empty state: {exc}")
        return StateDocument()

    def _write(self, document: StateDocument) -> None:
        payload = json.dumps(document.to_wire(), indent=2)
        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            logger.error(f"Failed to write state document {self.path}: {exc}")
            raise PersistenceError(f"Could not save state: {exc}") from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
