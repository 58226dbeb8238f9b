from __future__ import annotations

import asyncio
import logging
import pathlib
import time
from typing import Iterable, Optional


def sweep_directory(directory: pathlib.Path, max_age_seconds: float, now: float | None = None) -> int:
    """Delete regular, non-hidden files older than ``max_age_seconds``. Returns the count removed."""
    if not directory.is_dir():
        return 0
    now = time.time() if now is None else now
    deleted = 0
    for entry in directory.iterdir():
        if entry.name.startswith("."):
            continue
        try:
            if entry.is_file() and now - entry.stat().st_mtime > max_age_seconds:
                entry.unlink()
                deleted += 1
        except FileNotFoundError:
            # removed by a concurrent writer or sweep
            continue
    return deleted


class RetentionSweeper:
    def __init__(
        self,
        directories: Iterable[pathlib.Path],
        retention_minutes: int,
        interval_seconds: float,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.directories = list(directories)
        self.max_age_seconds = retention_minutes * 60.0
        self.interval_seconds = interval_seconds
        self.log = logger or logging.getLogger(__name__)
        self._task: asyncio.Task[None] | None = None

    def run_once(self) -> int:
        total = 0
        for directory in self.directories:
            try:
                deleted = sweep_directory(directory, self.max_age_seconds)
            except OSError:
                self.log.warning("retention sweep failed", extra={"directory": str(directory)}, exc_info=True)
                continue
            if deleted:
                self.log.info("retention sweep removed files", extra={"directory": str(directory), "deleted": deleted})
            total += deleted
        return total

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await asyncio.to_thread(self.run_once)
