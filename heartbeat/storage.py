import json
import logging
import asyncio
from datetime import datetime
from typing import Optional

import aiofiles

logger = logging.getLogger("RconHeartbeat.Storage")


class Storage:
    """Appends cycle results to a JSON-lines history file, if one is configured."""

    def __init__(self, log_file: Optional[str] = None, max_lines: int = 200):
        self.log_file = log_file
        self.max_lines = max_lines
        self._write_lock = asyncio.Lock()

        if self.log_file:
            logger.info(f"Writing cycle history to {self.log_file}")
        else:
            logger.info("HISTORY_FILE not configured. Cycle history disabled.")

    @property
    def enabled(self) -> bool:
        return bool(self.log_file)

    async def write_cycle_result(self, result: dict):
        """
        result: CycleResult.to_dict() output
        """
        if not self.enabled:
            return

        entry = {"timestamp_local": datetime.now().strftime("%Y-%m-%dT%H:%M:%S.%f"), **result}

        try:
            async with self._write_lock:
                async with aiofiles.open(self.log_file, "a") as f:
                    await f.write(json.dumps(entry) + "\n")

                # Log rotation: keep only the last max_lines entries
                await self._rotate_log()
        except OSError as e:
            logger.error(f"Error writing to history file: {e}")

    async def read_recent(self, limit: int = 50) -> list:
        if not self.enabled:
            return []
        try:
            async with aiofiles.open(self.log_file, "r") as f:
                content = await f.read()
        except FileNotFoundError:
            return []

        entries = []
        for line in content.splitlines()[-limit:]:
            try:
                entries.append(json.loads(line))
            except ValueError:
                logger.debug(f"Skipping corrupt history line: {line[:80]}")
        return entries

    async def _rotate_log(self):
        async with aiofiles.open(self.log_file, "r") as f:
            content = await f.read()
            lines = content.splitlines(keepends=True)

        if len(lines) > self.max_lines:
            async with aiofiles.open(self.log_file, "w") as f:
                await f.writelines(lines[-self.max_lines:])
