"""
Atomic JSON file writes for checkpoint records.

A record is serialised first, written to a temp file in the target's
directory and then moved into place with ``os.replace`` so readers never
observe a half-written file.
"""

import asyncio
import json
import os
import tempfile
import time
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

STALE_TEMP_AGE = 3600.0


def _write_and_replace(content: str, path: Path) -> None:
    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".atomic_{path.name}.", suffix=".tmp")
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    finally:
        temp_path.unlink(missing_ok=True)


async def atomic_json_dump(data: Any, path: Path, timeout: float = 2.0) -> bool:
    """
    Asynchronously write JSON data to a file atomically with timeout.

    Args:
        data: Data to serialize as JSON
        path: Target file path
        timeout: Maximum time to wait for write operation

    Returns:
        bool: True if write succeeded, False otherwise. Failures are logged,
        never raised.
    """
    path = Path(path)

    try:
        content = json.dumps(data, indent=2, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        logger.warning("Cannot serialize data to JSON", path=str(path), error=str(e))
        return False

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with asyncio.timeout(timeout):
            await asyncio.to_thread(_write_and_replace, content, path)
    except TimeoutError:
        logger.warning("Atomic write timed out", path=str(path), timeout=timeout)
        return False
    except OSError as e:
        logger.warning("Atomic write failed", path=str(path), error=str(e))
        return False

    remove_stale_temp_files(path.parent)
    return True


def remove_stale_temp_files(directory: Path, max_age: float = STALE_TEMP_AGE) -> int:
    """Delete leftover ``.atomic_*`` temp files older than ``max_age`` seconds."""
    removed = 0
    now = time.time()
    try:
        candidates = list(Path(directory).glob(".atomic_*"))
    except OSError as e:
        logger.debug("Stale temp file scan failed", directory=str(directory), error=str(e))
        return 0

    for temp_file in candidates:
        try:
            if temp_file.is_file() and now - temp_file.stat().st_mtime > max_age:
                temp_file.unlink()
                removed += 1
        except OSError:
            continue
    return removed
