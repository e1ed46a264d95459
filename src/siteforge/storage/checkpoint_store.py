"""
File-backed checkpoints of completed pipeline stages.

Layout: ``<directory>/<job_id>/<stage>.json``. Each file holds a
:class:`StageCheckpoint`. Writing is best effort: the pipeline must behave
identically with checkpointing disabled, so failures are logged and
reported through the return value only.
"""

from __future__ import annotations

import asyncio
import json
import shutil
import time
from pathlib import Path
from typing import Any, Callable, Optional

import aiofiles
import structlog
from pydantic import BaseModel, Field, ValidationError
from pydantic_core import PydanticSerializationError

from siteforge.observability import increment
from siteforge.utils import atomic_json_dump, fingerprint

logger = structlog.get_logger(__name__)


class StageCheckpoint(BaseModel):
    """Persisted output of one completed stage."""

    stage: str = Field(..., description="Stage tag the payload belongs to")
    timestamp: float = Field(..., description="Unix time the stage completed")
    payload: Any = Field(..., description="JSON-compatible stage output")


def job_id_for(url: str) -> str:
    """Deterministic job id: re-running a URL finds its earlier checkpoints."""
    return fingerprint(url)


class CheckpointStore:
    def __init__(
        self,
        directory: Path | str = Path(".cache/checkpoints"),
        ttl_seconds: float = 3600.0,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.directory = Path(directory)
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled
        self._clock = clock

    @classmethod
    def from_config(cls, config: Any, **kwargs: Any) -> "CheckpointStore":
        return cls(config.directory, ttl_seconds=config.ttl_seconds, enabled=config.enabled, **kwargs)

    def _job_dir(self, job_id: str) -> Path:
        return self.directory / job_id

    def _stage_path(self, job_id: str, stage: str) -> Path:
        return self._job_dir(job_id) / f"{stage}.json"

    async def save_checkpoint(self, job_id: str, stage: str, payload: Any) -> bool:
        """Persist a stage's output. Returns False (never raises) on failure."""
        if not self.enabled:
            return False

        try:
            record = StageCheckpoint(stage=stage, timestamp=self._clock(), payload=payload)
            data = record.model_dump(mode="json")
        except (PydanticSerializationError, TypeError, ValueError) as e:
            increment("checkpoint_write_failures")
            logger.warning("Checkpoint payload is not serializable", job_id=job_id, stage=stage, error=str(e))
            return False

        saved = await atomic_json_dump(data, self._stage_path(job_id, stage))
        if saved:
            logger.debug("Checkpoint saved", job_id=job_id, stage=stage)
        else:
            increment("checkpoint_write_failures")
            logger.warning("Failed to save checkpoint", job_id=job_id, stage=stage)
        return saved

    async def load_checkpoint(self, job_id: str, stage: str) -> Optional[Any]:
        """Payload of a fresh checkpoint, or None if absent, unreadable or expired."""
        if not self.enabled:
            return None

        path = self._stage_path(job_id, stage)
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Unreadable checkpoint", job_id=job_id, stage=stage, error=str(e))
            return None

        try:
            record = StageCheckpoint.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.warning("Corrupt checkpoint ignored", job_id=job_id, stage=stage, error=str(e))
            return None

        age = self._clock() - record.timestamp
        if age >= self.ttl_seconds:
            logger.debug("Checkpoint expired", job_id=job_id, stage=stage, age=round(age, 1))
            return None
        return record.payload

    async def clear_checkpoint(self, job_id: str) -> None:
        """Remove every stage record for a job. A missing job is not an error."""
        if not self.enabled:
            return
        job_dir = self._job_dir(job_id)
        try:
            await asyncio.to_thread(shutil.rmtree, job_dir)
            logger.debug("Checkpoints cleared", job_id=job_id)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to clear checkpoints", job_id=job_id, error=str(e))
