"""Checkpoint and scrape-cache storage."""

from .checkpoint_store import CheckpointStore, StageCheckpoint, job_id_for
from .scrape_cache import ScrapeCache

__all__ = ["CheckpointStore", "ScrapeCache", "StageCheckpoint", "job_id_for"]
