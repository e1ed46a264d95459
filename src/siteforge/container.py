"""
Dependency injection container for SiteForge pipelines.

Owns the process-level shared state (scrape cache, checkpoint store,
circuit breakers, retry policies) and builds :class:`Pipeline` instances
around caller-supplied collaborators.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Generic, List, Optional, TypeVar
from uuid import uuid4

import structlog

from siteforge.config import Config
from siteforge.observability import configure_logging
from siteforge.pipeline import Pipeline
from siteforge.protocols import Collaborators
from siteforge.quality import QualityGate
from siteforge.recovery import CircuitBreakerRegistry, RetryPolicy
from siteforge.storage import CheckpointStore, ScrapeCache
from siteforge.tracking import StatusTracker

T = TypeVar("T")


class LazyInstance(Generic[T]):
    """Lazy-loaded instance with lifecycle management."""

    def __init__(self, factory: Callable[..., T], *args: Any, **kwargs: Any) -> None:
        self._factory = factory
        self._args = args
        self._kwargs = kwargs
        self._instance: Optional[T] = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def instance(self) -> Optional[T]:
        return self._instance

    async def get(self) -> T:
        """Get or create the instance."""
        if not self._initialized:
            self._instance = self._factory(*self._args, **self._kwargs)
            if callable(getattr(self._instance, "initialize", None)):
                await self._instance.initialize()  # type: ignore[attr-defined]
            self._initialized = True
        assert self._instance is not None
        return self._instance

    async def cleanup(self) -> None:
        """Clean up the instance."""
        if self._instance is not None and callable(getattr(self._instance, "close", None)):
            await self._instance.close()  # type: ignore[attr-defined]
        self._instance = None
        self._initialized = False


class DependencyContainer:
    """
    Central container for shared pipeline state.
    Provides lazy initialization and lifecycle management.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        config_path: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config_path = config_path
        self.config: Optional[Config] = config
        self.clock = clock
        self.logger = structlog.get_logger(self.__class__.__name__)

        self._instances: Dict[str, LazyInstance[Any]] = {}
        self._instances_lock = asyncio.Lock()
        self._shutdown_handlers: List[Callable[[], Any]] = []

        self.container_id = str(uuid4())
        self.is_running = False

    async def initialize(self) -> None:
        """Load configuration, configure logging and register lazy instances."""
        if self.config is None:
            self.load_config()
        assert self.config is not None
        configure_logging(self.config.monitoring)
        self._create_instances()
        self.is_running = True

        self.logger.info(
            "Dependency container initialized",
            container_id=self.container_id,
            config_path=str(self.config_path) if self.config_path else "default",
        )

    def load_config(self) -> Config:
        if self.config_path and self.config_path.exists():
            self.config = Config.from_yaml(self.config_path)
        else:
            self.config = Config()
        return self.config

    def _require_config(self) -> Config:
        if self.config is None:
            raise RuntimeError("Configuration must be loaded before creating instances")
        return self.config

    def _create_instances(self) -> None:
        config = self._require_config()
        self._instances = {
            "scrape_cache": LazyInstance(ScrapeCache.from_config, config.cache, clock=self.clock),
            "checkpoints": LazyInstance(CheckpointStore.from_config, config.checkpoints, clock=self.clock),
            "breakers": LazyInstance(CircuitBreakerRegistry.from_config, config.circuit_breakers, clock=self.clock),
        }

    async def _get(self, name: str) -> Any:
        async with self._instances_lock:
            if not self._instances:
                self._create_instances()
            return await self._instances[name].get()

    async def get_scrape_cache(self) -> ScrapeCache:
        return await self._get("scrape_cache")

    async def get_checkpoints(self) -> CheckpointStore:
        return await self._get("checkpoints")

    async def get_breakers(self) -> CircuitBreakerRegistry:
        return await self._get("breakers")

    def get_retry_policies(self) -> Dict[str, RetryPolicy]:
        config = self._require_config()
        return {name: RetryPolicy.from_config(policy) for name, policy in config.retry.items()}

    async def build_pipeline(
        self,
        collaborators: Collaborators,
        tracker: Optional[StatusTracker] = None,
    ) -> Pipeline:
        """Assemble a pipeline sharing this container's cache, checkpoints and breakers."""
        config = self._require_config()
        quality_gate = (
            QualityGate.from_config(collaborators.assessor, config.quality)
            if collaborators.assessor is not None
            else None
        )
        return Pipeline(
            collaborators,
            scrape_cache=await self.get_scrape_cache(),
            checkpoints=await self.get_checkpoints(),
            breakers=await self.get_breakers(),
            retry_policies=self.get_retry_policies(),
            quality_gate=quality_gate,
            settings=config.pipeline,
            tracker=tracker,
        )

    @asynccontextmanager
    async def lifecycle(self) -> AsyncIterator[DependencyContainer]:
        """Context manager for proper lifecycle management."""
        try:
            await self.initialize()
            yield self
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Graceful shutdown of all managed instances."""
        if not self.is_running:
            return

        self.logger.info("Shutting down dependency container", container_id=self.container_id)

        for handler in self._shutdown_handlers:
            try:
                if inspect.iscoroutinefunction(handler):
                    await handler()
                else:
                    handler()
            except Exception as e:
                self.logger.error("Error in shutdown handler", error=str(e))

        await self._cleanup_instances()

        self.is_running = False
        self.logger.info("Dependency container shutdown complete")

    async def _cleanup_instances(self) -> None:
        for name, instance in self._instances.items():
            try:
                await instance.cleanup()
            except Exception as e:
                self.logger.error(f"Error cleaning up {name}", error=str(e))

    def add_shutdown_handler(self, handler: Callable[[], Any]) -> None:
        self._shutdown_handlers.append(handler)

    def get_health_status(self) -> Dict[str, Any]:
        """Get health status of all managed components."""
        breakers = self._instances.get("breakers")
        cache = self._instances.get("scrape_cache")
        return {
            "container_id": self.container_id,
            "is_running": self.is_running,
            "config_loaded": self.config is not None,
            "instances_count": len(self._instances),
            "config_path": str(self.config_path) if self.config_path else None,
            "circuit_breakers": (
                breakers.instance.get_all_states() if breakers and breakers.initialized else {}
            ),
            "scrape_cache": cache.instance.get_stats() if cache and cache.initialized else None,
        }

