"""
Status tracking hooks fired by the pipeline at stage boundaries.

The pipeline only ever talks to a :class:`StatusTracker`. Callers that do
not care about progress get :class:`NullStatusTracker`; servers that push
progress to clients can use :class:`EventStatusTracker` and subscribe.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

import structlog

logger = structlog.get_logger(__name__)

Listener = Callable[[Dict[str, Any]], None]

STATUS_EVENTS = (
    "queued",
    "scraping",
    "scrape_fallback",
    "analyzing",
    "generating",
    "building",
    "deploying",
    "complete",
    "error",
)


class StatusTracker(Protocol):
    def queued(self, **details: Any) -> None: ...

    def scraping(self, **details: Any) -> None: ...

    def scrape_fallback(self, **details: Any) -> None: ...

    def analyzing(self, **details: Any) -> None: ...

    def generating(self, **details: Any) -> None: ...

    def building(self, **details: Any) -> None: ...

    def deploying(self, **details: Any) -> None: ...

    def complete(self, **details: Any) -> None: ...

    def error(self, error: BaseException, stage: str) -> None: ...


class NullStatusTracker:
    """Tracker that ignores every hook."""

    def queued(self, **details: Any) -> None:
        pass

    def scraping(self, **details: Any) -> None:
        pass

    def scrape_fallback(self, **details: Any) -> None:
        pass

    def analyzing(self, **details: Any) -> None:
        pass

    def generating(self, **details: Any) -> None:
        pass

    def building(self, **details: Any) -> None:
        pass

    def deploying(self, **details: Any) -> None:
        pass

    def complete(self, **details: Any) -> None:
        pass

    def error(self, error: BaseException, stage: str) -> None:
        pass


class EventStatusTracker:
    """
    In-process tracker that records a status history for one job and
    forwards every transition to registered listeners.

    Listeners subscribe to a single status name or to ``"*"`` for all of
    them. A failing listener is logged and skipped.
    """

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        self.history: List[Dict[str, Any]] = []
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    @property
    def current_status(self) -> Optional[str]:
        return self.history[-1]["status"] if self.history else None

    def on(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, status: str, /, **details: Any) -> Dict[str, Any]:
        entry = {
            **details,
            "job_id": self.job_id,
            "status": status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self.history.append(entry)

        for listener in [*self._listeners.get(status, []), *self._listeners.get("*", [])]:
            try:
                listener(entry)
            except Exception as e:
                logger.warning("Status listener failed", status=status, job_id=self.job_id, error=str(e))
        return entry

    def queued(self, **details: Any) -> None:
        self.emit("queued", **details)

    def scraping(self, **details: Any) -> None:
        self.emit("scraping", **details)

    def scrape_fallback(self, **details: Any) -> None:
        self.emit("scrape_fallback", **details)

    def analyzing(self, **details: Any) -> None:
        self.emit("analyzing", **details)

    def generating(self, **details: Any) -> None:
        self.emit("generating", **details)

    def building(self, **details: Any) -> None:
        self.emit("building", **details)

    def deploying(self, **details: Any) -> None:
        self.emit("deploying", **details)

    def complete(self, **details: Any) -> None:
        self.emit("complete", **details)

    def error(self, error: BaseException, stage: str) -> None:
        self.emit("error", stage=stage, error=str(error), error_type=type(error).__name__)
