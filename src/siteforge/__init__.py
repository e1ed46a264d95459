"""
SiteForge - resilient pipeline for rebuilding small-business websites.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .config import Config
from .container import DependencyContainer
from .pipeline import Pipeline, PipelineError, PipelineOptions, PipelineResult

__all__ = [
    "__version__",
    "Config",
    "DependencyContainer",
    "Pipeline",
    "PipelineError",
    "PipelineOptions",
    "PipelineResult",
]
