from .fakes import (
    SITE_DATA,
    FakeAssessor,
    FakeClock,
    FakeExtractor,
    FakeGenerator,
    FakeImageSelector,
    FakeOptimizer,
    FakePolisher,
    FakeStore,
    FakeTemplates,
    FakeValidator,
    HTTPStatusError,
    no_sleep,
)
from .metric_delta import metric_delta, metric_increases, sample_value

__all__ = [
    "SITE_DATA",
    "FakeAssessor",
    "FakeClock",
    "FakeExtractor",
    "FakeGenerator",
    "FakeImageSelector",
    "FakeOptimizer",
    "FakePolisher",
    "FakeStore",
    "FakeTemplates",
    "FakeValidator",
    "HTTPStatusError",
    "metric_delta",
    "metric_increases",
    "no_sleep",
    "sample_value",
]
