"""
Protocols and dataclasses for the SiteForge pipeline.

This module defines the contracts the orchestrator uses to talk to its
external collaborators (extraction, image selection, templates, AI copy
generation, quality scoring, structural validation and persistence) and the
small value types passed between them.

Site data, slots and generated fields are plain JSON-compatible dictionaries
with snake_case keys so that any stage output can be checkpointed as is.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable
from uuid import UUID, uuid4

SiteData = Dict[str, Any]
Slots = Dict[str, Any]
GeneratedContent = Dict[str, Any]


# ============================================================================
# Enums and value types
# ============================================================================


class ErrorSeverity(Enum):
    """Error severity levels for structured error handling."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class JobStatus(Enum):
    """Final status of a pipeline run that reached persistence."""

    COMPLETE = "complete"
    REVIEW_NEEDED = "review_needed"


@dataclass
class ErrorInfo:
    """Detailed error information for reporting a failed job."""

    error_id: UUID = field(default_factory=uuid4)
    error_type: str = ""
    error_message: str = ""
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    is_retryable: bool = False


@dataclass
class StructureResult:
    """Output of the template collaborator's structural pass."""

    slots: Slots
    industry: str

    @classmethod
    def from_value(cls, value: Any) -> "StructureResult":
        if isinstance(value, StructureResult):
            return value
        if isinstance(value, Mapping):
            return cls(slots=dict(value.get("slots") or {}), industry=str(value.get("industry") or "general"))
        raise TypeError(f"Unsupported structure result: {type(value).__name__}")


@dataclass
class ValidationReport:
    """Structural validation findings attached to a pipeline result."""

    is_valid: bool
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    quality_score: Optional[float] = None

    @classmethod
    def from_value(cls, value: Any) -> "ValidationReport":
        if isinstance(value, ValidationReport):
            return value
        if isinstance(value, Mapping):
            return cls(
                is_valid=bool(value.get("is_valid", value.get("isValid", False))),
                issues=list(value.get("issues") or []),
                warnings=list(value.get("warnings") or []),
                quality_score=value.get("quality_score", value.get("qualityScore")),
            )
        raise TypeError(f"Unsupported validation report: {type(value).__name__}")

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ValidationReport":
        return cls(is_valid=False, issues=[f"Validator error: {exc}"])

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# Collaborator protocols
# ============================================================================


@runtime_checkable
class ExtractionService(Protocol):
    """Pulls business details out of an existing website."""

    async def extract(self, url: str) -> SiteData:
        ...


class ImageSelector(Protocol):
    async def select_hero_image(self, site_data: SiteData) -> Optional[Dict[str, Any]]:
        """Return an image descriptor, or None when nothing suitable exists."""
        ...


class TemplateBuilder(Protocol):
    """Industry classification, structural slots and final rendering."""

    def detect_industry(self, site_data: SiteData) -> str:
        ...

    async def build(self, site_data: SiteData) -> StructureResult:
        ...

    async def build_with_slots(self, site_data: SiteData, slots: Slots) -> str:
        ...


class ContentGenerator(Protocol):
    """AI copywriter producing marketing fields for a site."""

    async def generate_all_content(
        self,
        site_data: SiteData,
        industry: str,
        *,
        retry_budget: int = 2,
        feedback: Optional[str] = None,
    ) -> GeneratedContent:
        ...


class LegacyPolisher(Protocol):
    """Older slot-by-slot rewriting used when the AI generator fails."""

    async def polish_all(self, slots: Slots, site_data: SiteData) -> Slots:
        ...


class ContentOptimizer(Protocol):
    async def optimize_content(self, slots: Slots, site_data: SiteData, industry: str) -> Slots:
        ...


class QualityAssessor(Protocol):
    def assess(self, content: Mapping[str, Any], context: Mapping[str, Any], industry: str) -> Mapping[str, Any]:
        """Return ``{overall_score, grade, issues, is_publish_ready, checks?}``."""
        ...


class PreviewValidator(Protocol):
    def validate(self, site_data: SiteData, slots: Slots, industry: str) -> Any:
        """Return a ValidationReport or an equivalent mapping."""
        ...


class PreviewStore(Protocol):
    """Persistence collaborator for rendered previews."""

    async def create_preview(self, record: Dict[str, Any]) -> Mapping[str, Any]:
        """Store the primary record and return it with an ``id``."""
        ...

    async def save_deployment(self, summary: Dict[str, Any]) -> Any:
        ...


@dataclass
class Collaborators:
    """The external services a pipeline instance calls into.

    Only ``extractor``, ``templates`` and ``store`` are required; every other
    collaborator is optional and its stage is skipped when absent.
    """

    extractor: ExtractionService
    templates: TemplateBuilder
    store: PreviewStore
    image_selector: Optional[ImageSelector] = None
    generator: Optional[ContentGenerator] = None
    polisher: Optional[LegacyPolisher] = None
    optimizer: Optional[ContentOptimizer] = None
    assessor: Optional[QualityAssessor] = None
    validator: Optional[PreviewValidator] = None
