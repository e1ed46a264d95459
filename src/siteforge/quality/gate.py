"""
Quality gate for generated marketing copy.

The gate scores the current slots through a :class:`QualityAssessor`,
turns itemised findings into regeneration feedback and merges each
regenerated draft back over the structural slots. Contact details are
always re-applied from the extracted site data, so no draft can change
them.

The gate is advisory: whatever the final score, the caller proceeds with
the last successfully produced slots.
"""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import structlog

from siteforge.observability import histogram, increment
from siteforge.protocols import GeneratedContent, QualityAssessor, SiteData, Slots
from siteforge.utils import city_for

logger = structlog.get_logger(__name__)

DEFAULT_THRESHOLD = 78.0

PROTECTED_FIELDS = ("phone", "email", "address", "business_name", "hours")

# generated field -> template slot
FIELD_MAP: Dict[str, str] = {
    "headline": "headline",
    "subheadline": "subheadline",
    "services": "services",
    "why_us": "why_us_points",
    "testimonial_intro": "section_testimonials",
    "cta_primary": "cta_text",
    "cta_secondary": "cta_secondary",
    "about_snippet": "about_text",
    "meta_description": "meta_description",
}

# Generators that still speak camelCase.
_FIELD_ALIASES: Dict[str, str] = {
    "why_us": "whyUs",
    "testimonial_intro": "testimonialIntro",
    "cta_primary": "ctaPrimary",
    "cta_secondary": "ctaSecondary",
    "about_snippet": "aboutSnippet",
    "meta_description": "metaDescription",
}

SLOT_DEFAULTS: Dict[str, Any] = {
    "why_us_points": [],
    "section_testimonials": "What Our Customers Say",
    "cta_text": "Get Started",
    "cta_secondary": "Learn More",
    "about_text": "",
    "meta_description": "",
}

CTA_MIN_SCORE = 60

Regenerate = Callable[[str], Awaitable[GeneratedContent]]


def _get(mapping: Mapping[str, Any], key: str, alias: Optional[str] = None) -> Any:
    value = mapping.get(key)
    if value is None and alias:
        value = mapping.get(alias)
    return value


@dataclass
class QualityAssessment:
    """One scoring pass over the assessable content."""

    overall_score: float
    grade: Optional[str] = None
    issues: List[Any] = field(default_factory=list)
    is_publish_ready: bool = False
    checks: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "QualityAssessment":
        score = _get(data, "overall_score", "overallScore")
        return cls(
            overall_score=float(score or 0),
            grade=data.get("grade"),
            issues=list(data.get("issues") or []),
            is_publish_ready=bool(_get(data, "is_publish_ready", "isPublishReady")),
            checks=dict(data.get("checks") or {}),
        )


@dataclass
class QualityGateResult:
    slots: Slots
    final_score: Optional[float]
    best_score: Optional[float]
    threshold: float
    attempts: int = 0
    regenerations: int = 0
    passed: bool = False
    assessment: Optional[QualityAssessment] = None

    def summary(self) -> Dict[str, Any]:
        return {
            "final_score": self.final_score,
            "best_score": self.best_score,
            "threshold": self.threshold,
            "attempts": self.attempts,
            "regenerations": self.regenerations,
            "passed": self.passed,
            "grade": self.assessment.grade if self.assessment else None,
        }


@dataclass
class OptimizationDecision:
    accepted: bool
    before: float
    after: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def protect_contact_fields(slots: Slots, site_data: SiteData) -> Slots:
    """Re-apply extracted contact details over ``slots`` in place."""
    for name in PROTECTED_FIELDS:
        value = site_data.get(name) or slots.get(name)
        if value is not None:
            slots[name] = value
    return slots


def merge_generated_content(
    base_slots: Slots,
    generated: Mapping[str, Any],
    site_data: SiteData,
    previous: Optional[Slots] = None,
) -> Slots:
    """
    Overlay generated fields onto a copy of the structural slots.

    Fields the generator left empty fall back to ``previous`` (the last
    accepted draft) when given, otherwise to the structural slot or its
    default.
    """
    fallback = previous if previous is not None else base_slots
    merged = copy.deepcopy(base_slots)

    for gen_key, slot_key in FIELD_MAP.items():
        value = _get(generated, gen_key, _FIELD_ALIASES.get(gen_key))
        if slot_key == "services" and not (isinstance(value, list) and value):
            value = None
        if value:
            merged[slot_key] = value
            continue

        current = fallback.get(slot_key)
        if current:
            merged[slot_key] = copy.deepcopy(current)
        elif slot_key in SLOT_DEFAULTS:
            merged[slot_key] = copy.deepcopy(SLOT_DEFAULTS[slot_key])

    return protect_contact_fields(merged, site_data)


def assessable_content(slots: Slots) -> Dict[str, Any]:
    return {
        "headline": slots.get("headline"),
        "subheadline": slots.get("subheadline"),
        "cta_primary": slots.get("cta_text"),
        "about_snippet": slots.get("about_text"),
    }


def quality_context(site_data: SiteData) -> Dict[str, Any]:
    return {
        "business_name": site_data.get("business_name"),
        "city": city_for(site_data),
        "trust_signals": site_data.get("trust_signals"),
    }


def _issue_text(issue: Any) -> str:
    if isinstance(issue, Mapping):
        return str(issue.get("text") or issue.get("suggestion") or issue.get("message") or "")
    return str(issue)


def build_quality_feedback(assessment: QualityAssessment) -> str:
    """Turn an assessment's itemised checks into regeneration instructions."""
    lines: List[str] = []
    checks = assessment.checks

    cliches = (checks.get("cliches") or {}).get("found") or []
    if cliches:
        lines.append('Remove these clichés: "' + '", "'.join(str(c) for c in cliches) + '"')

    for issue in (checks.get("headline") or {}).get("issues") or []:
        lines.append(f"Headline: {_issue_text(issue)}")

    cta_score = (checks.get("cta") or {}).get("score")
    if isinstance(cta_score, (int, float)) and cta_score < CTA_MIN_SCORE:
        lines.append("CTA needs urgency word (today, now, free, instant) and specific benefit")

    temperature = (checks.get("temperature") or {}).get("label")
    if temperature == "hot":
        lines.append("Too salesy: replace superlatives with specific facts and numbers")
    elif temperature in ("cold", "cool"):
        lines.append("Too generic: add specific numbers, credentials, or location details")

    if not lines:
        lines.extend(text for text in (_issue_text(i) for i in assessment.issues) if text)

    return "\n".join(lines)


class QualityGate:
    def __init__(
        self,
        assessor: QualityAssessor,
        default_threshold: float = DEFAULT_THRESHOLD,
        industry_thresholds: Optional[Mapping[str, float]] = None,
        max_regenerations: int = 2,
    ) -> None:
        self.assessor = assessor
        self.default_threshold = default_threshold
        self.industry_thresholds = dict(industry_thresholds or {})
        self.max_regenerations = max_regenerations

    @classmethod
    def from_config(cls, assessor: QualityAssessor, config: Any) -> "QualityGate":
        return cls(
            assessor,
            default_threshold=config.default_threshold,
            industry_thresholds=config.industry_thresholds,
            max_regenerations=config.max_regenerations,
        )

    def threshold_for(self, industry: Optional[str]) -> float:
        if industry and industry in self.industry_thresholds:
            return self.industry_thresholds[industry]
        return self.default_threshold

    def assess(self, slots: Slots, site_data: SiteData, industry: str) -> QualityAssessment:
        raw = self.assessor.assess(assessable_content(slots), quality_context(site_data), industry)
        if isinstance(raw, QualityAssessment):
            return raw
        return QualityAssessment.from_mapping(raw)

    async def run(
        self,
        slots: Slots,
        *,
        base_slots: Slots,
        site_data: SiteData,
        industry: str,
        regenerate: Optional[Regenerate] = None,
    ) -> QualityGateResult:
        """
        Score ``slots`` and regenerate below threshold while budget remains.

        Without ``regenerate`` the content is scored once. A failed
        regeneration or assessment ends the loop, keeping the last
        successfully produced slots.
        """
        threshold = self.threshold_for(industry)
        result = QualityGateResult(slots=slots, final_score=None, best_score=None, threshold=threshold)

        while True:
            try:
                assessment = self.assess(result.slots, site_data, industry)
            except Exception as e:
                logger.warning("Quality assessment failed", industry=industry, error=str(e))
                break

            result.attempts += 1
            result.assessment = assessment
            result.final_score = assessment.overall_score
            if result.best_score is None or assessment.overall_score > result.best_score:
                result.best_score = assessment.overall_score

            logger.info(
                "Content quality assessment",
                score=assessment.overall_score,
                grade=assessment.grade,
                is_publish_ready=assessment.is_publish_ready,
                issues=len(assessment.issues),
                attempt=result.attempts,
            )

            if assessment.overall_score >= threshold:
                result.passed = True
                logger.info("Content quality meets threshold", score=assessment.overall_score, threshold=threshold)
                break
            if regenerate is None or result.regenerations >= self.max_regenerations:
                break

            logger.warning(
                "Content quality below threshold, regenerating",
                score=assessment.overall_score,
                threshold=threshold,
                attempt=result.regenerations + 1,
            )
            feedback = build_quality_feedback(assessment)
            try:
                generated = await regenerate(feedback)
            except Exception as e:
                logger.warning("Failed to regenerate content for quality", error=str(e))
                break

            result.slots = merge_generated_content(base_slots, generated, site_data, previous=result.slots)
            result.regenerations += 1
            increment("quality_regenerations")

        if result.final_score is not None:
            histogram("quality_score", result.final_score, labels={"industry": industry or "unknown"})
        return result

    def compare(self, current: Slots, candidate: Slots, *, site_data: SiteData, industry: str) -> OptimizationDecision:
        """Do-no-harm check: accept ``candidate`` only if it scores at least as well."""
        before = self.assess(current, site_data, industry).overall_score
        after = self.assess(candidate, site_data, industry).overall_score
        return OptimizationDecision(accepted=after >= before, before=before, after=after)
