"""Content quality gate and do-no-harm comparison."""

from .gate import (
    FIELD_MAP,
    PROTECTED_FIELDS,
    OptimizationDecision,
    QualityAssessment,
    QualityGate,
    QualityGateResult,
    build_quality_feedback,
    merge_generated_content,
    protect_contact_fields,
)

__all__ = [
    "FIELD_MAP",
    "PROTECTED_FIELDS",
    "OptimizationDecision",
    "QualityAssessment",
    "QualityGate",
    "QualityGateResult",
    "build_quality_feedback",
    "merge_generated_content",
    "protect_contact_fields",
]
