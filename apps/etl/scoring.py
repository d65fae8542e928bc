"""
Quality Scoring - Per-Record Score and Batch Statistics

quality_score = completeness + validation, where

    completeness = populated required fields / required fields * completeness_weight
    validation   = validation_score / 100 * (100 - completeness_weight)

With the default 50/50 weighting both halves are in [0, 50], so the score is
naturally in [0, 100].
"""

from typing import Sequence

from apps.etl.normalizers import round_half_up
from utils.schemas import BatchStatistics, NormalizedRecord, ScoredRecord, ValidationResult

REQUIRED_FIELDS = (
    "audit_id",
    "proveedor",
    "sitio",
    "atencion",
    "usuario_id",
    "cpu_model",
    "os_version",
    "browser_version",
    "antivirus_brand",
    "antivirus_model",
    "headset_brand",
    "headset_model",
    "isp_name",
)

DEFAULT_COMPLETENESS_WEIGHT = 50.0


def completeness(record: NormalizedRecord) -> float:
    """Fraction (0..1) of required fields that carry a value."""
    populated = sum(1 for name in REQUIRED_FIELDS if getattr(record, name) not in (None, ""))
    return populated / len(REQUIRED_FIELDS)


def score_record(
    record: NormalizedRecord,
    validation: ValidationResult,
    completeness_weight: float = DEFAULT_COMPLETENESS_WEIGHT,
) -> ScoredRecord:
    weight = min(max(completeness_weight, 0.0), 100.0)
    total = completeness(record) * weight + validation.validation_score / 100 * (100 - weight)
    quality_score = min(100, max(0, round_half_up(total)))

    return ScoredRecord(
        **record.model_dump(),
        quality_score=quality_score,
        validation=validation,
    )


def batch_statistics(records: Sequence[ScoredRecord]) -> BatchStatistics:
    """Aggregate a batch; an empty batch yields all zeros."""
    total = len(records)
    if total == 0:
        return BatchStatistics()

    invalid = sum(1 for r in records if not r.validation.is_valid)
    valid = total - invalid
    avg_score = sum(r.quality_score for r in records) / total

    return BatchStatistics(
        total=total,
        valid=valid,
        invalid=invalid,
        avg_score=round(avg_score, 2),
        success_rate=round(valid / total * 100, 2),
    )
