import pytest

from apps.etl.scoring import REQUIRED_FIELDS, batch_statistics, completeness, score_record
from utils.schemas import NormalizedRecord, RuleViolation, ValidationResult


def full_record(**overrides) -> NormalizedRecord:
    values = {name: f"{name}-value" for name in REQUIRED_FIELDS}
    values.update(overrides)
    return NormalizedRecord(**values)


def violation() -> RuleViolation:
    return RuleViolation(field="ram_gb", message="Insufficient RAM", actual="8GB", required="16GB minimum")


class TestScoreRecord:
    def test_complete_and_valid(self):
        scored = score_record(full_record(), ValidationResult(validation_score=100))

        assert scored.quality_score == 100
        assert scored.usuario_id == "usuario_id-value"

    def test_completeness_counts_required_fields_only(self):
        record = full_record(sitio=None, isp_name=None, ram_gb=None)

        assert completeness(record) == pytest.approx(11 / 13)

    def test_rounds_half_up(self):
        # 50 + 85/100 * 50 = 92.5
        scored = score_record(full_record(), ValidationResult(validation_score=85, errors=[violation()]))

        assert scored.quality_score == 93

    def test_empty_record(self):
        scored = score_record(NormalizedRecord(), ValidationResult(validation_score=0))

        assert scored.quality_score == 0

    def test_custom_weight(self):
        scored = score_record(
            NormalizedRecord(), ValidationResult(validation_score=100), completeness_weight=20
        )

        assert scored.quality_score == 80


class TestBatchStatistics:
    def test_empty_batch(self):
        stats = batch_statistics([])

        assert stats.total == 0
        assert stats.avg_score == 0.0
        assert stats.success_rate == 0.0

    def test_mixed_batch(self):
        records = [
            score_record(full_record(), ValidationResult(validation_score=100)),
            score_record(full_record(), ValidationResult(validation_score=80, errors=[violation()])),
            score_record(full_record(), ValidationResult(validation_score=75, errors=[violation()])),
        ]

        stats = batch_statistics(records)

        assert (stats.total, stats.valid, stats.invalid) == (3, 1, 2)
        assert stats.avg_score == 92.67
        assert stats.success_rate == 33.33
