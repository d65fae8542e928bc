"""
Validation Engine - Compliance Rules for Normalized Records

Stateless: validate_record() depends only on the record and the rule set.
Each failing rule appends a RuleViolation and subtracts its penalty from a
base score of 100 (floored at 0). Failures are data; nothing here raises.

Default thresholds and penalties are the values the audits are scored
against; they are configuration, not derived.
"""

from typing import Optional

from pydantic import BaseModel, Field

from utils.config import Settings
from utils.schemas import NormalizedRecord, RuleViolation, ValidationResult


class ValidationRules(BaseModel):
    """Thresholds and penalties of the compliance rules."""

    ram_min_gb: int = Field(default=16, ge=0)
    disk_required_type: str = Field(default="SSD")
    disk_min_gb: int = Field(default=500, ge=0)
    allowed_os: list[str] = Field(default_factory=lambda: ["Windows 11"])
    ho_min_download_mbps: int = Field(default=15, ge=0)
    ho_min_upload_mbps: int = Field(default=6, ge=0)
    enforce_ho_upload: bool = Field(default=False, description="Also check upload speed for HO")

    penalty_ram: int = Field(default=20, ge=0)
    penalty_disk: int = Field(default=15, ge=0)
    penalty_os: int = Field(default=10, ge=0)
    penalty_ho_bandwidth: int = Field(default=10, ge=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ValidationRules":
        return cls(
            ram_min_gb=settings.RAM_MIN_GB,
            disk_required_type=settings.DISK_REQUIRED_TYPE,
            disk_min_gb=settings.DISK_MIN_GB,
            allowed_os=list(settings.OS_ALLOWED),
            ho_min_download_mbps=settings.HO_MIN_DOWNLOAD_MBPS,
            ho_min_upload_mbps=settings.HO_MIN_UPLOAD_MBPS,
            enforce_ho_upload=settings.HO_ENFORCE_UPLOAD,
            penalty_ram=settings.PENALTY_RAM,
            penalty_disk=settings.PENALTY_DISK,
            penalty_os=settings.PENALTY_OS,
            penalty_ho_bandwidth=settings.PENALTY_HO_BANDWIDTH,
        )


DEFAULT_RULES = ValidationRules()


def _show(value: Optional[object], unit: str = "") -> str:
    return "missing" if value is None else f"{value}{unit}"


def validate_record(record: NormalizedRecord, rules: ValidationRules = DEFAULT_RULES) -> ValidationResult:
    """Apply the compliance rules to one record.

    Args:
        record: Normalized inventory record
        rules: Thresholds and penalties

    Returns:
        ValidationResult with the violations and the floored score
    """
    errors: list[RuleViolation] = []
    score = 100

    if record.ram_gb is None or record.ram_gb < rules.ram_min_gb:
        errors.append(
            RuleViolation(
                field="ram_gb",
                message="Insufficient RAM",
                actual=_show(record.ram_gb, "GB"),
                required=f"{rules.ram_min_gb}GB minimum",
            )
        )
        score -= rules.penalty_ram

    if (
        record.disk_type != rules.disk_required_type
        or record.disk_capacity_gb is None
        or record.disk_capacity_gb < rules.disk_min_gb
    ):
        errors.append(
            RuleViolation(
                field="disk",
                message="Disk does not meet requirements",
                actual=f"{_show(record.disk_type)} {_show(record.disk_capacity_gb, 'GB')}",
                required=f"{rules.disk_required_type} {rules.disk_min_gb}GB minimum",
            )
        )
        score -= rules.penalty_disk

    if record.os_name not in rules.allowed_os:
        errors.append(
            RuleViolation(
                field="os_name",
                message="Unsupported operating system",
                actual=_show(record.os_name),
                required=" or ".join(rules.allowed_os),
            )
        )
        score -= rules.penalty_os

    if record.atencion == "HO":
        bandwidth_errors = _check_ho_bandwidth(record, rules)
        if bandwidth_errors:
            errors.extend(bandwidth_errors)
            score -= rules.penalty_ho_bandwidth

    return ValidationResult(
        usuario_id=record.usuario_id,
        errors=errors,
        validation_score=max(0, score),
    )


def _check_ho_bandwidth(record: NormalizedRecord, rules: ValidationRules) -> list[RuleViolation]:
    # One rule, one penalty; the upload check only runs when enabled
    errors = []

    download = record.speed_download_mbps
    if download is None or download < rules.ho_min_download_mbps:
        errors.append(
            RuleViolation(
                field="speed_download_mbps",
                message="Download speed too low for home office",
                actual=_show(download, "Mbps"),
                required=f"{rules.ho_min_download_mbps}Mbps minimum",
            )
        )

    upload = record.speed_upload_mbps
    if rules.enforce_ho_upload and (upload is None or upload < rules.ho_min_upload_mbps):
        errors.append(
            RuleViolation(
                field="speed_upload_mbps",
                message="Upload speed too low for home office",
                actual=_show(upload, "Mbps"),
                required=f"{rules.ho_min_upload_mbps}Mbps minimum",
            )
        )

    return errors
