"""
ETL Job Processor - Inventory Spreadsheet Ingestion

Runs one spreadsheet through the pipeline, reporting progress at fixed
checkpoints:

    20  spreadsheet parsed (worker thread)
    40  headers mapped onto the canonical schema
    60  records normalized
    80  records validated
    90  records scored
    100 JobResult stored in the result cache

Payload:
    {"file_path": "...", "audit_id": "...", "rules": {...}}
    (filePath / auditoria_id accepted; relative paths resolve against UPLOAD_DIR)

Record-level problems never fail the job: they end up as None fields,
violations and lower scores. The job fails only when the payload is invalid
or the spreadsheet cannot be read (both unrecoverable, not retried).
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from apps.dispatcher.worker import JobContext
from apps.etl.mapping import build_header_map
from apps.etl.normalizers import normalize_record
from apps.etl.parser import parse_spreadsheet
from apps.etl.scoring import DEFAULT_COMPLETENESS_WEIGHT, batch_statistics, score_record
from apps.etl.validation import DEFAULT_RULES, ValidationRules, validate_record
from utils.cache import ResultCache
from utils.config import settings
from utils.errors import InvalidJobPayloadError
from utils.schemas import JobResult, NormalizedRecord

logger = logging.getLogger(__name__)

JOB_TYPE = "process-excel"


class ExcelProcessingJob:
    """Processor for the etl queue."""

    def __init__(
        self,
        cache: ResultCache,
        rules: ValidationRules = DEFAULT_RULES,
        completeness_weight: float = DEFAULT_COMPLETENESS_WEIGHT,
        result_ttl: Optional[int] = None,
        upload_dir: Optional[str] = None,
    ) -> None:
        self.cache = cache
        self.rules = rules
        self.completeness_weight = completeness_weight
        self.result_ttl = result_ttl or settings.ETL_RESULT_TTL
        self.upload_dir = Path(upload_dir or settings.UPLOAD_DIR)

    async def __call__(self, ctx: JobContext) -> dict[str, Any]:
        file_path, audit_id, rules = self._read_payload(ctx.payload)
        start_time = time.time()

        logger.info(
            "Processing spreadsheet",
            extra={"job_id": ctx.job_id, "file_path": str(file_path), "audit_id": audit_id},
        )

        sheet = await asyncio.to_thread(parse_spreadsheet, file_path)
        await ctx.update_progress(20)

        header_map = build_header_map(sheet.headers)
        logger.debug("Header map for %s: %s", file_path.name, header_map)
        await ctx.update_progress(40)

        records = [self._normalize(raw, header_map, audit_id, i) for i, raw in enumerate(sheet.records)]
        await ctx.update_progress(60)

        validations = [validate_record(record, rules) for record in records]
        await ctx.update_progress(80)

        scored = [
            score_record(record, validation, self.completeness_weight)
            for record, validation in zip(records, validations)
        ]
        statistics = batch_statistics(scored)
        await ctx.update_progress(90)

        result = JobResult(
            job_id=ctx.job_id,
            source_file=str(file_path),
            records=scored,
            statistics=statistics,
            validations=validations,
        )
        await self.cache.set(ctx.job_id, result, self.result_ttl)
        await ctx.update_progress(100)

        logger.info(
            "Spreadsheet processed: job_id=%s, total=%d, valid=%d, invalid=%d, avg_score=%.2f, elapsed=%.3fs",
            ctx.job_id, statistics.total, statistics.valid, statistics.invalid,
            statistics.avg_score, time.time() - start_time,
        )

        return {
            "job_id": ctx.job_id,
            "status": result.status,
            "timestamp": result.timestamp.isoformat(),
            "statistics": statistics.model_dump(),
        }

    def _read_payload(self, payload: Mapping[str, Any]) -> tuple[Path, Optional[str], ValidationRules]:
        raw_path = payload.get("file_path") or payload.get("filePath")
        if not raw_path or not isinstance(raw_path, str):
            raise InvalidJobPayloadError("Payload requires a 'file_path' string")

        audit_id = payload.get("audit_id", payload.get("auditoria_id"))
        if audit_id is not None and not isinstance(audit_id, (str, int)):
            raise InvalidJobPayloadError("'audit_id' must be a string or an integer")

        file_path = Path(raw_path)
        if not file_path.is_absolute():
            file_path = self.upload_dir / file_path

        rules = self.rules
        overrides = payload.get("rules")
        if overrides:
            if not isinstance(overrides, Mapping):
                raise InvalidJobPayloadError("'rules' must be an object")
            try:
                rules = ValidationRules.model_validate({**self.rules.model_dump(), **overrides})
            except ValidationError as e:
                raise InvalidJobPayloadError(f"Invalid rule overrides: {e}") from e

        return file_path, None if audit_id is None else str(audit_id), rules

    @staticmethod
    def _normalize(raw: Mapping[str, Any], header_map: Mapping[str, str], audit_id: Optional[str], index: int) -> NormalizedRecord:
        try:
            return normalize_record(raw, header_map, audit_id, index)
        except (ValueError, TypeError, ArithmeticError) as e:
            # Keep the row so it is still counted, validated and scored
            logger.warning("Row %d could not be normalized: %s", index + 1, e)
            return NormalizedRecord(audit_id=audit_id, usuario_id=f"user_{index + 1}")
