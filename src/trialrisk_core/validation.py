"""Domain data validation against per-trial threshold rules.

Each imported record is a flat field map. Every numeric field whose name
matches an enabled rule is banded by ``thresholds.classify``; a band yields a
``Finding``. Findings are pure values: validating unchanged data twice gives
equal results in the same order.
"""
import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy.orm import Session

from . import crud, models, thresholds
from .errors import BatchError, DataError

logger = logging.getLogger("trialrisk-core.validation")


@dataclass(frozen=True)
class Finding:
    """A detected threshold breach for one record and metric."""

    trial_id: int
    domain: str
    source: str
    record_id: str
    metric_name: str
    observed_value: float
    severity: models.Severity
    rule_id: int


@dataclass
class ValidationResult:
    findings: list[Finding] = field(default_factory=list)
    errors: list[BatchError] = field(default_factory=list)
    records_validated: int = 0


def parse_record(record_id: str, record_data: str) -> dict[str, Any]:
    """
    Decode a stored record payload.

    Raises:
        DataError: If the payload is not a JSON object
    """
    try:
        fields = json.loads(record_data)
    except (TypeError, ValueError) as e:
        raise DataError(record_id, f"invalid JSON: {e}")

    if not isinstance(fields, dict):
        raise DataError(record_id, f"expected a JSON object, got {type(fields).__name__}")
    return fields


def numeric_value(value: Any) -> Optional[float]:
    """Return the value as a float if it is numeric, else None. Booleans are not numeric."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def evaluate_record(
    trial_id: int,
    domain: str,
    source: str,
    record_id: str,
    fields: dict[str, Any],
    rules: dict[str, models.ThresholdRule],
) -> tuple[list[Finding], list[BatchError]]:
    """
    Band every rule-covered numeric field of one record.

    A rule that cannot be evaluated is reported for this record and metric;
    the record's other metrics are still banded.

    Returns:
        Tuple of (findings, errors)
    """
    findings = []
    errors = []
    for metric_name in sorted(fields):
        rule = rules.get(metric_name)
        if rule is None:
            continue

        value = numeric_value(fields[metric_name])
        if value is None:
            continue

        try:
            severity = thresholds.classify(rule, value)
        except thresholds.ThresholdRuleError as e:
            error = DataError(record_id, f"{metric_name}: rule {rule.id} cannot be evaluated: {e}")
            logger.warning(f"Skipping {domain}/{source} metric: {error}")
            errors.append(BatchError.data_error(error))
            continue

        if severity is None:
            continue

        findings.append(Finding(
            trial_id=trial_id,
            domain=domain,
            source=source,
            record_id=record_id,
            metric_name=metric_name,
            observed_value=value,
            severity=severity,
            rule_id=rule.id,
        ))
    return findings, errors


def validate(
    db: Session,
    trial_id: int,
    domain: str,
    source: str,
    record_ids: Optional[list[str]] = None,
) -> ValidationResult:
    """
    Validate imported records against the trial's enabled rules.

    Args:
        db: Database session
        trial_id: Trial ID
        domain: Clinical data domain
        source: Source system
        record_ids: Records to validate; None validates every stored record

    Returns:
        ValidationResult with findings sorted by (record_id, metric_name) and
        one data_error entry per record that was missing or unparseable, or
        per metric whose rule could not be evaluated
    """
    result = ValidationResult()
    rules = thresholds.get_rules_for_trial(db, trial_id)
    records = crud.get_domain_records(db, trial_id, domain, source, record_ids)

    if record_ids is not None:
        found = {record.record_id for record in records}
        for record_id in sorted(set(record_ids) - found):
            error = DataError(record_id, "record not found")
            logger.warning(f"Skipping {domain}/{source} record: {error}")
            result.errors.append(BatchError.data_error(error))

    for record in records:
        try:
            fields = parse_record(record.record_id, record.record_data)
        except DataError as e:
            logger.warning(f"Skipping {domain}/{source} record: {e}")
            result.errors.append(BatchError.data_error(e))
            continue

        result.records_validated += 1
        findings, errors = evaluate_record(trial_id, domain, source, record.record_id, fields, rules)
        result.findings.extend(findings)
        result.errors.extend(errors)

    result.findings.sort(key=lambda f: (f.record_id, f.metric_name))

    logger.info(
        f"Validated {result.records_validated} {domain}/{source} records for trial {trial_id}: "
        f"{len(result.findings)} findings, {len(result.errors)} errors"
    )
    return result
