"""Threshold rule store and severity banding.

Rules are read-only to the validator: it looks them up per trial and asks
``classify`` for the severity band of an observed value. Banding is
inclusive-low, exclusive-high:

    magnitude < low               -> no finding
    low      <= magnitude < medium   -> Low
    medium   <= magnitude < high     -> Medium
    high     <= magnitude < critical -> High
    magnitude >= critical            -> Critical

``magnitude`` depends on the rule direction (see ``deviation_magnitude``).
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import models, schemas

logger = logging.getLogger("trialrisk-core.thresholds")

# Fields a PATCH may clear; explicit nulls for the rest are ignored
NULLABLE_RULE_FIELDS = ("description", "reference_low", "reference_high")


class ThresholdRuleError(ValueError):
    """Raised when a threshold rule is not usable as configured."""


class ThresholdBandError(ThresholdRuleError):
    """Raised when a rule's bands are not strictly increasing."""


class ReferenceRangeError(ThresholdRuleError):
    """Raised when a rule's direction needs reference bounds it does not have."""


def validate_bands(low: float, medium: float, high: float, critical: float) -> None:
    """
    Check that bands are strictly increasing.

    Raises:
        ThresholdBandError: If low < medium < high < critical does not hold
    """
    if not (low < medium < high < critical):
        raise ThresholdBandError(
            f"Threshold bands must be strictly increasing "
            f"(low < medium < high < critical), got {low}/{medium}/{high}/{critical}"
        )


def validate_reference_range(
    direction: Optional[models.RuleDirection],
    reference_low: Optional[float],
    reference_high: Optional[float],
) -> None:
    """
    Check that a rule has the reference bounds its direction reads.

    Raises:
        ReferenceRangeError: If a below/two_sided rule lacks a bound, or the
            two_sided range is inverted
    """
    direction = models.RuleDirection(direction or models.RuleDirection.ABOVE)

    if direction in (models.RuleDirection.BELOW, models.RuleDirection.TWO_SIDED) and reference_low is None:
        raise ReferenceRangeError(f"{direction.value} rules require reference_low")
    if direction == models.RuleDirection.TWO_SIDED:
        if reference_high is None:
            raise ReferenceRangeError("two_sided rules require reference_high")
        if reference_low > reference_high:
            raise ReferenceRangeError(
                f"reference_low must not exceed reference_high, got {reference_low}/{reference_high}"
            )


def deviation_magnitude(rule: models.ThresholdRule, value: float) -> float:
    """
    Convert an observed value into the banding input for a rule.

    - above: the raw value
    - below: how far the value sits under ``reference_low``
    - two_sided: how far the value sits outside [reference_low, reference_high]

    Raises:
        ReferenceRangeError: If the rule lacks the reference bounds it needs
    """
    direction = rule.direction or models.RuleDirection.ABOVE
    validate_reference_range(direction, rule.reference_low, rule.reference_high)

    if direction == models.RuleDirection.BELOW:
        return rule.reference_low - value

    if direction == models.RuleDirection.TWO_SIDED:
        return max(rule.reference_low - value, value - rule.reference_high, 0.0)

    return value


def classify(rule: models.ThresholdRule, value: float) -> Optional[models.Severity]:
    """
    Classify an observed value into a severity band.

    Args:
        rule: Threshold rule for the metric
        value: Observed numeric value

    Returns:
        Severity band, or None when the value is within normal limits

    Raises:
        ReferenceRangeError: If the rule lacks the reference bounds it needs
    """
    magnitude = deviation_magnitude(rule, value)

    if magnitude >= rule.critical:
        return models.Severity.CRITICAL
    if magnitude >= rule.high:
        return models.Severity.HIGH
    if magnitude >= rule.medium:
        return models.Severity.MEDIUM
    if magnitude >= rule.low:
        return models.Severity.LOW
    return None


# =============================================================================
# Rule CRUD
# =============================================================================

def get_rules_for_trial(
    db: Session,
    trial_id: int,
    enabled_only: bool = True,
) -> dict[str, models.ThresholdRule]:
    """
    Get a trial's rules keyed by metric name.

    Args:
        db: Database session
        trial_id: Trial ID
        enabled_only: Skip disabled rules (default True)

    Returns:
        Dict of metric_name -> ThresholdRule
    """
    query = db.query(models.ThresholdRule).filter(models.ThresholdRule.trial_id == trial_id)
    if enabled_only:
        query = query.filter(models.ThresholdRule.enabled.is_(True))

    return {rule.metric_name: rule for rule in query.order_by(models.ThresholdRule.id).all()}


def list_rules(db: Session, trial_id: int) -> list[models.ThresholdRule]:
    return (
        db.query(models.ThresholdRule)
        .filter(models.ThresholdRule.trial_id == trial_id)
        .order_by(models.ThresholdRule.metric_name)
        .all()
    )


def get_rule(db: Session, rule_id: int) -> Optional[models.ThresholdRule]:
    return db.query(models.ThresholdRule).filter(models.ThresholdRule.id == rule_id).first()


def create_rule(db: Session, rule_data: schemas.ThresholdRuleCreate) -> models.ThresholdRule:
    """
    Create a threshold rule.

    Raises:
        ThresholdBandError: If an enabled rule's bands are not strictly increasing
        ReferenceRangeError: If the direction's reference bounds are missing
    """
    if rule_data.enabled:
        validate_bands(rule_data.low, rule_data.medium, rule_data.high, rule_data.critical)
    validate_reference_range(rule_data.direction, rule_data.reference_low, rule_data.reference_high)

    rule = models.ThresholdRule(**rule_data.model_dump())
    db.add(rule)
    db.commit()
    db.refresh(rule)

    logger.info(f"Created threshold rule '{rule.metric_name}' for trial {rule.trial_id}")
    return rule


def update_rule(
    db: Session,
    rule_id: int,
    rule_update: schemas.ThresholdRuleUpdate,
) -> Optional[models.ThresholdRule]:
    """
    Update a threshold rule.

    Bands and the reference range are re-checked against the merged result,
    so a partial update that would leave the rule unusable is rejected.

    Returns:
        Updated rule, or None if not found

    Raises:
        ThresholdBandError: If the updated rule is enabled and its bands are invalid
        ReferenceRangeError: If the merged direction lacks its reference bounds
    """
    rule = get_rule(db, rule_id)
    if not rule:
        return None

    changes = {
        name: value
        for name, value in rule_update.model_dump(exclude_unset=True).items()
        if value is not None or name in NULLABLE_RULE_FIELDS
    }
    merged = {
        name: changes.get(name, getattr(rule, name))
        for name in ("low", "medium", "high", "critical", "direction", "reference_low", "reference_high")
    }
    if changes.get("enabled", rule.enabled):
        validate_bands(merged["low"], merged["medium"], merged["high"], merged["critical"])
    validate_reference_range(merged["direction"], merged["reference_low"], merged["reference_high"])

    for field_name, value in changes.items():
        setattr(rule, field_name, value)

    db.commit()
    db.refresh(rule)
    logger.info(f"Updated threshold rule {rule.id} ({rule.metric_name})")
    return rule
