"""Tests for threshold banding and the rule store."""
import pytest

from trialrisk_core import models, schemas, thresholds
from trialrisk_core.thresholds import ReferenceRangeError, ThresholdBandError, classify, validate_bands

SEVERITY_RANK = {
    models.Severity.LOW: 1,
    models.Severity.MEDIUM: 2,
    models.Severity.HIGH: 3,
    models.Severity.CRITICAL: 4,
}


def _rule(**kwargs):
    values = dict(low=1.0, medium=2.0, high=3.0, critical=4.0, direction=models.RuleDirection.ABOVE)
    values.update(kwargs)
    return models.ThresholdRule(metric_name="metric", **values)


class TestBanding:
    """Test inclusive-low, exclusive-high severity bands."""

    @pytest.mark.parametrize("value,expected", [
        (0.0, None),
        (0.99, None),
        (1.0, models.Severity.LOW),
        (1.99, models.Severity.LOW),
        (2.0, models.Severity.MEDIUM),
        (3.0, models.Severity.HIGH),
        (3.99, models.Severity.HIGH),
        (4.0, models.Severity.CRITICAL),
        (1000.0, models.Severity.CRITICAL),
    ])
    def test_band_boundaries(self, value, expected):
        """Each band includes its lower bound and excludes its upper bound."""
        assert classify(_rule(), value) == expected

    def test_severity_is_monotonic_in_value(self):
        """Raising the value never lowers the severity."""
        rule = _rule()
        values = [x / 4 for x in range(0, 30)]
        ranks = [SEVERITY_RANK.get(classify(rule, v), 0) for v in values]
        assert ranks == sorted(ranks)

    def test_missing_direction_defaults_to_above(self):
        """A rule without a direction bands the raw value."""
        assert classify(_rule(direction=None), 3.5) == models.Severity.HIGH

    def test_below_rule_bands_distance_under_reference(self):
        """Below rules band how far the value falls under reference_low."""
        rule = _rule(direction=models.RuleDirection.BELOW, reference_low=10.0)
        assert classify(rule, 12.0) is None
        assert classify(rule, 9.5) is None
        assert classify(rule, 9.0) == models.Severity.LOW
        assert classify(rule, 7.0) == models.Severity.HIGH
        assert classify(rule, 5.0) == models.Severity.CRITICAL

    def test_two_sided_rule_bands_distance_outside_range(self):
        """Two-sided rules band the distance outside [reference_low, reference_high]."""
        rule = _rule(direction=models.RuleDirection.TWO_SIDED, reference_low=10.0, reference_high=20.0)
        assert classify(rule, 15.0) is None
        assert classify(rule, 10.0) is None
        assert classify(rule, 21.0) == models.Severity.LOW
        assert classify(rule, 8.0) == models.Severity.MEDIUM
        assert classify(rule, 25.0) == models.Severity.CRITICAL


class TestBandValidation:
    """Test that band ordering is enforced."""

    def test_strictly_increasing_bands_pass(self):
        validate_bands(1, 2, 3, 4)

    @pytest.mark.parametrize("bands", [(1, 1, 3, 4), (1, 3, 2, 4), (4, 3, 2, 1), (1, 2, 4, 4)])
    def test_unordered_bands_raise(self, bands):
        """Equal or decreasing bands are rejected."""
        with pytest.raises(ThresholdBandError):
            validate_bands(*bands)


class TestRuleStore:
    """Test threshold rule CRUD."""

    def test_create_and_lookup_rules(self, db, trial):
        """Created rules are returned keyed by metric name."""
        thresholds.create_rule(db, schemas.ThresholdRuleCreate(
            trial_id=trial.id, metric_name="ALT", low=40, medium=80, high=120, critical=200,
        ))
        thresholds.create_rule(db, schemas.ThresholdRuleCreate(
            trial_id=trial.id, metric_name="AST", low=40, medium=80, high=120, critical=200, enabled=False,
        ))

        rules = thresholds.get_rules_for_trial(db, trial.id)
        assert list(rules) == ["ALT"]
        assert rules["ALT"].direction == models.RuleDirection.ABOVE

        all_rules = thresholds.get_rules_for_trial(db, trial.id, enabled_only=False)
        assert set(all_rules) == {"ALT", "AST"}

    def test_create_rejects_invalid_bands(self, db, trial):
        """Enabled rules must have strictly increasing bands."""
        with pytest.raises(ThresholdBandError):
            thresholds.create_rule(db, schemas.ThresholdRuleCreate(
                trial_id=trial.id, metric_name="ALT", low=80, medium=40, high=120, critical=200,
            ))
        assert thresholds.list_rules(db, trial.id) == []

    def test_disabled_rule_may_have_unordered_bands(self, db, trial):
        """Disabled rules are never evaluated, so ordering is not enforced."""
        rule = thresholds.create_rule(db, schemas.ThresholdRuleCreate(
            trial_id=trial.id, metric_name="ALT", low=80, medium=40, high=120, critical=200, enabled=False,
        ))
        assert rule.enabled is False

    def test_partial_update_checks_merged_bands(self, db, make_rule):
        """An update touching one band is validated against the others."""
        rule = make_rule("ALT")
        with pytest.raises(ThresholdBandError):
            thresholds.update_rule(db, rule.id, schemas.ThresholdRuleUpdate(medium=500))

        updated = thresholds.update_rule(db, rule.id, schemas.ThresholdRuleUpdate(medium=90))
        assert updated.medium == 90

    def test_update_checks_merged_reference_range(self, db, make_rule):
        """Switching direction requires the reference bounds that direction reads."""
        rule = make_rule("PLT", low=10, medium=20, high=30, critical=40)

        with pytest.raises(ReferenceRangeError):
            thresholds.update_rule(db, rule.id, schemas.ThresholdRuleUpdate(direction=models.RuleDirection.BELOW))
        with pytest.raises(ReferenceRangeError):
            thresholds.update_rule(db, rule.id, schemas.ThresholdRuleUpdate(
                direction=models.RuleDirection.TWO_SIDED, reference_low=150, reference_high=100,
            ))

        db.refresh(rule)
        assert rule.direction == models.RuleDirection.ABOVE

        updated = thresholds.update_rule(db, rule.id, schemas.ThresholdRuleUpdate(
            direction=models.RuleDirection.BELOW, reference_low=150,
        ))
        assert updated.direction == models.RuleDirection.BELOW
        assert classify(updated, 100) == models.Severity.CRITICAL

    def test_clearing_a_needed_reference_bound_is_rejected(self, db, make_rule):
        rule = make_rule("HGB", low=1, medium=2, high=3, critical=4,
                         direction=models.RuleDirection.BELOW, reference_low=12)
        with pytest.raises(ReferenceRangeError):
            thresholds.update_rule(db, rule.id, schemas.ThresholdRuleUpdate(reference_low=None))

    def test_null_band_in_update_is_ignored(self, db, make_rule):
        rule = make_rule("ALT")
        updated = thresholds.update_rule(db, rule.id, schemas.ThresholdRuleUpdate(low=None, critical=250))
        assert updated.low == 40
        assert updated.critical == 250

    def test_rule_without_reference_bound_cannot_be_classified(self):
        with pytest.raises(ReferenceRangeError):
            classify(_rule(direction=models.RuleDirection.BELOW), 5.0)

    def test_update_missing_rule_returns_none(self, db):
        assert thresholds.update_rule(db, 999, schemas.ThresholdRuleUpdate(low=1)) is None

    def test_reference_bounds_required_by_direction(self, trial):
        """Below and two-sided rules need their reference bounds."""
        with pytest.raises(ValueError):
            schemas.ThresholdRuleCreate(
                trial_id=trial.id, metric_name="HGB", low=1, medium=2, high=3, critical=4,
                direction=models.RuleDirection.BELOW,
            )
        with pytest.raises(ValueError):
            schemas.ThresholdRuleCreate(
                trial_id=trial.id, metric_name="K", low=1, medium=2, high=3, critical=4,
                direction=models.RuleDirection.TWO_SIDED, reference_low=3.5,
            )


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
