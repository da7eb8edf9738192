"""Tests for domain data validation."""
import pytest

from trialrisk_core import crud, models
from trialrisk_core.validation import numeric_value, validate


@pytest.fixture
def lab_records(db, trial, make_rule):
    make_rule("ALT")
    make_rule("AST", enabled=False)
    crud.store_domain_records(db, trial.id, "LB", "EDC", {
        "LB-002": {"ALT": "85", "AST": 500},
        "LB-001": {"ALT": 250, "VISIT": "Week 4"},
        "LB-003": {"ALT": 20},
        "LB-004": {"ALT": True},
    })


class TestValidate:
    """Test finding detection over stored records."""

    def test_findings_for_breaching_records(self, db, trial, lab_records):
        """Only numeric values of enabled rules produce findings."""
        result = validate(db, trial.id, "LB", "EDC", ["LB-001", "LB-002", "LB-003", "LB-004"])

        assert result.errors == []
        assert result.records_validated == 4
        assert [(f.record_id, f.metric_name, f.severity) for f in result.findings] == [
            ("LB-001", "ALT", models.Severity.CRITICAL),
            ("LB-002", "ALT", models.Severity.MEDIUM),
        ]
        assert result.findings[1].observed_value == 85.0

    def test_validation_is_deterministic(self, db, trial, lab_records):
        """Validating unchanged data twice yields equal findings."""
        first = validate(db, trial.id, "LB", "EDC")
        second = validate(db, trial.id, "LB", "EDC")
        assert first.findings == second.findings

    def test_all_records_when_ids_omitted(self, db, trial, lab_records):
        result = validate(db, trial.id, "LB", "EDC")
        assert result.records_validated == 4
        assert len(result.findings) == 2

    def test_unparseable_record_is_reported_and_skipped(self, db, trial, lab_records):
        """A broken record becomes a data_error; the rest of the batch continues."""
        crud.store_domain_records(db, trial.id, "LB", "EDC", {"LB-005": "{not json", "LB-006": "[1, 2]"})

        result = validate(db, trial.id, "LB", "EDC", ["LB-001", "LB-005", "LB-006"])

        assert [f.record_id for f in result.findings] == ["LB-001"]
        assert sorted(e.item for e in result.errors) == ["LB-005", "LB-006"]
        assert all(e.kind == "data_error" for e in result.errors)

    def test_missing_record_is_reported(self, db, trial, lab_records):
        result = validate(db, trial.id, "LB", "EDC", ["LB-001", "LB-404"])

        assert [e.item for e in result.errors] == ["LB-404"]
        assert "not found" in result.errors[0].message
        assert len(result.findings) == 1

    def test_unusable_rule_is_reported_per_metric(self, db, trial, lab_records, make_rule):
        """A rule missing its reference bound yields an error, not an exception."""
        make_rule("PLT", low=10, medium=20, high=30, critical=40, direction=models.RuleDirection.BELOW)
        crud.store_domain_records(db, trial.id, "LB", "EDC", {"LB-007": {"ALT": 250, "PLT": 50}})

        result = validate(db, trial.id, "LB", "EDC", ["LB-007"])

        assert result.records_validated == 1
        assert [(f.record_id, f.metric_name) for f in result.findings] == [("LB-007", "ALT")]
        assert [(e.kind, e.item) for e in result.errors] == [("data_error", "LB-007")]
        assert "PLT" in result.errors[0].message

    def test_other_domain_is_not_validated(self, db, trial, lab_records):
        result = validate(db, trial.id, "VS", "EDC")
        assert result.records_validated == 0
        assert result.findings == []


class TestNumericValue:
    """Test which field values count as numeric."""

    @pytest.mark.parametrize("value,expected", [
        (5, 5.0),
        (2.5, 2.5),
        ("85", 85.0),
        (" 1.5 ", 1.5),
        ("high", None),
        (True, None),
        (None, None),
        ([1], None),
        ("nan", None),
    ])
    def test_numeric_value(self, value, expected):
        assert numeric_value(value) == expected


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
