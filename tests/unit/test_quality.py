"""
Unit Tests - Data Quality
"""
from datetime import date

import polars as pl

from src.quality.validators import (
    DataValidator,
    ValidationSeverity,
    ValidationStatus,
    create_snapshot_validator,
    snapshot_frame,
)
from tests.factories import make_row

DAY = date(2024, 5, 10)


class TestDataValidator:
    """Tests for DataValidator"""

    def test_not_null_check_passes(self):
        """Test not null check with valid data"""
        df = pl.DataFrame({"id": [1, 2, 3], "name": ["a", "b", "c"]})

        validator = DataValidator()
        validator.add_not_null_check("id")

        result = validator.validate(df)

        assert result.status == ValidationStatus.PASSED
        assert result.passed_checks == 1

    def test_not_null_check_fails(self):
        """Test not null check with null values"""
        df = pl.DataFrame({"id": [1, None, 3], "name": ["a", "b", "c"]})

        validator = DataValidator()
        validator.add_not_null_check("id")

        result = validator.validate(df)

        assert result.status == ValidationStatus.FAILED
        assert result.failed_checks == 1

    def test_unique_check_fails(self):
        """Test unique check with duplicates"""
        df = pl.DataFrame({"id": [1, 2, 1]})

        validator = DataValidator()
        validator.add_unique_check("id")

        result = validator.validate(df)

        assert result.status == ValidationStatus.FAILED
        assert result.checks[0].failed_rows == 1

    def test_range_check(self):
        """Test range check"""
        df = pl.DataFrame({"discount": [10.0, 50.0, -5.0, 200.0]})

        validator = DataValidator()
        validator.add_range_check("discount", min_value=0, max_value=100)

        result = validator.validate(df)

        assert result.status == ValidationStatus.FAILED
        # Two values outside range: -5 and 200
        check = result.checks[0]
        assert check.failed_rows == 2

    def test_enum_check_as_warning(self):
        """Warnings make the result partial unless strict"""
        df = pl.DataFrame({"status": ["active", "paused"]})

        lenient = DataValidator().add_enum_check("status", ["active"], severity=ValidationSeverity.WARNING)
        strict = DataValidator(strict_mode=True).add_enum_check("status", ["active"], severity=ValidationSeverity.WARNING)

        assert lenient.validate(df).status == ValidationStatus.PARTIAL
        assert strict.validate(df).status == ValidationStatus.FAILED

    def test_missing_column(self):
        """Checks on absent columns fail"""
        result = DataValidator().add_not_null_check("missing").validate(pl.DataFrame({"id": [1]}))
        assert result.status == ValidationStatus.FAILED

    def test_custom_check(self):
        """Custom checks fail on every returned row"""
        df = pl.DataFrame({"total": [100, 200, 300]})

        validator = DataValidator()
        validator.add_custom_check(
            name="total_cap",
            violations=lambda df: df.filter(pl.col("total") > 250),
            message_on_fail="Totals above cap",
        )

        result = validator.validate(df)

        assert result.status == ValidationStatus.FAILED
        assert result.checks[0].failed_rows == 1


class TestSnapshotValidator:
    """Tests for the snapshot batch validator"""

    def test_clean_batch(self):
        rows = [make_row(DAY, "a"), make_row(DAY, "b", "trialing"), make_row(DAY, "c", "canceled")]

        result = create_snapshot_validator().validate(snapshot_frame(rows))

        assert result.status == ValidationStatus.PASSED
        assert result.failures == []

    def test_overlapping_flags(self):
        """Rows both counted and trial-counted are flagged"""
        rows = [make_row(DAY, "a", is_trial_counted=True)]

        result = create_snapshot_validator().validate(snapshot_frame(rows))

        assert result.status == ValidationStatus.FAILED
        assert [c.name for c in result.failures] == ["disjoint_counted_flags"]

    def test_counted_but_inactive(self):
        rows = [make_row(DAY, "a", "canceled", is_counted=True)]

        result = create_snapshot_validator().validate(snapshot_frame(rows))

        assert "counted_requires_active" in [c.name for c in result.failures]

    def test_duplicate_ids(self):
        rows = [make_row(DAY, "a"), make_row(DAY, "a")]

        result = create_snapshot_validator().validate(snapshot_frame(rows))

        assert "unique_subscription_id" in [c.name for c in result.failures]

    def test_unknown_status_is_warning(self):
        rows = [make_row(DAY, "a", "paused")]

        result = create_snapshot_validator().validate(snapshot_frame(rows))

        assert result.status == ValidationStatus.PARTIAL
        assert result.warning_count == 1

    def test_empty_batch(self):
        """An empty frame keeps its schema and passes"""
        result = create_snapshot_validator().validate(snapshot_frame([]))
        assert result.status == ValidationStatus.PASSED
