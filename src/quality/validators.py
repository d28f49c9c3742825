"""
Snapshot Batch Validation

Rule-based checks run over a day's snapshot batch before it is written
to the ledger. Checks never block the write; failures are reported and
logged so a bad classification run is visible in the logs.

Checks:
- Required columns present and non-null
- One row per subscription
- Discount and monthly value bounds
- Known status values
- Counted / trial-counted flags never both set
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import polars as pl
import structlog

from src.transformation.records import SnapshotRow
from src.transformation.transformers import utcnow

logger = structlog.get_logger(__name__)

SUBSCRIPTION_STATUSES = [
    "active",
    "trialing",
    "past_due",
    "canceled",
    "incomplete",
    "incomplete_expired",
    "unpaid",
]


class ValidationSeverity(str, Enum):
    """Severity levels for validation failures"""
    ERROR = "error"
    WARNING = "warning"


class ValidationStatus(str, Enum):
    """Overall validation status"""
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass
class ValidationCheck:
    """Single validation check result"""
    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    details: Optional[Dict[str, Any]] = None
    failed_rows: int = 0
    total_rows: int = 0


@dataclass
class ValidationResult:
    """Complete validation suite result"""
    status: ValidationStatus
    total_checks: int
    passed_checks: int
    failed_checks: int
    warning_count: int
    checks: List[ValidationCheck] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Percentage of passed checks"""
        if self.total_checks == 0:
            return 100.0
        return (self.passed_checks / self.total_checks) * 100

    @property
    def failures(self) -> List[ValidationCheck]:
        return [c for c in self.checks if not c.passed]


def snapshot_frame(rows: Sequence[SnapshotRow]) -> pl.DataFrame:
    """Columnar view of a snapshot batch"""
    schema = {
        "subscription_id": pl.Utf8,
        "customer_id": pl.Utf8,
        "status": pl.Utf8,
        "monthly_value": pl.Float64,
        "discount_percent": pl.Float64,
        "is_active": pl.Boolean,
        "is_counted": pl.Boolean,
        "is_trial_counted": pl.Boolean,
    }
    return pl.DataFrame(
        {
            "subscription_id": [r.subscription_id for r in rows],
            "customer_id": [r.customer_id for r in rows],
            "status": [r.status for r in rows],
            "monthly_value": [float(r.monthly_value) for r in rows],
            "discount_percent": [float(r.discount_percent) for r in rows],
            "is_active": [r.is_active for r in rows],
            "is_counted": [r.is_counted for r in rows],
            "is_trial_counted": [r.is_trial_counted for r in rows],
        },
        schema=schema,
    )


class DataValidator:
    """
    Fluent collection of checks over a polars DataFrame.

    Example:
        validator = DataValidator()
        validator.add_not_null_check("subscription_id")
        validator.add_range_check("discount_percent", min_value=0, max_value=100)
        result = validator.validate(df)
    """

    def __init__(self, strict_mode: bool = False):
        self.strict_mode = strict_mode  # Warnings fail the suite
        self._checks: List[Callable[[pl.DataFrame], ValidationCheck]] = []

    def reset(self) -> None:
        self._checks = []

    @staticmethod
    def _missing(name: str, column: str, severity: ValidationSeverity) -> ValidationCheck:
        return ValidationCheck(
            name=name,
            passed=False,
            severity=severity,
            message=f"Column '{column}' not found",
        )

    def add_not_null_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for null values in column"""
        name = f"not_null_{column}"

        def check(df: pl.DataFrame) -> ValidationCheck:
            if column not in df.columns:
                return self._missing(name, column, severity)

            null_count = df[column].null_count()
            return ValidationCheck(
                name=name,
                passed=null_count == 0,
                severity=severity,
                message=f"Column '{column}' has {null_count} null values",
                details={"null_count": null_count},
                failed_rows=null_count,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def add_unique_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for uniqueness of column values"""
        name = f"unique_{column}"

        def check(df: pl.DataFrame) -> ValidationCheck:
            if column not in df.columns:
                return self._missing(name, column, severity)

            duplicates = len(df) - df[column].n_unique()
            return ValidationCheck(
                name=name,
                passed=duplicates == 0,
                severity=severity,
                message=f"Column '{column}' has {duplicates} duplicate values",
                details={"duplicate_count": duplicates},
                failed_rows=duplicates,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def add_range_check(
        self,
        column: str,
        min_value: Optional[float] = None,
        max_value: Optional[float] = None,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for values within [min_value, max_value]"""
        name = f"range_{column}"

        def check(df: pl.DataFrame) -> ValidationCheck:
            if column not in df.columns:
                return self._missing(name, column, severity)

            out_of_range = pl.lit(False)
            if min_value is not None:
                out_of_range = out_of_range | (pl.col(column) < min_value)
            if max_value is not None:
                out_of_range = out_of_range | (pl.col(column) > max_value)

            failed = df.filter(out_of_range).height
            return ValidationCheck(
                name=name,
                passed=failed == 0,
                severity=severity,
                message=f"Column '{column}' has {failed} values outside [{min_value}, {max_value}]",
                details={"min": min_value, "max": max_value, "out_of_range_count": failed},
                failed_rows=failed,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def add_enum_check(
        self,
        column: str,
        allowed_values: List[Any],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Add check for values in allowed set"""
        name = f"enum_{column}"

        def check(df: pl.DataFrame) -> ValidationCheck:
            if column not in df.columns:
                return self._missing(name, column, severity)

            invalid = df.filter(
                ~pl.col(column).is_in(allowed_values) & pl.col(column).is_not_null()
            ).height
            return ValidationCheck(
                name=name,
                passed=invalid == 0,
                severity=severity,
                message=f"Column '{column}' has {invalid} invalid values",
                details={"allowed_values": allowed_values, "invalid_count": invalid},
                failed_rows=invalid,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def add_custom_check(
        self,
        name: str,
        violations: Callable[[pl.DataFrame], pl.DataFrame],
        message_on_fail: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """
        Add a check failing on every row returned by ``violations``.
        """
        def check(df: pl.DataFrame) -> ValidationCheck:
            try:
                failed = violations(df).height
            except pl.exceptions.PolarsError as e:
                return ValidationCheck(
                    name=name,
                    passed=False,
                    severity=severity,
                    message=f"Check failed with error: {e}",
                )
            return ValidationCheck(
                name=name,
                passed=failed == 0,
                severity=severity,
                message=message_on_fail if failed else "Check passed",
                failed_rows=failed,
                total_rows=len(df),
            )

        self._checks.append(check)
        return self

    def validate(self, df: pl.DataFrame) -> ValidationResult:
        """
        Run all validation checks on DataFrame.

        Args:
            df: DataFrame to validate

        Returns:
            ValidationResult with all check results
        """
        started_at = utcnow()
        results = [check(df) for check in self._checks]

        for result in results:
            if not result.passed:
                logger.warning(
                    "Validation check failed",
                    check=result.name,
                    message=result.message,
                    severity=result.severity.value,
                )

        passed_checks = sum(1 for r in results if r.passed)
        failed_checks = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.ERROR)
        warning_count = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.WARNING)

        if failed_checks > 0 or (warning_count > 0 and self.strict_mode):
            status = ValidationStatus.FAILED
        elif warning_count > 0:
            status = ValidationStatus.PARTIAL
        else:
            status = ValidationStatus.PASSED

        logger.info(
            "Validation complete",
            status=status.value,
            rows=len(df),
            passed=passed_checks,
            failed=failed_checks,
            warnings=warning_count,
        )

        return ValidationResult(
            status=status,
            total_checks=len(results),
            passed_checks=passed_checks,
            failed_checks=failed_checks,
            warning_count=warning_count,
            checks=results,
            started_at=started_at,
            completed_at=utcnow(),
        )


def create_snapshot_validator() -> DataValidator:
    """Create pre-configured validator for a snapshot batch"""
    return (
        DataValidator()
        .add_not_null_check("subscription_id")
        .add_not_null_check("status")
        .add_unique_check("subscription_id")
        .add_range_check("discount_percent", min_value=0, max_value=100)
        .add_range_check("monthly_value", min_value=0)
        .add_enum_check("status", SUBSCRIPTION_STATUSES, severity=ValidationSeverity.WARNING)
        .add_custom_check(
            "disjoint_counted_flags",
            lambda df: df.filter(pl.col("is_counted") & pl.col("is_trial_counted")),
            "Rows are both counted and trial-counted",
        )
        .add_custom_check(
            "counted_requires_active",
            lambda df: df.filter(pl.col("is_counted") & ~pl.col("is_active")),
            "Counted rows with an inactive status",
        )
    )
