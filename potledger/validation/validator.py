"""
Two-Stage Draft Validation

DESIGN DECISION: Every form submission is validated before the engines
or the store see it.

STAGE 1 - SCHEMA VALIDATION:
- Required field presence
- Amount parsing ("1,500" is accepted, "abc" is not)
- Amount must be greater than zero

STAGE 2 - SEMANTIC VALIDATION:
- Future date detection
- Absurd amount detection
- Funding check for outflows (needs storage)

Stage 2 only runs when stage 1 passes. Errors block the command;
warnings are shown to the user but the record is still saved.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them for human review.
"""

import datetime as dt
from decimal import Decimal
from typing import Optional, Union

import structlog

from potledger.config import AppSettings, get_settings
from potledger.engine.errors import LedgerValidationError
from potledger.models.records import (
    Inflow,
    InflowDraft,
    LedgerCollection,
    OutflowDraft,
    OverdraftDraft,
    RecordDraft,
    ValidationIssue,
    ValidationResult,
)
from potledger.models.records import parse_amount as parse_raw_amount
from potledger.services.storage.interface import LedgerStoreInterface, StorageError


logger = structlog.get_logger(__name__)


def parse_amount(value: Union[str, int, float, Decimal, None], field: str = "amount") -> Decimal:
    """
    Parse a user-entered amount for the command layer.

    Raises:
        LedgerValidationError: If the value is missing or not a finite number
    """
    try:
        return parse_raw_amount(value)
    except ValueError as e:
        raise LedgerValidationError(message=f"{field}: {e}")


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


class LedgerValidator:
    """
    Validates inflow, outflow and overdraft drafts.

    Stage 1: Schema validation (can run without storage)
    Stage 2: Semantic validation (may need storage for the funding check)
    """

    REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
        "inflow": ("source",),
        "outflow": ("seller", "purpose", "category", "inflow_id"),
        "overdraft": ("seller", "purpose"),
    }

    def __init__(
        self,
        store: Optional[LedgerStoreInterface] = None,
        settings: Optional[AppSettings] = None,
    ):
        """
        Initialize validator.

        Args:
            store: Ledger store for the outflow funding check.
                   If None, the check is skipped.
            settings: Thresholds; defaults to the app settings
        """
        self._store = store
        self._settings = settings or get_settings().app

    def _validate_schema(
        self,
        record_type: str,
        draft: RecordDraft,
        require_amount: bool = True,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: required fields and a usable amount.

        With require_amount off, a blank amount keeps the stored one and
        the positivity check is left to the engine.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        for field in self.REQUIRED_FIELDS[record_type]:
            value = getattr(draft, field)
            if value is None or (isinstance(value, str) and _is_blank(value)):
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="missing",
                    message=f"{field.replace('_', ' ').capitalize()} is required",
                    severity="error",
                    suggested_fix=f"Enter the {field.replace('_', ' ')}",
                ))

        if _is_blank(draft.amount):
            if require_amount:
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="missing",
                    message="Amount is required",
                    severity="error",
                    suggested_fix="Enter the amount, e.g. 1,500",
                ))
        else:
            try:
                amount = draft.parsed_amount()
            except ValueError:
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="unparseable",
                    message=f"Amount '{draft.amount}' is not a number",
                    severity="error",
                    suggested_fix="Use digits only, with optional thousands commas",
                ))
            else:
                if amount <= 0 and require_amount:
                    issues.append(ValidationIssue(
                        field="amount",
                        issue_type="non_positive",
                        message="Amount must be greater than zero",
                        severity="error",
                        suggested_fix="Check if the amount was entered correctly",
                    ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        draft: RecordDraft,
        today: dt.date,
    ) -> list[ValidationIssue]:
        """Stage 2: suspicious but allowed values. Only produces warnings."""
        issues = []

        max_future_date = today + dt.timedelta(days=self._settings.future_date_tolerance_days)
        if draft.date and draft.date > max_future_date:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Date ({draft.date}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        if _is_blank(draft.amount):
            return issues

        max_amount = Decimal(str(self._settings.max_reasonable_amount))
        amount = draft.parsed_amount()
        if amount > max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({amount:,}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        return issues

    async def _check_funding(self, draft: OutflowDraft) -> list[ValidationIssue]:
        """
        Check the chosen inflow exists and warn if it can't cover the outflow.

        This requires storage access.
        """
        issues = []

        if self._store is None:
            return issues

        try:
            document = await self._store.get(LedgerCollection.INFLOWS, str(draft.inflow_id))
        except StorageError as e:
            # The engine re-reads the inflow in its transaction anyway
            logger.warning("funding_check_skipped", inflow_id=str(draft.inflow_id), error=str(e))
            return issues

        if document is None:
            issues.append(ValidationIssue(
                field="inflow_id",
                issue_type="not_found",
                message="The selected fund source no longer exists",
                severity="error",
                suggested_fix="Pick another fund source",
            ))
            return issues

        inflow = Inflow.from_document(document)
        amount = draft.parsed_amount()
        if amount > inflow.remaining_balance:
            shortfall = amount - max(inflow.remaining_balance, Decimal("0"))
            issues.append(ValidationIssue(
                field="amount",
                issue_type="underfunded",
                message=(
                    f"{inflow.source} has {inflow.remaining_balance:,} left; "
                    f"an overdraft of {shortfall:,} will be created"
                ),
                severity="warning",
                suggested_fix="Pick a fund source with enough balance to avoid the overdraft",
            ))

        return issues

    def _result(
        self,
        record_type: str,
        issues: list[ValidationIssue],
    ) -> ValidationResult:
        return ValidationResult(
            record_type=record_type,
            is_valid=not any(issue.severity == "error" for issue in issues),
            issues=issues,
            warnings=[issue.message for issue in issues if issue.severity == "warning"],
        )

    def _validate(
        self,
        record_type: str,
        draft: RecordDraft,
        today: Optional[dt.date] = None,
        require_amount: bool = True,
    ) -> tuple[bool, list[ValidationIssue]]:
        schema_valid, issues = self._validate_schema(record_type, draft, require_amount)
        if schema_valid:
            issues.extend(self._validate_semantic(draft, today or dt.date.today()))
        return schema_valid, issues

    def validate_inflow(
        self,
        draft: InflowDraft,
        today: Optional[dt.date] = None,
    ) -> ValidationResult:
        _, issues = self._validate("inflow", draft, today)
        return self._result("inflow", issues)

    async def validate_outflow(
        self,
        draft: OutflowDraft,
        today: Optional[dt.date] = None,
        check_funding: bool = True,
    ) -> ValidationResult:
        """
        Validate an outflow draft.

        Args:
            draft: The form data
            today: Reference date for the future-date check
            check_funding: Whether to look up the fund source (requires storage)
        """
        schema_valid, issues = self._validate("outflow", draft, today)
        if schema_valid and check_funding:
            issues.extend(await self._check_funding(draft))
        return self._result("outflow", issues)

    def validate_overdraft(
        self,
        draft: OverdraftDraft,
        today: Optional[dt.date] = None,
        require_amount: bool = True,
    ) -> ValidationResult:
        """
        Validate an overdraft draft.

        Edits pass require_amount=False: whether the amount may change
        depends on the stored settlement state, which the engine checks.
        """
        _, issues = self._validate("overdraft", draft, today, require_amount)
        return self._result("overdraft", issues)

    @staticmethod
    def raise_for_errors(result: ValidationResult) -> None:
        """
        Raises:
            LedgerValidationError: If the result has any error-level issue
        """
        if result.has_errors:
            raise LedgerValidationError(result)

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show on the entry forms.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed."

        lines = []

        if result.has_errors:
            lines.append("❌ Please fix the following:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        if result.is_valid:
            lines.append("")
            lines.append("The record can still be saved, but please review carefully.")

        return "\n".join(lines)
