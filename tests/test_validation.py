"""Tests for the two-stage draft validator."""

import datetime as dt
from decimal import Decimal
from uuid import uuid4

import pytest

from potledger.engine import LedgerValidationError
from potledger.models.records import InflowDraft, OutflowDraft, OverdraftDraft
from potledger.validation import LedgerValidator, parse_amount
from tests.factories import TODAY, make_inflow


@pytest.fixture
def validator(store, app_settings) -> LedgerValidator:
    return LedgerValidator(store, app_settings)


def outflow_draft(inflow_id=None, amount="100", **fields) -> OutflowDraft:
    return OutflowDraft(
        purpose=fields.pop("purpose", "Operational"),
        category=fields.pop("category", "Transport"),
        seller=fields.pop("seller", "Fuel Station"),
        inflow_id=inflow_id or uuid4(),
        amount=amount,
        **fields,
    )


def issue_types(result) -> set[str]:
    return {issue.issue_type for issue in result.issues}


class TestParseAmount:
    """Tests for the command-layer amount parser."""

    def test_parses_separators(self):
        assert parse_amount("1,500") == Decimal("1500")

    def test_raises_validation_error(self):
        with pytest.raises(LedgerValidationError, match="remaining_balance"):
            parse_amount("abc", field="remaining_balance")


class TestSchemaValidation:
    """Stage 1: required fields and amounts."""

    def test_valid_inflow(self, validator):
        result = validator.validate_inflow(
            InflowDraft(source="Client A", amount="1,500", date=TODAY), today=TODAY
        )
        assert result.is_valid
        assert result.issues == []

    def test_missing_fields_are_listed(self, validator):
        result = validator.validate_inflow(InflowDraft(source="  "))

        assert not result.is_valid
        assert {issue.field for issue in result.issues} == {"source", "amount"}
        assert issue_types(result) == {"missing"}

    def test_overdraft_requires_seller_and_purpose(self, validator):
        result = validator.validate_overdraft(OverdraftDraft(amount="10"))
        assert {issue.field for issue in result.issues} == {"seller", "purpose"}

    @pytest.mark.asyncio
    async def test_outflow_missing_source_is_an_error(self, validator):
        draft = OutflowDraft(purpose="Operational", category="Transport", seller="X", amount="10")

        result = await validator.validate_outflow(draft)

        assert not result.is_valid
        assert [issue.field for issue in result.issues] == ["inflow_id"]

    def test_unparseable_amount(self, validator):
        result = validator.validate_inflow(InflowDraft(source="Client A", amount="abc"))

        assert not result.is_valid
        assert issue_types(result) == {"unparseable"}

    @pytest.mark.parametrize("amount", ["0", "-5", "-1,000"])
    def test_non_positive_amount(self, validator, amount):
        result = validator.validate_overdraft(
            OverdraftDraft(seller="Hardware Ltd", purpose="Cement", amount=amount)
        )

        assert not result.is_valid
        assert issue_types(result) == {"non_positive"}

    @pytest.mark.parametrize("amount", [None, "0"])
    def test_overdraft_edit_leaves_amount_to_the_engine(self, validator, amount):
        result = validator.validate_overdraft(
            OverdraftDraft(seller="Hardware Ltd", purpose="Renamed", amount=amount),
            require_amount=False,
        )

        assert result.is_valid
        assert result.issues == []

    def test_overdraft_edit_still_rejects_text_amount(self, validator):
        result = validator.validate_overdraft(
            OverdraftDraft(seller="Hardware Ltd", purpose="Renamed", amount="abc"),
            require_amount=False,
        )

        assert issue_types(result) == {"unparseable"}

    def test_semantic_checks_skipped_on_schema_errors(self, validator):
        far_future = TODAY + dt.timedelta(days=365)
        result = validator.validate_inflow(
            InflowDraft(amount="1000", date=far_future), today=TODAY
        )
        assert issue_types(result) == {"missing"}


class TestSemanticValidation:
    """Stage 2: warnings that don't block saving."""

    def test_future_date_warns(self, validator):
        result = validator.validate_inflow(
            InflowDraft(source="Client A", amount="100", date=TODAY + dt.timedelta(days=30)),
            today=TODAY,
        )

        assert result.is_valid
        assert issue_types(result) == {"future_date"}
        assert len(result.warnings) == 1

    def test_date_within_tolerance_passes(self, validator):
        result = validator.validate_inflow(
            InflowDraft(source="Client A", amount="100", date=TODAY + dt.timedelta(days=7)),
            today=TODAY,
        )
        assert result.warnings == []

    def test_huge_amount_warns(self, validator):
        result = validator.validate_inflow(
            InflowDraft(source="Client A", amount="500,000,000", date=TODAY), today=TODAY
        )

        assert result.is_valid
        assert issue_types(result) == {"suspicious_value"}


class TestFundingCheck:
    """Tests for the outflow fund-source lookup."""

    @pytest.mark.asyncio
    async def test_funded_outflow_passes(self, store, validator):
        inflow = make_inflow(amount="1000")
        store.seed(inflow)

        result = await validator.validate_outflow(
            outflow_draft(inflow.id, "800", date=TODAY), today=TODAY
        )

        assert result.is_valid
        assert result.issues == []

    @pytest.mark.asyncio
    async def test_underfunded_outflow_warns(self, store, validator):
        inflow = make_inflow(amount="1000", remaining="300", source="Client A")
        store.seed(inflow)

        result = await validator.validate_outflow(
            outflow_draft(inflow.id, "500", date=TODAY), today=TODAY
        )

        assert result.is_valid
        assert issue_types(result) == {"underfunded"}
        assert "200" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_unknown_source_is_an_error(self, validator):
        result = await validator.validate_outflow(outflow_draft(), today=TODAY)

        assert not result.is_valid
        assert issue_types(result) == {"not_found"}

    @pytest.mark.asyncio
    async def test_check_can_be_skipped(self, validator):
        result = await validator.validate_outflow(
            outflow_draft(date=TODAY), today=TODAY, check_funding=False
        )
        assert result.is_valid

    @pytest.mark.asyncio
    async def test_no_store_skips_check(self, app_settings):
        validator = LedgerValidator(settings=app_settings)

        result = await validator.validate_outflow(outflow_draft(date=TODAY), today=TODAY)

        assert result.is_valid


class TestReporting:
    """Tests for raising and summarizing results."""

    def test_raise_for_errors(self, validator):
        result = validator.validate_inflow(InflowDraft(source="Client A"))

        with pytest.raises(LedgerValidationError) as exc_info:
            LedgerValidator.raise_for_errors(result)

        assert exc_info.value.result is result
        assert "Amount is required" in str(exc_info.value)

    def test_raise_for_errors_ignores_warnings(self, validator):
        result = validator.validate_inflow(
            InflowDraft(source="Client A", amount="100", date=TODAY + dt.timedelta(days=30)),
            today=TODAY,
        )
        LedgerValidator.raise_for_errors(result)

    def test_summary_all_clear(self, validator):
        result = validator.validate_inflow(
            InflowDraft(source="Client A", amount="100", date=TODAY), today=TODAY
        )
        assert validator.get_user_friendly_summary(result) == "✅ All checks passed."

    def test_summary_lists_errors_and_fixes(self, validator):
        result = validator.validate_inflow(InflowDraft(source="Client A", amount="abc"))

        summary = validator.get_user_friendly_summary(result)

        assert "Please fix the following" in summary
        assert "Amount 'abc' is not a number" in summary
        assert "Use digits only" in summary

    def test_summary_for_warnings_only(self, validator):
        result = validator.validate_inflow(
            InflowDraft(source="Client A", amount="100", date=TODAY + dt.timedelta(days=30)),
            today=TODAY,
        )

        summary = validator.get_user_friendly_summary(result)

        assert "Please verify the following" in summary
        assert "can still be saved" in summary
