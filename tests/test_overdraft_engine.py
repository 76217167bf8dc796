"""Tests for the Overdraft Engine: settlement, deletion refunds and edits."""

import datetime as dt
from decimal import Decimal
from uuid import uuid4

import pytest

from potledger.engine import (
    BalanceEngine,
    InsufficientFundsError,
    LedgerValidationError,
    OverdraftAlreadySettledError,
    OverdraftEngine,
    settlement_payment,
)
from potledger.models.records import LedgerCollection, Outflow
from potledger.services.storage import DuplicateError, NotFoundError
from tests.factories import (
    TODAY,
    make_inflow,
    make_outflow,
    make_overdraft,
    stored_inflow,
    stored_overdraft,
)


@pytest.fixture
def balance_engine(store, ledger_settings) -> BalanceEngine:
    return BalanceEngine(store, ledger_settings)


@pytest.fixture
def engine(store, balance_engine, ledger_settings) -> OverdraftEngine:
    return OverdraftEngine(store, balance_engine, ledger_settings)


class TestSettlementPayment:
    """Tests for the payment amount rule."""

    def test_pays_whole_debt_when_affordable(self):
        assert settlement_payment(Decimal("200"), Decimal("1000")) == Decimal("200")

    def test_pays_what_is_available(self):
        assert settlement_payment(Decimal("500"), Decimal("300")) == Decimal("300")


class TestSettleOverdraft:
    """Tests for paying down overdrafts."""

    @pytest.mark.asyncio
    async def test_partial_settlement(self, store, engine):
        """Debt 500 against balance 300: pay 300, balance 0, debt 200 still open."""
        inflow = make_inflow(amount="1000", remaining="300")
        overdraft = make_overdraft(amount="500")
        store.seed(inflow, overdraft)

        result = await engine.settle_overdraft(overdraft.doc_id, inflow.doc_id, today=TODAY)

        assert result.payment_amount == Decimal("300")
        assert not result.is_full_settlement
        assert (await stored_inflow(store, inflow.id)).remaining_balance == Decimal("0")
        stored = await stored_overdraft(store, overdraft.id)
        assert stored.amount == Decimal("200")
        assert stored.is_settled is False
        assert stored.settled_with_inflow_id is None

    @pytest.mark.asyncio
    async def test_full_settlement(self, store, engine):
        """Debt 200 against balance 1000: pay 200, balance 800, overdraft cleared."""
        inflow = make_inflow(amount="1000")
        overdraft = make_overdraft(amount="200")
        store.seed(inflow, overdraft)

        result = await engine.settle_overdraft(overdraft.doc_id, inflow.doc_id, today=TODAY)

        assert result.payment_amount == Decimal("200")
        assert result.is_full_settlement
        assert (await stored_inflow(store, inflow.id)).remaining_balance == Decimal("800")
        stored = await stored_overdraft(store, overdraft.id)
        assert stored.amount == Decimal("0")
        assert stored.is_settled is True
        assert stored.settled_with_inflow_id == inflow.id

    @pytest.mark.asyncio
    async def test_settlement_records_synthetic_outflow(self, store, engine, ledger_settings):
        inflow = make_inflow(amount="1000")
        overdraft = make_overdraft(amount="200", purpose="Cement", seller="Hardware Ltd")
        store.seed(inflow, overdraft)

        result = await engine.settle_overdraft(
            overdraft.doc_id, inflow.doc_id, today=dt.date(2024, 7, 1)
        )

        stored = Outflow.from_document(
            await store.get(LedgerCollection.OUTFLOWS, result.outflow.doc_id)
        )
        assert stored.amount == Decimal("200")
        assert stored.inflow_id == inflow.id
        assert stored.seller == "Hardware Ltd"
        assert stored.purpose == "Settle: Cement"
        assert stored.category == ledger_settings.settlement_category
        assert stored.expense_name == ledger_settings.settlement_expense_name
        assert stored.date == dt.date(2024, 7, 1)
        assert stored.is_settlement_payment(ledger_settings.settlement_expense_name)

    @pytest.mark.asyncio
    async def test_partial_settlement_purpose(self, store, engine):
        inflow = make_inflow(amount="1000", remaining="100")
        overdraft = make_overdraft(amount="500", purpose="Cement")
        store.seed(inflow, overdraft)

        result = await engine.settle_overdraft(overdraft.doc_id, inflow.doc_id)

        assert result.outflow.purpose == "Partial Settle: Cement"

    @pytest.mark.asyncio
    async def test_settlement_counts_in_recalculation(self, store, engine, balance_engine):
        inflow = make_inflow(amount="1000")
        overdraft = make_overdraft(amount="200")
        store.seed(inflow, overdraft)
        await engine.settle_overdraft(overdraft.doc_id, inflow.doc_id)

        result = await balance_engine.recalculate_balance(inflow.doc_id)

        assert result.new_balance == Decimal("800")
        assert result.drift == Decimal("0")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("balance", ["0", "-50"])
    async def test_empty_inflow_is_rejected(self, store, engine, balance):
        inflow = make_inflow(amount="1000", remaining=balance)
        overdraft = make_overdraft(amount="200")
        store.seed(inflow, overdraft)

        with pytest.raises(InsufficientFundsError):
            await engine.settle_overdraft(overdraft.doc_id, inflow.doc_id)

        assert (await stored_overdraft(store, overdraft.id)).amount == Decimal("200")
        assert await store.list_documents(LedgerCollection.OUTFLOWS) == []

    @pytest.mark.asyncio
    async def test_settled_overdraft_is_rejected(self, store, engine):
        inflow = make_inflow(amount="1000")
        overdraft = make_overdraft(amount="0", is_settled=True, settled_with_inflow_id=inflow.id)
        store.seed(inflow, overdraft)

        with pytest.raises(OverdraftAlreadySettledError):
            await engine.settle_overdraft(overdraft.doc_id, inflow.doc_id)

        assert (await stored_inflow(store, inflow.id)).remaining_balance == Decimal("1000")

    @pytest.mark.asyncio
    async def test_missing_overdraft_writes_nothing(self, store, engine):
        inflow = make_inflow(amount="1000")
        store.seed(inflow)

        with pytest.raises(NotFoundError):
            await engine.settle_overdraft(str(uuid4()), inflow.doc_id)

        assert (await stored_inflow(store, inflow.id)).remaining_balance == Decimal("1000")
        assert await store.list_documents(LedgerCollection.OUTFLOWS) == []

    @pytest.mark.asyncio
    async def test_missing_inflow_writes_nothing(self, store, engine):
        overdraft = make_overdraft(amount="200")
        store.seed(overdraft)

        with pytest.raises(NotFoundError):
            await engine.settle_overdraft(overdraft.doc_id, str(uuid4()))

        assert (await stored_overdraft(store, overdraft.id)).amount == Decimal("200")


class TestDeleteOverdraft:
    """Tests for deleting overdrafts with settlement refunds."""

    @pytest.mark.asyncio
    async def test_deleting_settled_overdraft_refunds_inflow(self, store, engine):
        inflow = make_inflow(amount="1000")
        overdraft = make_overdraft(amount="200")
        store.seed(inflow, overdraft)
        settlement = await engine.settle_overdraft(overdraft.doc_id, inflow.doc_id)

        deletion = await engine.delete_overdraft(overdraft.doc_id)

        assert [o.id for o in deletion.refunded_outflows] == [settlement.outflow.id]
        assert not deletion.refund_missing
        assert (await stored_inflow(store, inflow.id)).remaining_balance == Decimal("1000")
        assert await store.get(LedgerCollection.OVERDRAFTS, overdraft.doc_id) is None
        assert await store.get(LedgerCollection.OUTFLOWS, settlement.outflow.doc_id) is None

    @pytest.mark.asyncio
    async def test_refund_ignores_other_sellers(self, store, engine, ledger_settings):
        inflow = make_inflow(amount="1000")
        overdraft = make_overdraft(amount="200", seller="Hardware Ltd")
        other_payment = make_outflow(
            inflow,
            amount="50",
            seller="Someone Else",
            expense_name=ledger_settings.settlement_expense_name,
        )
        store.seed(inflow, overdraft, other_payment)
        await engine.settle_overdraft(overdraft.doc_id, inflow.doc_id)

        await engine.delete_overdraft(overdraft.doc_id)

        assert await store.get(LedgerCollection.OUTFLOWS, other_payment.doc_id) is not None

    @pytest.mark.asyncio
    async def test_deleting_unsettled_overdraft_touches_no_balance(self, store, engine):
        inflow = make_inflow(amount="1000", remaining="600")
        overdraft = make_overdraft(amount="400")
        store.seed(inflow, overdraft)

        deletion = await engine.delete_overdraft(overdraft.doc_id)

        assert deletion.refunded_outflows == []
        assert not deletion.refund_missing
        assert (await stored_inflow(store, inflow.id)).remaining_balance == Decimal("600")

    @pytest.mark.asyncio
    async def test_missing_settlement_payment_is_flagged(self, store, engine):
        inflow = make_inflow(amount="1000")
        overdraft = make_overdraft(amount="0", is_settled=True, settled_with_inflow_id=inflow.id)
        store.seed(inflow, overdraft)

        deletion = await engine.delete_overdraft(overdraft.doc_id)

        assert deletion.refund_missing
        assert await store.get(LedgerCollection.OVERDRAFTS, overdraft.doc_id) is None

    @pytest.mark.asyncio
    async def test_missing_overdraft_raises(self, engine):
        with pytest.raises(NotFoundError):
            await engine.delete_overdraft(str(uuid4()))


class TestAdHocOverdrafts:
    """Tests for manual creation and edits."""

    @pytest.mark.asyncio
    async def test_create_has_no_balance_side_effects(self, store, engine):
        inflow = make_inflow(amount="1000")
        store.seed(inflow)

        overdraft = await engine.create_ad_hoc_overdraft(make_overdraft(amount="750"))

        assert (await stored_overdraft(store, overdraft.id)).amount == Decimal("750")
        assert (await stored_inflow(store, inflow.id)).remaining_balance == Decimal("1000")

    @pytest.mark.asyncio
    async def test_create_rejects_duplicate_id(self, store, engine):
        overdraft = make_overdraft()
        store.seed(overdraft)

        with pytest.raises(DuplicateError):
            await engine.create_ad_hoc_overdraft(overdraft)

    @pytest.mark.asyncio
    async def test_update_replaces_details(self, store, engine):
        overdraft = make_overdraft(amount="500", purpose="Cement", notes="Call first")
        store.seed(overdraft)

        await engine.update_overdraft(overdraft.doc_id, {"purpose": "Cement and sand"})

        stored = await stored_overdraft(store, overdraft.id)
        assert stored.purpose == "Cement and sand"
        assert stored.notes == "Call first"
        assert stored.amount == Decimal("500")

    @pytest.mark.asyncio
    async def test_update_of_missing_overdraft_raises(self, engine):
        with pytest.raises(NotFoundError):
            await engine.update_overdraft(str(uuid4()), {"purpose": "Anything"})

    @pytest.mark.asyncio
    async def test_update_after_settlement_keeps_it_settled(self, store, engine):
        """An edit prepared before a settlement must not bring the debt back."""
        inflow = make_inflow(amount="1000")
        overdraft = make_overdraft(amount="500")
        store.seed(inflow, overdraft)
        edit = {"amount": Decimal("450"), "purpose": "Cement, corrected"}

        await engine.settle_overdraft(overdraft.doc_id, inflow.doc_id, today=TODAY)
        updated = await engine.update_overdraft(overdraft.doc_id, edit)

        stored = await stored_overdraft(store, overdraft.id)
        assert stored == updated
        assert stored.is_settled is True
        assert stored.amount == Decimal("0")
        assert stored.settled_with_inflow_id == inflow.id
        assert stored.purpose == "Cement, corrected"

    @pytest.mark.asyncio
    async def test_update_ignores_settlement_fields(self, store, engine):
        overdraft = make_overdraft(amount="500")
        store.seed(overdraft)

        await engine.update_overdraft(
            overdraft.doc_id,
            {"is_settled": True, "settled_with_inflow_id": uuid4()},
        )

        stored = await stored_overdraft(store, overdraft.id)
        assert stored.is_settled is False
        assert stored.settled_with_inflow_id is None

    @pytest.mark.asyncio
    async def test_update_rejects_zero_amount_on_open_overdraft(self, store, engine):
        overdraft = make_overdraft(amount="500")
        store.seed(overdraft)

        with pytest.raises(LedgerValidationError):
            await engine.update_overdraft(overdraft.doc_id, {"amount": Decimal("0")})

        assert (await stored_overdraft(store, overdraft.id)).amount == Decimal("500")
