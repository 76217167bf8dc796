"""Tests for the dashboard read models."""

import datetime as dt
from decimal import Decimal
from uuid import uuid4

import pytest

from potledger.models.records import Currency, EntryType, PaymentMethod
from potledger.queries import LedgerQueryService
from potledger.services.storage import LedgerCache
from tests.factories import TODAY, make_inflow, make_outflow, make_overdraft


@pytest.fixture
def cache(store) -> LedgerCache:
    cache = LedgerCache(store)
    cache.start()
    yield cache
    cache.stop()


@pytest.fixture
def queries(cache, ledger_settings) -> LedgerQueryService:
    return LedgerQueryService(cache, ledger_settings)


def restart(cache: LedgerCache) -> None:
    """Reload the cache after seeding, which bypasses notifications."""
    cache.stop()
    cache.start()


class TestUnifiedLedger:
    """Tests for the merged inflow/outflow/overdraft list."""

    def test_signs_and_categories(self, store, cache, queries):
        inflow = make_inflow(amount="1000", remaining="700", product="Rocks")
        outflow = make_outflow(inflow, amount="300", category="Transport", expense_name="Diesel")
        pending = make_overdraft(amount="200")
        settled = make_overdraft(amount="0", is_settled=True)
        store.seed(inflow, outflow, pending, settled)
        restart(cache)

        rows = {row.id: row for row in queries.unified_ledger()}

        assert rows[inflow.id].amount == Decimal("1000")
        assert rows[inflow.id].category == "Revenue"
        assert rows[inflow.id].label == "Rocks"
        assert rows[outflow.id].amount == Decimal("-300")
        assert rows[outflow.id].label == "Diesel"
        assert rows[outflow.id].category == "Transport"
        assert rows[pending.id].amount == Decimal("-200")
        assert rows[pending.id].category == "Pending"
        assert rows[settled.id].category == "Settled"

    def test_outflow_label_falls_back_to_purpose(self, store, cache, queries):
        inflow = make_inflow()
        store.seed(inflow, make_outflow(inflow, purpose="Operational"))
        restart(cache)

        outflow_row = queries.unified_ledger(entry_type=EntryType.OUTFLOW)[0]

        assert outflow_row.label == "Operational"

    def test_newest_first(self, store, cache, queries):
        old = make_inflow(date=dt.date(2024, 1, 5))
        new = make_inflow(date=dt.date(2024, 5, 5))
        store.seed(old, new, make_outflow(old, date=dt.date(2024, 3, 1)))
        restart(cache)

        dates = [row.date for row in queries.unified_ledger()]

        assert dates == sorted(dates, reverse=True)

    def test_search_matches_party_and_label(self, store, cache, queries):
        inflow = make_inflow(source="Client A")
        store.seed(
            inflow,
            make_outflow(inflow, seller="Cement Depot"),
            make_overdraft(purpose="Cement delivery", seller="Hardware Ltd"),
            make_outflow(inflow, seller="Fuel Station"),
        )
        restart(cache)

        rows = queries.unified_ledger(search="  CEMENT ")

        assert len(rows) == 2
        assert {row.entry_type for row in rows} == {EntryType.OUTFLOW, EntryType.OVERDRAFT}

    def test_type_filter(self, store, cache, queries):
        inflow = make_inflow()
        store.seed(inflow, make_outflow(inflow), make_overdraft())
        restart(cache)

        rows = queries.unified_ledger(entry_type=EntryType.INFLOW)

        assert [row.id for row in rows] == [inflow.id]


class TestDashboardMetrics:
    """Tests for the headline numbers."""

    def test_totals_and_ratios(self, store, cache, queries):
        a = make_inflow(amount="1000", remaining="700", product="Rocks")
        b = make_inflow(amount="500", remaining="500", product="Trimming")
        store.seed(
            a,
            b,
            make_outflow(a, amount="200", date=TODAY - dt.timedelta(days=3)),
            make_outflow(a, amount="100", date=TODAY - dt.timedelta(days=90)),
            make_overdraft(amount="250"),
            make_overdraft(amount="0", is_settled=True),
        )
        restart(cache)

        metrics = queries.dashboard_metrics(today=TODAY)

        assert metrics.total_in == Decimal("1500")
        assert metrics.total_out == Decimal("300")
        assert metrics.net_profit == Decimal("1200")
        assert metrics.current_balance == Decimal("1200")
        assert metrics.burn_rate == Decimal("200")
        assert metrics.runway == Decimal("6.0")
        assert metrics.liquidity_ratio == Decimal("5.00")
        assert metrics.outstanding_debt == Decimal("250")
        assert metrics.income_by_product == {
            "Rocks": Decimal("1000"),
            "Trimming": Decimal("500"),
        }

    def test_empty_ledger(self, queries):
        metrics = queries.dashboard_metrics(today=TODAY)

        assert metrics.total_in == Decimal("0")
        assert metrics.runway is None
        assert metrics.liquidity_ratio == Decimal("0")
        assert len(metrics.monthly_trend) == 12

    def test_no_runway_when_overdrawn(self, store, cache, queries):
        inflow = make_inflow(amount="100", remaining="-50")
        store.seed(inflow, make_outflow(inflow, amount="150"))
        restart(cache)

        assert queries.dashboard_metrics(today=TODAY).runway is None

    def test_monthly_trend(self, store, cache, queries):
        inflow = make_inflow(amount="1000", date=dt.date(2024, 2, 10))
        store.seed(
            inflow,
            make_inflow(amount="999", date=dt.date(2023, 2, 10)),
            make_outflow(inflow, amount="300", date=dt.date(2024, 2, 20)),
            make_outflow(inflow, amount="50", date=dt.date(2024, 11, 1)),
        )
        restart(cache)

        trend = queries.monthly_trend(2024)

        assert [point.month for point in trend][:3] == ["Jan", "Feb", "Mar"]
        assert trend[1].income == Decimal("1000")
        assert trend[1].expenses == Decimal("300")
        assert trend[1].profit == Decimal("700")
        assert trend[10].expenses == Decimal("50")
        assert trend[0].income == Decimal("0")


class TestFlowTrace:
    """Tests for where an inflow's money went."""

    def test_trace_lists_funded_outflows(self, store, cache, queries):
        inflow = make_inflow(amount="1000", remaining="600")
        other = make_inflow()
        funded = [make_outflow(inflow, amount="150"), make_outflow(inflow, amount="250")]
        store.seed(inflow, other, *funded, make_outflow(other))
        restart(cache)

        trace = queries.flow_trace(inflow.id)

        assert {outflow.id for outflow in trace.outflows} == {o.id for o in funded}
        assert trace.total_spent == Decimal("400")
        assert trace.utilization == Decimal("40")

    def test_unknown_inflow(self, queries):
        assert queries.flow_trace(uuid4()) is None


class TestPickers:
    """Tests for the settlement pickers."""

    def test_active_overdrafts(self, store, cache, queries):
        open_debt = make_overdraft(amount="300")
        store.seed(open_debt, make_overdraft(amount="0", is_settled=True), make_overdraft(amount="0"))
        restart(cache)

        assert [o.id for o in queries.active_overdrafts()] == [open_debt.id]

    def test_fundable_inflows(self, store, cache, queries):
        spare = make_inflow(amount="1000", remaining="10")
        store.seed(
            spare,
            make_inflow(amount="1000", remaining="0"),
            make_inflow(amount="1000", remaining="-5"),
        )
        restart(cache)

        assert [i.id for i in queries.fundable_inflows()] == [spare.id]


class TestBankAccounts:
    """Tests for the per-account view of bank deposits."""

    def test_groups_deposits_and_attributes_payments(self, store, cache, queries):
        main = make_inflow(
            amount="1000",
            payment_method=PaymentMethod.BANK,
            bank_account_name="BK Main",
            account_number="0001",
            currency=Currency.RWF,
        )
        topup = make_inflow(
            amount="500",
            product="Deposit",
            bank_account_name="BK Main",
            account_number="0001",
            currency=Currency.RWF,
        )
        dollars = make_inflow(
            amount="200",
            payment_method=PaymentMethod.BANK,
            bank_account_name="BK Main",
            account_number="0001",
            currency=Currency.USD,
        )
        cash = make_inflow(amount="300", payment_method=PaymentMethod.HAND_IN_HAND)
        store.seed(
            main,
            topup,
            dollars,
            cash,
            make_outflow(main, amount="150", seller="Cement Depot", purpose="Materials"),
            make_outflow(cash, amount="100"),
        )
        restart(cache)

        accounts = {account.key: account for account in queries.bank_accounts()}

        assert set(accounts) == {
            ("BK Main", "0001", "RWF"),
            ("BK Main", "0001", "USD"),
        }
        rwf = accounts[("BK Main", "0001", "RWF")]
        assert rwf.total_in == Decimal("1500")
        assert rwf.total_out == Decimal("150")
        assert rwf.balance == Decimal("1350")
        assert len(rwf.transactions) == 3
        payment = next(txn for txn in rwf.transactions if not txn.is_deposit)
        assert payment.description == "Payment to Cement Depot (Materials)"
        assert accounts[("BK Main", "0001", "USD")].balance == Decimal("200")

    def test_missing_details_use_defaults(self, store, cache, queries):
        store.seed(make_inflow(amount="400", source="Client B", product="Deposit"))
        restart(cache)

        [account] = queries.bank_accounts()

        assert account.name == "Main Account"
        assert account.number == "N/A"
        assert account.currency == Currency.RWF
        assert account.transactions[0].description == "Deposit from Client B"

    def test_no_bank_inflows(self, store, cache, queries):
        store.seed(make_inflow(payment_method=PaymentMethod.MOMO))
        restart(cache)

        assert queries.bank_accounts() == []


class TestCalendar:
    """Tests for the daily summaries."""

    def test_day_summary_totals(self, store, cache, queries):
        day = dt.date(2024, 3, 4)
        inflow = make_inflow(amount="1000", date=day)
        store.seed(
            inflow,
            make_inflow(amount="50", date=day),
            make_outflow(inflow, amount="200", date=day),
            make_outflow(inflow, amount="999", date=dt.date(2024, 3, 5)),
        )
        restart(cache)

        summary = queries.day_summary(day)

        assert summary.total_in == Decimal("1050")
        assert summary.total_out == Decimal("200")
        assert len(summary.outflows) == 1

    def test_empty_day(self, queries):
        summary = queries.day_summary(TODAY)

        assert summary.is_empty
        assert summary.total_in == Decimal("0")

    def test_month_calendar_has_every_day(self, store, cache, queries):
        inflow = make_inflow(amount="1000", date=dt.date(2024, 2, 29))
        store.seed(
            inflow,
            make_outflow(inflow, amount="100", date=dt.date(2024, 2, 1)),
            make_outflow(inflow, amount="100", date=dt.date(2024, 3, 1)),
        )
        restart(cache)

        days = queries.month_calendar(2024, 2)

        assert len(days) == 29
        assert days[0].date == dt.date(2024, 2, 1)
        assert days[0].total_out == Decimal("100")
        assert days[28].total_in == Decimal("1000")
        assert sum(1 for day in days if not day.is_empty) == 2
