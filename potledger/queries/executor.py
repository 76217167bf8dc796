"""
Ledger Read Models

DESIGN DECISION: Read models are computed from the LedgerCache, which
only ever holds committed state pushed by the store. Nothing here
writes, and nothing here is persisted.

GUARANTEES:
- Only reports what is in the ledger
- Never estimates missing values (runway is None when it can't be computed)
- Money in is positive, money out is negative in the unified ledger
"""

import calendar
import datetime as dt
from decimal import Decimal
from typing import Optional
from uuid import UUID

from potledger.config import LedgerSettings, get_settings
from potledger.models.records import (
    Currency,
    EntryType,
    Inflow,
    Outflow,
    Overdraft,
    PaymentMethod,
)
from potledger.models.views import (
    BankAccount,
    BankTransaction,
    DashboardMetrics,
    DaySummary,
    FlowTrace,
    LedgerEntry,
    MonthlyTrendPoint,
)
from potledger.services.storage.cache import LedgerCache


ZERO = Decimal("0")

DEPOSIT_PRODUCT = "Deposit"
DEFAULT_ACCOUNT_NAME = "Main Account"
DEFAULT_ACCOUNT_NUMBER = "N/A"


class LedgerQueryService:
    """
    Builds the dashboard views from cached ledger records.

    Usage:
        queries = LedgerQueryService(cache)
        metrics = queries.dashboard_metrics()
        rows = queries.unified_ledger(search="cement")
    """

    def __init__(
        self,
        cache: LedgerCache,
        settings: Optional[LedgerSettings] = None,
    ):
        self._cache = cache
        self._settings = settings or get_settings().ledger

    def unified_ledger(
        self,
        search: Optional[str] = None,
        entry_type: Optional[EntryType] = None,
    ) -> list[LedgerEntry]:
        """
        Every inflow, outflow and overdraft as one list, newest first.

        Args:
            search: Case-insensitive text matched against party and label
            entry_type: Only return rows of this type
        """
        entries = [
            LedgerEntry(
                id=inflow.id,
                date=inflow.date,
                entry_type=EntryType.INFLOW,
                label=inflow.product,
                party=inflow.source,
                amount=inflow.amount,
                category="Revenue",
            )
            for inflow in self._cache.inflows
        ]
        entries.extend(
            LedgerEntry(
                id=outflow.id,
                date=outflow.date,
                entry_type=EntryType.OUTFLOW,
                label=outflow.expense_name or outflow.purpose,
                party=outflow.seller,
                amount=-outflow.amount,
                category=outflow.category,
            )
            for outflow in self._cache.outflows
        )
        entries.extend(
            LedgerEntry(
                id=overdraft.id,
                date=overdraft.date,
                entry_type=EntryType.OVERDRAFT,
                label=overdraft.purpose,
                party=overdraft.seller,
                amount=-overdraft.amount,
                category="Settled" if overdraft.is_settled else "Pending",
            )
            for overdraft in self._cache.overdrafts
        )

        if search:
            needle = search.strip().lower()
            entries = [
                entry for entry in entries
                if needle in entry.party.lower() or needle in entry.label.lower()
            ]
        if entry_type is not None:
            entries = [entry for entry in entries if entry.entry_type == entry_type]

        entries.sort(key=lambda entry: entry.date, reverse=True)
        return entries

    def dashboard_metrics(self, today: Optional[dt.date] = None) -> DashboardMetrics:
        """
        Headline numbers and chart series.

        Burn rate is the total spent over the configured window ending today.
        Runway is balance over burn rate, in burn-rate windows.
        """
        today = today or dt.date.today()
        inflows = self._cache.inflows
        outflows = self._cache.outflows

        total_in = sum((inflow.amount for inflow in inflows), ZERO)
        total_out = sum((outflow.amount for outflow in outflows), ZERO)
        current_balance = sum((inflow.remaining_balance for inflow in inflows), ZERO)

        window_start = today - dt.timedelta(days=self._settings.burn_rate_window_days)
        burn_rate = sum(
            (outflow.amount for outflow in outflows if outflow.date >= window_start),
            ZERO,
        )

        runway = None
        if current_balance > 0 and burn_rate > 0:
            runway = (current_balance / burn_rate).quantize(Decimal("0.1"))

        liquidity_ratio = ZERO
        if total_out > 0:
            liquidity_ratio = (total_in / total_out).quantize(Decimal("0.01"))

        income_by_product: dict[str, Decimal] = {}
        for inflow in inflows:
            income_by_product[inflow.product] = (
                income_by_product.get(inflow.product, ZERO) + inflow.amount
            )

        outstanding_debt = sum(
            (overdraft.amount for overdraft in self.active_overdrafts()),
            ZERO,
        )

        return DashboardMetrics(
            total_in=total_in,
            total_out=total_out,
            current_balance=current_balance,
            burn_rate=burn_rate,
            runway=runway,
            liquidity_ratio=liquidity_ratio,
            outstanding_debt=outstanding_debt,
            income_by_product=income_by_product,
            monthly_trend=self.monthly_trend(today.year),
        )

    def monthly_trend(self, year: int) -> list[MonthlyTrendPoint]:
        """Income and expenses for each month of a year, Jan to Dec."""
        points = [
            MonthlyTrendPoint(month=calendar.month_abbr[month])
            for month in range(1, 13)
        ]
        for inflow in self._cache.inflows:
            if inflow.date.year == year:
                points[inflow.date.month - 1].income += inflow.amount
        for outflow in self._cache.outflows:
            if outflow.date.year == year:
                points[outflow.date.month - 1].expenses += outflow.amount
        return points

    def flow_trace(self, inflow_id: UUID) -> Optional[FlowTrace]:
        """An inflow with every outflow it funded. None if the inflow is unknown."""
        inflow = self._cache.get_inflow(str(inflow_id))
        if inflow is None:
            return None
        outflows = [
            outflow for outflow in self._cache.outflows
            if outflow.inflow_id == inflow.id
        ]
        return FlowTrace(inflow=inflow, outflows=outflows)

    def inflows(self) -> list[Inflow]:
        """Every inflow, newest first."""
        return self._cache.inflows

    def outflows(self) -> list[Outflow]:
        """Every outflow, newest first."""
        return self._cache.outflows

    def settled_overdrafts(self) -> list[Overdraft]:
        return [overdraft for overdraft in self._cache.overdrafts if overdraft.is_settled]

    def active_overdrafts(self) -> list[Overdraft]:
        """Overdrafts with debt left to pay."""
        return [
            overdraft for overdraft in self._cache.overdrafts
            if not overdraft.is_settled and overdraft.amount > 0
        ]

    def fundable_inflows(self) -> list[Inflow]:
        """Inflows with spare balance, for paying an overdraft."""
        return [
            inflow for inflow in self._cache.inflows
            if inflow.remaining_balance > 0
        ]

    # =========================================================================
    # BANK ACCOUNTS
    # =========================================================================

    @staticmethod
    def is_bank_inflow(inflow: Inflow) -> bool:
        """Deposits and bank transfers land in a bank account."""
        return inflow.product == DEPOSIT_PRODUCT or inflow.payment_method == PaymentMethod.BANK

    def _account_key(self, inflow: Inflow) -> tuple[str, str, Currency]:
        return (
            inflow.bank_account_name or DEFAULT_ACCOUNT_NAME,
            inflow.account_number or DEFAULT_ACCOUNT_NUMBER,
            inflow.currency or Currency(self._settings.default_currency),
        )

    def bank_accounts(self) -> list[BankAccount]:
        """
        Bank accounts with their balances, in order of first deposit seen.

        An outflow is a payment from the account its fund source was
        deposited into. Outflows funded by cash or momo inflows are left out.
        """
        accounts: dict[tuple[str, str, Currency], BankAccount] = {}
        bank_inflows: dict[UUID, Inflow] = {}

        for inflow in self._cache.inflows:
            if not self.is_bank_inflow(inflow):
                continue
            key = self._account_key(inflow)
            if key not in accounts:
                name, number, currency = key
                accounts[key] = BankAccount(name=name, number=number, currency=currency)
            account = accounts[key]
            account.total_in += inflow.amount
            account.transactions.append(BankTransaction(
                id=inflow.id,
                date=inflow.date,
                description=f"Deposit from {inflow.source}",
                amount=inflow.amount,
                is_deposit=True,
            ))
            bank_inflows[inflow.id] = inflow

        for outflow in self._cache.outflows:
            source = bank_inflows.get(outflow.inflow_id)
            if source is None:
                continue
            account = accounts[self._account_key(source)]
            account.total_out += outflow.amount
            account.transactions.append(BankTransaction(
                id=outflow.id,
                date=outflow.date,
                description=f"Payment to {outflow.seller} ({outflow.purpose})",
                amount=outflow.amount,
                is_deposit=False,
            ))

        for account in accounts.values():
            account.transactions.sort(key=lambda txn: txn.date, reverse=True)
        return list(accounts.values())

    # =========================================================================
    # CALENDAR
    # =========================================================================

    def day_summary(self, day: dt.date) -> DaySummary:
        """Inflows and outflows dated on one day."""
        return DaySummary(
            date=day,
            inflows=[inflow for inflow in self._cache.inflows if inflow.date == day],
            outflows=[outflow for outflow in self._cache.outflows if outflow.date == day],
        )

    def month_calendar(self, year: int, month: int) -> list[DaySummary]:
        """One summary per day of the month, empty days included."""
        days = {
            day: DaySummary(date=dt.date(year, month, day))
            for day in range(1, calendar.monthrange(year, month)[1] + 1)
        }
        for inflow in self._cache.inflows:
            if inflow.date.year == year and inflow.date.month == month:
                days[inflow.date.day].inflows.append(inflow)
        for outflow in self._cache.outflows:
            if outflow.date.year == year and outflow.date.month == month:
                days[outflow.date.day].outflows.append(outflow)
        return list(days.values())
