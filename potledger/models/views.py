"""
Read Models for the Dashboard

These are computed from the cached ledger, never stored.
"""

import datetime as dt
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from potledger.models.records import Currency, EntryType, Inflow, Outflow


class LedgerEntry(BaseModel):
    """
    One row of the unified ledger.

    Money in is positive, money out and outstanding debt are negative.
    """

    id: UUID
    date: dt.date
    entry_type: EntryType
    label: str
    party: str
    amount: Decimal
    category: str


class MonthlyTrendPoint(BaseModel):
    """Income and expenses for one calendar month."""

    month: str = Field(
        ...,
        description="Short month name (Jan, Feb, ...)"
    )
    income: Decimal = Decimal("0")
    expenses: Decimal = Decimal("0")

    @property
    def profit(self) -> Decimal:
        return self.income - self.expenses


class DashboardMetrics(BaseModel):
    """Headline numbers for the dashboard."""

    total_in: Decimal
    total_out: Decimal
    current_balance: Decimal = Field(
        ...,
        description="Sum of remaining balances across all inflows"
    )
    burn_rate: Decimal = Field(
        ...,
        description="Outflows over the burn-rate window"
    )
    runway: Optional[Decimal] = Field(
        default=None,
        description="Balance divided by burn rate; None when either is not positive"
    )
    liquidity_ratio: Decimal = Field(
        ...,
        description="Total in over total out; 0 when nothing went out"
    )
    outstanding_debt: Decimal = Field(
        ...,
        description="Sum of unsettled overdraft amounts"
    )
    income_by_product: dict[str, Decimal] = Field(default_factory=dict)
    monthly_trend: list[MonthlyTrendPoint] = Field(default_factory=list)

    @property
    def net_profit(self) -> Decimal:
        return self.total_in - self.total_out


class FlowTrace(BaseModel):
    """Where the money from one inflow went."""

    inflow: Inflow
    outflows: list[Outflow] = Field(default_factory=list)

    @property
    def total_spent(self) -> Decimal:
        return self.inflow.spent

    @property
    def utilization(self) -> Decimal:
        return self.inflow.utilization


class BankTransaction(BaseModel):
    """A deposit into or a payment out of a bank account."""

    id: UUID
    date: dt.date
    description: str
    amount: Decimal = Field(
        ...,
        description="Always positive; direction is in is_deposit"
    )
    is_deposit: bool


class BankAccount(BaseModel):
    """
    A bank account derived from the inflows deposited into it.

    Accounts are keyed by name, number and currency. Payments count
    against the account of the inflow that funded them.
    """

    name: str
    number: str
    currency: Currency
    total_in: Decimal = Decimal("0")
    total_out: Decimal = Decimal("0")
    transactions: list[BankTransaction] = Field(default_factory=list)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.name, self.number, self.currency.value)

    @property
    def balance(self) -> Decimal:
        return self.total_in - self.total_out


class DaySummary(BaseModel):
    """Everything that came in and went out on one day."""

    date: dt.date
    inflows: list[Inflow] = Field(default_factory=list)
    outflows: list[Outflow] = Field(default_factory=list)

    @property
    def total_in(self) -> Decimal:
        return sum((inflow.amount for inflow in self.inflows), Decimal("0"))

    @property
    def total_out(self) -> Decimal:
        return sum((outflow.amount for outflow in self.outflows), Decimal("0"))

    @property
    def is_empty(self) -> bool:
        return not self.inflows and not self.outflows
