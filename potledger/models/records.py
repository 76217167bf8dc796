"""
Core Data Models for Pot Ledger

These models define the strict schemas for the three ledger collections:
1. Inflow - a receipt of funds, a "pot" with a shrinking balance
2. Outflow - an expenditure debited from exactly one inflow
3. Overdraft - an externally tracked liability

DESIGN DECISION: Records reference each other by id only. An outflow
knows its inflow_id; an inflow has no list of its outflows. Lookups by
foreign key go through the store.

Drafts are the lenient, user-entered form of a record. They are checked
by the validator before being turned into strict records with to_record().
"""

import datetime as dt
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, ClassVar, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class LedgerCollection(str, Enum):
    """Collections held by the ledger store."""
    INFLOWS = "inflows"
    OUTFLOWS = "outflows"
    OVERDRAFTS = "overdrafts"


class EntryType(str, Enum):
    """Row type in the unified ledger."""
    INFLOW = "INFLOW"
    OUTFLOW = "OUTFLOW"
    OVERDRAFT = "OVERDRAFT"


class PaymentMethod(str, Enum):
    """Channel the money moved through."""
    BANK = "bank"
    MOMO = "momo"
    HAND_IN_HAND = "hand_in_hand"


class Currency(str, Enum):
    """
    Currencies an inflow can be recorded in.

    Only a flat exchange rate is stored; no conversion happens.
    """
    RWF = "RWF"
    USD = "USD"


def parse_amount(value: Union[str, int, float, Decimal, None]) -> Decimal:
    """
    Parse a user-entered amount.

    Accepts thousands separators ("1,500") the way the entry forms
    display them. Raises ValueError for anything that isn't a finite number.
    """
    if value is None:
        raise ValueError("Amount is required")
    if isinstance(value, bool):
        raise ValueError(f"Amount is not a number: {value!r}")
    if isinstance(value, Decimal):
        amount = value
    else:
        raw = str(value).replace(",", "").strip()
        if not raw:
            raise ValueError("Amount is required")
        try:
            amount = Decimal(raw)
        except InvalidOperation:
            raise ValueError(f"Amount is not a number: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Amount is not a number: {value!r}")
    return amount


# =============================================================================
# LEDGER RECORDS
# =============================================================================

class LedgerRecord(BaseModel):
    """
    Base for records stored in a ledger collection.

    Documents are the JSON-safe dicts the store persists. Optional fields
    that are None are left out of the document rather than written as null.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    collection: ClassVar[LedgerCollection]

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique record ID"
    )

    def to_document(self) -> dict[str, Any]:
        """Serialize to a store document."""
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_document(cls, document: dict[str, Any]):
        """Build a record from a store document."""
        return cls.model_validate(document)

    def merged(self, changes: dict[str, Any]):
        """
        A validated copy with the given fields replaced.

        Raises ValueError if the result breaks a field constraint.
        """
        return type(self).model_validate({**self.model_dump(), **changes})

    @property
    def doc_id(self) -> str:
        return str(self.id)


class Inflow(LedgerRecord):
    """
    A receipt of funds.

    remaining_balance is a derived value: amount minus every outflow that
    references this inflow. It is maintained incrementally by the balance
    engine and can be rebuilt with a recalculation. It may go negative,
    which means the pot is overdrawn.
    """
    collection: ClassVar[LedgerCollection] = LedgerCollection.INFLOWS

    date: dt.date
    source: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Who the money came from"
    )
    product: str = Field(
        default="General",
        max_length=100,
        description="Classification of the receipt (e.g., Rocks, Trimming)"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Original principal"
    )
    remaining_balance: Decimal = Field(
        ...,
        description="Unspent part of the principal"
    )
    description: str = Field(
        default="",
        max_length=1000,
    )

    # Payment channel metadata
    payment_method: Optional[PaymentMethod] = None
    account_number: Optional[str] = Field(default=None, max_length=50)
    bank_account_name: Optional[str] = Field(default=None, max_length=200)
    currency: Optional[Currency] = None
    exchange_rate: Optional[Decimal] = Field(
        default=None,
        gt=0,
        description="Stored rate to the default currency (not applied anywhere)"
    )
    notes: Optional[str] = Field(default=None, max_length=1000)

    @property
    def spent(self) -> Decimal:
        """How much of the principal has gone out."""
        return self.amount - self.remaining_balance

    @property
    def utilization(self) -> Decimal:
        """Percent of the principal spent, capped at 100."""
        return min(Decimal("100"), self.spent / self.amount * 100)

    @property
    def is_overdrawn(self) -> bool:
        return self.remaining_balance < 0


class Outflow(LedgerRecord):
    """
    A recorded expenditure.

    inflow_id is the exclusive funding source. At creation the full amount
    is debited from that inflow's remaining balance.
    """
    collection: ClassVar[LedgerCollection] = LedgerCollection.OUTFLOWS

    date: dt.date
    purpose: str = Field(
        ...,
        min_length=1,
        max_length=300,
        description="The general use (e.g., Operational)"
    )
    category: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Expense category"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
    )
    seller: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Vendor paid"
    )
    inflow_id: UUID = Field(
        ...,
        description="Inflow this money came from"
    )
    expense_name: Optional[str] = Field(
        default=None,
        max_length=200,
        description="Specific name of the expense"
    )
    notes: Optional[str] = Field(default=None, max_length=1000)
    payment_method: Optional[PaymentMethod] = None
    account_number: Optional[str] = Field(default=None, max_length=50)

    def is_settlement_payment(self, settlement_expense_name: str) -> bool:
        """Was this outflow produced by settling an overdraft?"""
        return self.expense_name == settlement_expense_name


class Overdraft(LedgerRecord):
    """
    An externally tracked liability.

    amount is the outstanding debt and shrinks with each settlement.
    A fully settled overdraft keeps amount = 0 instead of being deleted.
    """
    collection: ClassVar[LedgerCollection] = LedgerCollection.OVERDRAFTS

    date: dt.date
    purpose: str = Field(
        ...,
        min_length=1,
        max_length=300,
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Outstanding debt"
    )
    seller: str = Field(
        ...,
        min_length=1,
        max_length=200,
    )
    is_settled: bool = False
    settled_with_inflow_id: Optional[UUID] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    created_at: Optional[dt.datetime] = Field(
        default_factory=dt.datetime.utcnow,
        description="Creation timestamp, used for ordering"
    )

    @model_validator(mode='after')
    def validate_settlement(self) -> 'Overdraft':
        """A settled overdraft has nothing left to pay."""
        if self.is_settled and self.amount != 0:
            raise ValueError("A settled overdraft must have amount 0")
        return self


# =============================================================================
# DRAFTS - user-entered, checked by the validator before becoming records
# =============================================================================

class RecordDraft(BaseModel):
    """
    Lenient input form shared by all drafts.

    Every field is optional so that a half-filled form can be validated
    and reported on, instead of failing at construction.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    date: Optional[dt.date] = None
    amount: Optional[str] = Field(
        default=None,
        description="Amount as entered, thousands separators allowed"
    )
    notes: Optional[str] = None

    @field_validator('amount', mode='before')
    @classmethod
    def amount_as_text(cls, v: Any) -> Optional[str]:
        """Keep the raw amount as text; parsing happens in validation."""
        if v is None:
            return None
        return str(v)

    def parsed_amount(self) -> Decimal:
        return parse_amount(self.amount)

    def changes(self) -> dict[str, Any]:
        """
        Only the fields this draft sets, for editing a stored record.

        Fields left as None keep their stored value, so an edit form that
        leaves out the date or the notes doesn't wipe them.
        """
        fields = self.model_dump(exclude_none=True, exclude={"amount"})
        if self.amount is not None and self.amount.strip():
            fields["amount"] = self.parsed_amount()
        return fields


class InflowDraft(RecordDraft):
    """Form data for a funds-received action."""

    source: Optional[str] = None
    product: Optional[str] = None
    description: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    account_number: Optional[str] = None
    bank_account_name: Optional[str] = None
    currency: Optional[Currency] = None
    exchange_rate: Optional[Decimal] = None

    def to_record(
        self,
        today: Optional[dt.date] = None,
        default_currency: Optional[Currency] = None,
    ) -> Inflow:
        """A fresh inflow has its whole principal available."""
        amount = self.parsed_amount()
        return Inflow(
            date=self.date or today or dt.date.today(),
            source=self.source,
            product=self.product or "General",
            amount=amount,
            remaining_balance=amount,
            description=self.description or "",
            payment_method=self.payment_method,
            account_number=self.account_number,
            bank_account_name=self.bank_account_name,
            currency=self.currency or default_currency,
            exchange_rate=self.exchange_rate,
            notes=self.notes,
        )


class OutflowDraft(RecordDraft):
    """Form data for money spent."""

    purpose: Optional[str] = None
    category: Optional[str] = None
    seller: Optional[str] = None
    inflow_id: Optional[UUID] = None
    expense_name: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    account_number: Optional[str] = None

    def to_record(self, today: Optional[dt.date] = None) -> Outflow:
        return Outflow(
            date=self.date or today or dt.date.today(),
            purpose=self.purpose,
            category=self.category,
            amount=self.parsed_amount(),
            seller=self.seller,
            inflow_id=self.inflow_id,
            expense_name=self.expense_name or None,
            notes=self.notes,
            payment_method=self.payment_method,
            account_number=self.account_number,
        )


class OverdraftDraft(RecordDraft):
    """Form data for an ad-hoc liability."""

    purpose: Optional[str] = None
    seller: Optional[str] = None

    def to_record(self, today: Optional[dt.date] = None) -> Overdraft:
        return Overdraft(
            date=self.date or today or dt.date.today(),
            purpose=self.purpose,
            amount=self.parsed_amount(),
            seller=self.seller,
            notes=self.notes,
        )


# =============================================================================
# ENGINE RESULTS
# =============================================================================

class RecordedOutflow(BaseModel):
    """Outcome of recording an outflow."""

    outflow: Outflow
    inflow: Inflow = Field(
        ...,
        description="The source inflow after the debit"
    )
    overdraft: Optional[Overdraft] = Field(
        default=None,
        description="Auto-created liability for the unfunded part, if any"
    )

    @property
    def was_underfunded(self) -> bool:
        return self.overdraft is not None


class SettlementResult(BaseModel):
    """Outcome of paying down an overdraft from an inflow."""

    payment_amount: Decimal
    outflow: Outflow = Field(
        ...,
        description="Synthetic outflow documenting the payment"
    )
    overdraft: Overdraft
    inflow: Inflow

    @property
    def is_full_settlement(self) -> bool:
        return self.overdraft.is_settled


class RecalculationResult(BaseModel):
    """Outcome of rebuilding an inflow's balance from its outflows."""

    inflow_id: UUID
    total_out: Decimal
    previous_balance: Decimal
    new_balance: Decimal

    @property
    def drift(self) -> Decimal:
        """How far the stored balance had wandered from the truth."""
        return self.new_balance - self.previous_balance


class RevisedOutflow(BaseModel):
    """Outcome of editing an outflow in place."""

    previous: Outflow
    outflow: Outflow
    adjustments: dict[str, Decimal] = Field(
        default_factory=dict,
        description="Balance change applied to each inflow, keyed by inflow id"
    )

    @property
    def moved_source(self) -> bool:
        return self.previous.inflow_id != self.outflow.inflow_id


class ReversedOutflow(BaseModel):
    """Outcome of deleting an outflow and refunding its source."""

    outflow: Outflow
    refunded: bool = Field(
        ...,
        description="False when the source inflow no longer existed"
    )


class DeletedOverdraft(BaseModel):
    """Outcome of deleting an overdraft."""

    overdraft: Overdraft
    refunded_outflows: list[Outflow] = Field(default_factory=list)

    @property
    def refund_missing(self) -> bool:
        """A settled overdraft whose settlement payment could not be found."""
        return self.overdraft.is_settled and not self.refunded_outflows


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'unparseable', 'non_positive')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """Result of validating a draft before it reaches the store."""

    record_type: str = Field(
        ...,
        description="Kind of draft validated (inflow, outflow, overdraft)"
    )
    validated_at: dt.datetime = Field(
        default_factory=dt.datetime.utcnow
    )
    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(
        default_factory=list,
        description="Non-blocking warnings"
    )

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def error_messages(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "error"]
