"""Record builders shared by the ledger tests."""

import datetime as dt
from decimal import Decimal
from uuid import UUID

from potledger.models.records import (
    Inflow,
    LedgerCollection,
    Outflow,
    Overdraft,
)
from potledger.services.storage import InMemoryLedgerStore


TODAY = dt.date(2024, 6, 15)


def make_inflow(amount="1000", remaining=None, **fields) -> Inflow:
    amount = Decimal(str(amount))
    return Inflow(
        date=fields.pop("date", TODAY),
        source=fields.pop("source", "Client A"),
        product=fields.pop("product", "Rocks"),
        amount=amount,
        remaining_balance=Decimal(str(remaining)) if remaining is not None else amount,
        **fields,
    )


def make_outflow(inflow: Inflow, amount="100", **fields) -> Outflow:
    return Outflow(
        date=fields.pop("date", TODAY),
        purpose=fields.pop("purpose", "Operational"),
        category=fields.pop("category", "Transport"),
        amount=Decimal(str(amount)),
        seller=fields.pop("seller", "Fuel Station"),
        inflow_id=inflow.id,
        **fields,
    )


def make_overdraft(amount="500", **fields) -> Overdraft:
    return Overdraft(
        date=fields.pop("date", TODAY),
        purpose=fields.pop("purpose", "Cement delivery"),
        amount=Decimal(str(amount)),
        seller=fields.pop("seller", "Hardware Ltd"),
        **fields,
    )


async def stored_inflow(store: InMemoryLedgerStore, inflow_id: UUID) -> Inflow:
    return Inflow.from_document(await store.get(LedgerCollection.INFLOWS, str(inflow_id)))


async def stored_overdraft(store: InMemoryLedgerStore, overdraft_id: UUID) -> Overdraft:
    return Overdraft.from_document(await store.get(LedgerCollection.OVERDRAFTS, str(overdraft_id)))
