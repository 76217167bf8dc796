"""
Shared fixtures for the ledger tests.

Engine and command tests run against InMemoryLedgerStore, seeded directly
so each test starts from a known set of balances.
"""

import pytest

from potledger.config import AppSettings, LedgerSettings
from potledger.services.storage import InMemoryAuditStorage, InMemoryLedgerStore


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    return LedgerSettings(
        default_currency="RWF",
        settlement_expense_name="Overdraft Settle",
        settlement_category="Misc",
        overdraft_purpose_prefix="Overdraft: ",
        burn_rate_window_days=30,
    )


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings(
        max_reasonable_amount=100000000.0,
        future_date_tolerance_days=7,
        use_in_memory_store=True,
    )


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()
