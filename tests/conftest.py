"""
Shared fixtures for the cash application tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from cashapp.config import Settings
from cashapp.models import (
    BankFeedType,
    BankTransaction,
    Payment,
    ReceivableItem,
    ReceivableKind,
)
from cashapp.repository import InMemoryRepository

NOW = datetime(2024, 12, 18, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        reports_dir=tmp_path / "reports",
        erp_api_url="https://erp.test",
        erp_user="api",
        erp_password="secret",
    )


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def make_payment():
    """Factory for payments with sensible defaults."""
    counter = {"n": 0}

    def _make(**overrides) -> Payment:
        counter["n"] += 1
        values = {
            "payment_number": f"PAY-{1000 + counter['n']}",
            "amount_cents": 42000,
            "received_at": NOW - timedelta(days=2),
            "payer_name_raw": "Acme Corp",
            "memo_raw": "",
        }
        values.update(overrides)
        return Payment(**values)

    return _make


@pytest.fixture
def invoice():
    """Factory for open invoices."""
    def _make(identifier: str, amount_cents: int, **overrides) -> ReceivableItem:
        return ReceivableItem(identifier=identifier, amount_cents=amount_cents, **overrides)

    return _make


@pytest.fixture
def credit_memo():
    """Factory for open credit memos (negative amounts)."""
    def _make(identifier: str, amount_cents: int, **overrides) -> ReceivableItem:
        return ReceivableItem(
            identifier=identifier,
            amount_cents=-abs(amount_cents),
            kind=ReceivableKind.CREDIT_MEMO,
            **overrides,
        )

    return _make


@pytest.fixture
def bank_txn():
    """Factory for bank feed transactions."""
    def _make(
        bank_reference: str,
        amount_cents: int,
        observed_at: datetime = NOW,
        feed_type: BankFeedType = BankFeedType.PRELIMINARY,
        **overrides,
    ) -> BankTransaction:
        return BankTransaction(
            bank_reference=bank_reference,
            amount_cents=amount_cents,
            observed_at=observed_at,
            feed_type=feed_type,
            **overrides,
        )

    return _make
