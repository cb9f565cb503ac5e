"""
In-memory repository over the cash application snapshot.

Holds payments, receivables, remittances, bank transactions, settlement
events and sync runs. Every engine call runs inside ``transaction()``:
writes are serialised by a re-entrant lock and the snapshot is restored
if the call raises.
"""

import copy
import threading
from contextlib import contextmanager
from typing import ContextManager, Dict, Iterator, List, Optional, Protocol

import structlog

from .errors import PaymentNotFoundError
from .models import (
    BankTransaction,
    Payment,
    ReceivableItem,
    Remittance,
    SettlementEvent,
    SettlementStatus,
    SyncRun,
)

logger = structlog.get_logger()


class Repository(Protocol):
    """Storage boundary used by the engines and the service."""

    def transaction(self) -> ContextManager[None]: ...

    def get_payment(self, payment_id: str) -> Payment: ...

    def list_payments(self) -> List[Payment]: ...

    def save_payment(self, payment: Payment) -> None: ...

    def open_receivables(self) -> List[ReceivableItem]: ...

    def upsert_receivable(self, item: ReceivableItem) -> None: ...

    def remittance_for_payment(self, payment_id: str) -> Optional[Remittance]: ...

    def save_remittance(self, remittance: Remittance) -> None: ...

    def save_bank_transaction(self, txn: BankTransaction) -> None: ...

    def settlement_events(self) -> List[SettlementEvent]: ...

    def pending_settlement_events(self) -> List[SettlementEvent]: ...

    def settlement_events_for_reference(self, bank_reference: str) -> List[SettlementEvent]: ...

    def save_settlement_event(self, event: SettlementEvent) -> None: ...

    def sync_runs(self) -> List[SyncRun]: ...

    def add_sync_run(self, run: SyncRun) -> None: ...

    def customer_names(self) -> Dict[str, str]: ...

    def add_customer(self, customer_id: str, name: str) -> None: ...


class InMemoryRepository:
    """Dictionary-backed repository with snapshot/rollback transactions."""

    def __init__(self):
        self._lock = threading.RLock()
        self._depth = 0
        self.payments: Dict[str, Payment] = {}
        self.receivables: Dict[str, ReceivableItem] = {}
        self.remittances: Dict[str, Remittance] = {}
        self.bank_transactions: Dict[str, BankTransaction] = {}
        self.events: Dict[str, SettlementEvent] = {}
        self.runs: List[SyncRun] = []
        self.customers: Dict[str, str] = {}

    _STATE_ATTRS = (
        "payments",
        "receivables",
        "remittances",
        "bank_transactions",
        "events",
        "runs",
        "customers",
    )

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Serialise a unit of work and roll back the snapshot on error."""
        with self._lock:
            snapshot = None
            if self._depth == 0:
                snapshot = {name: copy.deepcopy(getattr(self, name)) for name in self._STATE_ATTRS}
            self._depth += 1
            try:
                yield
            except Exception:
                if snapshot is not None:
                    for name, value in snapshot.items():
                        setattr(self, name, value)
                    logger.warning("Repository transaction rolled back")
                raise
            finally:
                self._depth -= 1

    # Payments

    def get_payment(self, payment_id: str) -> Payment:
        payment = self.payments.get(payment_id)
        if payment is None:
            for candidate in self.payments.values():
                if candidate.payment_number == payment_id:
                    return candidate
            raise PaymentNotFoundError(payment_id)
        return payment

    def list_payments(self) -> List[Payment]:
        return list(self.payments.values())

    def save_payment(self, payment: Payment) -> None:
        self.payments[payment.id] = payment

    # Receivables

    def open_receivables(self) -> List[ReceivableItem]:
        return [item for item in self.receivables.values() if item.is_open]

    def upsert_receivable(self, item: ReceivableItem) -> None:
        existing = self._receivable_by_identifier(item.identifier)
        if existing is not None and existing.id != item.id:
            del self.receivables[existing.id]
        self.receivables[item.id] = item

    def _receivable_by_identifier(self, identifier: str) -> Optional[ReceivableItem]:
        for item in self.receivables.values():
            if item.identifier == identifier:
                return item
        return None

    # Customers

    def customer_names(self) -> Dict[str, str]:
        return dict(self.customers)

    def add_customer(self, customer_id: str, name: str) -> None:
        self.customers[customer_id] = name

    # Remittances

    def remittance_for_payment(self, payment_id: str) -> Optional[Remittance]:
        for remittance in self.remittances.values():
            if remittance.payment_id == payment_id:
                return remittance
        return None

    def save_remittance(self, remittance: Remittance) -> None:
        if remittance.payment_id is not None:
            current = self.remittance_for_payment(remittance.payment_id)
            if current is not None and current.id != remittance.id:
                raise ValueError(
                    f"Payment {remittance.payment_id} already has remittance {current.id}"
                )
        self.remittances[remittance.id] = remittance

    # Bank feed / settlement

    def save_bank_transaction(self, txn: BankTransaction) -> None:
        self.bank_transactions[txn.id] = txn

    def settlement_events(self) -> List[SettlementEvent]:
        return list(self.events.values())

    def pending_settlement_events(self) -> List[SettlementEvent]:
        return [e for e in self.events.values() if e.status == SettlementStatus.PENDING]

    def settlement_events_for_reference(self, bank_reference: str) -> List[SettlementEvent]:
        return [e for e in self.events.values() if e.bank_reference == bank_reference]

    def save_settlement_event(self, event: SettlementEvent) -> None:
        self.events[event.id] = event

    # Sync history

    def sync_runs(self) -> List[SyncRun]:
        return list(self.runs)

    def add_sync_run(self, run: SyncRun) -> None:
        self.runs.append(run)
