"""
Points Ledger
=============

Purpose:
- Append immutable transaction records to the point history collection.
- Maintain the derived per-customer aggregates (lifetime earned, current
  balance, lifetime spent, visit count, last visit).

Design:
- The ledger is the source of truth; aggregates are a cache for fast reads.
- Every mutation for one customer runs under that customer's lock, and the
  aggregate update re-reads the customer record right before writing.
- reduce_transactions() recomputes aggregates from the ledger alone; reconcile()
  writes that result back (repair path for cross-process drift and merges).

Failure policy:
- A failed transaction write or aggregate update propagates to the caller.
  A grant or a charge is never silently dropped.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from apps.pointcard.services.errors import CoreError, NotFound, ValidationError
from apps.pointcard.services.loyalty.locks import CustomerLocks
from apps.pointcard.services.loyalty.loyalty_repository import LoyaltyRepository
from apps.pointcard.services.loyalty.models import (
    Balance,
    Customer,
    Transaction,
    TransactionDetails,
    TransactionKind,
    normalize_id,
)

log = logging.getLogger("pointcard.ledger")


def _now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class LedgerState:
    """
    Aggregates computed from a set of transactions.
    """
    customer_id: str
    balance: int
    lifetime_earned: int
    lifetime_spent: int
    visit_count: int
    last_visit: str
    applied_transaction_ids: List[str] = field(default_factory=list)

    def aggregate_values(self) -> Dict[str, Any]:
        values: Dict[str, Any] = {
            "lifetime_earned": self.lifetime_earned,
            "balance": self.balance,
            "lifetime_spent": self.lifetime_spent,
            "visit_count": self.visit_count,
        }
        if self.last_visit:
            values["last_visit"] = self.last_visit
        return values

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "balance": int(self.balance),
            "lifetime_earned": int(self.lifetime_earned),
            "lifetime_spent": int(self.lifetime_spent),
            "visit_count": int(self.visit_count),
            "last_visit": self.last_visit,
            "applied_transaction_ids": self.applied_transaction_ids,
        }


def reduce_transactions(customer_id: str, transactions: Iterable[Transaction]) -> LedgerState:
    """
    Recompute aggregates for one customer.
    Archived entries and entries for other customers are ignored; duplicates
    by id are applied once.
    """
    target = normalize_id(customer_id)
    seen: set = set()
    earned = 0
    spent = 0
    visits = 0
    last_visit = ""

    ordered = sorted(transactions, key=lambda t: (t.date, t.id))
    for t in ordered:
        if t.archived or normalize_id(t.customer_id) != target:
            continue
        if t.id in seen:
            continue
        seen.add(t.id)

        amount = int(t.amount)
        if amount > 0:
            earned += amount
            visits += 1
        else:
            spent += abs(amount)
        if t.date and t.date > last_visit:
            last_visit = t.date

    return LedgerState(
        customer_id=customer_id,
        balance=earned - spent,
        lifetime_earned=earned,
        lifetime_spent=spent,
        visit_count=visits,
        last_visit=last_visit,
        applied_transaction_ids=sorted(seen),
    )


class PointsLedger:
    def __init__(
        self,
        repo: LoyaltyRepository,
        *,
        locks: Optional[CustomerLocks] = None,
        clock: Callable[[], str] = _now_utc_iso,
    ) -> None:
        self.repo = repo
        self.locks = locks or CustomerLocks()
        self._clock = clock

    # -----------------------------
    # Writes
    # -----------------------------
    def record_transaction(
        self,
        customer_id: str,
        amount: int,
        kind: TransactionKind,
        details: Optional[TransactionDetails] = None,
    ) -> str:
        """
        Append one ledger entry, then fold it into the customer's aggregates.
        Returns the new transaction id.
        """
        if not customer_id:
            raise ValidationError("customer_id is required")
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError("amount must be an integer", detail={"amount": amount})
        kind = TransactionKind(kind)
        details = details or TransactionDetails()

        with self.locks.hold(customer_id):
            now = self._clock()
            values: Dict[str, Any] = {
                "reference": str(uuid.uuid4()),
                "customer_id": customer_id,
                "date": now,
                "amount": amount,
                "kind": kind.value,
            }
            values.update(details.as_values())

            transaction_id = self.repo.transactions.create(values)
            log.info(
                "ledger write customer=%s amount=%d kind=%s transaction=%s",
                customer_id, amount, kind.value, transaction_id,
            )

            try:
                self.apply_to_aggregates(customer_id, amount, now=now)
            except CoreError:
                log.error(
                    "aggregate update failed after transaction %s for customer %s; reconcile required",
                    transaction_id, customer_id,
                )
                raise

            return transaction_id

    def apply_to_aggregates(self, customer_id: str, amount: int, *, now: Optional[str] = None) -> Balance:
        """
        Read-modify-write of the four aggregate fields plus last visit.
        """
        with self.locks.hold(customer_id):
            customer = self.repo.customers.get(customer_id)
            now = now or self._clock()

            if amount > 0:
                delta = {
                    "lifetime_earned": customer.lifetime_earned + amount,
                    "balance": customer.balance + amount,
                    "visit_count": customer.visit_count + 1,
                    "last_visit": now,
                }
                spent = customer.lifetime_spent
            else:
                spent = customer.lifetime_spent + abs(amount)
                delta = {
                    "balance": customer.balance + amount,
                    "lifetime_spent": spent,
                    "last_visit": now,
                }

            self.repo.customers.update(customer_id, delta)
            return Balance(
                current=delta["balance"],
                lifetime=delta.get("lifetime_earned", customer.lifetime_earned),
                spent=spent,
            )

    def reconcile(self, customer_id: str) -> LedgerState:
        """
        Recompute the aggregates from the ledger and overwrite the cached values.
        """
        with self.locks.hold(customer_id):
            self._require_customer(customer_id)
            state = reduce_transactions(
                customer_id,
                self.repo.transactions.list_where("customer_id", customer_id),
            )
            self.repo.customers.update(customer_id, state.aggregate_values())
            log.info("reconciled customer=%s balance=%d", customer_id, state.balance)
            return state

    # -----------------------------
    # Reads
    # -----------------------------
    def get_balance(self, customer_id: str) -> Balance:
        """
        Always a fresh read; callers must not reuse an earlier Customer snapshot
        for balance-sensitive decisions.
        """
        customer = self._require_customer(customer_id)
        return Balance(
            current=int(customer.balance),
            lifetime=int(customer.lifetime_earned),
            spent=int(customer.lifetime_spent),
        )

    def history(self, customer_id: str) -> List[Transaction]:
        rows = self.repo.transactions.list_where(
            "customer_id", customer_id, sort_by="date", descending=True
        )
        return [t for t in rows if not t.archived]

    def _require_customer(self, customer_id: str) -> Customer:
        customer = self.repo.customers.get(customer_id)
        if customer.archived:
            raise NotFound("Customer not found", detail={"customer_id": customer_id})
        return customer
