"""
Integrity Checker
=================

Purpose:
- Batch scan of the customer and transaction collections. The store has no
  foreign keys and no unique constraints, so referential damage is found here.

Categories:
- orphaned transaction: customer reference points at a record that is not a
  live customer (dangling link)
- invalid relation: customer reference is empty (missing link)
- duplicate customer: more than one live customer shares an external identity
- customers without history: informational only

Remediation is explicit and per item:
- cleanup_orphaned_records archives (never amends) the listed transactions
- merge_duplicate_customers keeps the oldest record per identity, re-points the
  other records' transactions to it, archives the others and recomputes the
  survivor's aggregates from the ledger; the survivor is recomputed even when a
  step fails, and a duplicate left live is recomputed too
One item's failure never aborts the batch; counts are the result.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from apps.pointcard.services.errors import CoreError, UpstreamUnavailable
from apps.pointcard.services.loyalty.customer_directory import CustomerDirectory
from apps.pointcard.services.loyalty.loyalty_repository import LoyaltyRepository
from apps.pointcard.services.loyalty.models import Customer, Transaction, normalize_id
from apps.pointcard.services.loyalty.points_ledger import PointsLedger

log = logging.getLogger("pointcard.integrity")

ORPHANED_TRANSACTION = "orphaned_transaction"
INVALID_RELATION = "invalid_relation"
DUPLICATE_CUSTOMER = "duplicate_customer"


@dataclass(frozen=True)
class IntegrityViolation:
    """
    One reported problem. Reported, never raised.
    """
    category: str
    subject: str
    related_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"category": self.category, "subject": self.subject, "related_ids": self.related_ids}


@dataclass(frozen=True)
class IntegrityReport:
    total_customers: int
    total_transactions: int
    orphaned_transaction_ids: List[str]
    invalid_relation_ids: List[str]
    duplicate_identities: Dict[str, List[str]]
    customers_without_history: List[str]
    message: str
    recommended_action: str
    generated_at: str = field(default="", compare=False)

    @property
    def counts(self) -> Dict[str, int]:
        return {
            "total_customers": self.total_customers,
            "total_transactions": self.total_transactions,
            "orphaned_records": len(self.orphaned_transaction_ids),
            "invalid_relations": len(self.invalid_relation_ids),
            "duplicate_customers": len(self.duplicate_identities),
        }

    @property
    def is_clean(self) -> bool:
        return not (self.orphaned_transaction_ids or self.invalid_relation_ids or self.duplicate_identities)

    def violations(self) -> List[IntegrityViolation]:
        out = [IntegrityViolation(ORPHANED_TRANSACTION, x) for x in self.orphaned_transaction_ids]
        out += [IntegrityViolation(INVALID_RELATION, x) for x in self.invalid_relation_ids]
        out += [
            IntegrityViolation(DUPLICATE_CUSTOMER, identity, list(ids))
            for identity, ids in self.duplicate_identities.items()
        ]
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": "database_integrity_check",
            "counts": self.counts,
            "details": {
                "orphaned_transaction_ids": self.orphaned_transaction_ids,
                "invalid_relation_ids": self.invalid_relation_ids,
                "duplicate_identities": sorted(self.duplicate_identities),
                "duplicate_customer_ids": self.duplicate_identities,
                "customers_without_history": self.customers_without_history,
            },
            "message": self.message,
            "recommended_action": self.recommended_action,
            "generated_at": self.generated_at,
        }


@dataclass(frozen=True)
class RemediationResult:
    succeeded: int
    failed: int
    failures: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"succeeded": self.succeeded, "failed": self.failed, "failures": self.failures}


@dataclass(frozen=True)
class MergeResult:
    merged: int
    failed: int
    skipped: int = 0
    survivors: Dict[str, str] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "merged": self.merged,
            "failed": self.failed,
            "skipped": self.skipped,
            "survivors": self.survivors,
            "failures": self.failures,
        }


def _recommended_action(orphans: int, invalid: int, duplicates: int) -> str:
    if not (orphans or invalid or duplicates):
        return "Database is consistent. Keep the scheduled scan running."
    steps: List[str] = []
    if orphans:
        steps.append(f"archive {orphans} orphaned transaction(s) with cleanup")
    if invalid:
        steps.append(f"review {invalid} transaction(s) without a customer link by hand")
    if duplicates:
        steps.append(f"merge {duplicates} duplicated identity(ies) after confirming they are the same member")
    return "Recommended: " + "; ".join(steps) + "."


class IntegrityChecker:
    def __init__(
        self,
        repo: LoyaltyRepository,
        directory: CustomerDirectory,
        ledger: PointsLedger,
        *,
        page_size: int = 100,
    ) -> None:
        self.repo = repo
        self.directory = directory
        self.ledger = ledger
        self.page_size = page_size

    # -----------------------------
    # Scan
    # -----------------------------
    def run(self) -> IntegrityReport:
        customers = [c for c in self.repo.customers.scan(page_size=self.page_size) if not c.archived]
        transactions = [t for t in self.repo.transactions.scan(page_size=self.page_size) if not t.archived]
        report = self.analyze(customers, transactions)
        log.info("integrity scan: %s", report.counts)
        return report

    def analyze(self, customers: Iterable[Customer], transactions: Iterable[Transaction]) -> IntegrityReport:
        customers = list(customers)
        transactions = list(transactions)

        valid_ids = {normalize_id(c.id) for c in customers}

        orphaned: List[str] = []
        invalid: List[str] = []
        referenced: set = set()
        for t in transactions:
            ref = normalize_id(t.customer_id)
            if not ref:
                invalid.append(t.id)
                continue
            referenced.add(ref)
            if ref not in valid_ids:
                orphaned.append(t.id)

        by_identity: Dict[str, List[str]] = defaultdict(list)
        for c in customers:
            identity = c.identity.strip()
            if identity:
                by_identity[identity].append(c.id)
        duplicates = {
            identity: sorted(ids) for identity, ids in sorted(by_identity.items()) if len(ids) > 1
        }

        without_history = sorted(c.id for c in customers if normalize_id(c.id) not in referenced)

        return IntegrityReport(
            total_customers=len(customers),
            total_transactions=len(transactions),
            orphaned_transaction_ids=sorted(orphaned),
            invalid_relation_ids=sorted(invalid),
            duplicate_identities=duplicates,
            customers_without_history=without_history,
            message=(
                f"Integrity check finished: {len(customers)} customer(s), "
                f"{len(transactions)} transaction(s) inspected"
            ),
            recommended_action=_recommended_action(len(orphaned), len(invalid), len(duplicates)),
            generated_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        )

    # -----------------------------
    # Remediation
    # -----------------------------
    def cleanup_orphaned_records(self, transaction_ids: Iterable[str]) -> RemediationResult:
        succeeded = 0
        failures: Dict[str, str] = {}

        for record_id in transaction_ids:
            if not record_id:
                failures[str(record_id)] = "empty id"
                continue
            try:
                self.repo.transactions.archive(record_id)
                succeeded += 1
                log.info("archived orphaned transaction %s", record_id)
            except CoreError as e:
                failures[record_id] = e.message
                log.error("failed to archive orphaned transaction %s: %s", record_id, e.message)

        return RemediationResult(succeeded=succeeded, failed=len(failures), failures=failures)

    def merge_duplicate_customers(self, identities: Iterable[str]) -> MergeResult:
        merged = 0
        skipped = 0
        survivors: Dict[str, str] = {}
        failures: Dict[str, str] = {}

        for identity in identities:
            try:
                survivor_id = self._merge_identity(identity)
            except CoreError as e:
                failures[identity] = e.message
                log.error("merge failed for identity %s: %s", identity, e.message)
                continue
            if survivor_id is None:
                skipped += 1
                continue
            survivors[identity] = survivor_id
            merged += 1

        return MergeResult(
            merged=merged,
            failed=len(failures),
            skipped=skipped,
            survivors=survivors,
            failures=failures,
        )

    def _merge_identity(self, identity: str) -> str | None:
        customers = self.directory.find_all_by_identity(identity)
        if len(customers) < 2:
            log.info("identity %s has no duplicates; nothing to merge", identity)
            return None

        # oldest record survives; records without a creation time sort last
        ordered = sorted(customers, key=lambda c: (c.created_time or "\uffff", c.id))
        survivor, others = ordered[0], ordered[1:]

        failures: Dict[str, str] = {}
        with self.ledger.locks.hold(survivor.id):
            try:
                for dup in others:
                    with self.ledger.locks.hold(dup.id):
                        try:
                            self._fold_into(dup, survivor)
                        except CoreError as e:
                            failures[dup.id] = e.message
                            log.error("failed to merge customer %s into %s: %s", dup.id, survivor.id, e.message)
                            # still live; its aggregates must match what is left of its ledger
                            self._reconcile_after_failure(dup.id, failures)
            finally:
                # transactions may already have moved even when a later step failed
                self.ledger.reconcile(survivor.id)

        if failures:
            raise UpstreamUnavailable(
                f"merge incomplete for {len(failures)} record(s): "
                + "; ".join(f"{k}: {v}" for k, v in sorted(failures.items())),
                detail={"survivor": survivor.id, "failures": failures},
            )
        return survivor.id

    def _fold_into(self, dup: Customer, survivor: Customer) -> None:
        for t in self.repo.transactions.list_where("customer_id", dup.id):
            if t.archived:
                continue
            self.repo.transactions.update(t.id, {"customer_id": survivor.id})
        self.repo.customers.archive(dup.id)
        log.info("merged customer %s into %s", dup.id, survivor.id)

    def _reconcile_after_failure(self, customer_id: str, failures: Dict[str, str]) -> None:
        try:
            self.ledger.reconcile(customer_id)
        except CoreError as e:
            failures[customer_id] += f"; reconcile failed: {e.message}"
            log.error("failed to reconcile customer %s after a failed merge: %s", customer_id, e.message)
