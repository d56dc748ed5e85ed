"""
Loyalty Service (Point Card Integration Layer)
==============================================

Purpose:
- Wire directory + catalog + ledger + earn/redeem protocols + rank engine +
  integrity checker over one repository.
- Keep routes thin. Keep domain logic in the canonical modules.

This service:
- Registers members (find-or-create by external identity)
- Runs check-ins and redemptions, each under a per-request deadline
- Applies admin adjustments
- Computes member status (balance + rank)
- Runs integrity scans and the explicit remediation operations

No HTTP here. Routes should call this.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from apps.pointcard.services.loyalty.catalog import Catalog
from apps.pointcard.services.loyalty.customer_directory import CustomerDirectory
from apps.pointcard.services.loyalty.earn_protocol import EarnOutcome, EarnProtocol, EarnRequest
from apps.pointcard.services.loyalty.integrity_checker import (
    IntegrityChecker,
    IntegrityReport,
    MergeResult,
    RemediationResult,
)
from apps.pointcard.services.loyalty.locks import CustomerLocks, Deadline
from apps.pointcard.services.loyalty.loyalty_repository import LoyaltyRepository
from apps.pointcard.services.loyalty.models import Customer, Reward, Transaction
from apps.pointcard.services.loyalty.points_ledger import LedgerState, PointsLedger
from apps.pointcard.services.loyalty.rank_engine import RankEngine
from apps.pointcard.services.loyalty.redeem_protocol import AdjustOutcome, RedeemOutcome, RedeemProtocol
from apps.pointcard.services.settings import Settings

log = logging.getLogger("pointcard.service")


@dataclass(frozen=True)
class CustomerStatus:
    customer_id: str
    identity: str
    display_name: str
    current_balance: int
    lifetime_balance: int
    lifetime_spent: int
    visit_count: int
    last_visit: str
    rank: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "identity": self.identity,
            "display_name": self.display_name or "No Name",
            "current_balance": int(self.current_balance),
            "lifetime_balance": int(self.lifetime_balance),
            "lifetime_spent": int(self.lifetime_spent),
            "visit_count": int(self.visit_count),
            "last_visit": self.last_visit,
            "rank": self.rank,
        }


class LoyaltyService:
    def __init__(
        self,
        repo: LoyaltyRepository,
        *,
        admin_identities: Iterable[str] = (),
        award_points: int = 1,
        default_radius: float = 50.0,
        integrity_page_size: int = 100,
        request_deadline_seconds: float = 0.0,
        ranks: Optional[RankEngine] = None,
        locks: Optional[CustomerLocks] = None,
    ) -> None:
        self.repo = repo
        self.directory = CustomerDirectory(repo)
        self.catalog = Catalog(repo)
        self.ledger = PointsLedger(repo, locks=locks)
        self.ranks = ranks or RankEngine()
        self.earn_protocol = EarnProtocol(
            self.directory,
            self.catalog,
            self.ledger,
            award_points=award_points,
            default_radius=default_radius,
        )
        self.redeem_protocol = RedeemProtocol(
            self.directory,
            self.catalog,
            self.ledger,
            admin_identities=admin_identities,
        )
        self.checker = IntegrityChecker(repo, self.directory, self.ledger, page_size=integrity_page_size)
        self.request_deadline_seconds = float(request_deadline_seconds or 0)

    @classmethod
    def from_settings(cls, client: Any, settings: Settings) -> "LoyaltyService":
        return cls(
            LoyaltyRepository.from_settings(client, settings),
            admin_identities=settings.admin_identities,
            award_points=settings.EARN_AWARD_POINTS,
            default_radius=settings.DEFAULT_RADIUS_METERS,
            integrity_page_size=settings.INTEGRITY_PAGE_SIZE,
            request_deadline_seconds=settings.REQUEST_DEADLINE_SECONDS,
        )

    def _deadline(self) -> Optional[Deadline]:
        return Deadline.after(self.request_deadline_seconds)

    # -----------------------------
    # Members
    # -----------------------------
    def register(self, identity: str, display_name: str = "") -> str:
        return self.directory.find_or_create(identity, display_name)

    def status(self, identity: str) -> CustomerStatus:
        customer = self.directory.require(identity)
        balance = self.ledger.get_balance(customer.id)
        rank = self.ranks.evaluate(balance.lifetime)
        return CustomerStatus(
            customer_id=customer.id,
            identity=customer.identity,
            display_name=customer.display_name,
            current_balance=balance.current,
            lifetime_balance=balance.lifetime,
            lifetime_spent=balance.spent,
            visit_count=customer.visit_count,
            last_visit=customer.last_visit,
            rank=rank.to_dict(),
        )

    def history(self, identity: str) -> List[Transaction]:
        customer = self.directory.require(identity)
        return self.ledger.history(customer.id)

    def require_admin(self, admin_identity: Optional[str]) -> None:
        self.redeem_protocol.require_admin(admin_identity)

    def list_customers(self, admin_identity: Optional[str]) -> List[Customer]:
        self.require_admin(admin_identity)
        return self.directory.list_all()

    # -----------------------------
    # Catalog
    # -----------------------------
    def list_rewards(self) -> List[Reward]:
        return self.catalog.list_active_rewards()

    def location_info(self, location_id: str) -> Dict[str, Any]:
        return self.catalog.require_active_location(location_id).public_view()

    # -----------------------------
    # Ledger operations
    # -----------------------------
    def earn(
        self,
        identity: str,
        location_id: str,
        latitude: float,
        longitude: float,
        token: str,
        *,
        device: Optional[str] = None,
    ) -> EarnOutcome:
        request = EarnRequest(
            identity=identity,
            location_id=location_id,
            latitude=latitude,
            longitude=longitude,
            token=token,
            device=device,
        )
        return self.earn_protocol.earn(request, deadline=self._deadline())

    def redeem(self, identity: str, reward_id: str) -> RedeemOutcome:
        return self.redeem_protocol.redeem(identity, reward_id, deadline=self._deadline())

    def adjust(
        self,
        admin_identity: str,
        target_customer_id: str,
        amount: int,
        reason: Optional[str] = None,
    ) -> AdjustOutcome:
        return self.redeem_protocol.adjust(
            admin_identity, target_customer_id, amount, reason, deadline=self._deadline()
        )

    def reconcile(self, admin_identity: Optional[str], customer_id: str) -> LedgerState:
        self.require_admin(admin_identity)
        self.directory.get(customer_id)
        return self.ledger.reconcile(customer_id)

    # -----------------------------
    # Integrity
    # -----------------------------
    def run_integrity_check(self) -> IntegrityReport:
        return self.checker.run()

    def cleanup_orphans(self, transaction_ids: Iterable[str]) -> RemediationResult:
        result = self.checker.cleanup_orphaned_records(list(transaction_ids))
        log.info("orphan cleanup succeeded=%d failed=%d", result.succeeded, result.failed)
        return result

    def merge_duplicates(self, identities: Iterable[str]) -> MergeResult:
        result = self.checker.merge_duplicate_customers(list(identities))
        log.info("duplicate merge merged=%d failed=%d skipped=%d", result.merged, result.failed, result.skipped)
        return result
