"""
Redeem Protocol
===============

Redemption:
1) identity resolves to a customer           else NotFound("not registered")
2) reward resolves and is active             else NotFound("reward unavailable")
3) fresh balance covers the reward cost      else InsufficientBalance
4) ledger write of -(cost), kind REWARD

Steps 3 and 4 run under the customer's lock so two redemptions in this process
cannot both spend the same balance.

Administrative adjustment (kind ADMIN) skips the reward lookup and accepts any
non-zero signed amount from an authorized admin identity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from apps.pointcard.services.errors import CoreError, InsufficientBalance, Unauthorized, ValidationError
from apps.pointcard.services.loyalty.catalog import Catalog
from apps.pointcard.services.loyalty.customer_directory import CustomerDirectory
from apps.pointcard.services.loyalty.locks import Deadline, check_deadline
from apps.pointcard.services.loyalty.models import Balance, Reward, TransactionDetails, TransactionKind
from apps.pointcard.services.loyalty.points_ledger import PointsLedger

log = logging.getLogger("pointcard.redeem")

ADMIN_DEVICE = "ADMIN_CONSOLE"


@dataclass(frozen=True)
class RedeemOutcome:
    success: bool
    reward: Reward
    transaction_id: str
    balance_before: int
    balance_after: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "reward": self.reward.to_dict(),
            "transaction_id": self.transaction_id,
            "balance_before": self.balance_before,
            "balance_after": self.balance_after,
        }


@dataclass(frozen=True)
class AdjustOutcome:
    success: bool
    customer_id: str
    amount: int
    transaction_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "customer_id": self.customer_id,
            "amount": self.amount,
            "transaction_id": self.transaction_id,
        }


class RedeemProtocol:
    def __init__(
        self,
        directory: CustomerDirectory,
        catalog: Catalog,
        ledger: PointsLedger,
        *,
        admin_identities: Iterable[str] = (),
    ) -> None:
        self.directory = directory
        self.catalog = catalog
        self.ledger = ledger
        self.admin_identities = frozenset(x for x in admin_identities if x)

    def redeem(self, identity: str, reward_id: str, *, deadline: Optional[Deadline] = None) -> RedeemOutcome:
        try:
            check_deadline(deadline, "received")
            customer = self.directory.require(identity)

            check_deadline(deadline, "identity-checked")
            reward = self.catalog.require_active_reward(reward_id)
            cost = max(int(reward.points_required), 0)

            with self.ledger.locks.hold(customer.id):
                check_deadline(deadline, "reward-checked")
                balance: Balance = self.ledger.get_balance(customer.id)
                if balance.current < cost:
                    raise InsufficientBalance(required=cost, balance=balance.current)

                transaction_id = self.ledger.record_transaction(
                    customer.id,
                    -cost,
                    TransactionKind.REWARD,
                    TransactionDetails(
                        reward_id=reward.id,
                        reason=f"redeemed: {reward.title}",
                    ),
                )
        except CoreError as e:
            log.info("redeem rejected for reward %s: %s (%s)", reward_id, e.code, e.message)
            raise

        return RedeemOutcome(
            success=True,
            reward=reward,
            transaction_id=transaction_id,
            balance_before=balance.current,
            balance_after=balance.current - cost,
        )

    def is_admin(self, identity: Optional[str]) -> bool:
        return bool(identity) and identity in self.admin_identities

    def require_admin(self, identity: Optional[str]) -> None:
        if not self.is_admin(identity):
            raise Unauthorized("Admin access only")

    def adjust(
        self,
        admin_identity: str,
        target_customer_id: str,
        amount: int,
        reason: Optional[str] = None,
        *,
        deadline: Optional[Deadline] = None,
    ) -> AdjustOutcome:
        self.require_admin(admin_identity)

        if not target_customer_id:
            raise ValidationError("targetCustomerId is required")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount == 0:
            raise ValidationError("amount must be a non-zero integer", detail={"amount": amount})

        check_deadline(deadline, "authorized")
        customer = self.directory.get(target_customer_id)

        check_deadline(deadline, "customer-checked")
        transaction_id = self.ledger.record_transaction(
            customer.id,
            amount,
            TransactionKind.ADMIN,
            TransactionDetails(reason=reason or "Manual Adjustment", device=ADMIN_DEVICE),
        )
        log.info("admin %s adjusted customer %s by %d", admin_identity, customer.id, amount)
        return AdjustOutcome(success=True, customer_id=customer.id, amount=amount, transaction_id=transaction_id)
