from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class TransactionKind(str, Enum):
    PURCHASE = "PURCHASE"  # earn
    ADMIN = "ADMIN"        # manual adjustment
    REWARD = "REWARD"      # redemption


def normalize_id(record_id: Optional[str]) -> str:
    """
    Store ids come back both dashed and undashed; compare them in one form.
    """
    return (record_id or "").replace("-", "").strip().lower()


@dataclass
class Customer:
    id: str
    identity: str = ""
    display_name: str = ""
    lifetime_earned: int = 0
    balance: int = 0
    lifetime_spent: int = 0
    visit_count: int = 0
    last_visit: str = ""
    archived: bool = False
    created_time: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "identity": self.identity,
            "display_name": self.display_name or "No Name",
            "lifetime_earned": int(self.lifetime_earned),
            "current_balance": int(self.balance),
            "lifetime_spent": int(self.lifetime_spent),
            "visit_count": int(self.visit_count),
            "last_visit": self.last_visit,
        }


@dataclass
class Location:
    id: str
    location_id: str = ""
    name: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    radius: float = 0.0
    secret_token: str = ""
    is_active: bool = False
    external_url: str = ""
    archived: bool = False
    created_time: str = ""

    def public_view(self) -> Dict[str, Any]:
        # secret_token never leaves the service
        return {
            "id": self.id,
            "location_id": self.location_id,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "is_active": self.is_active,
            "external_url": self.external_url or None,
        }


@dataclass
class Reward:
    id: str
    reward_id: str = ""
    title: str = ""
    description: str = ""
    points_required: int = 0
    is_repeatable: bool = False
    order: int = 0
    is_active: bool = False
    archived: bool = False
    created_time: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "reward_id": self.reward_id,
            "title": self.title,
            "description": self.description,
            "points_required": int(self.points_required),
            "is_repeatable": self.is_repeatable,
            "order": int(self.order),
            "is_active": self.is_active,
        }


@dataclass
class Transaction:
    """
    Ledger entry. Append-only: once written it is only ever archived.
    amount > 0 earns, amount <= 0 spends.
    """
    id: str
    reference: str = ""
    customer_id: str = ""
    amount: int = 0
    kind: str = ""
    date: str = ""
    location_ref: str = ""
    location: str = ""
    device: str = ""
    reason: str = ""
    reward_id: str = ""
    archived: bool = False
    created_time: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "amount": int(self.amount),
            "kind": self.kind,
            "date": self.date,
            "location_ref": self.location_ref or None,
            "location": self.location or None,
            "reason": self.reason or None,
            "reward_id": self.reward_id or None,
        }


@dataclass(frozen=True)
class TransactionDetails:
    location_ref: Optional[str] = None
    location: Optional[str] = None
    reason: Optional[str] = None
    reward_id: Optional[str] = None
    device: Optional[str] = None

    def as_values(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for key in ("location_ref", "location", "reason", "reward_id", "device"):
            value = getattr(self, key)
            if value:
                out[key] = value
        return out


@dataclass(frozen=True)
class Balance:
    current: int
    lifetime: int
    spent: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"current": self.current, "lifetime": self.lifetime, "spent": self.spent}
