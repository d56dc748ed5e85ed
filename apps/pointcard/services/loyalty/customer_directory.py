from __future__ import annotations

import logging
from typing import List, Optional

from apps.pointcard.services.errors import CoreError, NotFound, ValidationError
from apps.pointcard.services.loyalty.loyalty_repository import LoyaltyRepository
from apps.pointcard.services.loyalty.models import Customer

log = logging.getLogger("pointcard.customers")


class CustomerDirectory:
    """
    Find-or-create over the customer collection, keyed by external identity.

    Uniqueness is best-effort: the store has no unique constraint, so two
    concurrent first check-ins can still create two records. The integrity
    checker reports those and merge_duplicate_customers repairs them.
    """

    def __init__(self, repo: LoyaltyRepository) -> None:
        self.repo = repo

    def find_by_identity(self, identity: str) -> Optional[Customer]:
        identity = (identity or "").strip()
        if not identity:
            return None
        return self.repo.customers.find_first("identity", identity)

    def find_all_by_identity(self, identity: str) -> List[Customer]:
        identity = (identity or "").strip()
        if not identity:
            return []
        rows = self.repo.customers.list_where("identity", identity)
        return [c for c in rows if not c.archived and c.identity.strip() == identity]

    def require(self, identity: str) -> Customer:
        customer = self.find_by_identity(identity)
        if customer is None:
            raise NotFound("not registered", detail={"identity": identity})
        return customer

    def get(self, customer_id: str) -> Customer:
        if not customer_id:
            raise ValidationError("customer id is required")
        customer = self.repo.customers.get(customer_id)
        if customer.archived:
            raise NotFound("Customer not found", detail={"customer_id": customer_id})
        return customer

    def find_or_create(self, identity: str, display_name: str) -> str:
        identity = (identity or "").strip()
        if not identity:
            raise ValidationError("identity is required")

        existing = self.find_by_identity(identity)
        if existing is not None:
            if display_name and display_name != existing.display_name:
                self._refresh_display_name(existing.id, display_name)
            return existing.id

        customer_id = self.repo.customers.create(
            {"identity": identity, "display_name": display_name or ""}
        )
        log.info("created customer %s", customer_id)
        return customer_id

    def list_all(self) -> List[Customer]:
        rows = self.repo.customers.list_where(sort_by_last_edited=True)
        return [c for c in rows if not c.archived]

    def _refresh_display_name(self, customer_id: str, display_name: str) -> None:
        # cosmetic; never fails the caller
        try:
            self.repo.customers.update(customer_id, {"display_name": display_name})
        except CoreError as e:
            log.warning("display name refresh failed for %s: %s", customer_id, e.message)
