from __future__ import annotations

import logging
from typing import List, Optional

from apps.pointcard.services.errors import NotFound
from apps.pointcard.services.loyalty.loyalty_repository import LoyaltyRepository
from apps.pointcard.services.loyalty.models import Location, Reward

log = logging.getLogger("pointcard.catalog")


class Catalog:
    """
    Read-only access to locations and rewards, looked up by natural id.
    """

    def __init__(self, repo: LoyaltyRepository) -> None:
        self.repo = repo

    # -----------------------------
    # Locations
    # -----------------------------
    def find_location(self, location_id: str) -> Optional[Location]:
        if not location_id:
            return None
        location = self.repo.locations.find_first("location_id", location_id)
        if location is None or location.archived:
            return None
        return location

    def require_active_location(self, location_id: str) -> Location:
        location = self.find_location(location_id)
        if location is None or not location.is_active:
            raise NotFound("location unavailable", detail={"location_id": location_id})
        return location

    # -----------------------------
    # Rewards
    # -----------------------------
    def find_reward(self, reward_id: str) -> Optional[Reward]:
        if not reward_id:
            return None
        reward = self.repo.rewards.find_first("reward_id", reward_id)
        if reward is None or reward.archived:
            return None
        return reward

    def require_active_reward(self, reward_id: str) -> Reward:
        reward = self.find_reward(reward_id)
        if reward is None or not reward.is_active:
            raise NotFound("reward unavailable", detail={"reward_id": reward_id})
        return reward

    def list_active_rewards(self) -> List[Reward]:
        rows = self.repo.rewards.list_where("is_active", True, sort_by="order")
        rewards = [r for r in rows if r.is_active and not r.archived]
        if not rewards:
            log.warning("No active rewards found in %s", self.repo.rewards.collection_id)
        return sorted(rewards, key=lambda r: (r.order, r.reward_id))
