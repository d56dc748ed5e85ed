"""
Rank Engine
===========

Purpose:
- Deterministic member rank from lifetime-earned points.
- No side effects, no store access.
- Ranks never go down: spending points does not reduce lifetime earned.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class Rank:
    key: str
    min_points: int


DEFAULT_RANKS: Tuple[Rank, ...] = (
    Rank("BRONZE", 0),
    Rank("SILVER", 30),
    Rank("GOLD", 60),
    Rank("PLATINUM", 90),
    Rank("BLACK", 120),
)


@dataclass(frozen=True)
class RankStatus:
    current: Rank
    lifetime_points: int
    next_rank: Optional[Rank]
    points_to_next: Optional[int]

    @property
    def is_top_rank(self) -> bool:
        return self.next_rank is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.current.key,
            "lifetime_points": self.lifetime_points,
            "next_rank": None if self.next_rank is None else self.next_rank.key,
            "points_to_next_rank": self.points_to_next,
            "is_top_rank": self.is_top_rank,
        }


class RankEngine:
    def __init__(self, ranks: Tuple[Rank, ...] = DEFAULT_RANKS) -> None:
        self.ranks = tuple(sorted(ranks, key=lambda r: r.min_points))

    def evaluate(self, lifetime_points: int) -> RankStatus:
        points = max(0, int(lifetime_points or 0))

        current = self.ranks[0]
        next_rank: Optional[Rank] = None
        for rank in self.ranks:
            if points >= rank.min_points:
                current = rank
            else:
                next_rank = rank
                break

        return RankStatus(
            current=current,
            lifetime_points=points,
            next_rank=next_rank,
            points_to_next=None if next_rank is None else next_rank.min_points - points,
        )
