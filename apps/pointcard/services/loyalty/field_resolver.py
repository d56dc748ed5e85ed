"""
Field Resolver
==============

Purpose:
- Map a logical attribute ("balance", "display name") to the property that
  actually stores it in a collection.
- The collection schema is operator-edited text, so nothing here assumes a
  fixed property name.

Resolution modes:
1) by declared type: first property whose declared type matches
2) by name: case-insensitive alias match, then type (only when unambiguous),
   then a hard-coded default label

SchemaRegistry memoizes collection schemas per collection with explicit
invalidation so one request resolves against one consistent schema.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

log = logging.getLogger("pointcard.schema")


@dataclass(frozen=True)
class CollectionSchema:
    """
    Declared schema of one collection: {property_name: declared_type}.
    Insertion order is preserved and is the tie-break order for type resolution.
    """
    collection_id: str
    properties: Dict[str, str] = field(default_factory=dict)

    def declared_type(self, property_name: str) -> Optional[str]:
        return self.properties.get(property_name)

    def names_of_type(self, declared_type: str) -> List[str]:
        return [name for name, t in self.properties.items() if t == declared_type]

    def __contains__(self, property_name: object) -> bool:
        return property_name in self.properties


def resolve_by_type(properties: Dict[str, str], declared_type: str) -> Optional[str]:
    for name, t in properties.items():
        if t == declared_type:
            return name
    return None


def resolve_by_name(properties: Dict[str, Any], names: Iterable[str]) -> Optional[str]:
    """
    Exact match first, then case-insensitive, alias by alias.
    """
    keys = list(properties.keys())
    for candidate in names:
        if candidate in properties:
            return candidate
        lowered = candidate.lower()
        for k in keys:
            if k.lower() == lowered:
                return k
    return None


class FieldResolver:
    def resolve(
        self,
        schema: CollectionSchema,
        aliases: Tuple[str, ...],
        declared_type: str,
        *,
        default: Optional[str] = None,
        type_fallback: bool = True,
    ) -> str:
        """
        Resolve a logical attribute to a property name.

        Type fallback only applies when exactly one property has the declared
        type; with two numeric fields a guess could swap balance and lifetime
        totals, so an ambiguous type falls through to the default label.
        """
        by_name = resolve_by_name(schema.properties, aliases)
        if by_name is not None:
            return by_name

        if type_fallback:
            candidates = schema.names_of_type(declared_type)
            if len(candidates) == 1:
                return candidates[0]
            if len(candidates) > 1:
                log.warning(
                    "Ambiguous %s properties in %s for %s: %s",
                    declared_type,
                    schema.collection_id,
                    aliases[0] if aliases else "?",
                    candidates,
                )

        label = default if default is not None else (aliases[0] if aliases else "")
        return label


class SchemaRegistry:
    """
    Memoized schema lookups, one entry per collection.

    ttl_seconds <= 0 disables memoization (every get() re-reads the store).
    """

    def __init__(
        self,
        client: Any,
        *,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._cache: Dict[str, Tuple[float, CollectionSchema]] = {}

    def get(self, collection_id: str) -> CollectionSchema:
        now = self._clock()
        if self.ttl_seconds > 0:
            with self._lock:
                hit = self._cache.get(collection_id)
            if hit is not None and now - hit[0] < self.ttl_seconds:
                return hit[1]

        properties = self.client.retrieve_collection_schema(collection_id)
        schema = CollectionSchema(collection_id=collection_id, properties=dict(properties))
        if self.ttl_seconds > 0:
            with self._lock:
                self._cache[collection_id] = (now, schema)
        return schema

    def invalidate(self, collection_id: Optional[str] = None) -> None:
        with self._lock:
            if collection_id is None:
                self._cache.clear()
            else:
                self._cache.pop(collection_id, None)
