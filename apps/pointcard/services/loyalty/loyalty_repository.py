"""
Loyalty Repository (Document Store Adapter)
===========================================

Purpose:
- Store-facing adapter for the four point card collections.
- Every read/write resolves the collection schema through the SchemaRegistry
  and hands it to the entity codec; no property name is hard-coded here.
- A 400 from the store usually means a property was renamed since the schema
  was cached: the schema is dropped, re-read and the call retried once.

Collections:
1) customers     - one record per member (external identity, aggregates)
2) transactions  - append-only ledger entries referencing a customer
3) locations     - check-in locations (read-only from the ledger)
4) rewards       - redeemable catalog (read-only from the ledger)
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Generic, Iterator, List, Mapping, Optional, TypeVar

from apps.pointcard.services.errors import UpstreamUnavailable
from apps.pointcard.services.loyalty.field_resolver import CollectionSchema, SchemaRegistry
from apps.pointcard.services.loyalty.models import Customer, Location, Reward, Transaction
from apps.pointcard.services.loyalty.record_codec import (
    CUSTOMER_CODEC,
    LOCATION_CODEC,
    REWARD_CODEC,
    TRANSACTION_CODEC,
    RecordCodec,
)

log = logging.getLogger("pointcard.repository")

M = TypeVar("M")
T = TypeVar("T")


def _schema_rejected(e: UpstreamUnavailable) -> bool:
    return e.detail.get("status") == 400


class CollectionGateway(Generic[M]):
    def __init__(
        self,
        client: Any,
        registry: SchemaRegistry,
        collection_id: str,
        codec: RecordCodec[M],
        *,
        label: str,
    ) -> None:
        self.client = client
        self.registry = registry
        self.collection_id = collection_id
        self.codec = codec
        self.label = label

    def schema(self) -> CollectionSchema:
        if not self.collection_id:
            raise UpstreamUnavailable(f"{self.label} collection is not configured")
        return self.registry.get(self.collection_id)

    def property_name(self, attribute: str) -> str:
        return self.codec.property_name(self.schema(), attribute)

    def _with_schema(self, call: Callable[[CollectionSchema], T]) -> T:
        try:
            return call(self.schema())
        except UpstreamUnavailable as e:
            if not _schema_rejected(e):
                raise
            log.warning("%s request rejected by the store; refreshing schema and retrying once", self.label)
            self.registry.invalidate(self.collection_id)
            return call(self.schema())

    # -----------------------------
    # Reads
    # -----------------------------
    def find_first(self, attribute: str, value: Any) -> Optional[M]:
        def call(schema: CollectionSchema) -> Optional[M]:
            page = self.client.query_collection(
                self.collection_id,
                filter=self.codec.equals_filter(schema, attribute, value),
                page_size=1,
            )
            if not page.results:
                return None
            return self.codec.decode(page.results[0], schema)

        return self._with_schema(call)

    def list_where(
        self,
        attribute: Optional[str] = None,
        value: Any = None,
        *,
        sort_by: Optional[str] = None,
        descending: bool = False,
        sort_by_last_edited: bool = False,
        page_size: int = 100,
    ) -> List[M]:
        def call(schema: CollectionSchema) -> List[M]:
            flt = self.codec.equals_filter(schema, attribute, value) if attribute else None
            sorts = None
            if sort_by:
                sorts = [self.codec.sort(schema, sort_by, descending=descending)]
            elif sort_by_last_edited:
                sorts = [{"timestamp": "last_edited_time", "direction": "descending"}]

            return [
                self.codec.decode(raw, schema)
                for raw in self.client.iter_collection(
                    self.collection_id, filter=flt, sorts=sorts, page_size=page_size
                )
            ]

        return self._with_schema(call)

    def scan(self, *, page_size: int = 100) -> Iterator[M]:
        schema = self.schema()
        for raw in self.client.iter_collection(self.collection_id, page_size=page_size):
            yield self.codec.decode(raw, schema)

    def get(self, record_id: str) -> M:
        schema = self.schema()
        return self.codec.decode(self.client.retrieve_record(record_id), schema)

    # -----------------------------
    # Writes
    # -----------------------------
    def create(self, values: Mapping[str, Any]) -> str:
        return self._with_schema(
            lambda schema: self.client.create_record(self.collection_id, self.codec.encode(values, schema))
        )

    def update(self, record_id: str, delta: Mapping[str, Any]) -> None:
        if not delta:
            return
        self._with_schema(lambda schema: self.client.update_record(record_id, self.codec.encode(delta, schema)))

    def archive(self, record_id: str) -> None:
        self.client.archive_record(record_id)


class LoyaltyRepository:
    def __init__(
        self,
        client: Any,
        *,
        customers_id: str,
        transactions_id: str,
        locations_id: str,
        rewards_id: str,
        schema_ttl_seconds: float = 300.0,
        registry: Optional[SchemaRegistry] = None,
    ) -> None:
        self.client = client
        self.registry = registry or SchemaRegistry(client, ttl_seconds=schema_ttl_seconds)

        self.customers: CollectionGateway[Customer] = CollectionGateway(
            client, self.registry, customers_id, CUSTOMER_CODEC, label="Customer"
        )
        self.transactions: CollectionGateway[Transaction] = CollectionGateway(
            client, self.registry, transactions_id, TRANSACTION_CODEC, label="Point history"
        )
        self.locations: CollectionGateway[Location] = CollectionGateway(
            client, self.registry, locations_id, LOCATION_CODEC, label="Location"
        )
        self.rewards: CollectionGateway[Reward] = CollectionGateway(
            client, self.registry, rewards_id, REWARD_CODEC, label="Reward"
        )

    @classmethod
    def from_settings(cls, client: Any, settings: Any) -> "LoyaltyRepository":
        return cls(
            client,
            customers_id=settings.NOTION_CUSTOMER_DB_ID,
            transactions_id=settings.NOTION_POINT_HISTORY_DB_ID,
            locations_id=settings.NOTION_STORE_DB_ID,
            rewards_id=settings.NOTION_REWARD_DB_ID,
            schema_ttl_seconds=settings.SCHEMA_CACHE_TTL_SECONDS,
        )

    def gateways(self) -> Dict[str, CollectionGateway]:
        return {
            "customers": self.customers,
            "transactions": self.transactions,
            "locations": self.locations,
            "rewards": self.rewards,
        }
