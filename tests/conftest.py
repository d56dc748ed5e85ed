"""
Test configuration for the point card ledger.

FakeDocumentStore stands in for DocumentStoreClient: same method surface,
Notion-shaped raw records, in-memory, no network.
"""
import copy
import functools
import itertools
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from apps.pointcard.services.errors import CoreError, NotFound
from apps.pointcard.services.loyalty.loyalty_repository import LoyaltyRepository
from apps.pointcard.services.loyalty.loyalty_service import LoyaltyService
from apps.pointcard.services.loyalty.models import normalize_id
from apps.pointcard.services.store_client import QueryPage

CUSTOMERS = "db-customers"
TRANSACTIONS = "db-transactions"
LOCATIONS = "db-locations"
REWARDS = "db-rewards"

ADMIN = "U-admin"

DEFAULT_SCHEMAS: Dict[str, Dict[str, str]] = {
    CUSTOMERS: {
        "name": "title",
        "line_uid": "rich_text",
        "total_points": "number",
        "current_points": "number",
        "used_points": "number",
        "visit_count": "number",
        "last_visit_date": "date",
    },
    TRANSACTIONS: {
        "ID": "title",
        "customer": "relation",
        "date": "date",
        "amount": "number",
        "type": "select",
        "store": "select",
        "location": "rich_text",
        "device": "rich_text",
        "reason": "rich_text",
        "reward": "relation",
    },
    LOCATIONS: {
        "store_id": "title",
        "name": "rich_text",
        "latitude": "number",
        "longitude": "number",
        "radius": "number",
        "qr_token": "rich_text",
        "nfc_url": "url",
        "is_active": "checkbox",
    },
    REWARDS: {
        "reward_id": "title",
        "title": "rich_text",
        "description": "rich_text",
        "points_required": "number",
        "is_repeatable": "checkbox",
        "order": "number",
        "is_active": "checkbox",
    },
}


def _plain(container: Dict[str, Any]) -> Any:
    kind = container.get("type")
    value = container.get(kind)
    if kind in ("title", "rich_text"):
        return "".join(
            frag.get("plain_text") or (frag.get("text") or {}).get("content", "")
            for frag in (value or [])
        )
    if kind == "select":
        return (value or {}).get("name")
    if kind == "date":
        return (value or {}).get("start")
    if kind == "relation":
        return [normalize_id(x.get("id")) for x in (value or [])]
    return value


def _locked(method):
    # one store call at a time, like a single remote endpoint
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


class FakeDocumentStore:
    def __init__(self, schemas: Optional[Dict[str, Dict[str, str]]] = None) -> None:
        self._lock = threading.RLock()
        self.schemas: Dict[str, Dict[str, str]] = copy.deepcopy(schemas or DEFAULT_SCHEMAS)
        self.records: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self._failures: List[Dict[str, Any]] = []
        self._tick = itertools.count()
        self._epoch = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.closed = False

    # -----------------------------
    # Failure injection
    # -----------------------------
    def fail(self, method: str, exc: Optional[Exception] = None, *, record_id: Optional[str] = None, times: int = 1):
        self._failures.append(
            {"method": method, "exc": exc or CoreError("injected failure", 503), "record_id": record_id, "times": times}
        )

    def _maybe_fail(self, method: str, record_id: Optional[str] = None) -> None:
        for f in self._failures:
            if f["method"] != method or f["times"] <= 0:
                continue
            if f["record_id"] is not None and f["record_id"] != record_id:
                continue
            f["times"] -= 1
            raise f["exc"]

    def _now(self) -> str:
        moment = self._epoch + timedelta(seconds=next(self._tick))
        return moment.isoformat().replace("+00:00", ".000Z")

    def _typed(self, collection_id: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        schema = self.schemas.get(collection_id, {})
        out = {}
        for name, container in properties.items():
            container = dict(container)
            declared = schema.get(name)
            if declared and "type" not in container:
                container["type"] = declared
            for frag in container.get("title") or container.get("rich_text") or []:
                if isinstance(frag, dict) and "text" in frag:
                    frag.setdefault("plain_text", frag["text"].get("content", ""))
            out[name] = container
        return out

    # -----------------------------
    # DocumentStoreClient surface
    # -----------------------------
    @_locked
    def retrieve_collection_schema(self, collection_id: str) -> Dict[str, str]:
        self.calls.append(("schema", collection_id))
        self._maybe_fail("schema", collection_id)
        if collection_id not in self.schemas:
            raise NotFound(f"Store object not found: /databases/{collection_id}")
        return dict(self.schemas[collection_id])

    @_locked
    def query_collection(
        self,
        collection_id: str,
        *,
        filter: Optional[Dict[str, Any]] = None,
        sorts: Optional[List[Dict[str, Any]]] = None,
        page_size: int = 100,
        start_cursor: Optional[str] = None,
    ) -> QueryPage:
        self.calls.append(("query", collection_id, filter, sorts, page_size))
        self._maybe_fail("query", collection_id)

        rows = [
            r for r in self.records.values()
            if r["parent"]["database_id"] == collection_id and not r["archived"]
        ]
        if filter:
            rows = [r for r in rows if self._matches(r, filter)]
        for s in reversed(sorts or []):
            rows.sort(key=lambda r: self._sort_key(r, s), reverse=s.get("direction") == "descending")

        start = int(start_cursor or 0)
        size = max(1, min(int(page_size), 100))
        page = rows[start:start + size]
        has_more = start + size < len(rows)
        return QueryPage(
            results=[copy.deepcopy(r) for r in page],
            next_cursor=str(start + size) if has_more else None,
            has_more=has_more,
        )

    def iter_collection(self, collection_id, *, filter=None, sorts=None, page_size=100):
        cursor = None
        while True:
            page = self.query_collection(
                collection_id, filter=filter, sorts=sorts, page_size=page_size, start_cursor=cursor
            )
            yield from page.results
            if not page.has_more:
                return
            cursor = page.next_cursor

    @_locked
    def create_record(self, collection_id: str, properties: Dict[str, Any]) -> str:
        self.calls.append(("create", collection_id))
        self._maybe_fail("create", collection_id)
        record_id = str(uuid.uuid4())
        now = self._now()
        self.records[record_id] = {
            "object": "page",
            "id": record_id,
            "created_time": now,
            "last_edited_time": now,
            "archived": False,
            "parent": {"type": "database_id", "database_id": collection_id},
            "properties": self._typed(collection_id, properties),
        }
        return record_id

    @_locked
    def update_record(self, record_id: str, properties: Dict[str, Any]) -> None:
        self.calls.append(("update", record_id))
        self._maybe_fail("update", record_id)
        record = self._get(record_id)
        record["properties"].update(self._typed(record["parent"]["database_id"], properties))
        record["last_edited_time"] = self._now()

    @_locked
    def archive_record(self, record_id: str) -> None:
        self.calls.append(("archive", record_id))
        self._maybe_fail("archive", record_id)
        record = self._get(record_id)
        record["archived"] = True
        record["last_edited_time"] = self._now()

    @_locked
    def retrieve_record(self, record_id: str) -> Dict[str, Any]:
        self.calls.append(("retrieve", record_id))
        self._maybe_fail("retrieve", record_id)
        return copy.deepcopy(self._get(record_id))

    def close(self) -> None:
        self.closed = True

    # -----------------------------
    # Helpers
    # -----------------------------
    def _get(self, record_id: str) -> Dict[str, Any]:
        record = self.records.get(record_id)
        if record is None:
            raise NotFound(f"Store object not found: /pages/{record_id}")
        return record

    def _matches(self, record: Dict[str, Any], flt: Dict[str, Any]) -> bool:
        container = record["properties"].get(flt["property"])
        value = _plain(container) if container else None
        if "relation" in flt:
            return normalize_id(flt["relation"]["contains"]) in (value or [])
        for kind, cond in flt.items():
            if kind == "property":
                continue
            if kind == "checkbox":
                return bool(value) == cond["equals"]
            return value == cond["equals"]
        return True

    def _sort_key(self, record: Dict[str, Any], sort: Dict[str, Any]):
        if "timestamp" in sort:
            return record[sort["timestamp"]]
        container = record["properties"].get(sort["property"])
        value = _plain(container) if container else None
        return (value is None, value if value is not None else 0)

    def count(self, collection_id: str, *, include_archived: bool = False) -> int:
        return sum(
            1 for r in self.records.values()
            if r["parent"]["database_id"] == collection_id and (include_archived or not r["archived"])
        )


# -----------------------------
# Fixtures
# -----------------------------
@pytest.fixture
def store() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture
def repo(store) -> LoyaltyRepository:
    return LoyaltyRepository(
        store,
        customers_id=CUSTOMERS,
        transactions_id=TRANSACTIONS,
        locations_id=LOCATIONS,
        rewards_id=REWARDS,
    )


@pytest.fixture
def service(repo) -> LoyaltyService:
    return LoyaltyService(repo, admin_identities=[ADMIN], award_points=1, default_radius=50.0)


# -----------------------------
# Seed helpers
# -----------------------------
def add_customer(repo: LoyaltyRepository, identity: str, display_name: str = "", **aggregates: Any) -> str:
    values = {"identity": identity, "display_name": display_name}
    values.update(aggregates)
    return repo.customers.create(values)


def add_location(
    repo: LoyaltyRepository,
    location_id: str = "L1",
    *,
    name: str = "Shibuya",
    latitude: float = 35.6595,
    longitude: float = 139.7005,
    radius: float = 100.0,
    token: str = "T1",
    is_active: bool = True,
) -> str:
    return repo.locations.create(
        {
            "location_id": location_id,
            "name": name,
            "latitude": latitude,
            "longitude": longitude,
            "radius": radius,
            "secret_token": token,
            "is_active": is_active,
        }
    )


def add_reward(
    repo: LoyaltyRepository,
    reward_id: str = "R1",
    *,
    title: str = "Free coffee",
    points_required: int = 10,
    order: int = 1,
    is_active: bool = True,
) -> str:
    return repo.rewards.create(
        {
            "reward_id": reward_id,
            "title": title,
            "points_required": points_required,
            "order": order,
            "is_active": is_active,
        }
    )


def add_transaction(repo: LoyaltyRepository, customer_id: str, amount: int, kind: str = "PURCHASE", **extra: Any) -> str:
    values = {"customer_id": customer_id, "amount": amount, "kind": kind, "reference": str(uuid.uuid4())}
    values.update(extra)
    return repo.transactions.create(values)
