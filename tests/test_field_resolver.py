"""
Field resolution against operator-edited schemas.
"""
import logging

from hypothesis import given, settings, strategies as st

from apps.pointcard.services.loyalty.field_resolver import (
    CollectionSchema,
    FieldResolver,
    SchemaRegistry,
    resolve_by_name,
    resolve_by_type,
)

from conftest import FakeDocumentStore, CUSTOMERS


def test_resolve_by_type_returns_first_declared_match():
    props = {"name": "title", "total_points": "number", "current_points": "number"}
    assert resolve_by_type(props, "number") == "total_points"
    assert resolve_by_type(props, "title") == "name"


def test_resolve_by_type_not_found():
    assert resolve_by_type({"name": "title"}, "checkbox") is None


def test_resolve_by_name_is_case_insensitive_and_alias_ordered():
    props = {"Current_Points": "number", "total_points": "number"}
    assert resolve_by_name(props, ("current_points",)) == "Current_Points"
    assert resolve_by_name(props, ("missing", "TOTAL_POINTS")) == "total_points"
    assert resolve_by_name(props, ("missing",)) is None


def test_ambiguous_type_is_disambiguated_by_name_hint():
    schema = CollectionSchema(
        "db", {"total_points": "number", "current_points": "number", "used_points": "number"}
    )
    resolver = FieldResolver()

    assert resolver.resolve(schema, ("current_points",), "number") == "current_points"
    assert resolver.resolve(schema, ("used_points",), "number") == "used_points"


def test_ambiguous_type_without_name_match_falls_back_to_default_label(caplog):
    schema = CollectionSchema("db", {"総獲得ポイント": "number", "現在ポイント": "number"})
    resolver = FieldResolver()

    with caplog.at_level(logging.WARNING, logger="pointcard.schema"):
        resolved = resolver.resolve(schema, ("balance",), "number", default="balance")

    # never guesses between two numeric fields
    assert resolved == "balance"
    assert "Ambiguous number" in caplog.text


def test_unambiguous_type_fallback():
    schema = CollectionSchema("db", {"Member Name": "title", "visits": "number"})
    resolver = FieldResolver()
    assert resolver.resolve(schema, ("display_name",), "title") == "Member Name"
    assert resolver.resolve(schema, ("display_name",), "title", type_fallback=False) == "display_name"


def test_schema_registry_memoizes_until_invalidated():
    store = FakeDocumentStore()
    registry = SchemaRegistry(store, ttl_seconds=300)

    first = registry.get(CUSTOMERS)
    second = registry.get(CUSTOMERS)
    assert first is second
    assert store.calls.count(("schema", CUSTOMERS)) == 1

    store.schemas[CUSTOMERS]["nickname"] = "rich_text"
    registry.invalidate(CUSTOMERS)
    third = registry.get(CUSTOMERS)
    assert "nickname" in third
    assert store.calls.count(("schema", CUSTOMERS)) == 2


def test_schema_registry_expires_after_ttl():
    now = [0.0]
    store = FakeDocumentStore()
    registry = SchemaRegistry(store, ttl_seconds=10, clock=lambda: now[0])

    registry.get(CUSTOMERS)
    now[0] = 9.0
    registry.get(CUSTOMERS)
    now[0] = 10.5
    registry.get(CUSTOMERS)
    assert store.calls.count(("schema", CUSTOMERS)) == 2


def test_schema_registry_ttl_zero_always_reads():
    store = FakeDocumentStore()
    registry = SchemaRegistry(store, ttl_seconds=0)
    registry.get(CUSTOMERS)
    registry.get(CUSTOMERS)
    assert store.calls.count(("schema", CUSTOMERS)) == 2


_names = st.text(alphabet="abcdefgh_", min_size=1, max_size=6)
_types = st.sampled_from(["title", "rich_text", "number", "checkbox", "date", "relation"])


@given(
    properties=st.dictionaries(_names, _types, max_size=6),
    aliases=st.lists(_names, min_size=1, max_size=3).map(tuple),
    declared=_types,
)
@settings(max_examples=100, deadline=None)
def test_resolution_is_deterministic_and_bounded(properties, aliases, declared):
    """
    Same schema, same answer; the answer is a schema property or the default label.
    """
    schema = CollectionSchema("db", properties)
    resolver = FieldResolver()

    a = resolver.resolve(schema, aliases, declared)
    b = resolver.resolve(CollectionSchema("db", dict(properties)), aliases, declared)

    assert a == b
    assert a in properties or a == aliases[0]
    if a not in properties:
        assert len(schema.names_of_type(declared)) != 1
