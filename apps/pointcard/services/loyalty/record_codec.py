"""
Record Codec
============

Purpose:
- Convert raw store records (property name -> typed container) to the domain
  dataclasses and back.
- Stored values are a closed sum type (PropertyKind) with one decoder and one
  encoder per variant.

Rules:
- Decoding is defensive: a missing, empty or malformed container yields the
  kind's zero value ("" / 0 / False / []).
- A container whose declared type is not a known kind raises
  UnsupportedPropertyType instead of silently reading as empty.
- Encoding is a partial patch: only attributes present in the delta are emitted.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, Optional, Tuple, Type, TypeVar

from apps.pointcard.services.errors import UnsupportedPropertyType, ValidationError
from apps.pointcard.services.loyalty.field_resolver import CollectionSchema, FieldResolver, resolve_by_name
from apps.pointcard.services.loyalty.models import Customer, Location, Reward, Transaction


class PropertyKind(str, Enum):
    TITLE = "title"
    RICH_TEXT = "rich_text"
    NUMBER = "number"
    CHECKBOX = "checkbox"
    DATE = "date"
    RELATION = "relation"
    SELECT = "select"
    URL = "url"


KNOWN_KINDS = frozenset(k.value for k in PropertyKind)

_TEXT_KINDS = (PropertyKind.TITLE, PropertyKind.RICH_TEXT, PropertyKind.SELECT, PropertyKind.URL, PropertyKind.DATE)

ZERO_VALUES: Dict[PropertyKind, Any] = {
    PropertyKind.TITLE: "",
    PropertyKind.RICH_TEXT: "",
    PropertyKind.NUMBER: 0,
    PropertyKind.CHECKBOX: False,
    PropertyKind.DATE: "",
    PropertyKind.RELATION: [],
    PropertyKind.SELECT: "",
    PropertyKind.URL: "",
}


def zero_value(kind: PropertyKind) -> Any:
    z = ZERO_VALUES[kind]
    return list(z) if isinstance(z, list) else z


# -----------------------------
# Per-variant decoders
# -----------------------------
def _fragments_text(fragments: Any) -> Optional[str]:
    if not isinstance(fragments, list) or not fragments:
        return None
    parts: List[str] = []
    for frag in fragments:
        if not isinstance(frag, dict):
            continue
        text = frag.get("plain_text")
        if text is None:
            text = (frag.get("text") or {}).get("content") if isinstance(frag.get("text"), dict) else None
        if isinstance(text, str):
            parts.append(text)
    return "".join(parts) if parts else None


def _decode_title(c: Dict[str, Any]) -> Any:
    return _fragments_text(c.get("title"))


def _decode_rich_text(c: Dict[str, Any]) -> Any:
    return _fragments_text(c.get("rich_text"))


def _decode_number(c: Dict[str, Any]) -> Any:
    v = c.get("number")
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    return v


def _decode_checkbox(c: Dict[str, Any]) -> Any:
    v = c.get("checkbox")
    return v if isinstance(v, bool) else None


def _decode_date(c: Dict[str, Any]) -> Any:
    d = c.get("date")
    if isinstance(d, dict) and isinstance(d.get("start"), str):
        return d["start"]
    return None


def _decode_relation(c: Dict[str, Any]) -> Any:
    rel = c.get("relation")
    if not isinstance(rel, list):
        return None
    return [str(x["id"]) for x in rel if isinstance(x, dict) and x.get("id")]


def _decode_select(c: Dict[str, Any]) -> Any:
    s = c.get("select")
    if isinstance(s, dict) and isinstance(s.get("name"), str):
        return s["name"]
    return None


def _decode_url(c: Dict[str, Any]) -> Any:
    v = c.get("url")
    return v if isinstance(v, str) else None


_DECODERS: Dict[PropertyKind, Callable[[Dict[str, Any]], Any]] = {
    PropertyKind.TITLE: _decode_title,
    PropertyKind.RICH_TEXT: _decode_rich_text,
    PropertyKind.NUMBER: _decode_number,
    PropertyKind.CHECKBOX: _decode_checkbox,
    PropertyKind.DATE: _decode_date,
    PropertyKind.RELATION: _decode_relation,
    PropertyKind.SELECT: _decode_select,
    PropertyKind.URL: _decode_url,
}


def _coerce(value: Any, expected: PropertyKind) -> Any:
    if value is None:
        return zero_value(expected)

    if expected in _TEXT_KINDS:
        if isinstance(value, str):
            return value
        if isinstance(value, list):
            return value[0] if value else ""
        if isinstance(value, bool):
            return zero_value(expected)
        return str(value)

    if expected is PropertyKind.NUMBER:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0
        return value

    if expected is PropertyKind.CHECKBOX:
        return value if isinstance(value, bool) else False

    if expected is PropertyKind.RELATION:
        if isinstance(value, list):
            return value
        if isinstance(value, str) and value:
            return [value]
        return []

    return zero_value(expected)


def decode_property(container: Any, expected: PropertyKind, property_name: str = "") -> Any:
    """
    Decode one stored container into a plain value of the expected kind.
    """
    if not isinstance(container, dict):
        return zero_value(expected)

    actual = container.get("type") or expected.value
    if actual not in KNOWN_KINDS:
        raise UnsupportedPropertyType(property_name, str(actual))

    return _coerce(_DECODERS[PropertyKind(actual)](container), expected)


# -----------------------------
# Per-variant encoders
# -----------------------------
def _text_fragments(value: Any) -> List[Dict[str, Any]]:
    text = "" if value is None else str(value)
    if not text:
        return []
    return [{"type": "text", "text": {"content": text}}]


def _to_number(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError("boolean is not a number")
    if isinstance(value, (int, float)):
        return value
    try:
        f = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"'{value}' is not a number")
    return int(f) if f.is_integer() else f


def _relation_ids(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v]
    return [str(value)] if value else []


_ENCODERS: Dict[PropertyKind, Callable[[Any], Dict[str, Any]]] = {
    PropertyKind.TITLE: lambda v: {"title": _text_fragments(v)},
    PropertyKind.RICH_TEXT: lambda v: {"rich_text": _text_fragments(v)},
    PropertyKind.NUMBER: lambda v: {"number": _to_number(v)},
    PropertyKind.CHECKBOX: lambda v: {"checkbox": bool(v)},
    PropertyKind.DATE: lambda v: {"date": {"start": str(v)} if v else None},
    PropertyKind.RELATION: lambda v: {"relation": [{"id": i} for i in _relation_ids(v)]},
    PropertyKind.SELECT: lambda v: {"select": {"name": str(v)} if v else None},
    PropertyKind.URL: lambda v: {"url": str(v) if v else None},
}


def encode_value(kind: PropertyKind, value: Any) -> Dict[str, Any]:
    return _ENCODERS[kind](value)


# -----------------------------
# Entity codecs
# -----------------------------
@dataclass(frozen=True)
class Attribute:
    """
    One logical attribute of an entity.

    aliases[0] doubles as the default label when nothing in the schema matches.
    type_fallback allows resolving by declared type when no alias matches and
    the type is unambiguous.
    """
    name: str
    kind: PropertyKind
    aliases: Tuple[str, ...]
    type_fallback: bool = False
    cast: Optional[Callable[[Any], Any]] = None

    @property
    def default_label(self) -> str:
        return self.aliases[0]


def _as_int(v: Any) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return 0


def _as_float(v: Any) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return 0.0


M = TypeVar("M")


class RecordCodec(Generic[M]):
    def __init__(
        self,
        model: Type[M],
        attributes: Iterable[Attribute],
        resolver: Optional[FieldResolver] = None,
    ) -> None:
        self.model = model
        self.attributes: Dict[str, Attribute] = {a.name: a for a in attributes}
        self.resolver = resolver or FieldResolver()

    def attribute(self, name: str) -> Attribute:
        try:
            return self.attributes[name]
        except KeyError:
            raise ValueError(f"{self.model.__name__} has no attribute '{name}'") from None

    def property_name(self, schema: CollectionSchema, name: str) -> str:
        attr = self.attribute(name)
        return self.resolver.resolve(
            schema,
            attr.aliases,
            attr.kind.value,
            default=attr.default_label,
            type_fallback=attr.type_fallback,
        )

    def field_map(self, schema: CollectionSchema) -> Dict[str, str]:
        return {name: self.property_name(schema, name) for name in self.attributes}

    def declared_kind(self, schema: CollectionSchema, name: str) -> Tuple[str, PropertyKind]:
        prop = self.property_name(schema, name)
        declared = schema.declared_type(prop) or self.attributes[name].kind.value
        if declared not in KNOWN_KINDS:
            raise UnsupportedPropertyType(prop, declared)
        return prop, PropertyKind(declared)

    # -----------------------------
    # Decode / encode
    # -----------------------------
    def decode(self, raw: Mapping[str, Any], schema: CollectionSchema) -> M:
        raw = raw if isinstance(raw, Mapping) else {}
        props = raw.get("properties")
        props = props if isinstance(props, dict) else {}

        values: Dict[str, Any] = {}
        for attr in self.attributes.values():
            prop = self.property_name(schema, attr.name)
            container = props.get(prop)
            if container is None:
                alt = resolve_by_name(props, (prop,))
                container = props.get(alt) if alt is not None else None
            value = decode_property(container, attr.kind, prop)
            if attr.kind is PropertyKind.RELATION:
                # single-hop reference: first linked id
                value = value[0] if value else ""
            if attr.cast is not None:
                value = attr.cast(value)
            values[attr.name] = value

        return self.model(
            id=str(raw.get("id") or ""),
            archived=bool(raw.get("archived") or raw.get("in_trash")),
            created_time=str(raw.get("created_time") or ""),
            **values,
        )

    def encode(self, delta: Mapping[str, Any], schema: CollectionSchema) -> Dict[str, Any]:
        patch: Dict[str, Any] = {}
        for name, value in delta.items():
            prop, kind = self.declared_kind(schema, name)
            patch[prop] = encode_value(kind, value)
        return patch

    def to_delta(self, record: M) -> Dict[str, Any]:
        return {name: getattr(record, name) for name in self.attributes}

    # -----------------------------
    # Query helpers
    # -----------------------------
    def equals_filter(self, schema: CollectionSchema, name: str, value: Any) -> Dict[str, Any]:
        prop, kind = self.declared_kind(schema, name)
        if kind is PropertyKind.RELATION:
            return {"property": prop, "relation": {"contains": value}}
        return {"property": prop, kind.value: {"equals": value}}

    def sort(self, schema: CollectionSchema, name: str, *, descending: bool = False) -> Dict[str, Any]:
        return {
            "property": self.property_name(schema, name),
            "direction": "descending" if descending else "ascending",
        }


# ---------------------------------------
# Attribute tables
# Aliases cover the English snake_case names and the operator labels used in
# existing deployments.
# ---------------------------------------
CUSTOMER_CODEC: RecordCodec[Customer] = RecordCodec(
    Customer,
    (
        Attribute("display_name", PropertyKind.TITLE, ("表示名", "Display Name", "name"), type_fallback=True),
        Attribute("identity", PropertyKind.RICH_TEXT, ("LINE UID", "LineUid", "line_uid", "identity"), type_fallback=True),
        Attribute("lifetime_earned", PropertyKind.NUMBER, ("total_points", "総獲得ポイント"), cast=_as_int),
        Attribute("balance", PropertyKind.NUMBER, ("current_points", "現在ポイント"), cast=_as_int),
        Attribute("lifetime_spent", PropertyKind.NUMBER, ("used_points", "使用ポイント"), cast=_as_int),
        Attribute("visit_count", PropertyKind.NUMBER, ("visit_count", "来店回数"), cast=_as_int),
        Attribute("last_visit", PropertyKind.DATE, ("last_visit_date", "最終来店日")),
    ),
)

TRANSACTION_CODEC: RecordCodec[Transaction] = RecordCodec(
    Transaction,
    (
        Attribute("reference", PropertyKind.TITLE, ("ID", "id"), type_fallback=True),
        Attribute("customer_id", PropertyKind.RELATION, ("customer", "顧客", "関連顧客ID"), type_fallback=True),
        Attribute("date", PropertyKind.DATE, ("date", "日時")),
        Attribute("amount", PropertyKind.NUMBER, ("amount", "ポイント数"), type_fallback=True, cast=_as_int),
        Attribute("kind", PropertyKind.SELECT, ("type", "種類")),
        Attribute("location_ref", PropertyKind.SELECT, ("store", "店舗")),
        Attribute("location", PropertyKind.RICH_TEXT, ("location", "位置情報")),
        Attribute("device", PropertyKind.RICH_TEXT, ("device", "端末情報")),
        Attribute("reason", PropertyKind.RICH_TEXT, ("reason", "理由", "メモ")),
        Attribute("reward_id", PropertyKind.RELATION, ("reward", "特典")),
    ),
)

LOCATION_CODEC: RecordCodec[Location] = RecordCodec(
    Location,
    (
        Attribute("location_id", PropertyKind.TITLE, ("store_id", "店舗ID", "Store ID"), type_fallback=True),
        Attribute("name", PropertyKind.RICH_TEXT, ("name", "店舗名")),
        Attribute("latitude", PropertyKind.NUMBER, ("latitude", "緯度"), cast=_as_float),
        Attribute("longitude", PropertyKind.NUMBER, ("longitude", "経度"), cast=_as_float),
        Attribute("radius", PropertyKind.NUMBER, ("radius", "半径"), cast=_as_float),
        Attribute("secret_token", PropertyKind.RICH_TEXT, ("qr_token", "トークン")),
        Attribute("external_url", PropertyKind.URL, ("nfc_url", "NFC"), type_fallback=True),
        Attribute("is_active", PropertyKind.CHECKBOX, ("is_active", "有効")),
    ),
)

REWARD_CODEC: RecordCodec[Reward] = RecordCodec(
    Reward,
    (
        Attribute("reward_id", PropertyKind.TITLE, ("reward_id", "特典ID", "ID", "id"), type_fallback=True),
        Attribute("title", PropertyKind.RICH_TEXT, ("title", "特典名", "name", "名前", "Display Name")),
        Attribute("description", PropertyKind.RICH_TEXT, ("description", "説明")),
        Attribute("points_required", PropertyKind.NUMBER, ("points_required", "必要ポイント"), cast=_as_int),
        Attribute("is_repeatable", PropertyKind.CHECKBOX, ("is_repeatable", "繰り返し可能")),
        Attribute("order", PropertyKind.NUMBER, ("order", "表示順"), cast=_as_int),
        Attribute("is_active", PropertyKind.CHECKBOX, ("is_active", "有効")),
    ),
)
