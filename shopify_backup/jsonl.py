"""JSONL parsing and reassembly of flat bulk operation output into trees.

Bulk operation results are one JSON object per line. Nested connections are
flattened: every child is its own line carrying a ``__parentId`` that points
at the ``id`` of the object it belongs to, e.g.::

    {"id": "gid://shopify/Product/1", "title": "Mug"}
    {"id": "gid://shopify/ProductVariant/11", "__parentId": "gid://shopify/Product/1"}
    {"id": "gid://shopify/Metafield/21", "__parentId": "gid://shopify/ProductVariant/11"}

reconstruct() turns that back into one product with a ``variants`` list whose
variant has its own ``metafields`` list, driven by a Schema.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import NamedTuple, TypeAlias, cast
import json
import logging

from yarl import URL

from .errors import ParseError

__all__ = (
    "PARENT_KEY",
    "Json",
    "JsonD",
    "Gid",
    "Schema",
    "parse_gid",
    "entity_type",
    "strip_parent",
    "parse_jsonl",
    "reconstruct",
)

logger = logging.getLogger(__name__)

Json: TypeAlias = dict[str, "Json"] | list["Json"] | str | int | float | bool | None
JsonD: TypeAlias = dict[str, Json]

PARENT_KEY = "__parentId"


class Gid(NamedTuple):
    namespace: str
    scheme: str
    entity: str
    id: str

    def __str__(self) -> str:
        return f"{self.namespace}://{self.scheme}/{self.entity}/{self.id}"


def parse_gid(value: str) -> Gid | None:
    try:
        url = URL(value)
    except (TypeError, ValueError):
        return None

    if not url.scheme or not url.host:
        return None

    # parts is ("/", entity, id) for a well-formed gid
    parts = url.parts
    if len(parts) != 3 or not parts[1] or not parts[2]:
        return None

    return Gid(url.scheme, url.host, parts[1], parts[2])


def entity_type(record: JsonD) -> str | None:
    rid = record.get("id")
    if not isinstance(rid, str):
        return None
    if gid := parse_gid(rid):
        return gid.entity
    return None


def parse_jsonl(text: str) -> list[Json]:
    records: list[Json] = []
    for lineno, line in enumerate(text.split("\n"), start=1):
        if not (line := line.strip()):
            continue

        try:
            records.append(json.loads(line))
        except json.JSONDecodeError as e:
            raise ParseError(lineno, e.msg) from e

    return records


def strip_parent(record: JsonD) -> JsonD:
    return {k: v for k, v in record.items() if k != PARENT_KEY}


@dataclass(frozen=True, slots=True)
class Schema:
    """Where the children of one entity type go.

    children maps a child entity type to the list it is appended to on its
    owner (several types may share a list, e.g. ProductImage and MediaImage
    both land in "images"). nested gives the child types that own children of
    their own, keyed by entity type, with the Schema for those children.
    """

    root: str
    children: Mapping[str, str] = field(default_factory=dict)
    nested: Mapping[str, "Schema"] = field(default_factory=dict)

    def __post_init__(self):
        for entity, schema in self.nested.items():
            if entity not in self.children:
                raise ValueError(f"nested owner {entity} has no slot in {self.root}")
            if schema.root != entity:
                raise ValueError(f"nested schema for {entity} is rooted at {schema.root}")

    def slots(self) -> list[str]:
        return list(dict.fromkeys(self.children.values()))

    def empty(self, record: JsonD) -> JsonD:
        node = strip_parent(record)
        for slot in self.slots():
            # plain list fields (no connection) arrive inline on the record
            inline = node.get(slot)
            node[slot] = list(inline) if isinstance(inline, list) else []
        return node


Owner: TypeAlias = tuple[JsonD, Schema]


def reconstruct(records: Iterable[Json], schema: Schema) -> list[JsonD]:
    index: dict[str, JsonD] = {}
    roots: dict[str, JsonD] = {}
    pending: list[JsonD] = []

    for record in records:
        if not isinstance(record, dict):
            continue

        rid = record.get("id")
        if isinstance(rid, str):
            index[rid] = record

        if parent := record.get(PARENT_KEY):
            if isinstance(parent, str):
                pending.append(record)
        elif isinstance(rid, str) and entity_type(record) == schema.root:
            # duplicate roots: last write wins, but the first position is kept
            roots[rid] = schema.empty(record)

    # attach one level of ownership per pass, walking the stream in order each
    # time, so a grandchild listed before its own parent still finds it
    level: dict[str, Owner] = {rid: (root, schema) for rid, root in roots.items()}
    ignored = 0
    while level and pending:
        next_level: dict[str, Owner] = {}
        unresolved: list[JsonD] = []

        for record in pending:
            owner = level.get(cast(str, record[PARENT_KEY]))
            if owner is None:
                unresolved.append(record)
                continue

            node, owner_schema = owner
            entity = entity_type(record)
            if entity is None or (slot := owner_schema.children.get(entity)) is None:
                ignored += 1
                continue

            if nested := owner_schema.nested.get(entity):
                child = nested.empty(record)
                next_level[cast(str, record["id"])] = (child, nested)
            else:
                child = strip_parent(record)

            cast(list[Json], node[slot]).append(child)

        level, pending = next_level, unresolved

    if pending or ignored:
        orphans = sum(1 for r in pending if r[PARENT_KEY] not in index)
        logger.debug(
            "%s: dropped %d orphan(s), %d unowned and %d unknown child record(s)",
            schema.root,
            orphans,
            len(pending) - orphans,
            ignored,
        )

    return list(roots.values())
