"""Semantic key codec.

A semantic key fingerprints a (source, target) descriptor pair:

    srcType:srcFingerprint#tgtType:tgtFingerprint

Each fingerprint is the compact, key-sorted JSON of a reduced field set:
the entity type, the entity name, a simplified schema (attribute name to
type name) and, for wrapper descriptors, the ordered component types.
Two pairs with identical reduced fields always produce the identical key.

make_key never raises. If fingerprinting fails it returns a fallback key
(``fallback:<ns>:<hex>``) that matches nothing; use is_fallback_key to
detect it before doing any key comparison.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from semantic_mediator.schemas import SemanticDescriptor

logger = logging.getLogger(__name__)

FALLBACK_PREFIX = "fallback:"

_TYPE_FIELDS = ("type", "entity", "entity_type", "entityType")
_decoder = json.JSONDecoder()


@dataclass(frozen=True)
class ParsedKey:
    """A semantic key split back into its halves.

    ``source_data`` / ``target_data`` are the decoded fingerprints, or the raw
    fingerprint strings when they do not decode as JSON objects.
    """

    source_type: str
    source_data: dict[str, Any] | str
    target_type: str
    target_data: dict[str, Any] | str


def descriptor_document(descriptor: SemanticDescriptor | Mapping[str, Any]) -> dict[str, Any]:
    """Plain-dict view of a descriptor, whichever form it arrives in."""
    if isinstance(descriptor, SemanticDescriptor):
        return descriptor.to_document()
    return dict(descriptor)


def entity_type_of(descriptor: SemanticDescriptor | Mapping[str, Any]) -> str:
    """Entity type of a descriptor: type, entity, entity_type/entityType, else "unknown"."""
    doc = descriptor_document(descriptor)
    for field_name in _TYPE_FIELDS:
        value = doc.get(field_name)
        if value:
            return str(value)
    return "unknown"


def _sanitize_type(type_name: str) -> str:
    return type_name.replace(":", "_").replace("#", "_")


def _simplified_schema(attributes: Any) -> dict[str, str]:
    if not isinstance(attributes, Mapping):
        return {}
    schema: dict[str, str] = {}
    for name, spec in attributes.items():
        if isinstance(spec, Mapping) and spec.get("type"):
            schema[str(name)] = str(spec["type"])
        else:
            schema[str(name)] = type(spec).__name__
    return schema


def _reduced_fields(doc: Mapping[str, Any]) -> dict[str, Any]:
    reduced: dict[str, Any] = {
        "type": entity_type_of(doc),
        "entity": doc.get("entity"),
        "schema": _simplified_schema(doc.get("attributes")),
    }
    components = doc.get("components")
    if components:
        reduced["components"] = [entity_type_of(descriptor_document(c)) for c in components]
    return reduced


def _fingerprint(doc: Mapping[str, Any]) -> str:
    return json.dumps(_reduced_fields(doc), sort_keys=True, separators=(",", ":"))


def make_fallback_key() -> str:
    """Random, time-seeded key guaranteed not to match any other key."""
    return f"{FALLBACK_PREFIX}{time.time_ns()}:{secrets.token_hex(8)}"


def is_fallback_key(key: str | None) -> bool:
    return bool(key) and str(key).startswith(FALLBACK_PREFIX)


def make_key(
    source: SemanticDescriptor | Mapping[str, Any],
    target: SemanticDescriptor | Mapping[str, Any],
) -> str:
    """Build the semantic key for a descriptor pair."""
    try:
        src = descriptor_document(source)
        tgt = descriptor_document(target)
        src_type = _sanitize_type(entity_type_of(src))
        tgt_type = _sanitize_type(entity_type_of(tgt))
        return f"{src_type}:{_fingerprint(src)}#{tgt_type}:{_fingerprint(tgt)}"
    except Exception as e:
        logger.warning("Semantic key generation failed, using fallback key: %s", e)
        return make_fallback_key()


def _decode_half(raw: str) -> dict[str, Any] | str:
    try:
        value = json.loads(raw)
    except ValueError:
        return raw
    return value if isinstance(value, dict) else raw


def parse_key(key: str) -> ParsedKey:
    """Split a key into (source_type, source_data, target_type, target_data).

    Never raises. Halves that do not decode are kept as raw strings.
    """
    source_type, _, rest = key.partition(":")

    source_data: dict[str, Any] | str
    target_part: str
    try:
        decoded, end = _decoder.raw_decode(rest)
    except ValueError:
        decoded, end = None, -1

    if isinstance(decoded, dict) and rest[end:end + 1] == "#":
        source_data = decoded
        target_part = rest[end + 1:]
    else:
        raw_source, _, target_part = rest.partition("#")
        source_data = raw_source

    target_type, _, raw_target = target_part.partition(":")
    return ParsedKey(
        source_type=source_type,
        source_data=source_data,
        target_type=target_type,
        target_data=_decode_half(raw_target),
    )
