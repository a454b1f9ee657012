"""
Node definitions saved by the form builder.

The builder persists a user's forms as one JSON document split across
``FormRecords_<n>`` chunk items. A node that reaches the engine without a
type is hydrated from the mapping stored on its form version.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

from shared.logger import get_logger

logger = get_logger("mapping_engine.registry.node_mappings")

CHUNK_PREFIX = "FormRecords_"


class NodeMappingStore(Protocol):
    async def get_node_mapping(self, user_id: str, form_version_id: str, node_id: str) -> Optional[Dict[str, Any]]:
        ...


def _attr(item: Mapping[str, Any], key: str) -> Any:
    # Items may arrive as plain values or as typed attributes ({"S": "..."}).
    value = item.get(key)
    if isinstance(value, Mapping):
        return value.get("S")
    return value


def _chunk_number(item: Mapping[str, Any]) -> int:
    suffix = str(_attr(item, "ChunkIndex")).split("_", 1)[1]
    try:
        return int(suffix)
    except ValueError:
        return 0


def assemble_form_records(chunk_items: Iterable[Mapping[str, Any]]) -> Optional[List[Dict[str, Any]]]:
    """Join the ``FormRecords_<n>`` chunks in numeric order and parse them."""
    chunks = [
        item for item in chunk_items
        if isinstance(_attr(item, "ChunkIndex"), str) and _attr(item, "ChunkIndex").startswith(CHUNK_PREFIX)
    ]
    if not chunks:
        return []
    chunks.sort(key=_chunk_number)
    try:
        records = json.loads("".join(str(_attr(item, "FormRecords") or "") for item in chunks))
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse FormRecords chunks: {e}")
        return None
    return records if isinstance(records, list) else None


def extract_node_mapping(
    chunk_items: Iterable[Mapping[str, Any]],
    form_version_id: str,
    node_id: str,
) -> Optional[Dict[str, Any]]:
    records = assemble_form_records(chunk_items)
    if records is None:
        return None

    version = next(
        (
            version
            for form in records
            if isinstance(form, Mapping)
            for version in form.get("FormVersions") or []
            if isinstance(version, Mapping) and version.get("Id") == form_version_id
        ),
        None,
    )
    if not version or not version.get("Mappings"):
        logger.warning(f"Form version {form_version_id} not found or has no mappings")
        return None

    node_mapping = (version["Mappings"].get("Mappings") or {}).get(node_id)
    if not node_mapping:
        logger.warning(f"Node {node_id} not found in mappings")
        return None

    return {
        "nodeId": node_id,
        "type": node_mapping.get("actionType"),
        "salesforceObject": node_mapping.get("salesforceObject"),
        "conditions": node_mapping.get("conditions"),
        "fieldMappings": node_mapping.get("fieldMappings") or [],
        "loopConfig": node_mapping.get("loopConfig"),
        "formatterConfig": node_mapping.get("formatterConfig"),
        "config": node_mapping.get("config"),
    }


class InMemoryNodeMappingStore:
    """Holds each user's chunk items in process memory."""

    def __init__(self, items_by_user: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> None:
        self.items_by_user = items_by_user or {}

    def add_form_records(self, user_id: str, form_records: List[Dict[str, Any]], chunk_size: int = 1000) -> None:
        text = json.dumps(form_records)
        self.items_by_user[user_id] = [
            {"UserId": user_id, "ChunkIndex": f"{CHUNK_PREFIX}{n}", "FormRecords": text[start:start + chunk_size]}
            for n, start in enumerate(range(0, len(text), chunk_size))
        ]

    async def get_node_mapping(self, user_id: str, form_version_id: str, node_id: str) -> Optional[Dict[str, Any]]:
        return extract_node_mapping(self.items_by_user.get(user_id, []), form_version_id, node_id)


__all__ = [
    "CHUNK_PREFIX",
    "InMemoryNodeMappingStore",
    "NodeMappingStore",
    "assemble_form_records",
    "extract_node_mapping",
]
