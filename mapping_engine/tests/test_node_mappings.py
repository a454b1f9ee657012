from __future__ import annotations

import json

import pytest

from mapping_engine.registry.node_mappings import (
    InMemoryNodeMappingStore,
    assemble_form_records,
    extract_node_mapping,
)

FORM_RECORDS = [
    {
        "Id": "form-1",
        "FormVersions": [
            {"Id": "fv-old", "Mappings": None},
            {
                "Id": "fv-1",
                "Mappings": {
                    "Mappings": {
                        "node_create": {
                            "actionType": "CreateUpdate",
                            "salesforceObject": "Account",
                            "fieldMappings": [{"formFieldId": "name", "salesforceField": "Name"}],
                        },
                        "node_loop": {"actionType": "Loop", "loopConfig": {"loopCollection": "node_find"}},
                    }
                },
            },
        ],
    }
]


def test_chunks_are_joined_in_numeric_order() -> None:
    text = json.dumps(FORM_RECORDS)
    pieces = [text[i : i + 7] for i in range(0, len(text), 7)]
    items = [{"ChunkIndex": {"S": f"FormRecords_{n}"}, "FormRecords": {"S": piece}} for n, piece in enumerate(pieces)]
    items.append({"ChunkIndex": {"S": "Metadata"}, "FormRecords": {"S": "ignored"}})

    assert assemble_form_records(reversed(items)) == FORM_RECORDS


def test_corrupt_chunks_yield_nothing() -> None:
    items = [{"ChunkIndex": "FormRecords_0", "FormRecords": "[{\"Id\": "}]
    assert assemble_form_records(items) is None
    assert extract_node_mapping(items, "fv-1", "node_create") is None


def test_extract_node_mapping_returns_builder_shape() -> None:
    store = InMemoryNodeMappingStore()
    store.add_form_records("user-1", FORM_RECORDS, chunk_size=50)

    mapping = extract_node_mapping(store.items_by_user["user-1"], "fv-1", "node_create")

    assert mapping == {
        "nodeId": "node_create",
        "type": "CreateUpdate",
        "salesforceObject": "Account",
        "conditions": None,
        "fieldMappings": [{"formFieldId": "name", "salesforceField": "Name"}],
        "loopConfig": None,
        "formatterConfig": None,
        "config": None,
    }


@pytest.mark.parametrize(
    "form_version_id, node_id",
    [("fv-missing", "node_create"), ("fv-old", "node_create"), ("fv-1", "node_missing")],
)
def test_missing_versions_and_nodes(form_version_id, node_id) -> None:
    store = InMemoryNodeMappingStore()
    store.add_form_records("user-1", FORM_RECORDS)

    assert extract_node_mapping(store.items_by_user["user-1"], form_version_id, node_id) is None


@pytest.mark.asyncio
async def test_store_lookup_is_per_user() -> None:
    store = InMemoryNodeMappingStore()
    store.add_form_records("user-1", FORM_RECORDS)

    found = await store.get_node_mapping("user-1", "fv-1", "node_loop")
    assert found["type"] == "Loop"
    assert found["loopConfig"] == {"loopCollection": "node_find"}
    assert await store.get_node_mapping("user-2", "fv-1", "node_loop") is None
