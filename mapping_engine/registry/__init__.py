from mapping_engine.registry.node_mappings import (
    InMemoryNodeMappingStore,
    NodeMappingStore,
    extract_node_mapping,
)

__all__ = ["InMemoryNodeMappingStore", "NodeMappingStore", "extract_node_mapping"]
