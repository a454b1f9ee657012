from mapping_engine.schema.models import (
    AnyNode,
    Condition,
    ConditionGroup,
    ConditionNode,
    CreateUpdateNode,
    EndNode,
    FieldMapping,
    FindGoogleSheetNode,
    FindNode,
    FormatterConfig,
    FormatterNode,
    GoogleSheetNode,
    LoopConfig,
    LoopNode,
    LoopVariables,
    Node,
    PathNode,
    SheetColumnMapping,
    SheetConfig,
    StartNode,
    UnsupportedNode,
)
from mapping_engine.schema.normalize import normalize_node, normalize_nodes

__all__ = [
    "AnyNode",
    "Condition",
    "ConditionGroup",
    "ConditionNode",
    "CreateUpdateNode",
    "EndNode",
    "FieldMapping",
    "FindGoogleSheetNode",
    "FindNode",
    "FormatterConfig",
    "FormatterNode",
    "GoogleSheetNode",
    "LoopConfig",
    "LoopNode",
    "LoopVariables",
    "Node",
    "PathNode",
    "SheetColumnMapping",
    "SheetConfig",
    "StartNode",
    "UnsupportedNode",
    "normalize_node",
    "normalize_nodes",
]
