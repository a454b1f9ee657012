"""
Pydantic models describing the canonical node graph executed by the engine.

The form builder persists nodes in more than one shape; everything is
normalised into these models at the boundary (see ``schema.normalize``) so
the runtime only ever sees one representation per node type.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EngineModel(BaseModel):
    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
    )


def _lenient_int(value: Any) -> Any:
    # Builder payloads carry numbers as strings, blanks, or nulls.
    if value is None or value == "":
        return 0
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return 0
    return value


# -----------------------------
# Conditions
# -----------------------------
class Condition(EngineModel):
    field: str = ""
    operator: str = "="
    value: Any = None


class ConditionGroup(EngineModel):
    """
    Structured condition block. ``logicType`` selects how the individual
    conditions combine: ``AND``, ``OR`` or ``Custom`` (``customLogic``).
    """

    conditions: List[Condition] = Field(default_factory=list)
    logic_type: Optional[str] = Field(default=None, alias="logicType")
    custom_logic: Optional[str] = Field(default=None, alias="customLogic")
    return_limit: Optional[Union[int, str]] = Field(default=None, alias="returnLimit")
    sort_field: Optional[str] = Field(default=None, alias="sortField")
    sort_order: Optional[str] = Field(default=None, alias="sortOrder")
    path_option: Optional[str] = Field(default=None, alias="pathOption")


ConditionsSpec = Union[List[Condition], ConditionGroup, None]


def condition_list(spec: ConditionsSpec) -> List[Condition]:
    if spec is None:
        return []
    if isinstance(spec, list):
        return list(spec)
    return list(spec.conditions)


def has_conditions(spec: ConditionsSpec) -> bool:
    return len(condition_list(spec)) > 0


# -----------------------------
# Node configuration blocks
# -----------------------------
class FieldMapping(EngineModel):
    form_field_id: str = Field(default="", alias="formFieldId")
    salesforce_field: str = Field(default="", alias="salesforceField")
    field_type: Optional[str] = Field(default=None, alias="fieldType")
    picklist_value: Optional[Any] = Field(default=None, alias="picklistValue")

    @field_validator("form_field_id", mode="before")
    @classmethod
    def _none_to_blank(cls, value: Any) -> Any:
        return "" if value is None else value


class SheetColumnMapping(EngineModel):
    column: str = ""
    id: str = ""


class LoopVariables(EngineModel):
    current_index: bool = Field(default=False, alias="currentIndex")
    counter: bool = False
    index_base: int = Field(default=0, alias="indexBase")

    @field_validator("index_base", mode="before")
    @classmethod
    def _coerce_base(cls, value: Any) -> Any:
        return _lenient_int(value)

    @field_validator("current_index", "counter", mode="before")
    @classmethod
    def _truthy(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() not in {"", "false", "0", "no"}
        return bool(value)


class LoopConfig(EngineModel):
    loop_collection: str = Field(default="", alias="loopCollection")
    current_item_variable_name: str = Field(default="currentItem", alias="currentItemVariableName")
    loop_variables: LoopVariables = Field(default_factory=LoopVariables, alias="loopVariables")
    max_iterations: int = Field(default=0, alias="maxIterations")

    @field_validator("max_iterations", mode="before")
    @classmethod
    def _coerce_max(cls, value: Any) -> Any:
        return _lenient_int(value)

    @field_validator("loop_variables", mode="before")
    @classmethod
    def _default_variables(cls, value: Any) -> Any:
        return {} if value is None else value


class FormatterConfig(EngineModel):
    format_type: Optional[str] = Field(default=None, alias="formatType")
    operation: Optional[str] = None
    input_field: str = Field(default="", alias="inputField")
    input_field2: Optional[str] = Field(default=None, alias="inputField2")
    options: Dict[str, Any] = Field(default_factory=dict)
    use_custom_input: bool = Field(default=False, alias="useCustomInput")
    custom_value: Any = Field(default=None, alias="customValue")
    output_variable: Optional[str] = Field(default=None, alias="outputVariable")
    node_id: Optional[str] = Field(default=None, alias="nodeId")

    @field_validator("options", mode="before")
    @classmethod
    def _default_options(cls, value: Any) -> Any:
        return {} if value is None else value


class SheetConfig(EngineModel):
    spreadsheet_id: Optional[str] = Field(default=None, alias="spreadsheetId")
    sheet_name: str = Field(default="Sheet1", alias="sheetName")
    sheet_conditions: List[Condition] = Field(default_factory=list, alias="sheetConditions")
    custom_logic: Optional[str] = Field(default=None, alias="customLogic")
    update_multiple: bool = Field(default=False, alias="updateMultiple")
    find_sheet_conditions: List[Condition] = Field(default_factory=list, alias="findSheetConditions")
    logic_type: str = Field(default="AND", alias="logicType")
    sort_field: Optional[str] = Field(default=None, alias="googleSheetSortField")
    sort_order: str = Field(default="ASC", alias="googleSheetSortOrder")
    return_limit: Optional[Union[int, str]] = Field(default=None, alias="googleSheetReturnLimit")

    @field_validator("sheet_name", "logic_type", "sort_order", mode="before")
    @classmethod
    def _blank_to_default(cls, value: Any, info) -> Any:
        if value in (None, ""):
            return {"sheet_name": "Sheet1", "logic_type": "AND", "sort_order": "ASC"}[info.field_name]
        return value

    @field_validator("sheet_conditions", "find_sheet_conditions", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value


# -----------------------------
# Nodes
# -----------------------------
class NodeBase(EngineModel):
    node_id: str = Field(min_length=1, alias="nodeId")
    type: str
    order: int = 0

    @field_validator("order", mode="before")
    @classmethod
    def _coerce_order(cls, value: Any) -> Any:
        return _lenient_int(value)


class StartNode(NodeBase):
    type: Literal["Start"] = "Start"


class EndNode(NodeBase):
    type: Literal["End"] = "End"


class CreateUpdateNode(NodeBase):
    type: Literal["CreateUpdate"] = "CreateUpdate"
    salesforce_object: Optional[str] = Field(default=None, alias="salesforceObject")
    conditions: ConditionsSpec = None
    field_mappings: List[FieldMapping] = Field(default_factory=list, alias="fieldMappings")


class FindNode(NodeBase):
    type: Literal["Find", "Filter"] = "Find"
    salesforce_object: Optional[str] = Field(default=None, alias="salesforceObject")
    conditions: ConditionsSpec = None


class LoopNode(NodeBase):
    type: Literal["Loop"] = "Loop"
    loop_config: Optional[LoopConfig] = Field(default=None, alias="loopConfig")


class PathNode(NodeBase):
    type: Literal["Path"] = "Path"


class FormatterNode(NodeBase):
    type: Literal["Formatter"] = "Formatter"
    formatter_config: Optional[FormatterConfig] = Field(default=None, alias="formatterConfig")


class ConditionNode(NodeBase):
    type: Literal["Condition"] = "Condition"
    salesforce_object: Optional[str] = Field(default=None, alias="salesforceObject")
    conditions: ConditionsSpec = None

    @property
    def path_option(self) -> str:
        if isinstance(self.conditions, ConditionGroup) and self.conditions.path_option:
            return self.conditions.path_option
        return "Rules"


class GoogleSheetNode(NodeBase):
    type: Literal["Google Sheet"] = "Google Sheet"
    field_mappings: List[SheetColumnMapping] = Field(default_factory=list, alias="fieldMappings")
    config: SheetConfig = Field(default_factory=SheetConfig)


class FindGoogleSheetNode(NodeBase):
    type: Literal["FindGoogleSheet"] = "FindGoogleSheet"
    config: SheetConfig = Field(default_factory=SheetConfig)


class UnsupportedNode(NodeBase):
    """Placeholder for a node whose type the engine does not know."""

    type: str = ""


Node = Annotated[
    Union[
        StartNode,
        EndNode,
        CreateUpdateNode,
        FindNode,
        LoopNode,
        PathNode,
        FormatterNode,
        ConditionNode,
        GoogleSheetNode,
        FindGoogleSheetNode,
    ],
    Field(discriminator="type"),
]

AnyNode = Union[
    StartNode,
    EndNode,
    CreateUpdateNode,
    FindNode,
    LoopNode,
    PathNode,
    FormatterNode,
    ConditionNode,
    GoogleSheetNode,
    FindGoogleSheetNode,
    UnsupportedNode,
]

KNOWN_NODE_TYPES = frozenset(
    {
        "Start",
        "End",
        "CreateUpdate",
        "Find",
        "Filter",
        "Loop",
        "Path",
        "Formatter",
        "Condition",
        "Google Sheet",
        "FindGoogleSheet",
    }
)
