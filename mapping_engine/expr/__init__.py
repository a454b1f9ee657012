from mapping_engine.expr.conditions import (
    OPERATORS,
    build_condition_fragment,
    evaluate_condition,
    to_query_fragment,
)
from mapping_engine.expr.custom_logic import (
    compile_to_query,
    evaluate_custom_logic,
    evaluate_with_results,
    parse_custom_logic,
    validate_custom_logic,
)
from mapping_engine.expr.formula import evaluate_formula

__all__ = [
    "OPERATORS",
    "build_condition_fragment",
    "compile_to_query",
    "evaluate_condition",
    "evaluate_custom_logic",
    "evaluate_formula",
    "evaluate_with_results",
    "parse_custom_logic",
    "to_query_fragment",
    "validate_custom_logic",
]
