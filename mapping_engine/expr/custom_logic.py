"""
Boolean expressions over condition indices, e.g. ``"1 AND (2 OR 3)"``.

The grammar is closed: integers (1-based condition indices), ``AND``, ``OR``
(case-insensitive), parentheses and whitespace. ``AND`` binds tighter than
``OR``.

    expr   := term ("OR" term)*
    term   := factor ("AND" factor)*
    factor := INDEX | "(" expr ")"

One evaluator serves both CRM record filtering and spreadsheet row filtering;
callers supply a ``condition_result(index)`` callback.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Callable, List, Sequence

from mapping_engine.errors import CustomLogicError
from shared.logger import get_logger

logger = get_logger("mapping_engine.expr.custom_logic")

QUERY_CHARSET = re.compile(r"^[\d\s()ANDORandor]+$")
VALIDATION_CHARSET = re.compile(r"^[0-9\s()ANDOR]+$")
_TOKEN_PATTERN = re.compile(r"\s*(?:(\d+)|(AND|OR)\b|([()]))", re.IGNORECASE)


# -----------------------------
# Tokens and AST
# -----------------------------
@dataclass(frozen=True)
class Token:
    kind: str  # "INDEX", "AND", "OR", "(", ")"
    text: str
    position: int


@dataclass(frozen=True)
class IndexRef:
    index: int


@dataclass(frozen=True)
class BinaryOp:
    op: str  # "AND" | "OR"
    left: "LogicNode"
    right: "LogicNode"


LogicNode = IndexRef | BinaryOp


def tokenize(expression: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    text = expression.rstrip()
    while pos < len(text):
        match = _TOKEN_PATTERN.match(text, pos)
        if match is None:
            offending = text[pos:].lstrip()[:1]
            raise CustomLogicError(f"Unexpected character '{offending}' in custom logic '{expression}'")
        number, keyword, paren = match.groups()
        if number is not None:
            tokens.append(Token("INDEX", number, match.start(1)))
        elif keyword is not None:
            tokens.append(Token(keyword.upper(), keyword, match.start(2)))
        else:
            tokens.append(Token(paren, paren, match.start(3)))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, expression: str, tokens: Sequence[Token]) -> None:
        self.expression = expression
        self.tokens = tokens
        self.pos = 0

    def _peek(self) -> Token | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def _error(self, message: str) -> CustomLogicError:
        return CustomLogicError(f"{message} in custom logic '{self.expression}'")

    def parse(self) -> LogicNode:
        if not self.tokens:
            raise self._error("Empty expression")
        node = self._expr()
        trailing = self._peek()
        if trailing is not None:
            raise self._error(f"Unexpected '{trailing.text}' at position {trailing.position + 1}")
        return node

    def _expr(self) -> LogicNode:
        node = self._term()
        while (token := self._peek()) is not None and token.kind == "OR":
            self._advance()
            node = BinaryOp("OR", node, self._term())
        return node

    def _term(self) -> LogicNode:
        node = self._factor()
        while (token := self._peek()) is not None and token.kind == "AND":
            self._advance()
            node = BinaryOp("AND", node, self._factor())
        return node

    def _factor(self) -> LogicNode:
        token = self._peek()
        if token is None:
            raise self._error("Expression ends unexpectedly")
        if token.kind == "INDEX":
            self._advance()
            return IndexRef(int(token.text))
        if token.kind == "(":
            self._advance()
            node = self._expr()
            closing = self._peek()
            if closing is None or closing.kind != ")":
                raise self._error("Unmatched opening parenthesis")
            self._advance()
            return node
        raise self._error(f"Expected condition index or '(' but found '{token.text}'")


def parse_custom_logic(expression: str) -> LogicNode:
    return _Parser(expression, tokenize(expression)).parse()


def referenced_indices(node: LogicNode) -> List[int]:
    if isinstance(node, IndexRef):
        return [node.index]
    return referenced_indices(node.left) + referenced_indices(node.right)


# -----------------------------
# Evaluation
# -----------------------------
def _evaluate(node: LogicNode, condition_result: Callable[[int], bool]) -> bool:
    if isinstance(node, IndexRef):
        return bool(condition_result(node.index))
    if node.op == "AND":
        return _evaluate(node.left, condition_result) and _evaluate(node.right, condition_result)
    return _evaluate(node.left, condition_result) or _evaluate(node.right, condition_result)


def evaluate_custom_logic(expression: str, condition_result: Callable[[int], bool]) -> bool:
    """
    Evaluate ``expression`` with ``condition_result(i)`` supplying the truth of
    condition ``i`` (1-based). Malformed expressions and callback failures
    evaluate to ``False``.
    """

    try:
        tree = parse_custom_logic(expression)
        return _evaluate(tree, condition_result)
    except Exception as exc:  # noqa: BLE001 - custom logic failures never match
        logger.warning("Error evaluating custom logic %r: %s", expression, exc)
        return False


def evaluate_with_results(expression: str, results: Sequence[bool]) -> bool:
    """Evaluate against precomputed results; indices outside ``results`` are false."""

    def lookup(index: int) -> bool:
        if 1 <= index <= len(results):
            return bool(results[index - 1])
        return False

    return evaluate_custom_logic(expression, lookup)


# -----------------------------
# Query compilation
# -----------------------------
def compile_to_query(expression: str, fragments: Sequence[str]) -> str:
    """
    Substitute each index with its rendered query fragment in a single pass so
    an index appearing inside an earlier fragment's literal is never rewritten.
    """

    if not QUERY_CHARSET.match(expression):
        raise CustomLogicError(
            "Invalid custom logic expression. Only numbers, spaces, AND/OR, and parentheses are allowed."
        )
    tree = parse_custom_logic(expression)
    for index in referenced_indices(tree):
        if not 1 <= index <= len(fragments):
            raise CustomLogicError(
                f"Custom logic references condition {index} but only {len(fragments)} conditions exist"
            )

    collapsed = re.sub(r"\s+", " ", expression).strip()

    def substitute(match: re.Match[str]) -> str:
        token = match.group(0)
        if token.isdigit():
            return fragments[int(token) - 1]
        return token.upper()

    return re.sub(r"\d+|AND|OR", substitute, collapsed, flags=re.IGNORECASE)


# -----------------------------
# Editor validation
# -----------------------------
def validate_custom_logic(expression: str | None, condition_count: int) -> List[str]:
    """
    Validate an expression as typed into the condition editor. Returns a list of
    human-readable problems; an empty list means the expression is usable.
    """

    if not expression or not expression.strip():
        return ["Custom logic expression is required"]

    if not VALIDATION_CHARSET.match(expression):
        return ["Invalid characters in logic expression. Use numbers, AND, OR, parentheses, and spaces only."]

    errors: List[str] = []
    indices = [int(raw) for raw in re.findall(r"\d+", expression)]
    unique = sorted(set(indices))
    if not unique:
        return ["Logic expression must include at least one condition index."]
    if any(i < 1 or i > condition_count for i in unique):
        errors.append(f"Condition indices must be between 1 and {condition_count}.")
    elif len(unique) != condition_count:
        errors.append(f"All conditions (1 to {condition_count}) must be included in the logic expression.")
    repeated = sorted({i for i in indices if indices.count(i) > 1})
    if repeated:
        errors.append(f"Each condition may appear only once; repeated: {', '.join(map(str, repeated))}.")

    depth = 0
    for char in expression:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                errors.append("Unmatched closing parenthesis.")
                return errors
    if depth != 0:
        errors.append("Unmatched opening parenthesis.")
        return errors

    tokens = expression.replace("(", " ( ").replace(")", " ) ").split()
    expect_operand = True
    for position, token in enumerate(tokens, start=1):
        if expect_operand:
            if token.isdigit():
                expect_operand = False
            elif token != "(":
                errors.append(f"Invalid token at position {position}: Expected number or '(', got {token}.")
                return errors
        else:
            if token in {"AND", "OR"}:
                expect_operand = True
            elif token != ")":
                errors.append(f"Invalid token at position {position}: Expected 'AND', 'OR', or ')', got {token}.")
                return errors
    if expect_operand:
        errors.append("Expression ends unexpectedly; missing a condition index.")

    return errors


__all__ = [
    "BinaryOp",
    "IndexRef",
    "LogicNode",
    "Token",
    "compile_to_query",
    "evaluate_custom_logic",
    "evaluate_with_results",
    "parse_custom_logic",
    "referenced_indices",
    "tokenize",
    "validate_custom_logic",
]
