"""
Field-calculation formulas, e.g. ``round({price} * {qty}, 2)`` or
``addDays({start}, 30)``.

Formulas are tokenized, parsed into a small AST and interpreted. Only the
functions registered in ``BUILTINS`` are callable; any other identifier is
rejected before evaluation starts.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
import math
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from mapping_engine.errors import FormulaError
from mapping_engine.expr.values import loose_equals, strict_equals, to_number, to_text, truthy
from shared.logger import get_logger

logger = get_logger("mapping_engine.expr.formula")


# -----------------------------
# Tokens
# -----------------------------
@dataclass(frozen=True)
class FormulaToken:
    kind: str  # NUMBER STRING FIELD IDENT OP LPAREN RPAREN COMMA
    value: str
    position: int


_OPERATORS = ("===", "!==", "==", "!=", "<=", ">=", "&&", "||", "+", "-", "*", "/", "%", "<", ">", "!")
_NUMBER = re.compile(r"(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
_IDENT = re.compile(r"[A-Za-z_$][A-Za-z0-9_$]*")


def tokenize_formula(source: str) -> List[FormulaToken]:
    tokens: List[FormulaToken] = []
    pos = 0
    length = len(source)
    while pos < length:
        char = source[pos]
        if char.isspace():
            pos += 1
            continue
        if char == "{":
            closing = source.find("}", pos + 1)
            if closing == -1:
                raise FormulaError(f"Unclosed field reference at position {pos + 1}")
            name = source[pos + 1 : closing].strip()
            if not name:
                raise FormulaError(f"Empty field reference at position {pos + 1}")
            tokens.append(FormulaToken("FIELD", name, pos))
            pos = closing + 1
            continue
        if char in {'"', "'"}:
            value, pos = _read_string(source, pos)
            tokens.append(FormulaToken("STRING", value, pos))
            continue
        number = _NUMBER.match(source, pos)
        if number:
            tokens.append(FormulaToken("NUMBER", number.group(0), pos))
            pos = number.end()
            continue
        ident = _IDENT.match(source, pos)
        if ident:
            tokens.append(FormulaToken("IDENT", ident.group(0), pos))
            pos = ident.end()
            continue
        if char == "(":
            tokens.append(FormulaToken("LPAREN", char, pos))
            pos += 1
            continue
        if char == ")":
            tokens.append(FormulaToken("RPAREN", char, pos))
            pos += 1
            continue
        if char == ",":
            tokens.append(FormulaToken("COMMA", char, pos))
            pos += 1
            continue
        for op in _OPERATORS:
            if source.startswith(op, pos):
                tokens.append(FormulaToken("OP", op, pos))
                pos += len(op)
                break
        else:
            raise FormulaError(f"Unexpected character '{char}' at position {pos + 1}")
    return tokens


def _read_string(source: str, start: int) -> Tuple[str, int]:
    quote = source[start]
    pos = start + 1
    chars: List[str] = []
    escapes = {"n": "\n", "t": "\t", "r": "\r"}
    while pos < len(source):
        char = source[pos]
        if char == "\\" and pos + 1 < len(source):
            nxt = source[pos + 1]
            chars.append(escapes.get(nxt, nxt))
            pos += 2
            continue
        if char == quote:
            return "".join(chars), pos + 1
        chars.append(char)
        pos += 1
    raise FormulaError(f"Unterminated string starting at position {start + 1}")


# -----------------------------
# AST
# -----------------------------
@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class FieldRef:
    name: str


@dataclass(frozen=True)
class Unary:
    op: str
    operand: "FormulaNode"


@dataclass(frozen=True)
class Binary:
    op: str
    left: "FormulaNode"
    right: "FormulaNode"


@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple["FormulaNode", ...]


FormulaNode = Literal | FieldRef | Unary | Binary | Call

# Lowest to highest precedence.
_BINARY_LEVELS: Sequence[Tuple[str, ...]] = (
    ("||",),
    ("&&",),
    ("==", "!=", "===", "!=="),
    ("<", "<=", ">", ">="),
    ("+", "-"),
    ("*", "/", "%"),
)

_KEYWORDS = {"true": True, "false": False, "null": None, "undefined": None}


class _FormulaParser:
    def __init__(self, tokens: Sequence[FormulaToken]) -> None:
        self.tokens = tokens
        self.pos = 0

    def _peek(self) -> Optional[FormulaToken]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _advance(self) -> FormulaToken:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def _expect(self, kind: str) -> FormulaToken:
        token = self._peek()
        if token is None or token.kind != kind:
            found = "end of formula" if token is None else f"'{token.value}'"
            raise FormulaError(f"Expected {kind.lower()} but found {found}")
        return self._advance()

    def parse(self) -> FormulaNode:
        if not self.tokens:
            raise FormulaError("Formula is empty")
        node = self._binary(0)
        trailing = self._peek()
        if trailing is not None:
            raise FormulaError(f"Unexpected '{trailing.value}' at position {trailing.position + 1}")
        return node

    def _binary(self, level: int) -> FormulaNode:
        if level == len(_BINARY_LEVELS):
            return self._unary()
        node = self._binary(level + 1)
        while (token := self._peek()) is not None and token.kind == "OP" and token.value in _BINARY_LEVELS[level]:
            self._advance()
            node = Binary(token.value, node, self._binary(level + 1))
        return node

    def _unary(self) -> FormulaNode:
        token = self._peek()
        if token is not None and token.kind == "OP" and token.value in {"-", "+", "!"}:
            self._advance()
            return Unary(token.value, self._unary())
        return self._primary()

    def _primary(self) -> FormulaNode:
        token = self._peek()
        if token is None:
            raise FormulaError("Formula ends unexpectedly")
        if token.kind == "NUMBER":
            self._advance()
            return Literal(float(token.value))
        if token.kind == "STRING":
            self._advance()
            return Literal(token.value)
        if token.kind == "FIELD":
            self._advance()
            return FieldRef(token.value)
        if token.kind == "LPAREN":
            self._advance()
            node = self._binary(0)
            self._expect("RPAREN")
            return node
        if token.kind == "IDENT":
            self._advance()
            if token.value in _KEYWORDS:
                return Literal(_KEYWORDS[token.value])
            nxt = self._peek()
            if nxt is None or nxt.kind != "LPAREN":
                raise FormulaError(f"Unknown identifier '{token.value}'")
            if token.value not in BUILTINS:
                raise FormulaError(f"Function {token.value} is not allowed")
            self._advance()
            args: List[FormulaNode] = []
            if (closing := self._peek()) is not None and closing.kind == "RPAREN":
                self._advance()
                return Call(token.value, tuple(args))
            while True:
                args.append(self._binary(0))
                sep = self._peek()
                if sep is not None and sep.kind == "COMMA":
                    self._advance()
                    continue
                self._expect("RPAREN")
                return Call(token.value, tuple(args))
        raise FormulaError(f"Unexpected '{token.value}' at position {token.position + 1}")


def parse_formula(source: str) -> FormulaNode:
    return _FormulaParser(tokenize_formula(source)).parse()


# -----------------------------
# Built-in helpers
# -----------------------------
def _parse_number(value: Any) -> float:
    number = to_number(value)
    return 0.0 if math.isnan(number) else number


def _to_date(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if math.isnan(value) or math.isinf(value):
            return None
        return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _shift_months(moment: datetime, months: int) -> datetime:
    # Day overflow rolls into the following month (Jan 31 + 1 month -> Mar 2/3).
    total = moment.month - 1 + months
    year = moment.year + total // 12
    month = total % 12 + 1
    first = moment.replace(year=year, month=month, day=1)
    return first + timedelta(days=moment.day - 1)


def _parse_time(value: Any) -> Optional[Dict[str, int]]:
    if isinstance(value, dict):
        return value
    if not isinstance(value, str) or not value:
        return None
    parts = [to_number(part) for part in value.split(":")]
    if len(parts) < 2 or any(math.isnan(part) for part in parts):
        return None
    hours, minutes = parts[0], parts[1]
    seconds = parts[2] if len(parts) > 2 else 0.0
    if not (0 <= hours <= 23 and 0 <= minutes <= 59 and 0 <= seconds <= 59):
        return None
    return {"h": int(hours), "m": int(minutes), "s": int(seconds)}


def _clock(total_seconds: int) -> str:
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def _seconds(parts: Mapping[str, int]) -> int:
    return parts["h"] * 3600 + parts["m"] * 60 + parts.get("s", 0)


def add_days(date: Any, days: Any = 0) -> Optional[datetime]:
    moment = _to_date(date)
    if moment is None:
        return None
    return moment + timedelta(days=int(_parse_number(days)))


def add_months(date: Any, months: Any = 0) -> Optional[datetime]:
    moment = _to_date(date)
    if moment is None:
        return None
    return _shift_months(moment, int(_parse_number(months)))


def add_years(date: Any, years: Any = 0) -> Optional[datetime]:
    moment = _to_date(date)
    if moment is None:
        return None
    return _shift_months(moment, 12 * int(_parse_number(years)))


def subtract_dates(date1: Any, date2: Any, unit: str = "days") -> Optional[float]:
    first, second = _to_date(date1), _to_date(date2)
    if first is None or second is None:
        return None
    seconds = (first - second).total_seconds()
    divisor = {"seconds": 1, "minutes": 60, "hours": 3600}.get(unit, 86400)
    return seconds / divisor


def add_times(time1: Any, time2: Any) -> Optional[str]:
    first, second = _parse_time(time1), _parse_time(time2)
    if first is None or second is None:
        return None
    return _clock((_seconds(first) + _seconds(second)) % 86400)


def subtract_times(time1: Any, time2: Any) -> Optional[str]:
    first, second = _parse_time(time1), _parse_time(time2)
    if first is None or second is None:
        return None
    total = _seconds(first) - _seconds(second)
    if total < 0:
        total += 86400
    return _clock(total)


def set_time(date: Any, time: Any) -> Optional[datetime]:
    moment = _to_date(date)
    parts = _parse_time(time) if time else None
    if moment is None or parts is None:
        return None
    return moment.replace(hour=parts["h"], minute=parts["m"], second=parts.get("s", 0), microsecond=0)


def to_time(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    parts = _parse_time(value)
    return _clock(_seconds(parts)) if parts else None


def _flatten(args: Sequence[Any]) -> List[Any]:
    if len(args) == 1 and isinstance(args[0], list):
        return list(args[0])
    return list(args)


def _sum(*args: Any) -> float:
    return sum(_parse_number(v) for v in _flatten(args))


def _mean(*args: Any) -> float:
    values = _flatten(args)
    return _sum(*values) / len(values) if values else 0.0


def _min(*args: Any) -> float:
    values = [_parse_number(v) for v in _flatten(args)]
    return min(values) if values else math.inf


def _max(*args: Any) -> float:
    values = [_parse_number(v) for v in _flatten(args)]
    return max(values) if values else -math.inf


def _round(value: Any, decimals: Any = 0) -> float:
    places = int(_parse_number(decimals))
    try:
        quantum = Decimal(1).scaleb(-places)
        return float(Decimal(repr(_parse_number(value))).quantize(quantum, rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return _parse_number(value)


def _to_string(value: Any) -> str:
    return "" if value is None else _stringify(value)


def _string_length(value: Any) -> int:
    return len(value) if isinstance(value, str) else 0


def _replace(text: Any, search: Any, replacement: Any = "") -> str:
    if not isinstance(text, str):
        return ""
    pattern = to_text(search)
    flags = 0
    count = 0
    if pattern.startswith("/") and pattern.rfind("/") > 0:
        last = pattern.rfind("/")
        modifiers = pattern[last + 1 :]
        pattern = pattern[1:last]
        count = 0 if "g" in modifiers else 1
        if "i" in modifiers:
            flags |= re.IGNORECASE
        if "m" in modifiers:
            flags |= re.MULTILINE
        if "s" in modifiers:
            flags |= re.DOTALL
    try:
        compiled = re.compile(pattern, flags)
    except re.error:
        logger.warning("Invalid replace pattern: %s", search)
        return text
    literal = to_text(replacement)
    return compiled.sub(lambda _m: literal, text, count=count)


def _trim(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    if isinstance(value, (int, float)):
        return value != 0 and not math.isnan(value)
    return truthy(value)


def _coerce_to_type(value: Any, kind: str) -> Any:
    if kind == "string":
        return _to_string(value)
    if kind == "number":
        return _parse_number(value)
    if kind == "boolean":
        return _to_boolean(value)
    if kind == "date":
        return _to_date(value)
    if kind == "array":
        return value if isinstance(value, list) else [value]
    return value


def _number_to_date(value: Any) -> Optional[datetime]:
    number = _parse_number(value)
    return None if number <= 0 else _to_date(number)


def _date_to_number(value: Any) -> float:
    moment = _to_date(value)
    if moment is None:
        return math.nan
    return float(round((moment - datetime(1970, 1, 1, tzinfo=timezone.utc)).total_seconds() * 1000))


def _log(value: Any, base: Any = math.e) -> float:
    number, radix = _parse_number(value), _parse_number(base)
    if number <= 0 or radix <= 0 or radix == 1:
        return math.nan
    return math.log(number) / math.log(radix)


def _sqrt(value: Any) -> float:
    number = to_number(value)
    return math.sqrt(number) if number >= 0 else math.nan


def _pow(base: Any, exponent: Any) -> float:
    try:
        return math.pow(_parse_number(base), _parse_number(exponent))
    except (OverflowError, ValueError):
        return math.nan


def _mod(left: Any, right: Any) -> float:
    divisor = _parse_number(right)
    return math.nan if divisor == 0 else math.fmod(_parse_number(left), divisor)


def _is_null_or_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _count(value: Any) -> int:
    return len(value) if isinstance(value, list) else 0


def _concat(*args: Any) -> str:
    return "".join("" if arg is None else _stringify(arg) for arg in args)


BUILTINS: Dict[str, Callable[..., Any]] = {
    # Date & time
    "addDays": add_days,
    "addMonths": add_months,
    "addYears": add_years,
    "subtractDates": subtract_dates,
    "addTimes": add_times,
    "subtractTimes": subtract_times,
    "setTime": set_time,
    "parseDate": _to_date,
    "parseTime": _parse_time,
    "toDate": _to_date,
    "toTime": to_time,
    # Number
    "parseNumber": _parse_number,
    "abs": lambda value: abs(to_number(value)),
    "sqrt": _sqrt,
    "min": _min,
    "max": _max,
    "sum": _sum,
    "mean": _mean,
    "round": _round,
    "floor": lambda value: float(math.floor(_parse_number(value))),
    "ceil": lambda value: float(math.ceil(_parse_number(value))),
    "toNumber": _parse_number,
    "pow": _pow,
    "mod": _mod,
    "log": _log,
    "exp": lambda value: math.exp(_parse_number(value)),
    # String
    "concatStrings": _concat,
    "toString": _to_string,
    "stringLength": _string_length,
    "replace": _replace,
    "toUpperCase": lambda value: value.upper() if isinstance(value, str) else "",
    "toLowerCase": lambda value: value.lower() if isinstance(value, str) else "",
    "trim": _trim,
    # Type conversion
    "coerceToType": _coerce_to_type,
    "numberToDate": _number_to_date,
    "dateToNumber": _date_to_number,
    "toBoolean": _to_boolean,
    # Null / collection checks
    "isNullOrEmpty": _is_null_or_empty,
    "count": _count,
}


# -----------------------------
# Evaluation
# -----------------------------
def _iso(moment: datetime) -> str:
    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def _stringify(value: Any) -> str:
    if isinstance(value, datetime):
        return _iso(value)
    return to_text(value)


def _numeric(value: Any) -> float:
    if isinstance(value, datetime):
        return _date_to_number(value)
    return to_number(value)


def _divide(left: float, right: float) -> float:
    if right == 0:
        if left == 0 or math.isnan(left):
            return math.nan
        return math.copysign(math.inf, left) * math.copysign(1.0, right)
    return left / right


def _compare(op: str, left: Any, right: Any) -> bool:
    a: Any
    b: Any
    if isinstance(left, str) and isinstance(right, str):
        a, b = left, right
    else:
        a, b = _numeric(left), _numeric(right)
        if math.isnan(a) or math.isnan(b):
            return False
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


class FormulaEvaluator:
    def __init__(self, values: Mapping[str, Any]) -> None:
        self.values = values

    def evaluate(self, node: FormulaNode) -> Any:
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, FieldRef):
            return self.values.get(node.name)
        if isinstance(node, Unary):
            operand = self.evaluate(node.operand)
            if node.op == "!":
                return not truthy(operand)
            number = _numeric(operand)
            return -number if node.op == "-" else number
        if isinstance(node, Binary):
            return self._binary(node)
        if isinstance(node, Call):
            func = BUILTINS.get(node.name)
            if func is None:
                raise FormulaError(f"Function {node.name} is not allowed")
            args = [self.evaluate(arg) for arg in node.args]
            try:
                return func(*args)
            except TypeError as exc:
                raise FormulaError(f"Invalid arguments for {node.name}: {exc}") from exc
        raise FormulaError(f"Unsupported formula node {type(node).__name__}")

    def _binary(self, node: Binary) -> Any:
        op = node.op
        if op == "&&":
            left = self.evaluate(node.left)
            return self.evaluate(node.right) if truthy(left) else left
        if op == "||":
            left = self.evaluate(node.left)
            return left if truthy(left) else self.evaluate(node.right)

        left = self.evaluate(node.left)
        right = self.evaluate(node.right)
        if op == "+":
            if isinstance(left, (str, datetime)) or isinstance(right, (str, datetime)):
                return _stringify(left) + _stringify(right)
            return _numeric(left) + _numeric(right)
        if op == "-":
            return _numeric(left) - _numeric(right)
        if op == "*":
            return _numeric(left) * _numeric(right)
        if op == "/":
            return _divide(_numeric(left), _numeric(right))
        if op == "%":
            return _mod(_numeric(left), _numeric(right))
        if op == "==":
            return loose_equals(left, right)
        if op == "!=":
            return not loose_equals(left, right)
        if op == "===":
            return strict_equals(left, right)
        if op == "!==":
            return not strict_equals(left, right)
        return _compare(op, left, right)


def _present(result: Any) -> Any:
    if isinstance(result, datetime):
        return _iso(result)
    if isinstance(result, float) and result.is_integer():
        return int(result)
    return result


def evaluate_formula(formula: Optional[str], values: Mapping[str, Any]) -> Any:
    """
    Evaluate ``formula`` against ``values`` (field id -> value).

    Returns ``""`` for a blank formula and ``"Error: <reason>"`` when parsing or
    evaluation fails or the result is not a number.
    """

    if not formula or not formula.strip():
        return ""
    try:
        result = FormulaEvaluator(values).evaluate(parse_formula(formula))
    except FormulaError as exc:
        logger.warning("Error evaluating formula %r: %s", formula, exc)
        return f"Error: {exc}"
    except (ArithmeticError, ValueError) as exc:
        logger.warning("Error evaluating formula %r: %s", formula, exc)
        return f"Error: {exc}"

    if isinstance(result, float) and math.isnan(result):
        return "Error: Result is NaN"
    return _present(result)


__all__ = [
    "BUILTINS",
    "FormulaEvaluator",
    "FormulaToken",
    "evaluate_formula",
    "parse_formula",
    "tokenize_formula",
]
