"""Filter engine: projection, filtering, sorting and paging over entities or rows.

The same engine shapes results for every connector so that a given set of
raw rows and options always yields the same ordered result.

Filter grammar (keywords are case-insensitive)::

    expression  := or_expr
    or_expr     := and_expr (("or" | "||") and_expr)*
    and_expr    := not_expr (("and" | "&&") not_expr)*
    not_expr    := ("not" | "!") not_expr | primary
    primary     := "(" expression ")" | predicate
    predicate   := operand [ compare_op operand
                           | ["not"] "like" operand
                           | ["not"] "in" "(" operand ("," operand)* ")"
                           | "is" ["not"] "null" ]
    operand     := number | string | "true" | "false" | "null" | field

Fields are bare identifiers (dots address flattened or nested keys) or
names wrapped in ``[...]`` or backticks.
"""

import operator
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar

from .entities import StorageEntity
from .errors import FilterExpressionError
from .options import QueryOptions
from ..utils.logging import get_logger

T = TypeVar("T")

_MISSING = object()

_TOKEN_PATTERN = re.compile(
    r"""
    (?P<number>-?\d+(?:\.\d+)?(?![\w]))
    |(?P<string>'(?:[^']|'')*'|"(?:[^"]|"")*")
    |(?P<quoted>\[[^\]]+\]|`[^`]+`)
    |(?P<op><=|>=|!=|<>|==|&&|\|\||[=<>!(),])
    |(?P<name>[A-Za-z_][\w.]*)
    """,
    re.VERBOSE,
)

_NUMERIC_PATTERN = re.compile(r"^\s*-?\d+(?:\.\d+)?\s*$")
_FIELD_PATTERN = re.compile(r"^[A-Za-z_][\w.]*$")

_KEYWORDS = {"and", "or", "not", "like", "in", "is", "true", "false", "null"}

_COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "=": operator.eq,
    "==": operator.eq,
    "!=": operator.ne,
    "<>": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@dataclass(frozen=True)
class Token:
    kind: str
    value: Any
    position: int
    text: str


# Value helpers


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str) and _NUMERIC_PATTERN.match(value):
        return float(value)
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


def _as_text(value: Any, case_sensitive: bool) -> str:
    text = str(value)
    return text if case_sensitive else text.casefold()


# Fields of an entity listing row; nested ``metadata.<key>`` references are allowed.
ENTITY_FIELDS = ("id", "kind", "name", "path", "createdTime", "modifiedTime", "size", "contentType", "md5",
                 "metadata")


def in_schema(name: str, schema: Sequence[str]) -> bool:
    """Whether ``name`` is a column of ``schema`` or a dotted path beneath one."""
    lowered = name.lower()
    for column in schema:
        column = column.lower()
        if lowered == column or lowered.startswith(column + "."):
            return True
    return False


def resolve_field(row: Mapping[str, Any], name: str) -> Any:
    """Look up ``name`` in a row.

    Exact keys win, then a case-insensitive key match, then a walk through
    nested mappings along the dotted segments. Returns ``_MISSING`` when the
    field is absent.
    """
    if name in row:
        return row[name]

    lowered = name.lower()
    for key, value in row.items():
        if isinstance(key, str) and key.lower() == lowered:
            return value

    if "." in name:
        current: Any = row
        for segment in name.split("."):
            if not isinstance(current, Mapping):
                return _MISSING
            found = _MISSING
            if segment in current:
                found = current[segment]
            else:
                for key, value in current.items():
                    if isinstance(key, str) and key.lower() == segment.lower():
                        found = value
                        break
            if found is _MISSING:
                return _MISSING
            current = found
        return current

    return _MISSING


def compare_values(left: Any, right: Any, op: str, case_sensitive: bool) -> bool:
    """Compare two values with numeric, boolean or string semantics."""
    left, right = _plain(left), _plain(right)
    compare = _COMPARATORS[op]

    if left is None or right is None:
        if op in ("=", "=="):
            return left is None and right is None
        if op in ("!=", "<>"):
            return not (left is None and right is None)
        return False

    if isinstance(left, bool) or isinstance(right, bool):
        left_bool, right_bool = _as_bool(left), _as_bool(right)
        if left_bool is not None and right_bool is not None:
            return compare(left_bool, right_bool)

    left_number, right_number = _as_number(left), _as_number(right)
    if left_number is not None and right_number is not None:
        return compare(left_number, right_number)

    return compare(_as_text(left, case_sensitive), _as_text(right, case_sensitive))


def like_to_regex(pattern: str, case_sensitive: bool) -> "re.Pattern[str]":
    """Translate a SQL LIKE pattern (``%`` and ``_`` wildcards) to a regex."""
    parts = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    flags = re.DOTALL if case_sensitive else re.DOTALL | re.IGNORECASE
    return re.compile("".join(parts), flags)


# Expression tree


class Node:
    def evaluate(self, row: Mapping[str, Any], case_sensitive: bool) -> Any:
        raise NotImplementedError

    def field_names(self) -> List[str]:
        return []


@dataclass(frozen=True)
class Literal(Node):
    value: Any

    def evaluate(self, row, case_sensitive):
        return self.value


@dataclass(frozen=True)
class FieldRef(Node):
    name: str

    def evaluate(self, row, case_sensitive):
        value = resolve_field(row, self.name)
        return None if value is _MISSING else _plain(value)

    def field_names(self):
        return [self.name]


@dataclass(frozen=True)
class Comparison(Node):
    op: str
    left: Node
    right: Node

    def evaluate(self, row, case_sensitive):
        return compare_values(
            self.left.evaluate(row, case_sensitive),
            self.right.evaluate(row, case_sensitive),
            self.op,
            case_sensitive,
        )

    def field_names(self):
        return self.left.field_names() + self.right.field_names()


@dataclass(frozen=True)
class Like(Node):
    operand: Node
    pattern: Node
    negated: bool = False

    def evaluate(self, row, case_sensitive):
        value = self.operand.evaluate(row, case_sensitive)
        pattern = self.pattern.evaluate(row, case_sensitive)
        if value is None or pattern is None:
            return False
        matched = like_to_regex(str(pattern), case_sensitive).fullmatch(str(value)) is not None
        return matched != self.negated

    def field_names(self):
        return self.operand.field_names() + self.pattern.field_names()


@dataclass(frozen=True)
class Membership(Node):
    operand: Node
    choices: Tuple[Node, ...]
    negated: bool = False

    def evaluate(self, row, case_sensitive):
        value = self.operand.evaluate(row, case_sensitive)
        found = any(
            compare_values(value, choice.evaluate(row, case_sensitive), "=", case_sensitive)
            for choice in self.choices
        )
        return found != self.negated

    def field_names(self):
        names = self.operand.field_names()
        for choice in self.choices:
            names.extend(choice.field_names())
        return names


@dataclass(frozen=True)
class NullCheck(Node):
    operand: Node
    negated: bool = False

    def evaluate(self, row, case_sensitive):
        return (self.operand.evaluate(row, case_sensitive) is None) != self.negated

    def field_names(self):
        return self.operand.field_names()


@dataclass(frozen=True)
class Truthy(Node):
    operand: Node

    def evaluate(self, row, case_sensitive):
        value = self.operand.evaluate(row, case_sensitive)
        as_bool = _as_bool(value)
        if as_bool is not None:
            return as_bool
        return bool(value)

    def field_names(self):
        return self.operand.field_names()


@dataclass(frozen=True)
class Not(Node):
    operand: Node

    def evaluate(self, row, case_sensitive):
        return not self.operand.evaluate(row, case_sensitive)

    def field_names(self):
        return self.operand.field_names()


@dataclass(frozen=True)
class BoolOp(Node):
    op: str
    operands: Tuple[Node, ...]

    def evaluate(self, row, case_sensitive):
        results = (operand.evaluate(row, case_sensitive) for operand in self.operands)
        return all(results) if self.op == "and" else any(results)

    def field_names(self):
        names = []
        for operand in self.operands:
            names.extend(operand.field_names())
        return names


# Tokenizer and parser


def tokenize(expression: str) -> List[Token]:
    tokens = []
    position = 0
    length = len(expression)

    while position < length:
        if expression[position].isspace():
            position += 1
            continue

        match = _TOKEN_PATTERN.match(expression, position)
        if not match:
            raise FilterExpressionError(
                f"Unexpected character at position {position}",
                clause=expression[position:],
            )

        kind = match.lastgroup
        text = match.group()
        if kind == "number":
            value: Any = float(text) if "." in text else int(text)
        elif kind == "string":
            quote = text[0]
            value = text[1:-1].replace(quote * 2, quote)
        elif kind == "quoted":
            kind, value = "name", text[1:-1].strip()
        elif kind == "name" and text.lower() in _KEYWORDS:
            kind, value = "keyword", text.lower()
        else:
            value = text

        tokens.append(Token(kind, value, position, text))
        position = match.end()

    return tokens


class _Parser:
    """Recursive descent parser over the token list."""

    def __init__(self, expression: str):
        self.expression = expression
        self.tokens = tokenize(expression)
        self.index = 0

    def parse(self) -> Node:
        if not self.tokens:
            raise FilterExpressionError("Filter expression is empty", clause=self.expression)
        node = self._or()
        if self.index < len(self.tokens):
            raise self._error("Unexpected token", self.tokens[self.index])
        return node

    def _peek(self) -> Optional[Token]:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _advance(self) -> Token:
        token = self._peek()
        if token is None:
            raise FilterExpressionError("Unexpected end of filter expression", clause=self.expression)
        self.index += 1
        return token

    def _accept(self, *values: str) -> Optional[Token]:
        token = self._peek()
        if token is not None and token.kind in ("keyword", "op") and token.value in values:
            self.index += 1
            return token
        return None

    def _expect(self, *values: str) -> Token:
        token = self._accept(*values)
        if token is None:
            found = self._peek()
            if found is None:
                raise FilterExpressionError(
                    f"Expected {' or '.join(values)} at end of filter expression",
                    clause=self.expression,
                )
            raise self._error(f"Expected {' or '.join(values)}", found)
        return token

    def _error(self, message: str, token: Token) -> FilterExpressionError:
        return FilterExpressionError(
            f"{message} '{token.text}' at position {token.position}",
            clause=self.expression[token.position:],
        )

    def _or(self) -> Node:
        operands = [self._and()]
        while self._accept("or", "||"):
            operands.append(self._and())
        return operands[0] if len(operands) == 1 else BoolOp("or", tuple(operands))

    def _and(self) -> Node:
        operands = [self._not()]
        while self._accept("and", "&&"):
            operands.append(self._not())
        return operands[0] if len(operands) == 1 else BoolOp("and", tuple(operands))

    def _not(self) -> Node:
        if self._accept("not", "!"):
            return Not(self._not())
        return self._primary()

    def _primary(self) -> Node:
        if self._accept("("):
            node = self._or()
            self._expect(")")
            return node
        return self._predicate()

    def _predicate(self) -> Node:
        left = self._operand()
        token = self._peek()
        if token is None:
            return Truthy(left)

        if token.kind == "op" and token.value in _COMPARATORS:
            self.index += 1
            return Comparison(token.value, left, self._operand())

        if self._accept("is"):
            negated = self._accept("not") is not None
            self._expect("null")
            return NullCheck(left, negated)

        negated = False
        if token.kind == "keyword" and token.value == "not":
            following = self.tokens[self.index + 1] if self.index + 1 < len(self.tokens) else None
            if following is not None and following.kind == "keyword" and following.value in ("like", "in"):
                self.index += 1
                negated = True

        if self._accept("like"):
            return Like(left, self._operand(), negated)

        if self._accept("in"):
            self._expect("(")
            choices = [self._operand()]
            while self._accept(","):
                choices.append(self._operand())
            self._expect(")")
            return Membership(left, tuple(choices), negated)

        if negated:
            raise self._error("Expected like or in", token)
        return Truthy(left)

    def _operand(self) -> Node:
        token = self._advance()
        if token.kind in ("number", "string"):
            return Literal(token.value)
        if token.kind == "keyword" and token.value in ("true", "false"):
            return Literal(token.value == "true")
        if token.kind == "keyword" and token.value == "null":
            return Literal(None)
        if token.kind == "name":
            return FieldRef(token.value)
        raise self._error("Expected a field or literal", token)


@lru_cache(maxsize=256)
def parse_filter(expression: str) -> Node:
    """Parse a filter expression into an evaluable tree."""
    return _Parser(expression).parse()


@dataclass(frozen=True)
class SortKey:
    field: str
    descending: bool = False


@lru_cache(maxsize=256)
def parse_sort(expression: str) -> Tuple[SortKey, ...]:
    """Parse ``field[:asc|desc], ...`` into sort keys."""
    keys = []
    for clause in expression.split(","):
        text = clause.strip()
        if not text:
            raise FilterExpressionError("Empty sort clause", clause=expression)

        if ":" in text:
            field, _, direction = text.partition(":")
        else:
            field, _, direction = text.partition(" ")
        field, direction = field.strip(), direction.strip().lower()

        if not _FIELD_PATTERN.match(field):
            raise FilterExpressionError("Invalid sort field", clause=text)
        if direction not in ("", "asc", "desc"):
            raise FilterExpressionError("Sort direction must be asc or desc", clause=text)

        keys.append(SortKey(field, direction == "desc"))
    return tuple(keys)


def parse_limit(limit: Optional[str]) -> Optional[int]:
    if limit is None or str(limit).strip() == "":
        return None
    try:
        value = int(str(limit).strip())
    except ValueError:
        raise FilterExpressionError("Limit must be an integer", clause=str(limit))
    if value < 0:
        raise FilterExpressionError("Limit must not be negative", clause=str(limit))
    return value


def parse_paging(paging: Optional[str]) -> Optional[Tuple[int, int]]:
    """Parse ``"<page>,<size>"`` with a 1-based page number."""
    if paging is None or str(paging).strip() == "":
        return None
    parts = [part.strip() for part in str(paging).split(",")]
    try:
        if len(parts) != 2:
            raise ValueError(paging)
        page, size = int(parts[0]), int(parts[1])
    except ValueError:
        raise FilterExpressionError("Paging must be '<page>,<size>'", clause=str(paging))
    if page < 1 or size < 1:
        raise FilterExpressionError("Paging page and size must be positive", clause=str(paging))
    return page, size


def _sort_values(values: Sequence[Any], case_sensitive: bool) -> List[Tuple]:
    """Build comparable keys; ``None`` sorts first ascending, last descending."""
    plain = [_plain(value) for value in values]
    present = [value for value in plain if value is not None]
    numeric = bool(present) and all(_as_number(value) is not None for value in present)

    keys = []
    for value in plain:
        if value is None:
            keys.append((0, 0))
        elif numeric:
            keys.append((1, _as_number(value)))
        elif isinstance(value, bool):
            keys.append((1, int(value)))
        else:
            keys.append((2, _as_text(value, case_sensitive)))

    if not numeric and any(key[0] == 1 for key in keys) and any(key[0] == 2 for key in keys):
        # mixed booleans and text compare as text
        keys = [key if key[0] != 1 else (2, _as_text(value, case_sensitive)) for key, value in zip(keys, plain)]
    return keys


class FilterEngine:
    """Shapes raw rows or entities into the final ordered, paged, projected result."""

    def __init__(self, tiebreak_field: Optional[str] = "path"):
        self.tiebreak_field = tiebreak_field
        self.logger = get_logger(self.__class__.__name__)

    def apply(
        self,
        rows: Iterable[Mapping[str, Any]],
        options: Optional[QueryOptions] = None,
        schema: Optional[Sequence[str]] = None
    ) -> List[Dict[str, Any]]:
        """Filter, sort, page and project plain rows.

        Args:
            rows: Rows to shape
            options: Query options
            schema: Column names that field references are checked against;
                without one, a field is known when any row carries it
        """
        options = options or QueryOptions()
        row_list = [dict(row) for row in rows]
        selected = self._select(row_list, row_list, options, schema)
        return self.project(selected, options.fields, schema)

    def select_entities(self, entities: Iterable[StorageEntity], options: Optional[QueryOptions] = None) -> List[StorageEntity]:
        """Filter, sort and page entities, returning the entities themselves."""
        options = options or QueryOptions()
        entity_list = list(entities)
        views = [entity.to_dict(full=True) for entity in entity_list]
        return self._select(entity_list, views, options, ENTITY_FIELDS)

    def render_entities(self, entities: Iterable[StorageEntity], options: Optional[QueryOptions] = None) -> List[Dict[str, Any]]:
        """Render already selected entities as listing rows and project them."""
        options = options or QueryOptions()
        rows = [entity.to_dict(full=options.full) for entity in entities]
        if not options.include_metadata and not options.fields:
            for row in rows:
                row.pop("metadata", None)
        return self.project(rows, options.fields, ENTITY_FIELDS)

    def project(self, rows: List[Dict[str, Any]], fields: Sequence[str],
                schema: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        if not fields:
            return rows
        self._check_fields(rows, fields, schema)

        projected = []
        for row in rows:
            item = {}
            for field in fields:
                value = resolve_field(row, field)
                item[field] = None if value is _MISSING else value
            projected.append(item)
        return projected

    def _select(self, items: List[T], views: List[Dict[str, Any]], options: QueryOptions,
                schema: Optional[Sequence[str]] = None) -> List[T]:
        limit = parse_limit(options.limit)
        paging = parse_paging(options.paging)
        sort_keys = parse_sort(options.sort) if options.sort and options.sort.strip() else ()

        indices = list(range(len(items)))

        if options.filter and options.filter.strip():
            predicate = parse_filter(options.filter.strip())
            self._check_fields(views, predicate.field_names(), schema)
            indices = [i for i in indices if predicate.evaluate(views[i], options.case_sensitive)]

        self._check_fields(views, [key.field for key in sort_keys], schema)
        indices = self._sort(indices, views, sort_keys, options.case_sensitive)

        if paging is not None:
            page, size = paging
            indices = indices[(page - 1) * size:page * size]
        if limit is not None:
            indices = indices[:limit]

        return [items[i] for i in indices]

    def _sort(self, indices: List[int], views: List[Dict[str, Any]], sort_keys: Sequence[SortKey],
              case_sensitive: bool) -> List[int]:
        ordered = list(indices)

        # Stable sorts applied from the least significant key upwards.
        if self.tiebreak_field and any(resolve_field(view, self.tiebreak_field) is not _MISSING for view in views):
            ordered = self._sort_by(ordered, views, self.tiebreak_field, False, True)

        for key in reversed(sort_keys):
            ordered = self._sort_by(ordered, views, key.field, key.descending, case_sensitive)

        return ordered

    def _sort_by(self, indices: List[int], views: List[Dict[str, Any]], field: str, descending: bool,
                 case_sensitive: bool) -> List[int]:
        values = []
        for i in indices:
            value = resolve_field(views[i], field)
            values.append(None if value is _MISSING else value)
        keys = dict(zip(indices, _sort_values(values, case_sensitive)))
        return sorted(indices, key=lambda i: keys[i], reverse=descending)

    def _check_fields(self, rows: List[Mapping[str, Any]], fields: Iterable[str],
                      schema: Optional[Sequence[str]] = None):
        for field in fields:
            if schema is not None:
                known = in_schema(field, schema)
            else:
                known = any(resolve_field(row, field) is not _MISSING for row in rows)
            if not known:
                raise FilterExpressionError("Unknown field", clause=field)


def validate_query(options: QueryOptions):
    """Parse every expression in ``options`` so malformed input fails before any backend call."""
    if options.filter and options.filter.strip():
        parse_filter(options.filter.strip())
    if options.sort and options.sort.strip():
        parse_sort(options.sort)
    parse_limit(options.limit)
    parse_paging(options.paging)
