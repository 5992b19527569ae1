"""Custom metadata derivation.

Derivation queries run against the row data of the source file and store
their result in the document under a name::

    SELECT COUNT(*) FROM data WHERE status = 'ok'          -> scalar
    SELECT MIN(ts), MAX(ts) FROM data                      -> one row
    SELECT id, label FROM data WHERE score >= 0.9          -> up to 100 rows

Grammar (keywords are case-insensitive)::

    query      := SELECT select [FROM name] [WHERE or_expr]
    select     := '*' | item (',' item)*
    item       := column | AGG '(' ('*' | column) ')'
    AGG        := COUNT | SUM | MIN | MAX | AVG
    or_expr    := and_expr (OR and_expr)*
    and_expr   := not_expr (AND not_expr)*
    not_expr   := NOT not_expr | '(' or_expr ')' | predicate
    predicate  := column op literal | column IS [NOT] NULL | column [NOT] LIKE string

Evaluation uses pyarrow.compute on the table read from the source.
"""

import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pyarrow as pa
import pyarrow.compute as pc
from pydantic import BaseModel

from infparquet._constants import CUSTOM_DEFINITIONS_KEY, MAX_TABULAR_ROWS
from infparquet._exceptions import InfParquetError, InvalidParameterError, InvalidQueryError, NotFoundError
from infparquet._layout import normalize_scalar, read_table
from infparquet._lexer import TokenKind, TokenStream
from infparquet._logging import get_logger
from infparquet._metadata import add_custom
from infparquet._types import CustomValue, MetadataDocument, Scalar

logger = get_logger(__name__)

AGGREGATES = ("COUNT", "SUM", "MIN", "MAX", "AVG")

TableSource = pa.Table | str | Path | bytes


# --- Derivation tree ---


@dataclass(frozen=True)
class Aggregate:
    function: str
    column: str | None = None

    @property
    def label(self) -> str:
        return f"{self.function.lower()}({self.column or '*'})"


@dataclass(frozen=True)
class ColumnTest:
    column: str
    operator: str
    literal: str | int | float | bool | None = None


@dataclass(frozen=True)
class NotTest:
    operand: "Condition"


@dataclass(frozen=True)
class AndTest:
    left: "Condition"
    right: "Condition"


@dataclass(frozen=True)
class OrTest:
    left: "Condition"
    right: "Condition"


Condition = ColumnTest | NotTest | AndTest | OrTest


@dataclass(frozen=True)
class Derivation:
    """Parsed derivation query.

    Attributes:
        columns: Plain column selections, empty for ``*`` or aggregates
        aggregates: Aggregate selections, empty for row selections
        where: Row filter, None keeps every row
    """

    columns: tuple[str, ...] = ()
    aggregates: tuple[Aggregate, ...] = ()
    where: Condition | None = None

    @property
    def select_all(self) -> bool:
        return not self.columns and not self.aggregates

    def referenced_columns(self) -> set[str]:
        names = set(self.columns) | {a.column for a in self.aggregates if a.column}
        pending = [self.where] if self.where is not None else []
        while pending:
            node = pending.pop()
            if isinstance(node, ColumnTest):
                names.add(node.column)
            elif isinstance(node, NotTest):
                pending.append(node.operand)
            else:
                pending.extend((node.left, node.right))
        return names


# --- Parser ---


def parse_derivation(text: str) -> Derivation:
    """Parse a derivation query.

    Raises:
        InvalidQueryError: On syntax errors or aggregates mixed with plain columns
    """
    stream = TokenStream(text)
    stream.expect_keyword("SELECT")

    columns: list[str] = []
    aggregates: list[Aggregate] = []
    if not stream.accept(TokenKind.STAR):
        while True:
            item = _parse_select_item(stream)
            if isinstance(item, Aggregate):
                aggregates.append(item)
            else:
                columns.append(item)
            if not stream.accept(TokenKind.COMMA):
                break

    if columns and aggregates:
        raise InvalidQueryError("Cannot mix aggregate functions with plain columns (no GROUP BY)")

    if stream.accept_keyword("FROM"):
        stream.expect(TokenKind.IDENT, "table name")

    where = _parse_or(stream) if stream.accept_keyword("WHERE") else None
    stream.expect_end()
    return Derivation(columns=tuple(columns), aggregates=tuple(aggregates), where=where)


def _parse_select_item(stream: TokenStream) -> Aggregate | str:
    name = _parse_column(stream)
    function = name.upper()
    if function in AGGREGATES and stream.accept(TokenKind.LPAREN):
        if stream.accept(TokenKind.STAR):
            if function != "COUNT":
                stream.fail(f"{function}(*) is not supported")
            column = None
        else:
            column = _parse_column(stream)
        stream.expect(TokenKind.RPAREN, "')'")
        return Aggregate(function, column)
    return name


def _parse_column(stream: TokenStream) -> str:
    token = stream.current
    if token.kind is not TokenKind.IDENT or token.is_keyword("SELECT", "FROM", "WHERE", "AND", "OR", "NOT"):
        stream.fail("Expected column name")
    return stream.advance().text


def _parse_or(stream: TokenStream) -> Condition:
    node = _parse_and(stream)
    while stream.accept_keyword("OR"):
        node = OrTest(node, _parse_and(stream))
    return node


def _parse_and(stream: TokenStream) -> Condition:
    node = _parse_not(stream)
    while stream.accept_keyword("AND"):
        node = AndTest(node, _parse_not(stream))
    return node


def _parse_not(stream: TokenStream) -> Condition:
    if stream.accept_keyword("NOT"):
        return NotTest(_parse_not(stream))
    if stream.accept(TokenKind.LPAREN):
        node = _parse_or(stream)
        stream.expect(TokenKind.RPAREN, "')'")
        return node
    return _parse_predicate(stream)


def _parse_predicate(stream: TokenStream) -> ColumnTest:
    column = _parse_column(stream)

    if stream.accept_keyword("IS"):
        negated = stream.accept_keyword("NOT") is not None
        stream.expect_keyword("NULL")
        return ColumnTest(column, "IS NOT NULL" if negated else "IS NULL")

    if stream.accept_keyword("NOT"):
        stream.expect_keyword("LIKE")
        return ColumnTest(column, "NOT LIKE", stream.expect(TokenKind.STRING, "quoted LIKE pattern").value)
    if stream.accept_keyword("LIKE"):
        return ColumnTest(column, "LIKE", stream.expect(TokenKind.STRING, "quoted LIKE pattern").value)

    operator = stream.expect(TokenKind.OP, "comparison operator").text
    token = stream.current
    if token.kind in (TokenKind.STRING, TokenKind.NUMBER):
        stream.advance()
        return ColumnTest(column, operator, token.value)
    if token.is_keyword("TRUE", "FALSE"):
        stream.advance()
        return ColumnTest(column, operator, token.text.upper() == "TRUE")
    stream.fail("Expected string or number literal")


# --- Evaluation ---

_COMPARE: dict[str, Callable[..., Any]] = {
    "=": pc.equal,
    "!=": pc.not_equal,
    "<": pc.less,
    "<=": pc.less_equal,
    ">": pc.greater,
    ">=": pc.greater_equal,
}

_AGGREGATE: dict[str, Callable[..., Any]] = {
    "SUM": pc.sum,
    "MIN": pc.min,
    "MAX": pc.max,
    "AVG": pc.mean,
}


def evaluate_derivation(derivation: Derivation, table: pa.Table) -> CustomValue:
    """Run ``derivation`` against ``table``.

    Returns:
        Scalar for a single aggregate, one row for several aggregates,
        otherwise the selected rows (at most 100)

    Raises:
        InvalidQueryError: Unknown column, unsupported comparison, too many rows
    """
    table = _expose_columns(table, derivation.referenced_columns())

    try:
        if derivation.where is not None:
            table = table.filter(_mask(table, derivation.where))

        if len(derivation.aggregates) == 1:
            return _aggregate(table, derivation.aggregates[0])
        if derivation.aggregates:
            return [{a.label: _aggregate(table, a) for a in derivation.aggregates}]

        if table.num_rows > MAX_TABULAR_ROWS:
            raise InvalidQueryError(
                f"Query selects {table.num_rows} rows, at most {MAX_TABULAR_ROWS} can be stored. "
                f"Add a WHERE clause or an aggregate."
            )
        if not derivation.select_all:
            table = table.select(list(derivation.columns))
        return [{key: normalize_scalar(value) for key, value in row.items()} for row in table.to_pylist()]
    except InfParquetError:
        raise
    except (pa.ArrowException, TypeError, ValueError) as e:
        raise InvalidQueryError(f"Failed to evaluate derivation: {e}") from e


def _expose_columns(table: pa.Table, names: set[str]) -> pa.Table:
    """Flatten struct columns until every referenced dotted name is a column."""
    while not names <= set(table.column_names):
        if not any(pa.types.is_struct(field.type) for field in table.schema):
            missing = ", ".join(sorted(names - set(table.column_names)))
            raise InvalidQueryError(f"Unknown column(s): {missing}")
        table = table.flatten()
    return table


def _mask(table: pa.Table, condition: Condition) -> Any:
    if isinstance(condition, NotTest):
        return pc.invert(_mask(table, condition.operand))
    if isinstance(condition, AndTest):
        return pc.and_kleene(_mask(table, condition.left), _mask(table, condition.right))
    if isinstance(condition, OrTest):
        return pc.or_kleene(_mask(table, condition.left), _mask(table, condition.right))

    column = table[condition.column]
    if condition.operator == "IS NULL":
        return pc.is_null(column)
    if condition.operator == "IS NOT NULL":
        return pc.is_valid(column)
    if condition.operator == "LIKE":
        return pc.match_like(column, condition.literal)
    if condition.operator == "NOT LIKE":
        return pc.invert(pc.match_like(column, condition.literal))
    return _COMPARE[condition.operator](column, _literal(condition.literal, column.type))


def _literal(value: Any, column_type: pa.DataType) -> pa.Scalar:
    """Literal as an Arrow scalar comparable with ``column_type``."""
    if isinstance(value, str) and (pa.types.is_temporal(column_type) or pa.types.is_decimal(column_type)):
        return pa.scalar(value, pa.string()).cast(column_type)
    return pa.scalar(value)


def _aggregate(table: pa.Table, aggregate: Aggregate) -> Scalar:
    if aggregate.function == "COUNT":
        if aggregate.column is None:
            return table.num_rows
        return pc.count(table[aggregate.column]).as_py()
    result = _AGGREGATE[aggregate.function](table[aggregate.column])
    return normalize_scalar(result.as_py())


# --- Definitions ---


class CustomDefinition(BaseModel, frozen=True):
    """One named derivation query."""

    name: str
    query: str


class DefinitionStatus(BaseModel, frozen=True):
    """Result of one definition within a batch.

    Attributes:
        name: Definition name
        success: Whether a value was stored
        value: Stored value on success
        error_code: Error taxonomy code on failure
        message: Error message on failure
    """

    name: str
    success: bool
    value: CustomValue = None
    error_code: str | None = None
    message: str = ""


class BatchReport(BaseModel, frozen=True):
    items: tuple[DefinitionStatus, ...] = ()

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.success)

    @property
    def failed(self) -> int:
        return len(self.items) - self.succeeded

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def summary(self) -> str:
        lines = [f"{self.succeeded}/{len(self.items)} custom metadata definitions stored"]
        lines.extend(f"  {item.name}: [{item.error_code}] {item.message}" for item in self.items if not item.success)
        return "\n".join(lines)


def define(document: MetadataDocument, name: str, query: str, source: TableSource) -> MetadataDocument:
    """Evaluate ``query`` against ``source`` and store the result under ``name``.

    Args:
        document: Document to extend. Not modified.
        name: Custom metadata name. An existing item is overwritten.
        query: Derivation query
        source: Table, Parquet path or in-memory Parquet bytes

    Returns:
        New document holding the item

    Raises:
        InvalidParameterError: Empty name
        InvalidQueryError: Query fails to parse or evaluate
        StructuralReadError: Source rows unreadable
    """
    return _define(document, name, query, _LazyTable(source).get)


def _define(
    document: MetadataDocument,
    name: str,
    query: str,
    load_table: Callable[[], pa.Table],
) -> MetadataDocument:
    if not name or not name.strip():
        raise InvalidParameterError("Custom metadata name must not be empty")

    derivation = parse_derivation(query)
    value = evaluate_derivation(derivation, load_table())
    logger.debug(f"Derived custom metadata {name!r}")
    return add_custom(document, name, value, query=query)


def define_batch(
    document: MetadataDocument,
    definitions: Iterable[CustomDefinition],
    source: TableSource,
) -> tuple[MetadataDocument, BatchReport]:
    """Apply several definitions. A failing item is reported, never fatal.

    The source table is read at most once, on the first definition that
    parses.
    """
    table = _LazyTable(source)
    statuses: list[DefinitionStatus] = []

    for definition in definitions:
        try:
            document = _define(document, definition.name, definition.query, table.get)
        except InfParquetError as e:
            logger.warning(f"Custom metadata {definition.name!r} failed: {e}")
            statuses.append(
                DefinitionStatus(name=definition.name, success=False, error_code=e.code.value, message=e.message)
            )
        else:
            item = document.custom[definition.name.strip()]
            statuses.append(DefinitionStatus(name=item.name, success=True, value=item.value))

    report = BatchReport(items=tuple(statuses))
    if statuses:
        logger.info(f"Custom metadata: {report.succeeded}/{len(statuses)} definitions stored")
    return document, report


class _LazyTable:
    """Reads the source table on first use and keeps it (or the failure)."""

    def __init__(self, source: TableSource) -> None:
        self._source = source
        self._table: pa.Table | None = source if isinstance(source, pa.Table) else None
        self._error: InfParquetError | None = None

    def get(self) -> pa.Table:
        if self._error is not None:
            raise self._error
        if self._table is None:
            try:
                self._table = read_table(self._source)  # type: ignore[arg-type]
            except InfParquetError as e:
                self._error = e
                raise
        return self._table


def load_definitions(path: str | Path) -> list[CustomDefinition]:
    """Read definitions from a JSON file.

    Accepted layouts::

        {"custom_metadata": [{"name": "rows", "query": "SELECT COUNT(*)"}]}
        [{"name": "rows", "sql_query": "SELECT COUNT(*)"}]

    Entries with a missing name or query are kept and fail individually
    when the batch runs.

    Raises:
        NotFoundError: File missing
        InvalidParameterError: File is not a list of definition objects
    """
    path = Path(path)
    if not path.is_file():
        raise NotFoundError(f"Definitions file not found: {path}")

    try:
        raw: Any = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidParameterError(f"Invalid definitions file {path}: {e}") from e

    entries = raw.get(CUSTOM_DEFINITIONS_KEY) if isinstance(raw, dict) else raw
    if not isinstance(entries, list):
        raise InvalidParameterError(f"{path}: expected a list under {CUSTOM_DEFINITIONS_KEY!r}")

    definitions: list[CustomDefinition] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise InvalidParameterError(f"{path}: entry {index} is not an object")
        query = entry.get("query", entry.get("sql_query", ""))
        definitions.append(CustomDefinition(name=str(entry.get("name", "")), query=str(query or "")))
    return definitions
