"""Filter predicates over a loaded metadata document.

Grammar (keywords are case-insensitive)::

    query      := SELECT '*' [FROM name] [WHERE or_expr]
    or_expr    := and_expr (OR and_expr)*
    and_expr   := not_expr (AND not_expr)*
    not_expr   := NOT not_expr | '(' or_expr ')' | comparison
    comparison := attribute op literal | attribute [NOT] LIKE string
    op         := '=' | '!=' | '<>' | '<' | '<=' | '>' | '>='
    literal    := string | integer | float | TRUE | FALSE

Attributes resolve against basic metadata first, then custom items by name.
Every attribute is bound before evaluation, so a reference that resolves to
nothing fails the whole query instead of evaluating to false.
"""

import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from infparquet._exceptions import InvalidQueryError
from infparquet._lexer import TokenKind, TokenStream
from infparquet._types import ChunkStatistics, CompressedChunk, MetadataDocument, QueryResult, Scalar

Literal = str | int | float | bool

COMPARISON_OPERATORS = ("=", "!=", "<", "<=", ">", ">=")
LIKE = "LIKE"
NOT_LIKE = "NOT LIKE"


# --- Predicate tree ---


@dataclass(frozen=True)
class Comparison:
    attribute: str
    operator: str
    literal: Literal


@dataclass(frozen=True)
class Not:
    operand: "QueryPredicate"


@dataclass(frozen=True)
class And:
    left: "QueryPredicate"
    right: "QueryPredicate"


@dataclass(frozen=True)
class Or:
    left: "QueryPredicate"
    right: "QueryPredicate"


@dataclass(frozen=True)
class MatchAll:
    """Predicate of a query without WHERE clause."""


QueryPredicate = Comparison | Not | And | Or | MatchAll


def iter_comparisons(predicate: QueryPredicate) -> Iterator[Comparison]:
    if isinstance(predicate, Comparison):
        yield predicate
    elif isinstance(predicate, Not):
        yield from iter_comparisons(predicate.operand)
    elif isinstance(predicate, And | Or):
        yield from iter_comparisons(predicate.left)
        yield from iter_comparisons(predicate.right)


# --- Parser ---


def parse(text: str) -> QueryPredicate:
    """Parse ``SELECT * [FROM name] [WHERE predicate]``.

    Raises:
        InvalidQueryError: On any syntax error
    """
    stream = TokenStream(text)
    stream.expect_keyword("SELECT")
    stream.expect(TokenKind.STAR, "'*' (only SELECT * is supported)")

    if stream.accept_keyword("FROM"):
        stream.expect(TokenKind.IDENT, "source name")

    if stream.accept_keyword("WHERE"):
        predicate = _parse_or(stream)
    else:
        predicate = MatchAll()

    stream.expect_end()
    return predicate


def _parse_or(stream: TokenStream) -> QueryPredicate:
    node = _parse_and(stream)
    while stream.accept_keyword("OR"):
        node = Or(node, _parse_and(stream))
    return node


def _parse_and(stream: TokenStream) -> QueryPredicate:
    node = _parse_not(stream)
    while stream.accept_keyword("AND"):
        node = And(node, _parse_not(stream))
    return node


def _parse_not(stream: TokenStream) -> QueryPredicate:
    if stream.accept_keyword("NOT"):
        return Not(_parse_not(stream))
    if stream.accept(TokenKind.LPAREN):
        node = _parse_or(stream)
        stream.expect(TokenKind.RPAREN, "')'")
        return node
    return _parse_comparison(stream)


def _parse_comparison(stream: TokenStream) -> Comparison:
    token = stream.current
    if token.kind is not TokenKind.IDENT or token.is_keyword("SELECT", "WHERE", "AND", "OR", "NOT", "LIKE"):
        stream.fail("Expected attribute name")
    attribute = stream.advance().text

    if stream.accept_keyword("NOT"):
        stream.expect_keyword("LIKE")
        return Comparison(attribute, NOT_LIKE, _parse_pattern(stream))
    if stream.accept_keyword("LIKE"):
        return Comparison(attribute, LIKE, _parse_pattern(stream))

    operator = stream.expect(TokenKind.OP, "comparison operator").text
    return Comparison(attribute, operator, _parse_literal(stream))


def _parse_pattern(stream: TokenStream) -> str:
    return str(stream.expect(TokenKind.STRING, "quoted LIKE pattern").value)


def _parse_literal(stream: TokenStream) -> Literal:
    token = stream.current
    if token.kind in (TokenKind.STRING, TokenKind.NUMBER):
        stream.advance()
        return token.value  # type: ignore[return-value]
    if token.is_keyword("TRUE", "FALSE"):
        stream.advance()
        return token.text.upper() == "TRUE"
    stream.fail("Expected string or number literal")


# --- Attribute binding ---


class Scope(IntEnum):
    FILE = 0
    ROW_GROUP = 1
    COLUMN = 2


@dataclass(frozen=True)
class _Context:
    row_group: int | None = None
    column: int | None = None


@dataclass(frozen=True)
class _Binding:
    scope: Scope
    resolve: Callable[[_Context], Any]
    column: str | None = None


_CHUNK_FIELDS = ("original_length", "compressed_length")
_STAT_FIELDS = ("min", "max", "null_count", "distinct_count")


def _file_attributes(document: MetadataDocument) -> dict[str, Callable[[], Any]]:
    basic = document.basic
    return {
        "source_name": lambda: basic.source.name,
        "source_path": lambda: basic.source.path,
        "source_size": lambda: basic.source.size,
        "num_rows": lambda: basic.num_rows,
        "row_group_count": lambda: basic.row_group_count,
        "column_count": lambda: basic.column_count,
        "codec": lambda: basic.codec.name,
        "codec_level": lambda: basic.codec.level,
        "format_version": lambda: basic.format_version,
        "compressed_size": lambda: basic.blob_size,
        "compression_ratio": lambda: basic.blob_size / basic.source.size if basic.source.size else 0.0,
        "created_at": lambda: basic.created_at.isoformat(),
    }


def _chunk_value(chunk: CompressedChunk, field: str) -> Scalar:
    if field in _CHUNK_FIELDS:
        return getattr(chunk, field)
    stats: ChunkStatistics | None = chunk.statistics
    return getattr(stats, field) if stats is not None else None


def _bind(document: MetadataDocument, attribute: str) -> _Binding:
    basic = document.basic
    width = basic.column_count

    def chunk_at(ctx: _Context, column: int) -> CompressedChunk:
        return basic.chunks[ctx.row_group * width + column]  # type: ignore[operator]

    file_attributes = _file_attributes(document)
    if attribute in file_attributes:
        getter = file_attributes[attribute]
        return _Binding(Scope.FILE, lambda ctx: getter())

    row_group_attributes: dict[str, Callable[[_Context], Any]] = {
        "row_group_index": lambda ctx: ctx.row_group,
        "row_group_rows": lambda ctx: basic.row_groups[ctx.row_group].num_rows,
        "row_group_size": lambda ctx: basic.row_groups[ctx.row_group].original_size,
    }
    if attribute in row_group_attributes:
        return _Binding(Scope.ROW_GROUP, row_group_attributes[attribute])

    column_attributes: dict[str, Callable[[_Context], Any]] = {
        "column_name": lambda ctx: basic.schema_columns[ctx.column].name,
        "column_index": lambda ctx: ctx.column,
        "column_type": lambda ctx: basic.schema_columns[ctx.column].physical_type,
        "logical_type": lambda ctx: basic.schema_columns[ctx.column].logical_type,
    }
    for field in (*_STAT_FIELDS, *_CHUNK_FIELDS):
        column_attributes[field] = lambda ctx, field=field: _chunk_value(chunk_at(ctx, ctx.column), field)
    if attribute in column_attributes:
        return _Binding(Scope.COLUMN, column_attributes[attribute])

    column_name, _, field = attribute.rpartition(".")
    if column_name and field in (*_STAT_FIELDS, *_CHUNK_FIELDS):
        names = [column.name for column in basic.schema_columns]
        if column_name in names:
            index = names.index(column_name)
            return _Binding(
                Scope.ROW_GROUP,
                lambda ctx: _chunk_value(chunk_at(ctx, index), field),
                column=column_name,
            )

    if attribute in document.custom:
        item = document.custom[attribute]
        if isinstance(item.value, list):
            raise InvalidQueryError(f"Custom metadata {attribute!r} holds a table and cannot be compared")
        value = item.value
        return _Binding(Scope.FILE, lambda ctx: value)

    raise InvalidQueryError(f"Unknown attribute {attribute!r}")


# --- Evaluation ---


def evaluate(document: MetadataDocument, predicate: QueryPredicate) -> QueryResult:
    """Evaluate ``predicate`` against ``document``. Pure and read-only.

    Raises:
        InvalidQueryError: If an attribute cannot be resolved
    """
    bindings = {c.attribute: _bind(document, c.attribute) for c in iter_comparisons(predicate)}
    scope = max((b.scope for b in bindings.values()), default=Scope.FILE)
    basic = document.basic

    if scope is Scope.FILE:
        contexts = [_Context()]
    elif scope is Scope.ROW_GROUP:
        contexts = [_Context(row_group=rg) for rg in range(basic.row_group_count)]
    else:
        contexts = [
            _Context(row_group=rg, column=col)
            for rg in range(basic.row_group_count)
            for col in range(basic.column_count)
        ]

    matched = [ctx for ctx in contexts if _matches(predicate, bindings, ctx)]
    if not matched:
        return QueryResult(success=True, message="No matches")

    row_groups: tuple[str, ...] = ()
    columns: tuple[str, ...] = ()
    if scope >= Scope.ROW_GROUP:
        row_groups = tuple(f"row_group_{rg}" for rg in sorted({ctx.row_group for ctx in matched}))
    if scope is Scope.COLUMN:
        columns = tuple(basic.schema_columns[col].name for col in sorted({ctx.column for ctx in matched}))
    elif scope is Scope.ROW_GROUP:
        referenced = {b.column for b in bindings.values() if b.column}
        columns = tuple(c.name for c in basic.schema_columns if c.name in referenced)

    message = f"Matched {basic.source.name}"
    if row_groups:
        message += f": {len(row_groups)} row group(s)"
    if columns:
        message += f", {len(columns)} column(s)"
    return QueryResult(
        success=True,
        message=message,
        matching_files=(basic.source.name,),
        matching_row_groups=row_groups,
        matching_columns=columns,
    )


def _matches(predicate: QueryPredicate, bindings: dict[str, _Binding], ctx: _Context) -> bool:
    if isinstance(predicate, MatchAll):
        return True
    if isinstance(predicate, Comparison):
        value = bindings[predicate.attribute].resolve(ctx)
        return compare(value, predicate.operator, predicate.literal)
    if isinstance(predicate, Not):
        return not _matches(predicate.operand, bindings, ctx)
    if isinstance(predicate, And):
        return _matches(predicate.left, bindings, ctx) and _matches(predicate.right, bindings, ctx)
    if isinstance(predicate, Or):
        return _matches(predicate.left, bindings, ctx) or _matches(predicate.right, bindings, ctx)
    raise InvalidQueryError(f"Unsupported predicate node: {predicate!r}")


def compare(value: Any, operator: str, literal: Literal) -> bool:
    """Compare a resolved value with a literal.

    Null values never match. Values that cannot be compared with the
    literal only satisfy ``!=``.
    """
    if value is None:
        return False

    if operator in (LIKE, NOT_LIKE):
        matched = like_to_regex(str(literal)).fullmatch(str(value)) is not None
        return matched if operator == LIKE else not matched

    left, right = _coerce(value, literal)
    if left is None:
        return operator == "!="

    if operator == "=":
        return left == right
    if operator == "!=":
        return left != right
    if operator == "<":
        return left < right
    if operator == "<=":
        return left <= right
    if operator == ">":
        return left > right
    if operator == ">=":
        return left >= right
    raise InvalidQueryError(f"Unsupported operator {operator!r}")


def like_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a SQL LIKE pattern (% and _ wildcards) into a regex."""
    parts = [".*" if ch == "%" else "." if ch == "_" else re.escape(ch) for ch in pattern]
    return re.compile("".join(parts), re.DOTALL)


def _coerce(value: Any, literal: Literal) -> tuple[Any, Any]:
    numeric = (int, float)
    if isinstance(value, numeric) and isinstance(literal, numeric):
        return value, literal
    if isinstance(value, str) and isinstance(literal, str):
        return value, literal
    if isinstance(value, str) and isinstance(literal, numeric) and not isinstance(literal, bool):
        try:
            return float(value), literal
        except ValueError:
            return None, None
    if isinstance(value, numeric) and not isinstance(value, bool) and isinstance(literal, str):
        try:
            return value, float(literal)
        except ValueError:
            return None, None
    return None, None
