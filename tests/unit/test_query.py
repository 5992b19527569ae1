"""Tests for infparquet.query module."""

import pytest

from infparquet._exceptions import InvalidQueryError
from infparquet._metadata import add_custom
from infparquet.query import And, Comparison, MatchAll, Not, Or, compare, evaluate, like_to_regex, parse


class TestParse:

    def test_select_all(self):
        assert parse("SELECT *") == MatchAll()

    def test_keywords_case_insensitive(self):
        assert parse("select * from data where num_rows > 5") == Comparison("num_rows", ">", 5)

    def test_not_binds_tightest(self):
        assert parse("SELECT * WHERE NOT a = 1 AND b = 2") == And(Not(Comparison("a", "=", 1)), Comparison("b", "=", 2))

    def test_and_binds_tighter_than_or(self):
        assert parse("SELECT * WHERE a = 1 OR b = 2 AND c = 3") == Or(
            Comparison("a", "=", 1),
            And(Comparison("b", "=", 2), Comparison("c", "=", 3)),
        )

    def test_parentheses(self):
        assert parse("SELECT * WHERE (a = 1 OR b = 2) AND c = 3") == And(
            Or(Comparison("a", "=", 1), Comparison("b", "=", 2)),
            Comparison("c", "=", 3),
        )

    def test_literals(self):
        assert parse("SELECT * WHERE a = 'it''s'").literal == "it's"
        assert parse("SELECT * WHERE a = -1.5").literal == -1.5
        assert parse("SELECT * WHERE a = TRUE").literal is True

    def test_not_equal_alias(self):
        assert parse("SELECT * WHERE a <> 1") == Comparison("a", "!=", 1)

    def test_like(self):
        assert parse("SELECT * WHERE column_name NOT LIKE 'pr%'") == Comparison("column_name", "NOT LIKE", "pr%")

    def test_quoted_attribute(self):
        assert parse('SELECT * WHERE "row count" = 1').attribute == "row count"

    def test_dotted_attribute(self):
        assert parse("SELECT * WHERE price.max >= 50").attribute == "price.max"

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "SELECT id WHERE a = 1",
            "SELECT * WHERE",
            "SELECT * WHERE a = ",
            "SELECT * WHERE (a = 1",
            "SELECT * WHERE a = 1 extra",
            "SELECT * WHERE a LIKE 5",
            "WHERE a = 1",
            "SELECT * WHERE a = 'unterminated",
        ],
    )
    def test_syntax_errors(self, text):
        with pytest.raises(InvalidQueryError):
            parse(text)


class TestEvaluateFileScope:

    def test_custom_total_rows(self, document):
        document = add_custom(document, "total_rows", 1000)

        result = evaluate(document, parse("SELECT * WHERE total_rows > 500"))

        assert result.success
        assert result.matching_files == ("data.parquet",)
        assert result.matching_row_groups == ()

    def test_no_match_is_success(self, document):
        document = add_custom(document, "total_rows", 1000)

        result = evaluate(document, parse("SELECT * WHERE total_rows > 2000"))

        assert result.success
        assert result.matching_files == ()
        assert result.matching_row_groups == ()
        assert result.matching_columns == ()

    def test_basic_fields(self, document):
        result = evaluate(document, parse("SELECT * WHERE num_rows = 30000 AND row_group_count = 3"))
        assert result.matching_files == ("data.parquet",)

    def test_codec_attributes(self, document):
        result = evaluate(document, parse("SELECT * WHERE codec = 'lzma' AND codec_level = 1"))
        assert result.matching_files == ("data.parquet",)

    def test_compression_ratio(self, document):
        assert evaluate(document, parse("SELECT * WHERE compression_ratio < 1")).matching_files

    def test_select_all_matches_file(self, document):
        assert evaluate(document, parse("SELECT *")).matching_files == ("data.parquet",)

    def test_unknown_attribute(self, document):
        with pytest.raises(InvalidQueryError, match="Unknown attribute"):
            evaluate(document, parse("SELECT * WHERE no_such_thing = 1"))

    def test_unknown_attribute_behind_short_circuit(self, document):
        with pytest.raises(InvalidQueryError):
            evaluate(document, parse("SELECT * WHERE num_rows > 0 OR no_such_thing = 1"))

    def test_tabular_custom_not_comparable(self, document):
        document = add_custom(document, "top", [{"id": 1}])

        with pytest.raises(InvalidQueryError, match="table"):
            evaluate(document, parse("SELECT * WHERE top = 1"))

    def test_basic_field_shadows_custom(self, document):
        document = add_custom(document, "num_rows", 1)
        assert evaluate(document, parse("SELECT * WHERE num_rows = 30000")).matching_files


class TestEvaluateRowGroupScope:

    def test_qualified_statistic(self, document):
        result = evaluate(document, parse("SELECT * WHERE id.max < 15000"))

        assert result.matching_files == ("data.parquet",)
        assert result.matching_row_groups == ("row_group_0",)
        assert result.matching_columns == ("id",)

    def test_row_group_index(self, document):
        result = evaluate(document, parse("SELECT * WHERE row_group_index >= 1"))

        assert result.matching_row_groups == ("row_group_1", "row_group_2")
        assert result.matching_columns == ()

    def test_mixed_with_custom(self, document):
        document = add_custom(document, "total_rows", 1000)

        result = evaluate(document, parse("SELECT * WHERE total_rows > 500 AND row_group_index = 2"))

        assert result.matching_row_groups == ("row_group_2",)

    def test_unknown_column_qualifier(self, document):
        with pytest.raises(InvalidQueryError):
            evaluate(document, parse("SELECT * WHERE nope.max > 1"))


class TestEvaluateColumnScope:

    def test_column_type(self, document):
        result = evaluate(document, parse("SELECT * WHERE column_type = 'BYTE_ARRAY'"))

        assert result.matching_columns == ("category",)
        assert result.matching_row_groups == ("row_group_0", "row_group_1", "row_group_2")

    def test_like_on_column_name(self, document):
        result = evaluate(document, parse("SELECT * WHERE column_name LIKE 'pr%'"))
        assert result.matching_columns == ("price",)

    def test_statistic_per_chunk(self, document):
        result = evaluate(document, parse("SELECT * WHERE column_name = 'id' AND min >= 10000"))

        assert result.matching_row_groups == ("row_group_1", "row_group_2")
        assert result.matching_columns == ("id",)

    def test_not(self, document):
        result = evaluate(document, parse("SELECT * WHERE NOT column_index < 3"))
        assert result.matching_columns == ("flag",)


class TestCompare:

    def test_null_never_matches(self):
        assert compare(None, "=", 1) is False
        assert compare(None, "!=", 1) is False

    def test_numeric_string_coerced(self):
        assert compare("10", ">", 5)
        assert compare(10, "=", "10")

    def test_incomparable_only_not_equal(self):
        assert compare("abc", "<", 5) is False
        assert compare("abc", "!=", 5) is True

    def test_like_is_case_sensitive(self):
        assert compare("Price", "LIKE", "P%")
        assert not compare("price", "LIKE", "P%")

    def test_like_to_regex(self):
        pattern = like_to_regex("a_c%.x")
        assert pattern.fullmatch("abcZZZ.x")
        assert not pattern.fullmatch("abcZZZx")
