"""Unit tests for filter and cursor compilation."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import pytest
from sqlalchemy import select
from sqlalchemy.sql.elements import False_

from keyset_odata.core.database.compiler import (
    ConditionBuilder,
    FilterCompiler,
    build_cursor_predicate,
    compile_filter,
    like_contains,
    like_ends,
    like_escape,
    like_starts,
)
from keyset_odata.core.exceptions import (
    BareIdentifierError,
    BareLiteralError,
    InvalidCursorError,
    InvalidOrderByFieldError,
    NonLiteralInListError,
    ODataBuildError,
    TypeMismatchError,
    UnknownFieldError,
    UnsupportedFunctionError,
    UnsupportedOperatorError,
)
from keyset_odata.core.pagination.ast import (
    Compare,
    CompareOperator,
    Identifier,
    In,
    Literal,
    Value,
)
from keyset_odata.core.pagination.cursor import CursorV1
from keyset_odata.core.pagination.filter_parser import parse_filter
from keyset_odata.core.pagination.order import SortDir
from tests.fixtures.models import WIDGET_FIELDS, Widget


class RecordingBuilder(ConditionBuilder):
    """Builds plain tuples so compiled conditions compare by value."""

    def and_(self, *conditions: Any) -> Any:
        return ("and", *conditions)

    def or_(self, *conditions: Any) -> Any:
        return ("or", *conditions)

    def not_(self, condition: Any) -> Any:
        return ("not", condition)

    def compare(self, column: Any, op: CompareOperator, value: Any) -> Any:
        return ("cmp", column.key, op.value, value)

    def is_null(self, column: Any) -> Any:
        return ("is_null", column.key)

    def is_not_null(self, column: Any) -> Any:
        return ("is_not_null", column.key)

    def in_(self, column: Any, values: Sequence[Any]) -> Any:
        return ("in", column.key, tuple(values))

    def always_false(self) -> Any:
        return ("false",)

    def like(self, column: Any, pattern: str) -> Any:
        return ("like", column.key, pattern)


def compile_text(raw: str) -> Any:
    return compile_filter(parse_filter(raw), WIDGET_FIELDS, RecordingBuilder())


def sql(condition: Any) -> str:
    return str(select(Widget.id).where(condition).compile(compile_kwargs={"literal_binds": True}))


# ──────────────────────────────────────────────────────────────
# LIKE helpers
# ──────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestLikePatterns:
    """Tests for LIKE escaping."""

    def test_escape_wildcards_and_escape_char(self):
        """``%``, ``_`` and ``\\`` are escaped."""
        assert like_escape("50%_a\\b") == "50\\%\\_a\\\\b"

    def test_patterns(self):
        """Wildcards are added around the escaped text."""
        assert like_contains("a_b") == "%a\\_b%"
        assert like_starts("ab") == "ab%"
        assert like_ends("ab") == "%ab"


# ──────────────────────────────────────────────────────────────
# Filter compilation
# ──────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestCompileFilter:
    """Tests for the shape of compiled conditions."""

    def test_comparison_coerces_literal(self):
        """The literal is converted to the field's kind."""
        assert compile_text("id ge 3") == ("cmp", "id", "ge", 3)
        assert compile_text("score lt 1.5") == ("cmp", "score", "lt", 1.5)

    def test_field_names_are_case_insensitive(self):
        """``NAME`` resolves through the map."""
        assert compile_text("NAME eq 'w01'") == ("cmp", "name", "eq", "w01")

    def test_connectives(self):
        """And, or and not map one to one."""
        assert compile_text("id eq 1 or not active eq true and id eq 2") == (
            "or",
            ("cmp", "id", "eq", 1),
            ("and", ("not", ("cmp", "active", "eq", True)), ("cmp", "id", "eq", 2)),
        )

    def test_connective_chains_are_flat(self):
        """A run of one connective becomes a single n-ary condition."""
        assert compile_text("id eq 1 or id eq 2 or id eq 3") == (
            "or",
            ("cmp", "id", "eq", 1),
            ("cmp", "id", "eq", 2),
            ("cmp", "id", "eq", 3),
        )

    def test_null_comparisons(self):
        """``eq null`` and ``ne null`` become null checks."""
        assert compile_text("category eq null") == ("is_null", "category")
        assert compile_text("category ne null") == ("is_not_null", "category")

    @pytest.mark.parametrize("op", ["gt", "ge", "lt", "le"])
    def test_ordering_against_null(self, op: str):
        """Ordering comparisons with null are unsupported."""
        with pytest.raises(UnsupportedOperatorError) as exc_info:
            compile_text(f"category {op} null")

        assert exc_info.value.operator == op

    def test_in_list(self):
        """Every item is coerced."""
        assert compile_text("id in (1, 2, 3)") == ("in", "id", (1, 2, 3))

    def test_empty_in_list_matches_nothing(self):
        """``in ()`` is always false."""
        assert compile_text("id in ()") == ("false",)

    def test_in_list_with_non_literal(self):
        """Items must be literals."""
        expr = In(Identifier("id"), (Literal(Value.number(1)), Identifier("score")))

        with pytest.raises(NonLiteralInListError):
            compile_filter(expr, WIDGET_FIELDS, RecordingBuilder())

    def test_in_list_type_mismatch(self):
        """Items must fit the field kind."""
        with pytest.raises(TypeMismatchError):
            compile_text("id in (1, 'two')")

    def test_in_requires_field_on_left(self):
        """The subject of ``in`` must be an identifier."""
        expr = In(Literal(Value.number(1)), (Literal(Value.number(1)),))

        with pytest.raises(ODataBuildError) as exc_info:
            compile_filter(expr, WIDGET_FIELDS, RecordingBuilder())

        assert exc_info.value.detail == "left side of IN must be a field"

    @pytest.mark.parametrize(
        ("raw", "pattern"),
        [
            ("contains(name, '5%')", "%5\\%%"),
            ("startswith(name, 'w0')", "w0%"),
            ("endswith(name, '_1')", "%\\_1"),
            ("StartsWith(name, 'w')", "w%"),
        ],
    )
    def test_string_functions(self, raw: str, pattern: str):
        """String functions become escaped LIKE patterns."""
        assert compile_text(raw) == ("like", "name", pattern)

    @pytest.mark.parametrize(
        "raw",
        [
            "tolower(name, 'a')",
            "contains(name)",
            "contains('a', name)",
            "contains(name, 1)",
            "contains(name, 'a', 'b')",
        ],
    )
    def test_unsupported_functions(self, raw: str):
        """Unknown functions and wrong argument shapes fail."""
        with pytest.raises(UnsupportedFunctionError):
            compile_text(raw)

    def test_string_function_on_non_string_field(self):
        """LIKE only applies to string fields."""
        with pytest.raises(TypeMismatchError) as exc_info:
            compile_text("contains(score, '1')")

        assert exc_info.value.expected == "string"

    def test_unknown_field(self):
        """Identifiers outside the map fail."""
        with pytest.raises(UnknownFieldError):
            compile_text("weight gt 1")

    def test_type_mismatch(self):
        """Literals must fit the field kind."""
        with pytest.raises(TypeMismatchError):
            compile_text("name eq 1")

    def test_field_to_field_comparison(self):
        """Comparing two fields is not supported."""
        expr = Compare(Identifier("id"), CompareOperator.EQ, Identifier("score"))

        with pytest.raises(ODataBuildError) as exc_info:
            compile_filter(expr, WIDGET_FIELDS, RecordingBuilder())

        assert exc_info.value.detail == "field-to-field comparison is not supported"

    def test_literal_on_the_left(self):
        """Only ``field op literal`` is accepted."""
        expr = Compare(Literal(Value.number(1)), CompareOperator.EQ, Identifier("id"))

        with pytest.raises(ODataBuildError) as exc_info:
            compile_filter(expr, WIDGET_FIELDS, RecordingBuilder())

        assert exc_info.value.detail == "unsupported comparison form"

    def test_bare_identifier(self):
        """An identifier is not a condition."""
        with pytest.raises(BareIdentifierError):
            FilterCompiler(WIDGET_FIELDS, RecordingBuilder()).compile(Identifier("active"))

    def test_bare_literal(self):
        """A literal is not a condition."""
        with pytest.raises(BareLiteralError):
            FilterCompiler(WIDGET_FIELDS, RecordingBuilder()).compile(Literal(Value.bool(True)))

    def test_failures_are_logged(self, caplog: pytest.LogCaptureFixture):
        """Compilation errors leave a DEBUG record with their code."""
        caplog.set_level(logging.DEBUG, logger="keyset_odata.core.database.compiler")

        with pytest.raises(UnknownFieldError):
            compile_text("weight gt 1")

        record = next(r for r in caplog.records if r.message == "Filter compilation failed")
        assert record.code == "UNKNOWN_FIELD"


@pytest.mark.unit
class TestSQLAlchemyConditions:
    """Tests for the default SQLAlchemy builder."""

    def test_comparison(self):
        """Compiles to a bound comparison."""
        assert "widgets.id >= 3" in sql(compile_filter(parse_filter("id ge 3"), WIDGET_FIELDS))

    def test_null_checks(self):
        """Null checks use IS / IS NOT."""
        assert "widgets.category IS NULL" in sql(compile_filter(parse_filter("category eq null"), WIDGET_FIELDS))
        assert "widgets.category IS NOT NULL" in sql(
            compile_filter(parse_filter("category ne null"), WIDGET_FIELDS)
        )

    def test_like_carries_escape(self):
        """LIKE is emitted with an explicit escape character."""
        condition = compile_filter(parse_filter("contains(name, 'a_b')"), WIDGET_FIELDS)

        assert condition.right.value == "%a\\_b%"
        assert "ESCAPE" in sql(condition)

    def test_empty_in_is_false(self):
        """``in ()`` compiles to a constant false."""
        assert isinstance(compile_filter(parse_filter("id in ()"), WIDGET_FIELDS), False_)

    def test_in_list(self):
        """Non-empty lists use IN."""
        assert "widgets.id IN (1, 2)" in sql(compile_filter(parse_filter("id in (1, 2)"), WIDGET_FIELDS))

    def test_long_or_chain(self):
        """A chain within the default budgets compiles to one OR list."""
        expr = parse_filter(" or ".join(f"id eq {i}" for i in range(500)))

        text = sql(compile_filter(expr, WIDGET_FIELDS))

        assert "widgets.id = 0 OR widgets.id = 1 OR" in text
        assert text.count(" OR ") == 499


# ──────────────────────────────────────────────────────────────
# Cursor predicate
# ──────────────────────────────────────────────────────────────


@pytest.mark.unit
class TestCursorPredicate:
    """Tests for the lexicographic seek condition."""

    def test_single_key(self):
        """One key is a single comparison."""
        cursor = CursorV1(k=("5",), o=SortDir.ASC, s="+id")

        assert build_cursor_predicate(cursor, cursor.order, WIDGET_FIELDS, RecordingBuilder()) == (
            "cmp", "id", "gt", 5,
        )

    def test_mixed_directions(self):
        """Each branch fixes the previous keys and steps past the next."""
        cursor = CursorV1(k=("2024-01-01T03:00:00+00:00", "3"), o=SortDir.DESC, s="-created_at,+id")
        t = datetime(2024, 1, 1, 3, tzinfo=UTC)

        predicate = build_cursor_predicate(cursor, cursor.order, WIDGET_FIELDS, RecordingBuilder())

        assert predicate == (
            "or",
            ("cmp", "created_at", "lt", t),
            ("and", ("cmp", "created_at", "eq", t), ("cmp", "id", "gt", 3)),
        )

    def test_three_keys(self):
        """The last branch fixes every earlier key."""
        cursor = CursorV1(k=("1.0", "w01", "1"), o=SortDir.ASC, s="+score,+name,+id")

        predicate = build_cursor_predicate(cursor, cursor.order, WIDGET_FIELDS, RecordingBuilder())

        assert predicate[0] == "or"
        assert predicate[3] == (
            "and",
            ("cmp", "score", "eq", 1.0),
            ("cmp", "name", "eq", "w01"),
            ("cmp", "id", "gt", 1),
        )

    def test_backward_cursor_flips_comparisons(self):
        """A previous-page cursor seeks the rows before it."""
        cursor = CursorV1(k=("2.0", "5"), o=SortDir.DESC, s="-score,+id", d="bwd")

        predicate = build_cursor_predicate(cursor, cursor.order, WIDGET_FIELDS, RecordingBuilder())

        assert predicate == (
            "or",
            ("cmp", "score", "gt", 2.0),
            ("and", ("cmp", "score", "eq", 2.0), ("cmp", "id", "lt", 5)),
        )

    def test_key_count_mismatch(self):
        """Keys must line up with the order."""
        cursor = CursorV1(k=("1",), o=SortDir.ASC, s="+id")
        order = CursorV1(k=("1", "2"), o=SortDir.ASC, s="+score,+id").order

        with pytest.raises(InvalidCursorError) as exc_info:
            build_cursor_predicate(cursor, order, WIDGET_FIELDS, RecordingBuilder())

        assert exc_info.value.detail == "invalid cursor: keys count mismatch with order fields"

    def test_unknown_order_field(self):
        """Order fields must be whitelisted."""
        cursor = CursorV1(k=("1",), o=SortDir.ASC, s="+weight")

        with pytest.raises(InvalidOrderByFieldError):
            build_cursor_predicate(cursor, cursor.order, WIDGET_FIELDS, RecordingBuilder())

    def test_unparsable_key(self):
        """A key that does not parse as its kind is a cursor error."""
        cursor = CursorV1(k=("abc",), o=SortDir.ASC, s="+id")

        with pytest.raises(InvalidCursorError):
            build_cursor_predicate(cursor, cursor.order, WIDGET_FIELDS, RecordingBuilder())

    def test_sqlalchemy_output(self):
        """The default builder emits OR of ANDs."""
        cursor = CursorV1(k=("2.0", "5"), o=SortDir.DESC, s="-score,+id")

        text = sql(build_cursor_predicate(cursor, cursor.order, WIDGET_FIELDS))

        assert "widgets.score < 2.0 OR widgets.score = 2.0 AND widgets.id > 5" in text
