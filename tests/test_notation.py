"""Tests for A1 notation helpers."""

import pytest

from sheetexport.exceptions import InvalidCellReferenceError, UserError
from sheetexport.notation import (
    CellRef,
    column_to_letter,
    letter_to_column,
    parse_cell_ref,
)


class TestColumnToLetter:
    """Tests for column_to_letter."""

    @pytest.mark.parametrize(
        ("index", "expected"),
        [
            (1, "A"),
            (26, "Z"),
            (27, "AA"),
            (52, "AZ"),
            (53, "BA"),
            (702, "ZZ"),
            (703, "AAA"),
        ],
    )
    def test_known_labels(self, index: int, expected: str) -> None:
        assert column_to_letter(index) == expected

    def test_zero_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="at least 1"):
            column_to_letter(0)


class TestLetterToColumn:
    """Tests for letter_to_column."""

    def test_known_indices(self) -> None:
        assert letter_to_column("A") == 1
        assert letter_to_column("Z") == 26
        assert letter_to_column("AA") == 27
        assert letter_to_column("ZZ") == 702
        assert letter_to_column("AAA") == 703

    def test_case_insensitive(self) -> None:
        assert letter_to_column("ab") == letter_to_column("AB") == 28

    def test_inverse_of_column_to_letter(self) -> None:
        for index in range(1, 2000):
            assert letter_to_column(column_to_letter(index)) == index

    @pytest.mark.parametrize("label", ["", "A1", "A B", "-"])
    def test_invalid_labels(self, label: str) -> None:
        with pytest.raises(ValueError):
            letter_to_column(label)


class TestParseCellRef:
    """Tests for parse_cell_ref."""

    def test_column_only(self) -> None:
        assert parse_cell_ref("E") == CellRef(column=5, row=None)

    def test_column_and_row(self) -> None:
        assert parse_cell_ref("AB10") == CellRef(column=28, row=10)

    def test_lowercase(self) -> None:
        assert parse_cell_ref("c3") == CellRef(column=3, row=3)

    def test_zero_row_parses(self) -> None:
        """Row 0 is syntactically fine; bounds are checked by the resolver."""
        assert parse_cell_ref("A0") == CellRef(column=1, row=0)

    @pytest.mark.parametrize("token", ["", " A1", "A 1", "1A", "A-1", "$A$1", "A1B"])
    def test_malformed_tokens(self, token: str) -> None:
        with pytest.raises(InvalidCellReferenceError) as exc_info:
            parse_cell_ref(token)
        assert exc_info.value.token == token

    def test_error_is_user_error(self) -> None:
        with pytest.raises(UserError):
            parse_cell_ref("?")

    def test_str_renders_canonical_label(self) -> None:
        assert str(parse_cell_ref("ab12")) == "AB12"
        assert str(CellRef(column=3)) == "C"
