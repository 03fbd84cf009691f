from __future__ import annotations

_ALPHABET_SIZE = 26
_FIRST_LETTER = ord("A")


def index_to_column(index: int) -> str:
    """Convert a zero-based column index into spreadsheet letters (0 -> A, 26 -> AA)."""

    if index < 0:
        raise ValueError(f"Column index must be non-negative; received {index}")

    letters = []
    number = index + 1
    while number > 0:
        number, remainder = divmod(number - 1, _ALPHABET_SIZE)
        letters.append(chr(_FIRST_LETTER + remainder))
    return "".join(reversed(letters))


def column_to_index(column: str) -> int:
    """Convert spreadsheet letters into a zero-based column index (A -> 0, AA -> 26)."""

    letters = (column or "").strip().upper()
    if not letters or not letters.isascii() or not letters.isalpha():
        raise ValueError(f"Invalid column letters: {column!r}")

    number = 0
    for letter in letters:
        number = number * _ALPHABET_SIZE + (ord(letter) - _FIRST_LETTER + 1)
    return number - 1


def cell_key(column: str, row: int) -> str:
    return f"{column}{row}"
