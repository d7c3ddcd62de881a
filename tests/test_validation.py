from datetime import datetime, time

import pytest
from pydantic import ValidationError

from services.validation import (
    AddressInput,
    NotesInput,
    SearchQueryInput,
    is_greeting,
    is_open,
    next_opening,
    normalize_phone,
)

GREETINGS = ["hi", "hello", "hey", "start", "begin", "help", "menu"]


def test_address_is_collapsed_and_checked():
    assert AddressInput.from_string("  12   Allen   Avenue, Ikeja ").address == "12 Allen Avenue, Ikeja"
    with pytest.raises(ValidationError):
        AddressInput.from_string("Ikeja")
    with pytest.raises(ValidationError):
        AddressInput.from_string("x" * 501)


@pytest.mark.parametrize("raw,expected", [
    ("08012345678", "08012345678"),
    ("0801-234-5678", "08012345678"),
    ("+234 801 234 5678", "+2348012345678"),
    ("(0801) 234.5678", "08012345678"),
    ("123456", None),
    ("1234567890123456", None),
    ("call me", None),
    ("", None),
])
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


def test_notes_are_trimmed():
    assert NotesInput(text="  no onions ").text == "no onions"
    with pytest.raises(ValidationError):
        NotesInput(text="   ")


def test_search_query_needs_two_characters():
    assert SearchQueryInput.from_string(" rice ").query == "rice"
    with pytest.raises(ValidationError):
        SearchQueryInput.from_string("r")


@pytest.mark.parametrize("text", ["hi", "Hello", "hey!", " MENU "])
def test_greetings(text):
    assert is_greeting(text, GREETINGS)


def test_real_notes_are_not_greetings():
    assert not is_greeting("No pepper, extra plantain", GREETINGS)


def test_opening_hours():
    assert is_open(time(12, 0), time(9, 0), time(21, 0))
    assert not is_open(time(8, 59), time(9, 0), time(21, 0))
    assert is_open(time(21, 0), time(9, 0), time(21, 0))


def test_overnight_opening_hours():
    start, end = time(18, 0), time(2, 0)
    assert is_open(time(23, 30), start, end)
    assert is_open(time(1, 0), start, end)
    assert not is_open(time(12, 0), start, end)


def test_missing_hours_mean_always_open():
    assert is_open(time(3, 0), None, time(21, 0))
    assert is_open(time(3, 0), None, None)


def test_next_opening():
    assert next_opening(datetime(2024, 5, 1, 7, 0), time(9, 0)) == datetime(2024, 5, 1, 9, 0)
    assert next_opening(datetime(2024, 5, 1, 22, 0), time(9, 0)) == datetime(2024, 5, 2, 9, 0)
    assert next_opening(datetime(2024, 5, 1, 22, 0), None) is None
