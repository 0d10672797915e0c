import pytest

from constants import ROOM_CODE_ALPHABET
from errors import ValidationError
from room_codes import generate_room_code, normalize_join_code, format_join_code, validate_name


def test_generated_codes_use_alphabet_and_length():
    for _ in range(1000):
        code = generate_room_code()
        assert len(code) == 4
        assert all(ch in ROOM_CODE_ALPHABET for ch in code)


def test_alphabet_excludes_ambiguous_characters():
    assert len(ROOM_CODE_ALPHABET) == 24
    for ch in "01IOLS5B8G6Z":
        assert ch not in ROOM_CODE_ALPHABET


def test_join_code_is_uppercased():
    assert normalize_join_code("a3f7") == "A3F7"
    assert normalize_join_code("  xk2q ") == "XK2Q"


@pytest.mark.parametrize("raw", ["a3f", "a3f!", "", "ABCDE", "AB C", "ßab", "ßabc"])
def test_join_code_rejects_malformed(raw):
    with pytest.raises(ValidationError):
        normalize_join_code(raw)


def test_join_code_accepts_characters_outside_generation_alphabet():
    # 0, 1, O and friends are never generated but typos must still reach the lookup
    assert normalize_join_code("o01i") == "O01I"


def test_format_join_code_strips_and_truncates():
    assert format_join_code("a-3 f7x") == "A3F7"
    assert format_join_code(None) == ""


def test_validate_name():
    assert validate_name("  Ada ") == "Ada"
    with pytest.raises(ValidationError):
        validate_name("   ")
    with pytest.raises(ValidationError):
        validate_name("x" * 51)
    assert validate_name("x" * 50) == "x" * 50
