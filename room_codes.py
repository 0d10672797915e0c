import random
import re

from constants import ROOM_CODE_ALPHABET, ROOM_CODE_LENGTH, MAX_NAME_LENGTH
from errors import ValidationError

# Joining accepts any alphanumeric code so typos of excluded characters still reach the lookup
JOIN_CODE_PATTERN = re.compile(r"[A-Za-z0-9]{%d}" % ROOM_CODE_LENGTH)


def generate_room_code() -> str:
    return ''.join(random.choices(ROOM_CODE_ALPHABET, k=ROOM_CODE_LENGTH))


def normalize_join_code(code: str) -> str:
    """Uppercase a room code typed by a user and check its shape.

    Raises ValidationError for anything that is not 4 ASCII letters or digits.
    """
    if not isinstance(code, str):
        raise ValidationError("Room code is required")
    # Check before uppercasing: case mapping can change length ("ß" -> "SS")
    stripped = code.strip()
    if not JOIN_CODE_PATTERN.fullmatch(stripped):
        raise ValidationError(f"Invalid room code: {code!r}")
    return stripped.upper()


def format_join_code(raw: str) -> str:
    """Clean partial input from a join form: uppercase, alphanumerics only, at most 4 chars."""
    cleaned = re.sub(r"[^A-Z0-9]", "", (raw or "").upper())
    return cleaned[:ROOM_CODE_LENGTH]


def validate_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Name is required")
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Name must be at most {MAX_NAME_LENGTH} characters")
    return name
