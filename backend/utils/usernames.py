# backend/utils/usernames.py
import re
from typing import Iterable

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]{3,20}$")
MIN_GENERATED_LENGTH = 4
MAX_LENGTH = 20


def is_valid_username(username: str) -> bool:
    return bool(username) and USERNAME_PATTERN.match(username) is not None


def base_username(full_name: str) -> str:
    """Derive the base login name from a member's full name.

    "Ravi" -> "ravi", "Ravi Kumar" -> "ravik", "Ravi Shankar Kumar" -> "ravisk".
    """
    if not full_name or not isinstance(full_name, str):
        raise ValueError("Valid full name is required")

    clean = re.sub(r"[^a-z\s]", "", full_name.strip().lower())
    parts = clean.split()
    if not parts:
        raise ValueError("Name must contain at least one valid word")

    if len(parts) == 1:
        base = parts[0]
    elif len(parts) == 2:
        base = parts[0] + parts[1][0]
    else:
        base = parts[0] + parts[1][0] + parts[-1][0]

    if len(base) < MIN_GENERATED_LENGTH and len(parts) > 1:
        base = parts[0] + parts[1][: MIN_GENERATED_LENGTH - len(parts[0])]
    if len(base) < MIN_GENERATED_LENGTH:
        base = base.ljust(MIN_GENERATED_LENGTH, "0")

    return base[:MAX_LENGTH]


def generate_username(full_name: str, existing: Iterable[str]) -> str:
    taken = set(existing)
    base = base_username(full_name)
    candidate = base
    counter = 1
    while candidate in taken:
        suffix = str(counter)
        candidate = base[: MAX_LENGTH - len(suffix)] + suffix
        counter += 1
    return candidate
