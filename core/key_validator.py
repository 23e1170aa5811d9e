"""
key_validator.py — sanitize and validate the 16-character pairing key.

The pairing key is typed (or pasted) by hand on the companion device, so input
is cleaned as the user types and validated once before pairing.
"""

import re

# --- Config / constants ----------------------------------------------------
KEY_LENGTH = 16
KEY_PATTERN = re.compile(r"[A-Z0-9]+")
_INVALID_CHARS = re.compile(r"[^A-Z0-9]")


# --- Errors ----------------------------------------------------------------
class ValidationError(ValueError):
    """Base class for a rejected pairing key. `reason` is safe to show to users."""

    reason = "Invalid key."

    def __init__(self, reason: str = None):
        if reason is not None:
            self.reason = reason
        super().__init__(self.reason)


class LengthError(ValidationError):
    reason = f"Key must be exactly {KEY_LENGTH} characters."


class CharsetError(ValidationError):
    reason = "Key must contain only A-Z and 0-9."


# --- Public API ------------------------------------------------------------
def sanitize(raw: str, max_length: int = KEY_LENGTH) -> str:
    """
    Clean partial user input into the canonical alphabet.

    - Upper-case everything
    - Drop characters outside [A-Z0-9]
    - Keep at most `max_length` characters (None: no limit)

    Safe to call on every keystroke; sanitize(sanitize(x)) == sanitize(x).
    """
    cleaned = _INVALID_CHARS.sub("", (raw or "").upper())
    if max_length is None:
        return cleaned
    return cleaned[:max_length]


def validate(candidate: str) -> str:
    """
    Check a candidate key and return it unchanged when valid.

    Raises:
        LengthError: length is not exactly KEY_LENGTH (checked first)
        CharsetError: a character falls outside [A-Z0-9]
    """
    if candidate is None or len(candidate) != KEY_LENGTH:
        raise LengthError()
    if not KEY_PATTERN.fullmatch(candidate):
        raise CharsetError()
    return candidate


def is_valid(candidate: str) -> bool:
    try:
        validate(candidate)
    except ValidationError:
        return False
    return True
