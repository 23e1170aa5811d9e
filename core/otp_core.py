#!/usr/bin/env python3
"""
otp_core.py — TOTP engine for the companion device.

Goals:
- Pure functions for HOTP (RFC 4226) / TOTP (RFC 6238), fixed profile:
  HMAC-SHA1, 30-second step, 6 digits.
- The HMAC key is the UTF-8 bytes of the 16-character pairing key as typed
  (no Base32 decoding), matching what the main app expects.
- No I/O here; the pairing record lives in database.db_manager.

Security notes:
- fallback_code() is NOT cryptographic. It only exists so that a runtime
  without a usable HMAC-SHA1 (e.g. SHA-1 disabled by policy) still shows a
  code instead of crashing. The engine never uses it while HMAC-SHA1 works.
"""

from typing import Optional, Tuple
import hashlib
import hmac
import logging
import struct
import time

logger = logging.getLogger(__name__)

# --- Config / constants ----------------------------------------------------
DEFAULT_DIGITS = 6          # fixed: 6 digits
DEFAULT_TIME_STEP = 30      # TOTP step (seconds)
_MODULUS = 10 ** DEFAULT_DIGITS
_UINT32_MASK = 0xFFFFFFFF
_FALLBACK_BASE = 31


class CryptoUnavailable(RuntimeError):
    """Raised when the runtime cannot compute HMAC-SHA1."""


# --- RFC helpers -----------------------------------------------------------
def int_to_bytes(i: int) -> bytes:
    """
    Pack the counter as 8-byte big-endian, as RFC 4226 requires.

    Example: int_to_bytes(1) -> b'\\x00\\x00\\x00\\x00\\x00\\x00\\x00\\x01'

    Raises:
        ValueError: counter is negative or does not fit in 64 bits
    """
    if i < 0:
        raise ValueError("counter must be non-negative")
    try:
        return struct.pack(">Q", i)
    except struct.error as e:
        raise ValueError("counter does not fit in 64 bits") from e


def dynamic_truncate(hmac_digest: bytes) -> int:
    """
    RFC 4226 dynamic truncation.

    - offset = last_byte & 0x0F
    - take 4 bytes from offset, clear the MSB (0x7F) of the first one
    - return the resulting 31-bit unsigned integer
    """
    offset = hmac_digest[-1] & 0x0F
    return (
        ((hmac_digest[offset] & 0x7F) << 24)
        | ((hmac_digest[offset + 1] & 0xFF) << 16)
        | ((hmac_digest[offset + 2] & 0xFF) << 8)
        | (hmac_digest[offset + 3] & 0xFF)
    )


def hmac_sha1(key: bytes, msg: bytes) -> bytes:
    """HMAC-SHA1 digest (20 bytes); raises CryptoUnavailable if SHA-1 is refused."""
    try:
        return hmac.new(key, msg, hashlib.sha1).digest()
    except (ValueError, AttributeError) as e:
        raise CryptoUnavailable(f"HMAC-SHA1 unavailable: {e}") from e


def hmac_sha1_available() -> bool:
    """Probe the runtime once for a working HMAC-SHA1."""
    try:
        hmac_sha1(b"probe", int_to_bytes(0))
    except CryptoUnavailable:
        return False
    return True


def format_code(value: int) -> str:
    return str(value % _MODULUS).zfill(DEFAULT_DIGITS)


def hotp(secret: str, counter: int) -> str:
    """
    HOTP code for `counter`.

    Steps:
    1. key = secret.encode("utf-8")
    2. msg = 8-byte big-endian counter
    3. digest = HMAC-SHA1(key, msg)
    4. dynamic truncation -> 31-bit int
    5. int % 10^6, zero-padded to 6 digits

    Raises:
        CryptoUnavailable: HMAC-SHA1 cannot be computed
        ValueError: negative counter
    """
    digest = hmac_sha1(secret.encode("utf-8"), int_to_bytes(counter))
    return format_code(dynamic_truncate(digest))


def fallback_code(secret: str, counter: int) -> str:
    """
    WEAK availability fallback, not an OTP algorithm.

    32-bit unsigned rolling hash (base 31, wrapping) over "<secret>:<counter>",
    then mod 10^6 and zero-padded. Anyone who sees one code can brute-force
    the next; never use it while hotp() works.
    """
    h = 0
    for ch in f"{secret}:{counter}":
        h = (h * _FALLBACK_BASE + ord(ch)) & _UINT32_MASK
    return format_code(h)


# --- Time helpers ----------------------------------------------------------
def time_step(timestamp: float = None) -> int:
    """Counter = floor(epoch_seconds / 30)."""
    if timestamp is None:
        timestamp = time.time()
    return int(timestamp // DEFAULT_TIME_STEP)


def seconds_remaining(timestamp: float = None) -> int:
    """Seconds left in the current window: 30 at the boundary, down to 1."""
    if timestamp is None:
        timestamp = time.time()
    return DEFAULT_TIME_STEP - (int(timestamp) % DEFAULT_TIME_STEP)


# --- Engine ----------------------------------------------------------------
class TotpEngine:
    """
    compute(secret, time_step) -> 6-digit code.

    Deterministic for a given mode. `hmac_available=None` probes the runtime;
    pass False to force the degraded mode (tests, diagnostics).
    """

    def __init__(self, hmac_available: Optional[bool] = None):
        if hmac_available is None:
            hmac_available = hmac_sha1_available()
        self._hmac_available = hmac_available
        self._warned = False
        if not hmac_available:
            self._warn_degraded("HMAC-SHA1 probe failed")

    @property
    def degraded(self) -> bool:
        return not self._hmac_available

    def _warn_degraded(self, why: str) -> None:
        if self._warned:
            return
        self._warned = True
        logger.warning("CryptoUnavailable: %s; using weak fallback hash for OTP codes", why)

    def compute(self, secret: str, time_step: int) -> str:
        if self._hmac_available:
            try:
                return hotp(secret, time_step)
            except CryptoUnavailable as e:
                self._hmac_available = False
                self._warn_degraded(str(e))
        return fallback_code(secret, time_step)

    def totp(self, secret: str, timestamp: float = None) -> Tuple[str, int]:
        """
        Code for the window containing `timestamp` (default: now).

        Returns:
            (code, remaining_seconds)
        """
        if timestamp is None:
            timestamp = time.time()
        return self.compute(secret, time_step(timestamp)), seconds_remaining(timestamp)


def totp(secret: str, timestamp: float = None) -> Tuple[str, int]:
    """Module-level shortcut using the primary HMAC-SHA1 path only."""
    if timestamp is None:
        timestamp = time.time()
    return hotp(secret, time_step(timestamp)), seconds_remaining(timestamp)
