"""
core package
============

TOTP companion device: one 16-character pairing key, one live 6-digit code.

──────────────────────────────────────────────
Core algorithm
──────────────────────────────────────────────
- HOTP (RFC 4226):
  code = Truncate(HMAC-SHA1(key=UTF-8(secret), msg=counter)) mod 10^6
- TOTP (RFC 6238):
  HOTP with counter = floor(now / 30)
- Dynamic truncation:
  4 bytes at offset (last byte & 0x0F), top bit cleared.

──────────────────────────────────────────────
Modules
──────────────────────────────────────────────
- key_validator      sanitize() typed input, validate() before pairing
- otp_core           TotpEngine.compute(secret, time_step)
- refresh_scheduler  RefreshScheduler: 1 Hz ticks aligned to 30 s windows
- device             pair/load/reset/observe facade (imports the database
                     package, so it is not imported here)
- otp_cli            `otp-device` command line

──────────────────────────────────────────────
Quick example
──────────────────────────────────────────────
>>> from core import TotpEngine
>>> code, remaining = TotpEngine().totp("AB12CD34EF56GH78")
"""
from .key_validator import (
    CharsetError,
    LengthError,
    ValidationError,
    sanitize,
    validate,
)
from .otp_core import (
    CryptoUnavailable,
    TotpEngine,
    hotp,
    time_step,
    totp,
)
from .refresh_scheduler import OtpTick, RefreshScheduler, SchedulerState
