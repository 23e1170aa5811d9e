"""Test doubles shared across the test modules."""

from core.otp_core import TotpEngine

PAIRING_KEY = "AB12CD34EF56GH78"
OTHER_KEY = "ZZ99YY88XX77WW66"
# 1710000000 = 30 * 57000000, the first second of a window
WINDOW_START = 1710000000


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = WINDOW_START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingEngine(TotpEngine):
    """Real engine that remembers every (secret, time_step) it was asked for."""

    def __init__(self, hmac_available: bool = True):
        super().__init__(hmac_available=hmac_available)
        self.calls = []

    def compute(self, secret: str, time_step: int) -> str:
        self.calls.append((secret, time_step))
        return super().compute(secret, time_step)
