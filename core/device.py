"""
device.py — the interface the presentation layer (CLI, HTTP backend) uses.

    validate_key(text)   -> canonical key, or raises ValidationError
    pair_device(key)     -> DeviceConfig (persisted)
    load_device()        -> DeviceConfig | None
    reset_device()       -> None (also stops the live code stream)
    observe_otp(secret)  -> iterator of OtpTick at 1 Hz, ends on stop/reset
    current_otp(secret)  -> one OtpTick for "now"

Module-level functions delegate to a default DeviceService created on first
use; tests and the Flask app build their own DeviceService instead.
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from database.db_manager import DeviceConfig, DeviceConfigStore, mask_secret

from .key_validator import validate
from .otp_core import TotpEngine, seconds_remaining, time_step
from .refresh_scheduler import OtpTick, RefreshScheduler, Subscription

logger = logging.getLogger(__name__)


def validate_key(raw: str) -> str:
    """Validate exactly what the user entered. Sanitizing is the caller's job."""
    return validate(raw)


class DeviceService:
    def __init__(
        self,
        store: DeviceConfigStore = None,
        engine: TotpEngine = None,
        scheduler: RefreshScheduler = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store or DeviceConfigStore()
        self.engine = engine or TotpEngine()
        self.scheduler = scheduler or RefreshScheduler(self.engine, clock=clock)
        self._clock = clock

    def pair_device(self, key: str) -> DeviceConfig:
        """
        Validate `key` and persist it as the only pairing record.

        A live stream for a previous key is stopped once the new record is
        written; if the write fails, the old pairing and its stream stay as
        they were.

        Raises:
            ValidationError: key is not 16 chars of [A-Z0-9]
            StorageError: the record could not be written
        """
        secret = validate(key)
        config = DeviceConfig(
            secret=secret,
            created_at=datetime.fromtimestamp(self._clock(), tz=timezone.utc),
        )
        self.store.save(config)
        active = self.scheduler.active_secret
        if active is not None and active != secret:
            self.scheduler.stop()
        return config

    def load_device(self) -> Optional[DeviceConfig]:
        return self.store.load()

    def reset_device(self) -> None:
        self.store.reset()
        self.scheduler.stop()
        logger.info("Device reset; pairing required")

    def observe_otp(self, secret: str) -> Subscription:
        """
        Live stream of (code, seconds_remaining) for `secret`.

        Reuses the running scheduler when it is already bound to `secret`;
        otherwise the previous run is replaced. Close the returned
        subscription when done reading; the scheduler keeps ticking until
        stop/reset/close.
        """
        if self.scheduler.active_secret != secret:
            logger.debug("Binding refresh scheduler to key %s", mask_secret(secret))
            self.scheduler.start(secret)
        return self.scheduler.subscribe()

    def current_otp(self, secret: str, timestamp: float = None) -> OtpTick:
        if timestamp is None:
            timestamp = self._clock()
        step = time_step(timestamp)
        return OtpTick(
            code=self.engine.compute(secret, step),
            seconds_remaining=seconds_remaining(timestamp),
            time_step=step,
        )

    def close(self) -> None:
        self.scheduler.close()


# --- Default instance ------------------------------------------------------
_default_service = None
_default_lock = threading.Lock()


def get_service() -> DeviceService:
    global _default_service
    with _default_lock:
        if _default_service is None:
            _default_service = DeviceService()
        return _default_service


def pair_device(key: str) -> DeviceConfig:
    return get_service().pair_device(key)


def load_device() -> Optional[DeviceConfig]:
    return get_service().load_device()


def reset_device() -> None:
    get_service().reset_device()


def observe_otp(secret: str) -> Subscription:
    return get_service().observe_otp(secret)


def current_otp(secret: str, timestamp: float = None) -> OtpTick:
    return get_service().current_otp(secret, timestamp)
