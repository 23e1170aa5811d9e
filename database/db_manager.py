"""
Persistence for the single pairing record (DeviceConfig).

The record is stored as one JSON blob under STORAGE_KEY in a small sqlite
key-value table:

    {"secret": "AB12CD34EF56GH78", "createdAt": "2025-01-01T00:00:00+00:00"}

Reading never raises: a missing, unreadable or malformed record is reported
as "not paired" (None) and logged.
"""
import json
import logging
import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from core.key_validator import validate

from .setup_database import DEFAULT_DATABASE_FILE, setup_database

logger = logging.getLogger(__name__)

DATABASE_FILE = os.getenv("OTP_DEVICE_DB", DEFAULT_DATABASE_FILE)
STORAGE_KEY = "mfa_authenticator_config"


class StorageError(RuntimeError):
    """The pairing record could not be written or removed."""


@dataclass(frozen=True)
class DeviceConfig:
    secret: str
    created_at: datetime

    def to_dict(self) -> dict:
        return {"secret": self.secret, "createdAt": self.created_at.isoformat()}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "DeviceConfig":
        """Build from the stored blob; raises ValueError on any bad field."""
        if not isinstance(data, dict):
            raise ValueError("config blob is not an object")
        # "readableKey" is the field name used by the first (web) release
        secret = data.get("secret", data.get("readableKey"))
        if not isinstance(secret, str):
            raise ValueError("missing secret")
        validate(secret)
        created_at = data.get("createdAt")
        if not isinstance(created_at, str):
            raise ValueError("missing createdAt")
        return cls(secret=secret, created_at=parse_timestamp(created_at))


def parse_timestamp(value: str) -> datetime:
    """ISO-8601 -> aware datetime (accepts the trailing 'Z' form)."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def mask_secret(secret: str) -> str:
    return secret[:4] + "..." if secret else "<empty>"


class DeviceConfigStore:
    """Owns the persisted DeviceConfig. At most one record exists at a time."""

    def __init__(self, path: str = None, key: str = STORAGE_KEY):
        self.path = path or DATABASE_FILE
        self.key = key
        self._ready = False

    def get_db_connection(self) -> sqlite3.Connection:
        """Connect, creating the schema on first use."""
        if not self._ready:
            setup_database(self.path)
            self._ready = True
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def save(self, config: DeviceConfig) -> None:
        """Write the record as a single blob, replacing any previous one."""
        try:
            conn = self.get_db_connection()
            try:
                with conn:
                    conn.execute(
                        "INSERT OR REPLACE INTO device_store (key, value, updated_at) VALUES (?, ?, ?)",
                        (self.key, config.to_json(), datetime.now(timezone.utc).isoformat()),
                    )
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as e:
            logger.error("Failed to save device config to %s: %s", self.path, e)
            raise StorageError(f"could not save device config: {e}") from e
        logger.info("Device paired with key %s", mask_secret(config.secret))

    def load(self) -> Optional[DeviceConfig]:
        """Return the stored record, or None if absent or unusable."""
        try:
            conn = self.get_db_connection()
            try:
                row = conn.execute(
                    "SELECT value FROM device_store WHERE key = ?", (self.key,)
                ).fetchone()
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as e:
            logger.warning("Device store %s unreadable, treating as unpaired: %s", self.path, e)
            return None

        if row is None:
            logger.debug("No device config under %r", self.key)
            return None

        try:
            return DeviceConfig.from_dict(json.loads(row["value"]))
        except (ValueError, TypeError, RecursionError) as e:
            # JSONDecodeError and ValidationError are ValueErrors; deeply nested
            # garbage overflows the decoder
            logger.warning("Ignoring malformed device config under %r: %s", self.key, e)
            return None

    def reset(self) -> None:
        """Delete the record. Calling it when nothing is stored is fine."""
        try:
            conn = self.get_db_connection()
            try:
                with conn:
                    deleted = conn.execute(
                        "DELETE FROM device_store WHERE key = ?", (self.key,)
                    ).rowcount
            finally:
                conn.close()
        except (sqlite3.OperationalError, OSError) as e:
            logger.error("Failed to reset device config in %s: %s", self.path, e)
            raise StorageError(f"could not reset device config: {e}") from e
        except sqlite3.DatabaseError as e:
            # Not a database / malformed image: nothing in it can be loaded
            logger.warning("Device store %s is corrupt, removing it: %s", self.path, e)
            self._discard_file()
            return
        except sqlite3.Error as e:
            logger.error("Failed to reset device config in %s: %s", self.path, e)
            raise StorageError(f"could not reset device config: {e}") from e
        if deleted:
            logger.info("Device config removed")
        else:
            logger.debug("Reset requested but no device was paired")

    def _discard_file(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"could not remove corrupt store {self.path}: {e}") from e
        self._ready = False
