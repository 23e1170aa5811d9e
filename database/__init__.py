"""Persistence for the pairing record (sqlite key-value store)."""

from .db_manager import DeviceConfig, DeviceConfigStore, StorageError, STORAGE_KEY
