import json
import logging
import os
import sqlite3
from datetime import datetime, timezone

import pytest

from database.db_manager import (
    STORAGE_KEY,
    DeviceConfig,
    DeviceConfigStore,
    StorageError,
    parse_timestamp,
)

CREATED = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def write_raw(path: str, value: str) -> None:
    DeviceConfigStore(path).load()  # creates the schema
    conn = sqlite3.connect(path)
    with conn:
        conn.execute("INSERT OR REPLACE INTO device_store (key, value) VALUES (?, ?)", (STORAGE_KEY, value))
    conn.close()


def test_load_without_pairing_returns_none(store):
    assert store.load() is None


def test_save_then_load(store):
    config = DeviceConfig("AB12CD34EF56GH78", CREATED)
    store.save(config)
    assert store.load() == config


def test_record_survives_a_new_store_instance(db_path):
    DeviceConfigStore(db_path).save(DeviceConfig("AB12CD34EF56GH78", CREATED))
    assert DeviceConfigStore(db_path).load().secret == "AB12CD34EF56GH78"


def test_save_overwrites_previous_record(store, db_path):
    store.save(DeviceConfig("AB12CD34EF56GH78", CREATED))
    store.save(DeviceConfig("ZZ99YY88XX77WW66", CREATED))

    assert store.load().secret == "ZZ99YY88XX77WW66"
    conn = sqlite3.connect(db_path)
    (count,) = conn.execute("SELECT COUNT(*) FROM device_store").fetchone()
    conn.close()
    assert count == 1


def test_stored_blob_format(store, db_path):
    store.save(DeviceConfig("AB12CD34EF56GH78", CREATED))
    conn = sqlite3.connect(db_path)
    (value,) = conn.execute("SELECT value FROM device_store WHERE key = ?", (STORAGE_KEY,)).fetchone()
    conn.close()
    assert json.loads(value) == {"secret": "AB12CD34EF56GH78", "createdAt": "2025-03-01T12:00:00+00:00"}


def test_reset_is_idempotent(store):
    store.reset()
    store.save(DeviceConfig("AB12CD34EF56GH78", CREATED))
    store.reset()
    store.reset()
    assert store.load() is None


@pytest.mark.parametrize("blob", [
    "not json",
    "[1, 2, 3]",
    json.dumps({"createdAt": "2025-03-01T12:00:00Z"}),
    json.dumps({"secret": "short", "createdAt": "2025-03-01T12:00:00Z"}),
    json.dumps({"secret": "ab12cd34ef56gh78", "createdAt": "2025-03-01T12:00:00Z"}),
    json.dumps({"secret": 1234567890123456, "createdAt": "2025-03-01T12:00:00Z"}),
    json.dumps({"secret": "AB12CD34EF56GH78"}),
    json.dumps({"secret": "AB12CD34EF56GH78", "createdAt": "yesterday"}),
    pytest.param("[" * 200000, id="deeply-nested"),
])
def test_malformed_record_is_treated_as_unpaired(db_path, blob, caplog):
    write_raw(db_path, blob)
    with caplog.at_level(logging.WARNING, logger="database.db_manager"):
        assert DeviceConfigStore(db_path).load() is None
    assert "malformed" in caplog.text


def test_legacy_field_name_and_zulu_timestamp(db_path):
    write_raw(db_path, json.dumps({"readableKey": "AB12CD34EF56GH78", "createdAt": "2025-03-01T12:00:00.000Z"}))
    config = DeviceConfigStore(db_path).load()
    assert config == DeviceConfig("AB12CD34EF56GH78", CREATED)


def test_corrupt_database_file(db_path):
    with open(db_path, "wb") as f:
        f.write(b"this is not a sqlite database" * 100)

    store = DeviceConfigStore(db_path)
    assert store.load() is None

    store.reset()
    assert not os.path.exists(db_path)
    assert store.load() is None


def test_save_to_unwritable_location_raises_storage_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory")
    store = DeviceConfigStore(str(blocker / "device.db"))

    with pytest.raises(StorageError):
        store.save(DeviceConfig("AB12CD34EF56GH78", CREATED))
    assert store.load() is None


def test_parse_timestamp_assumes_utc_for_naive_values():
    assert parse_timestamp("2025-03-01T12:00:00") == CREATED
