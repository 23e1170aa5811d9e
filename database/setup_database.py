import logging
import os
import sqlite3

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_FILE = os.path.join("database", "device.db")


def setup_database(path: str = DEFAULT_DATABASE_FILE):
    """Create the key-value table that holds the pairing record."""

    # Make sure the parent directory exists
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    conn = sqlite3.connect(path)
    try:
        cursor = conn.cursor()

        # One row per well-known key; the device only ever uses one key
        cursor.execute('''
        CREATE TABLE IF NOT EXISTS device_store (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        ''')

        conn.commit()
    finally:
        conn.close()
    logger.debug("Database schema ready at %s", path)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    setup_database(os.getenv("OTP_DEVICE_DB", DEFAULT_DATABASE_FILE))
    print("Database setup completed successfully!")
