import logging
import os
import sqlite3
from contextlib import closing
from typing import Optional

from .config import settings
from .errors import PersistenceUnavailable

logger = logging.getLogger(__name__)

CREATE_SQL = """
CREATE TABLE IF NOT EXISTS logs (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT    NOT NULL,
    level      TEXT    NOT NULL,
    logger     TEXT    NOT NULL,
    message    TEXT    NOT NULL
);
CREATE TABLE IF NOT EXISTS local_kv (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""


def get_connection(path: Optional[str] = None) -> sqlite3.Connection:
    path = path or settings.db_path
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)
    return sqlite3.connect(path)


def init_db(path: Optional[str] = None):
    with closing(get_connection(path)) as conn:
        conn.executescript(CREATE_SQL)
        conn.commit()


# --- Device-local fallback store ---
class LocalStore:
    """Key -> string store on this device.

    Keys are prefixed with the device and with the identity when there is
    one, so neither several devices sharing one database file nor several
    accounts sharing a device see each other's data.
    """

    name = "local"

    def __init__(self, path: Optional[str] = None, device: Optional[str] = None):
        self.path = path or settings.db_path
        self.device = device
        init_db(self.path)

    def key_for(self, identity: Optional[str], name: str) -> str:
        key = f"{identity}_{name}" if identity else name
        return f"{self.device}:{key}" if self.device else key

    def get(self, identity: Optional[str], name: str) -> Optional[str]:
        key = self.key_for(identity, name)
        try:
            with closing(get_connection(self.path)) as conn:
                row = conn.execute("SELECT value FROM local_kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise PersistenceUnavailable(f"local read of {key} failed: {e}") from e
        return row[0] if row else None

    def put(self, identity: Optional[str], name: str, value: str):
        key = self.key_for(identity, name)
        try:
            with closing(get_connection(self.path)) as conn:
                conn.execute(
                    "INSERT INTO local_kv (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                    "updated_at = excluded.updated_at",
                    (key, value),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise PersistenceUnavailable(f"local write of {key} failed: {e}") from e
