import logging
import sqlite3
from contextlib import closing
from datetime import datetime
from typing import Optional

from .database import get_connection


class SQLiteHandler(logging.Handler):
    """Writes log records into the ``logs`` table of the local database."""

    def __init__(self, path: Optional[str] = None, level=logging.NOTSET):
        super().__init__(level)
        self.path = path

    def emit(self, record: logging.LogRecord):
        try:
            with closing(get_connection(self.path)) as conn:
                conn.execute(
                    "INSERT INTO logs (created_at, level, logger, message) VALUES (?, ?, ?, ?)",
                    (
                        datetime.fromtimestamp(record.created).isoformat(),
                        record.levelname,
                        record.name,
                        self.format(record),
                    ),
                )
                conn.commit()
        except sqlite3.Error:
            self.handleError(record)
