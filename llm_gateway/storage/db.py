"""
Database connection management.

Provides SQLite connection for snapshot persistence.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = ".llm-gateway.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection
    """
    path = Path(db_path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    return conn
