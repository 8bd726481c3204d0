"""
Database connection management.

Provides SQLite connections for the usage ledger.
"""

import sqlite3
from pathlib import Path


def get_connection(db_path: str = "ledger.db") -> sqlite3.Connection:
    """Create and return a SQLite connection for the ledger database.

    The parent directory is created when missing.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection usable from any thread
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return sqlite3.connect(str(path), timeout=10.0, check_same_thread=False)
