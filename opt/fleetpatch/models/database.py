"""
Pool database persistence.

The pool database is a single JSON document:

    {
        "pool": {"repository": <ref or null>},
        "repositories": {<ref>: {...}},
        "hosts": {<ref>: {...}}
    }

Readers and writers go through transaction(), which serialises access
within the process.
"""

import os
import json
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator

from ..config_loader import get_database_path

logger = logging.getLogger(__name__)

_db_lock = threading.RLock()


def _empty_database() -> Dict[str, Any]:
    return {'pool': {'repository': None}, 'repositories': {}, 'hosts': {}}


def load_database() -> Dict[str, Any]:
    """Loads the pool database from its JSON file.

    Returns:
        dict: The database, empty sections if the file does not exist
    """
    path = get_database_path()
    db = _empty_database()
    if not os.path.exists(path):
        return db
    with open(path, 'r') as f:
        db.update(json.load(f))
    return db


def save_database(db: Dict[str, Any]) -> None:
    """Saves the pool database atomically."""
    path = get_database_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)
    tmp_path = f"{path}.tmp"
    with open(tmp_path, 'w') as f:
        json.dump(db, f, indent=2)
    os.replace(tmp_path, path)


@contextmanager
def transaction(write: bool = False) -> Iterator[Dict[str, Any]]:
    """
    Access the pool database under the database lock.

    Args:
        write: Save the (possibly modified) database when the block exits
            without an exception
    """
    with _db_lock:
        db = load_database()
        yield db
        if write:
            save_database(db)
