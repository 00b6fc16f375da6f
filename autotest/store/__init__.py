"""Result Store port and its adapters."""

from __future__ import annotations

from .database import DatabaseResultStore, init_store_schema
from .factory import create_result_store
from .filesystem import FileResultStore
from .protocol import ResultStore

__all__ = [
    "DatabaseResultStore",
    "FileResultStore",
    "ResultStore",
    "create_result_store",
    "init_store_schema",
]
