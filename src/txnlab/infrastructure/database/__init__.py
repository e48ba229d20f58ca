"""SQL persistence: engine, schema, and the SqlStore via SQLAlchemy Core."""

from txnlab.infrastructure.database.engine import (
    create_db_engine,
    default_database_url,
    init_database,
)
from txnlab.infrastructure.database.schema import accounts, metadata
from txnlab.infrastructure.database.store import SqlStore, translate_error, translate_errors

__all__ = [
    "SqlStore",
    "accounts",
    "create_db_engine",
    "default_database_url",
    "init_database",
    "metadata",
    "translate_error",
    "translate_errors",
]
