"""SQLite persistence: schema, the timeout-bounded gateway, and typed repositories."""

from nestmate.storage.database import DEFAULT_DB_PATH, create_schema, open_db, open_memory_db
from nestmate.storage.gateway import PersistenceGateway
from nestmate.storage.repository import Repositories
from nestmate.storage.retry import retry_on_conflict

__all__ = [
    "DEFAULT_DB_PATH",
    "open_db",
    "open_memory_db",
    "create_schema",
    "PersistenceGateway",
    "Repositories",
    "retry_on_conflict",
]
