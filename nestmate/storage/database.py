"""SQLite database initialisation for Nestmate.

Opening a connection always applies the schema, so a fresh file and an
existing one are handled the same way.

Every table has an opaque ``id`` primary key and a ``version`` column.  The
version is bumped by each conditional update and is what makes
check-then-write operations atomic (see
:meth:`~nestmate.storage.gateway.PersistenceGateway.conditional_update`).

Typical usage::

    from nestmate.storage.database import open_db

    async def main() -> None:
        conn = await open_db()          # creates file + schema if absent
        # ... pass conn to PersistenceGateway ...
        await conn.close()
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

__all__ = [
    "DEFAULT_DB_PATH",
    "TABLE_COLUMNS",
    "open_db",
    "open_memory_db",
    "create_schema",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

#: Fallback database path when no explicit path is passed to :func:`open_db`.
DEFAULT_DB_PATH: Path = Path("nestmate.db")

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

#: Column notes
#: ------------
#: Instants are ISO-8601 UTC strings written by the application, never by a
#: DB default, so the clock stays injectable.  List-valued attributes
#: (images, tags, amenities) are JSON arrays in TEXT columns.  Booleans are
#: INTEGER 0/1.  Nothing time-derived (active, boosted) is stored.  Boosts
#: keep no foreign key to their listing: they are spent credit and outlive a
#: deleted listing.
_DDL: tuple[str, ...] = (
    """\
CREATE TABLE IF NOT EXISTS profiles (
    id            TEXT     NOT NULL PRIMARY KEY,
    display_name  TEXT     NOT NULL DEFAULT '',
    gender        TEXT,
    user_type     TEXT,
    phone_number  TEXT,
    created_at    TEXT     NOT NULL,
    updated_at    TEXT     NOT NULL,
    version       INTEGER  NOT NULL DEFAULT 1
)""",
    """\
CREATE TABLE IF NOT EXISTS listings (
    id                      TEXT     NOT NULL PRIMARY KEY,
    kind                    TEXT     NOT NULL,
    title                   TEXT     NOT NULL,
    description             TEXT     NOT NULL DEFAULT '',
    price                   INTEGER  NOT NULL CHECK (price > 0),
    location                TEXT     NOT NULL,
    lat                     REAL,
    lng                     REAL,
    images                  TEXT     NOT NULL DEFAULT '[]',
    tags                    TEXT     NOT NULL DEFAULT '[]',
    amenities               TEXT     NOT NULL DEFAULT '[]',
    owner_id                TEXT     NOT NULL,
    gender_preference       TEXT     NOT NULL DEFAULT 'any',
    restrict_to_same_gender INTEGER  NOT NULL DEFAULT 0,
    room_type               TEXT     NOT NULL,
    created_at              TEXT     NOT NULL,
    updated_at              TEXT     NOT NULL,
    expires_at              TEXT     NOT NULL,
    manually_expired        INTEGER  NOT NULL DEFAULT 0,
    view_count              INTEGER  NOT NULL DEFAULT 0,
    version                 INTEGER  NOT NULL DEFAULT 1
)""",
    "CREATE INDEX IF NOT EXISTS idx_listings_owner ON listings (owner_id)",
    """\
CREATE TABLE IF NOT EXISTS boosts (
    id              TEXT     NOT NULL PRIMARY KEY,
    listing_id      TEXT     NOT NULL,
    user_id         TEXT     NOT NULL,
    amount          INTEGER  NOT NULL,
    duration_hours  INTEGER  NOT NULL,
    start_time      TEXT     NOT NULL,
    version         INTEGER  NOT NULL DEFAULT 1
)""",
    "CREATE INDEX IF NOT EXISTS idx_boosts_listing ON boosts (listing_id)",
    "CREATE INDEX IF NOT EXISTS idx_boosts_user ON boosts (user_id)",
    """\
CREATE TABLE IF NOT EXISTS subscriptions (
    id            TEXT     NOT NULL PRIMARY KEY,
    user_id       TEXT     NOT NULL,
    tier          TEXT     NOT NULL,
    start_date    TEXT     NOT NULL,
    expires_at    TEXT     NOT NULL,
    purchase_ref  TEXT     UNIQUE,
    version       INTEGER  NOT NULL DEFAULT 1
)""",
    "CREATE INDEX IF NOT EXISTS idx_subscriptions_user ON subscriptions (user_id)",
    """\
CREATE TABLE IF NOT EXISTS chats (
    id            TEXT     NOT NULL PRIMARY KEY,
    pair_key      TEXT     NOT NULL UNIQUE,
    user1         TEXT     NOT NULL,
    user2         TEXT     NOT NULL,
    state         TEXT     NOT NULL DEFAULT 'anonymous',
    requested_by  TEXT,
    shared_by     TEXT,
    disclosure_ref TEXT    UNIQUE,
    created_at    TEXT     NOT NULL,
    version       INTEGER  NOT NULL DEFAULT 1
)""",
    """\
CREATE TABLE IF NOT EXISTS messages (
    id                 TEXT     NOT NULL PRIMARY KEY,
    chat_id            TEXT     NOT NULL REFERENCES chats (id) ON DELETE CASCADE,
    from_user          TEXT     NOT NULL,
    to_user            TEXT     NOT NULL,
    content            TEXT,
    image_url          TEXT,
    is_contact_shared  INTEGER  NOT NULL DEFAULT 0,
    created_at         TEXT     NOT NULL,
    version            INTEGER  NOT NULL DEFAULT 1,
    CHECK (content IS NOT NULL OR image_url IS NOT NULL)
)""",
    "CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages (chat_id)",
    """\
CREATE TABLE IF NOT EXISTS reports (
    id              TEXT     NOT NULL PRIMARY KEY,
    reason          TEXT     NOT NULL,
    details         TEXT     NOT NULL DEFAULT '',
    reported_by     TEXT     NOT NULL,
    target_user     TEXT,
    target_listing  TEXT,
    status          TEXT     NOT NULL DEFAULT 'pending',
    created_at      TEXT     NOT NULL,
    version         INTEGER  NOT NULL DEFAULT 1
)""",
    """\
CREATE TABLE IF NOT EXISTS payments (
    id            TEXT     NOT NULL PRIMARY KEY,
    user_id       TEXT     NOT NULL,
    purpose       TEXT     NOT NULL,
    amount        INTEGER  NOT NULL,
    confirmed_at  TEXT     NOT NULL,
    version       INTEGER  NOT NULL DEFAULT 1
)""",
)

#: Column allowlist per table.  The gateway refuses any table or column not
#: listed here, which keeps dynamically built SQL free of caller input.
TABLE_COLUMNS: dict[str, frozenset[str]] = {
    "profiles": frozenset(
        {"id", "display_name", "gender", "user_type", "phone_number",
         "created_at", "updated_at", "version"}
    ),
    "listings": frozenset(
        {"id", "kind", "title", "description", "price", "location", "lat", "lng",
         "images", "tags", "amenities", "owner_id", "gender_preference",
         "restrict_to_same_gender", "room_type", "created_at", "updated_at",
         "expires_at", "manually_expired", "view_count", "version"}
    ),
    "boosts": frozenset(
        {"id", "listing_id", "user_id", "amount", "duration_hours", "start_time", "version"}
    ),
    "subscriptions": frozenset(
        {"id", "user_id", "tier", "start_date", "expires_at", "purchase_ref", "version"}
    ),
    "chats": frozenset(
        {"id", "pair_key", "user1", "user2", "state", "requested_by", "shared_by",
         "disclosure_ref", "created_at", "version"}
    ),
    "messages": frozenset(
        {"id", "chat_id", "from_user", "to_user", "content", "image_url",
         "is_contact_shared", "created_at", "version"}
    ),
    "reports": frozenset(
        {"id", "reason", "details", "reported_by", "target_user", "target_listing",
         "status", "created_at", "version"}
    ),
    "payments": frozenset(
        {"id", "user_id", "purpose", "amount", "confirmed_at", "version"}
    ),
}

# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------


async def open_db(path: Path | str | None = None) -> aiosqlite.Connection:
    """Open the on-disk database, creating the file, its directory and the
    schema as needed.

    The connection runs in WAL mode with foreign keys enforced and rows
    returned as :class:`aiosqlite.Row`.  Closing it is the caller's job.

    Raises:
        aiosqlite.OperationalError: The file cannot be opened or created.
    """
    db_path = Path(path or DEFAULT_DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = await _connect(str(db_path), wal=True)
    logger.info("Database ready at %s", db_path)
    return conn


async def open_memory_db() -> aiosqlite.Connection:
    """Open a private in-memory database with the schema applied.

    Used by tests and by the CLI's throwaway runs.
    """
    return await _connect(":memory:", wal=False)


async def create_schema(conn: aiosqlite.Connection) -> None:
    """Run every ``CREATE ... IF NOT EXISTS`` statement.  Existing rows are untouched."""
    for statement in _DDL:
        await conn.execute(statement)
    await conn.commit()
    logger.debug("Schema checked: %s", ", ".join(TABLE_COLUMNS))


async def _connect(target: str, *, wal: bool) -> aiosqlite.Connection:
    conn = await aiosqlite.connect(target)
    conn.row_factory = aiosqlite.Row
    if wal:
        async with conn.execute("PRAGMA journal_mode=WAL") as cursor:
            (mode,) = await cursor.fetchone() or ("?",)
        if mode != "wal":
            logger.warning("SQLite refused WAL journal mode for %s (got %r)", target, mode)
    # Off by default in SQLite; messages cascade from their chat.
    await conn.execute("PRAGMA foreign_keys=ON")
    await create_schema(conn)
    return conn
