"""Identifier strategy for Nestmate records.

Record ids
----------
Every record gets an opaque 32-character hex id from :func:`new_id`.  Ids
carry no meaning; callers must never parse them.  Because message ordering
ties are broken by id, ids only need to be unique, not sortable.

Chat pair keys
--------------
A chat belongs to an *unordered* pair of users.  :func:`pair_key` builds the
canonical key for that pair by sorting the two user ids, so
``pair_key("a", "b") == pair_key("b", "a")``.  The key is stored in a UNIQUE
column, which is what makes chat creation idempotent under races.

+------------+-------------------------------+------------------------------+
| Value      | Built by                      | Example                      |
+============+===============================+==============================+
| record id  | ``new_id()``                  | ``"9f1c…e2"``                |
+------------+-------------------------------+------------------------------+
| pair key   | ``pair_key(user_a, user_b)``  | ``"u1|u7"``                  |
+------------+-------------------------------+------------------------------+
"""

from __future__ import annotations

import logging
import uuid

__all__ = [
    "PAIR_KEY_SEPARATOR",
    "new_id",
    "pair_key",
]

logger = logging.getLogger(__name__)

#: Separator between the two sorted user ids of a pair key.
PAIR_KEY_SEPARATOR: str = "|"


def new_id() -> str:
    """Return a fresh opaque record identifier."""
    return uuid.uuid4().hex


def pair_key(user_a: str, user_b: str) -> str:
    """Return the canonical key for the unordered pair ``{user_a, user_b}``.

    Example::

        assert pair_key("u7", "u1") == "u1|u7"

    Raises:
        ValueError: If both ids are the same user.
    """
    if user_a == user_b:
        raise ValueError("a chat needs two distinct users")
    first, second = sorted((user_a, user_b))
    return f"{first}{PAIR_KEY_SEPARATOR}{second}"
