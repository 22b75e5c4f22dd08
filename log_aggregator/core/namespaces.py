"""Namespace filtering."""

from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Iterable, Optional

EXCLUDED_DATABASES = frozenset({"config"})


def namespace_allowed(namespace: Optional[str], filters: Iterable[str] = ()) -> bool:
    """Return True when *namespace* passes the configured filters.

    Filters may be an exact namespace (``db.coll``), a database (``db``), a
    database wildcard (``db.*``) or a glob (``db.orders_*``). The ``config``
    database never passes. An empty filter list accepts everything else.
    """

    if not namespace:
        return False
    database = namespace.split(".", 1)[0]
    if database in EXCLUDED_DATABASES:
        return False

    filters = tuple(filters)
    if not filters:
        return True

    for pattern in filters:
        if pattern == namespace:
            return True
        if pattern.endswith(".*") and pattern[:-2] == database:
            return True
        if "." not in pattern and pattern == database:
            return True
        if "*" in pattern and fnmatchcase(namespace, pattern):
            return True
    return False
