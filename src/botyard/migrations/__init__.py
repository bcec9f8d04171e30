"""Forward-only schema and record migrations.

Each ``NNN_name.py`` module beside this file declares ``VERSION``,
``DESCRIPTION``, ``upgrade(conn)`` and ``applied(conn)``. ``applied`` lets
a database that already has the change (created by ``create_tables`` or
touched by hand) be stamped without running ``upgrade`` again.
"""

from botyard.migrations.runner import (
    Migration,
    current_version,
    discover_migrations,
    migrate,
    pending_migrations,
)

__all__ = [
    "Migration",
    "current_version",
    "discover_migrations",
    "migrate",
    "pending_migrations",
]
