"""Apply migration modules in version order.

A migration and the ``_schema_version`` row stamping it commit in one
transaction, so a failed upgrade leaves the database at the previous
version with nothing half applied.
"""

from __future__ import annotations

import importlib
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import func, inspect, select
from sqlalchemy.engine import Connection, Engine

from botyard.database import schema_version
from botyard.logging import get_logger
from botyard.models import utcnow

log = get_logger("migrations")


@dataclass(frozen=True)
class Migration:
    """One loaded migration module."""

    version: int
    description: str
    upgrade: Callable[[Connection], None]
    applied: Callable[[Connection], bool]


def discover_migrations() -> list[Migration]:
    """Load every ``NNN_*.py`` module in this package, ordered by version.

    Raises:
        ValueError: If a module's VERSION disagrees with its file prefix
            or two modules claim the same version.
    """
    found: dict[int, Migration] = {}

    for path in Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py"):
        module = importlib.import_module(f"{__package__}.{path.stem}")
        version = int(path.stem[:3])
        if module.VERSION != version:
            raise ValueError(f"{path.name} declares VERSION {module.VERSION}")
        if version in found:
            raise ValueError(f"Duplicate migration version {version}")
        found[version] = Migration(
            version=version,
            description=module.DESCRIPTION,
            upgrade=module.upgrade,
            applied=module.applied,
        )

    return [found[v] for v in sorted(found)]


def current_version(engine: Engine) -> int:
    """Highest stamped version, 0 for a database never migrated."""
    if not inspect(engine).has_table(schema_version.name):
        return 0
    with engine.connect() as conn:
        return conn.execute(select(func.max(schema_version.c.version))).scalar() or 0


def pending_migrations(engine: Engine) -> list[Migration]:
    current = current_version(engine)
    return [m for m in discover_migrations() if m.version > current]


def migrate(engine: Engine, target_version: int | None = None) -> int:
    """Apply pending migrations up to ``target_version`` (default: all).

    Returns:
        The version the database is at afterwards.
    """
    schema_version.create(engine, checkfirst=True)

    for migration in pending_migrations(engine):
        if target_version is not None and migration.version > target_version:
            break

        with engine.begin() as conn:
            if migration.applied(conn):
                log.info("migration_stamped", version=migration.version)
            else:
                log.info(
                    "migration_applying",
                    version=migration.version,
                    description=migration.description,
                )
                migration.upgrade(conn)
            conn.execute(
                schema_version.insert().values(
                    version=migration.version,
                    applied_at=utcnow(),
                    description=migration.description,
                )
            )

    return current_version(engine)
