"""Rewrite bot records saved by older versions into the current shape.

Older records may lack fields added since (settings, status, item ids),
carry an empty prefix, or have a ``data.id`` that disagrees with the row.
Each such record is revalidated and written back with its revision bumped
so a running supervisor reloads it. Records that no longer validate are
left untouched and logged; the store reports them when they are read.
"""

from collections.abc import Iterator
from typing import Any

from pydantic import ValidationError
from sqlalchemy import select

from botyard.database import bots
from botyard.logging import get_logger
from botyard.models import BotConfig, utcnow

VERSION = 2
DESCRIPTION = "Fill defaults into bot records from older versions"

log = get_logger("migrations")


def _stale_records(conn) -> Iterator[tuple[str, int, dict[str, Any]]]:
    rows = conn.execute(select(bots.c.id, bots.c.revision, bots.c.data)).fetchall()
    for row in rows:
        try:
            normalized = BotConfig.model_validate({**row.data, "id": row.id}).to_record()
        except ValidationError as e:
            log.warning("record_not_normalized", bot_id=row.id, error=str(e))
            continue
        if normalized != row.data:
            yield row.id, row.revision, normalized


def upgrade(conn):
    for bot_id, revision, record in list(_stale_records(conn)):
        conn.execute(
            bots.update()
            .where(bots.c.id == bot_id)
            .values(revision=revision + 1, data=record, updated_at=utcnow())
        )
        log.info("record_normalized", bot_id=bot_id, revision=revision + 1)


def applied(conn) -> bool:
    return next(_stale_records(conn), None) is None
