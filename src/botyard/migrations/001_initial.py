"""Bot records and the per-bot log."""

from sqlalchemy import inspect

from botyard.database import bot_logs, bots, metadata

VERSION = 1
DESCRIPTION = "Bot configuration records and per-bot logs"


def upgrade(conn):
    metadata.create_all(conn, tables=[bots, bot_logs])


def applied(conn) -> bool:
    inspector = inspect(conn)
    return inspector.has_table(bots.name) and inspector.has_table(bot_logs.name)
