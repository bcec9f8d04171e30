"""Database schema and connection management for Botyard.

Uses SQLAlchemy Core (not ORM) for explicit SQL control. Bot configuration
is stored as one JSON document per bot plus a monotonically increasing
``revision`` that makes every write observable and lets writers do
compare-and-swap updates.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    text,
)
from sqlalchemy.engine import Engine

from botyard.config import Config
from botyard.models import generate_id

# Shared metadata for all tables
metadata = MetaData()


bots = Table(
    "bots",
    metadata,
    Column("id", String, primary_key=True),  # ULID
    Column("revision", Integer, nullable=False, default=1),
    Column("data", JSON, nullable=False),  # Full BotConfig record, camelCase keys
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
    Column("updated_at", DateTime, nullable=False, default=datetime.utcnow),
)

bot_logs = Table(
    "bot_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),  # Append order
    Column("bot_id", String, nullable=False),  # No FK: logs outlive deleted bots
    Column("line", Text, nullable=False),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
    Index("ix_bot_logs_bot_created", "bot_id", "created_at"),
)


# =============================================================================
# Schema Version (for migrations)
# =============================================================================

schema_version = Table(
    "_schema_version",
    metadata,
    Column("version", Integer, primary_key=True),
    Column("applied_at", DateTime, nullable=False),
    Column("description", String, nullable=True),
)


# =============================================================================
# Helper Functions
# =============================================================================


def get_engine(config: Config) -> Engine:
    """Create SQLAlchemy engine from config.

    Args:
        config: Application configuration.

    Returns:
        SQLAlchemy Engine instance.
    """
    db_path = config.database_path

    # Ensure data directory exists
    db_path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=config.log_level == "DEBUG",
    )

    # WAL lets an operator edit records from another process while we poll
    with engine.connect() as conn:
        conn.execute(text("PRAGMA journal_mode=WAL"))
        conn.execute(text("PRAGMA foreign_keys=ON"))
        conn.commit()

    return engine


def create_tables(engine: Engine) -> None:
    """Create all tables in the database.

    Args:
        engine: SQLAlchemy Engine instance.
    """
    metadata.create_all(engine)


__all__ = [
    "bot_logs",
    "bots",
    "create_tables",
    "generate_id",
    "get_engine",
    "metadata",
    "schema_version",
]
