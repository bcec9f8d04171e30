"""Durable storage of bot configuration records.

The ConfigStore is the single source of truth for what every bot should
do. Each record carries a revision that increases by exactly one per
write; writers that read-modify-write pass the revision they read and get
a RevisionConflict if somebody else wrote in between.

The store is synchronous (SQLite via SQLAlchemy Core); calls are short and
made directly from async code.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.engine import Engine

from botyard.database import bot_logs, bots, generate_id
from botyard.errors import NotFound, RevisionConflict
from botyard.logging import get_logger
from botyard.models import BotConfig, Command, EventRule, Integration, utcnow

if TYPE_CHECKING:
    from botyard.suppression import SelfWriteLedger

log = get_logger("store")

# Sections of a bot record that hold lists of id-keyed items
SECTIONS: dict[str, tuple[str, type[BaseModel]]] = {
    "commands": ("command", Command),
    "events": ("event", EventRule),
    "integrations": ("integration", Integration),
}

_IMMUTABLE_FIELDS = {"id", "createdAt", "created_at"}

Mutator = Callable[[BotConfig], "BotConfig | None"]


class ConfigStore:
    """Read, write and list bot configuration records.

    Attributes:
        engine: SQLAlchemy engine for the botyard database.
        max_attempts: Compare-and-swap attempts made by ``update``.
    """

    def __init__(self, engine: Engine, max_attempts: int = 3) -> None:
        self.engine = engine
        self.max_attempts = max_attempts

    # =========================================================================
    # Records
    # =========================================================================

    def read(self, bot_id: str) -> BotConfig:
        """Read a bot record.

        Raises:
            NotFound: If no record exists for ``bot_id``.
        """
        config, _ = self.read_with_revision(bot_id)
        return config

    def read_with_revision(self, bot_id: str) -> tuple[BotConfig, int]:
        """Read a bot record together with its current revision."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(bots.c.data, bots.c.revision).where(bots.c.id == bot_id)
            ).fetchone()

        if row is None:
            raise NotFound("bot", bot_id)

        return self._parse(bot_id, row.data), row.revision

    def write(
        self,
        bot_id: str,
        config: BotConfig | dict[str, Any],
        expected_revision: int | None = None,
    ) -> BotConfig:
        """Upsert a full bot record.

        Missing fields are normalized to their defaults, ``id`` is forced to
        ``bot_id`` and ``updatedAt`` is stamped. The original ``createdAt`` of
        an existing record is kept.

        Args:
            bot_id: Record id.
            config: Full configuration to store.
            expected_revision: If given, the write only succeeds when the
                stored revision still equals it (0 means "must not exist").

        Returns:
            The normalized configuration as stored.

        Raises:
            RevisionConflict: If ``expected_revision`` does not match.
        """
        record = config.to_record() if isinstance(config, BotConfig) else dict(config)
        record["id"] = bot_id
        now = utcnow()

        with self.engine.begin() as conn:
            current = conn.execute(
                select(bots.c.revision, bots.c.data).where(bots.c.id == bot_id)
            ).fetchone()

            if current is None:
                if expected_revision not in (None, 0):
                    raise RevisionConflict(bot_id, expected_revision, 0)
                normalized = self._normalize(record, now)
                conn.execute(
                    bots.insert().values(
                        id=bot_id,
                        revision=1,
                        data=normalized.to_record(),
                        created_at=now,
                        updated_at=now,
                    )
                )
                log.debug("bot_record_created", bot_id=bot_id)
                return normalized

            if expected_revision is not None and current.revision != expected_revision:
                raise RevisionConflict(bot_id, expected_revision, current.revision)

            if current.data.get("createdAt"):
                record["createdAt"] = current.data["createdAt"]
            normalized = self._normalize(record, now)

            result = conn.execute(
                bots.update()
                .where(bots.c.id == bot_id)
                .where(bots.c.revision == current.revision)
                .values(
                    revision=current.revision + 1,
                    data=normalized.to_record(),
                    updated_at=now,
                )
            )
            if result.rowcount == 0:
                # Another process slipped a write in between select and update
                raise RevisionConflict(bot_id, current.revision, current.revision + 1)

        log.debug("bot_record_written", bot_id=bot_id, revision=current.revision + 1)
        return normalized

    def update(
        self,
        bot_id: str,
        mutate: Mutator,
        self_writes: SelfWriteLedger | None = None,
    ) -> BotConfig:
        """Read-modify-write a record with compare-and-swap retries.

        ``mutate`` receives a fresh copy of the record and either edits it
        in place or returns a replacement. It may run more than once.

        Args:
            bot_id: Record id.
            mutate: Function applying the change.
            self_writes: When given, the revision this write produces is
                registered as a self-write so the config watcher skips it.

        Raises:
            NotFound: If the record does not exist.
            RevisionConflict: If every attempt lost the race.
        """
        conflict: RevisionConflict | None = None

        for attempt in range(1, self.max_attempts + 1):
            config, revision = self.read_with_revision(bot_id)
            updated = mutate(config) or config

            if self_writes is not None:
                self_writes.expect(bot_id, revision + 1)
            try:
                return self.write(bot_id, updated, expected_revision=revision)
            except RevisionConflict as e:
                if self_writes is not None:
                    self_writes.discard(bot_id, revision + 1)
                conflict = e
                log.warning(
                    "bot_write_conflict",
                    bot_id=bot_id,
                    attempt=attempt,
                    expected=e.expected,
                    actual=e.actual,
                )

        assert conflict is not None
        raise conflict

    def patch(
        self,
        bot_id: str,
        updates: dict[str, Any],
        self_writes: SelfWriteLedger | None = None,
    ) -> BotConfig:
        """Merge top-level fields into a record (``id``/``createdAt`` are kept).

        A token equal to the masked form clients were shown is the record
        coming back from a listing, not a new token, and is left alone.
        """
        updates = {k: v for k, v in updates.items() if k not in _IMMUTABLE_FIELDS}

        def apply(config: BotConfig) -> BotConfig:
            record = config.to_record()
            changes = dict(updates)
            if config.token and changes.get("token") == config.masked_token():
                del changes["token"]
            record.update(changes)
            return BotConfig.model_validate(record)

        return self.update(bot_id, apply, self_writes=self_writes)

    def create(self, fields: dict[str, Any]) -> BotConfig:
        """Create a new bot record with a generated id."""
        bot_id = generate_id()
        fields = {k: v for k, v in fields.items() if k not in _IMMUTABLE_FIELDS}
        config = self.write(bot_id, fields, expected_revision=0)
        log.info("bot_created", bot_id=bot_id, name=config.name)
        return config

    def delete(self, bot_id: str) -> None:
        """Delete a bot record.

        Callers must stop a running instance first; the store does not
        know about running bots.

        Raises:
            NotFound: If no record exists.
        """
        with self.engine.begin() as conn:
            result = conn.execute(bots.delete().where(bots.c.id == bot_id))
        if result.rowcount == 0:
            raise NotFound("bot", bot_id)
        log.info("bot_deleted", bot_id=bot_id)

    def exists(self, bot_id: str) -> bool:
        """Check whether a record exists."""
        with self.engine.connect() as conn:
            row = conn.execute(select(bots.c.id).where(bots.c.id == bot_id)).fetchone()
        return row is not None

    def list(self) -> list[BotConfig]:
        """List all readable bot records, oldest first.

        Records that fail validation are logged and skipped.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(bots.c.id, bots.c.data).order_by(bots.c.created_at)
            ).fetchall()

        configs: list[BotConfig] = []
        for row in rows:
            try:
                configs.append(self._parse(row.id, row.data))
            except ValidationError as e:
                log.error("bot_record_invalid", bot_id=row.id, error=str(e))
        return configs

    def revisions(self) -> dict[str, int]:
        """Current revision of every record, keyed by bot id."""
        with self.engine.connect() as conn:
            rows = conn.execute(select(bots.c.id, bots.c.revision)).fetchall()
        return {row.id: row.revision for row in rows}

    # =========================================================================
    # Sections (commands, events, integrations)
    # =========================================================================

    def list_items(self, bot_id: str, section: str) -> list[BaseModel]:
        """List the items of one section."""
        self._section(section)
        return list(getattr(self.read(bot_id), section))

    def add_item(
        self,
        bot_id: str,
        section: str,
        data: dict[str, Any],
        self_writes: SelfWriteLedger | None = None,
    ) -> BaseModel:
        """Append an item (with a fresh id) to a section.

        Raises:
            ValueError: On validation failure or a duplicate command name.
        """
        _, model = self._section(section)
        item = model.model_validate(
            {**data, "id": generate_id(), "createdAt": utcnow()}
        )

        def apply(config: BotConfig) -> None:
            items = getattr(config, section)
            if section == "commands":
                self._check_unique_name(items, item)
            items.append(item)

        self.update(bot_id, apply, self_writes=self_writes)
        return item

    def update_item(
        self,
        bot_id: str,
        section: str,
        item_id: str,
        updates: dict[str, Any],
        self_writes: SelfWriteLedger | None = None,
    ) -> BaseModel:
        """Merge fields into one section item.

        Raises:
            NotFound: If the item does not exist.
        """
        kind, model = self._section(section)
        updates = {k: v for k, v in updates.items() if k not in _IMMUTABLE_FIELDS}
        result: list[BaseModel] = []

        def apply(config: BotConfig) -> None:
            items = getattr(config, section)
            for index, existing in enumerate(items):
                if existing.id != item_id:
                    continue
                record = existing.model_dump(mode="json", by_alias=True, exclude_none=True)
                record.update(updates)
                record["updatedAt"] = utcnow().isoformat()
                replacement = model.model_validate(record)
                if section == "commands":
                    self._check_unique_name(items[:index] + items[index + 1:], replacement)
                items[index] = replacement
                result[:] = [replacement]
                return
            raise NotFound(kind, item_id)

        self.update(bot_id, apply, self_writes=self_writes)
        return result[0]

    def delete_item(
        self,
        bot_id: str,
        section: str,
        item_id: str,
        self_writes: SelfWriteLedger | None = None,
    ) -> None:
        """Remove one section item.

        Raises:
            NotFound: If the item does not exist.
        """
        kind, _ = self._section(section)

        def apply(config: BotConfig) -> None:
            items = getattr(config, section)
            remaining = [item for item in items if item.id != item_id]
            if len(remaining) == len(items):
                raise NotFound(kind, item_id)
            setattr(config, section, remaining)

        self.update(bot_id, apply, self_writes=self_writes)

    # =========================================================================
    # Logs
    # =========================================================================

    def append_log(self, bot_id: str, line: str) -> None:
        """Append one line to a bot's durable log.

        Failures are logged, never raised: losing a log line must not
        break the operation being logged.
        """
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    bot_logs.insert().values(
                        bot_id=bot_id,
                        line=line,
                        created_at=utcnow(),
                    )
                )
        except Exception as e:
            log.error("bot_log_write_failed", bot_id=bot_id, error=str(e))

    def read_logs(self, bot_id: str, lines: int = 100) -> list[str]:
        """Read the most recent log lines for a bot, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(bot_logs.c.line, bot_logs.c.created_at)
                .where(bot_logs.c.bot_id == bot_id)
                .order_by(bot_logs.c.id.desc())
                .limit(lines)
            ).fetchall()

        return [f"[{row.created_at.isoformat()}] {row.line}" for row in reversed(rows)]

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _parse(bot_id: str, data: dict[str, Any]) -> BotConfig:
        return BotConfig.model_validate({**data, "id": bot_id})

    @staticmethod
    def _normalize(record: dict[str, Any], now) -> BotConfig:
        record = {**record, "updatedAt": now}
        return BotConfig.model_validate(record)

    @staticmethod
    def _section(section: str) -> tuple[str, type[BaseModel]]:
        try:
            return SECTIONS[section]
        except KeyError:
            raise ValueError(f"Unknown section: {section}") from None

    @staticmethod
    def _check_unique_name(items: list[Command], candidate: Command) -> None:
        for existing in items:
            if existing.key == candidate.key and existing.id != candidate.id:
                raise ValueError(f"A command named '{candidate.name}' already exists")
