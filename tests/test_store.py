"""Tests for the bot configuration store."""

import pytest
from sqlalchemy import update

from botyard.database import bots
from botyard.errors import NotFound, RevisionConflict
from botyard.models import BotConfig, BotState
from botyard.store import ConfigStore
from botyard.suppression import SelfWriteLedger


@pytest.fixture
def bot(store: ConfigStore) -> BotConfig:
    return store.create({"name": "Helper", "token": "secret-token", "prefix": "?"})


# =============================================================================
# Records
# =============================================================================


class TestRecords:
    """Tests for whole-record reads and writes."""

    def test_create_assigns_id_and_timestamps(self, store: ConfigStore) -> None:
        config = store.create({"name": "Helper", "id": "ignored", "createdAt": "1999-01-01"})
        assert config.id != "ignored"
        assert config.created_at.year != 1999
        assert store.exists(config.id)

    def test_read_returns_normalized_record(self, store: ConfigStore, bot: BotConfig) -> None:
        config = store.read(bot.id)
        assert config.name == "Helper"
        assert config.prefix == "?"
        assert config.status == BotState.OFFLINE
        assert config.commands == []

    def test_read_missing_raises(self, store: ConfigStore) -> None:
        with pytest.raises(NotFound, match="Bot with ID nope not found"):
            store.read("nope")

    def test_each_write_bumps_revision_by_one(self, store: ConfigStore, bot: BotConfig) -> None:
        _, revision = store.read_with_revision(bot.id)
        assert revision == 1

        store.write(bot.id, store.read(bot.id))
        store.write(bot.id, store.read(bot.id))

        _, revision = store.read_with_revision(bot.id)
        assert revision == 3

    def test_write_keeps_created_at(self, store: ConfigStore, bot: BotConfig) -> None:
        original = store.read(bot.id).created_at
        store.write(bot.id, {"name": "Renamed"})
        config = store.read(bot.id)
        assert config.name == "Renamed"
        assert config.created_at == original

    def test_write_forces_id(self, store: ConfigStore, bot: BotConfig) -> None:
        store.write(bot.id, {"id": "other", "name": "Same"})
        assert store.read(bot.id).id == bot.id
        assert not store.exists("other")

    def test_stale_expected_revision_conflicts(self, store: ConfigStore, bot: BotConfig) -> None:
        store.write(bot.id, {"name": "Second"})
        with pytest.raises(RevisionConflict) as exc_info:
            store.write(bot.id, {"name": "Third"}, expected_revision=1)
        assert exc_info.value.expected == 1
        assert exc_info.value.actual == 2

    def test_expected_zero_means_must_not_exist(self, store: ConfigStore, bot: BotConfig) -> None:
        with pytest.raises(RevisionConflict):
            store.write(bot.id, {"name": "Clobber"}, expected_revision=0)

    def test_patch_merges_top_level_fields(self, store: ConfigStore, bot: BotConfig) -> None:
        store.patch(bot.id, {"prefix": "$", "id": "hijack"})
        config = store.read(bot.id)
        assert config.prefix == "$"
        assert config.id == bot.id
        assert config.token == "secret-token"

    def test_delete(self, store: ConfigStore, bot: BotConfig) -> None:
        store.delete(bot.id)
        assert not store.exists(bot.id)
        with pytest.raises(NotFound):
            store.delete(bot.id)

    def test_list_oldest_first(self, store: ConfigStore) -> None:
        first = store.create({"name": "First"})
        second = store.create({"name": "Second"})
        assert [c.id for c in store.list()] == [first.id, second.id]

    def test_list_skips_invalid_records(self, store: ConfigStore, engine, bot: BotConfig) -> None:
        broken = store.create({"name": "Broken"})
        with engine.begin() as conn:
            conn.execute(
                update(bots)
                .where(bots.c.id == broken.id)
                .values(data={"commands": [{"name": "two words"}]})
            )
        assert [c.id for c in store.list()] == [bot.id]

    def test_revisions(self, store: ConfigStore, bot: BotConfig) -> None:
        other = store.create({"name": "Other"})
        store.patch(other.id, {"prefix": "%"})
        assert store.revisions() == {bot.id: 1, other.id: 2}


# =============================================================================
# Compare-and-swap updates
# =============================================================================


class TestUpdate:
    """Tests for read-modify-write with retries."""

    def test_update_applies_mutation(self, store: ConfigStore, bot: BotConfig) -> None:
        def rename(config: BotConfig) -> None:
            config.name = "Mutated"

        store.update(bot.id, rename)
        assert store.read(bot.id).name == "Mutated"

    def test_update_retries_after_concurrent_write(self, store: ConfigStore, bot: BotConfig) -> None:
        calls = []

        def mutate(config: BotConfig) -> None:
            calls.append(config.prefix)
            if len(calls) == 1:
                # Another writer lands between our read and our write
                store.patch(bot.id, {"prefix": "&"})
            config.name = "Ours"

        store.update(bot.id, mutate)

        config, revision = store.read_with_revision(bot.id)
        assert calls == ["?", "&"]
        assert config.name == "Ours"
        assert config.prefix == "&"
        assert revision == 3

    def test_update_gives_up_after_max_attempts(self, engine, bot: BotConfig) -> None:
        store = ConfigStore(engine, max_attempts=2)

        def always_race(config: BotConfig) -> None:
            store.patch(bot.id, {"prefix": "#"})

        with pytest.raises(RevisionConflict):
            store.update(bot.id, always_race)

    def test_update_registers_self_write(self, store: ConfigStore, bot: BotConfig) -> None:
        ledger = SelfWriteLedger()
        store.patch(bot.id, {"status": "online"}, self_writes=ledger)
        assert ledger.pending(bot.id) == {2}

    def test_conflicting_attempt_withdraws_expectation(self, store: ConfigStore, bot: BotConfig) -> None:
        ledger = SelfWriteLedger()
        calls = []

        def mutate(config: BotConfig) -> None:
            calls.append(1)
            if len(calls) == 1:
                store.patch(bot.id, {"prefix": "&"})

        store.update(bot.id, mutate, self_writes=ledger)

        # Revision 2 was the external patch, 3 is ours
        assert ledger.pending(bot.id) == {3}

    def test_update_missing_raises(self, store: ConfigStore) -> None:
        with pytest.raises(NotFound):
            store.update("nope", lambda config: None)

    def test_patch_ignores_masked_token(self, store: ConfigStore, bot: BotConfig) -> None:
        """Writing back the masked token keeps the real one."""
        store.patch(bot.id, {"token": bot.masked_token(), "prefix": "&"})

        config = store.read(bot.id)
        assert config.token == "secret-token"
        assert config.prefix == "&"

    def test_patch_replaces_token(self, store: ConfigStore, bot: BotConfig) -> None:
        store.patch(bot.id, {"token": "fresh-token"})
        assert store.read(bot.id).token == "fresh-token"


# =============================================================================
# Sections
# =============================================================================


class TestSections:
    """Tests for per-section item CRUD."""

    def test_add_item_assigns_id(self, store: ConfigStore, bot: BotConfig) -> None:
        item = store.add_item(bot.id, "commands", {"name": "ping", "responseContent": "pong", "id": "x"})
        assert item.id != "x"
        assert item.created_at is not None
        assert [c.name for c in store.list_items(bot.id, "commands")] == ["ping"]

    def test_add_duplicate_command_name_rejected(self, store: ConfigStore, bot: BotConfig) -> None:
        store.add_item(bot.id, "commands", {"name": "ping"})
        with pytest.raises(ValueError, match="already exists"):
            store.add_item(bot.id, "commands", {"name": "PING"})
        assert len(store.list_items(bot.id, "commands")) == 1

    def test_add_invalid_item_rejected(self, store: ConfigStore, bot: BotConfig) -> None:
        with pytest.raises(ValueError):
            store.add_item(bot.id, "integrations", {"service": "myspace"})

    def test_unknown_section_rejected(self, store: ConfigStore, bot: BotConfig) -> None:
        with pytest.raises(ValueError, match="Unknown section"):
            store.list_items(bot.id, "widgets")

    def test_update_item_merges_fields(self, store: ConfigStore, bot: BotConfig) -> None:
        item = store.add_item(
            bot.id,
            "events",
            {"eventType": "messageCreate", "action": {"type": "sendMessage", "message": "hi"}},
        )
        updated = store.update_item(bot.id, "events", item.id, {"name": "greeter"})
        assert updated.name == "greeter"
        assert updated.action.message == "hi"
        assert updated.updated_at is not None

    def test_update_item_cannot_rename_onto_existing(self, store: ConfigStore, bot: BotConfig) -> None:
        store.add_item(bot.id, "commands", {"name": "ping"})
        pong = store.add_item(bot.id, "commands", {"name": "pong"})
        with pytest.raises(ValueError):
            store.update_item(bot.id, "commands", pong.id, {"name": "ping"})

    def test_update_missing_item_raises(self, store: ConfigStore, bot: BotConfig) -> None:
        with pytest.raises(NotFound, match="Command with ID nope not found"):
            store.update_item(bot.id, "commands", "nope", {"name": "x"})

    def test_delete_item(self, store: ConfigStore, bot: BotConfig) -> None:
        item = store.add_item(bot.id, "integrations", {"service": "plex"})
        store.delete_item(bot.id, "integrations", item.id)
        assert store.list_items(bot.id, "integrations") == []
        with pytest.raises(NotFound):
            store.delete_item(bot.id, "integrations", item.id)


# =============================================================================
# Logs
# =============================================================================


class TestLogs:
    """Tests for durable per-bot log lines."""

    def test_read_logs_oldest_first(self, store: ConfigStore) -> None:
        for i in range(5):
            store.append_log("bot-1", f"line {i}")
        store.append_log("bot-2", "other bot")

        lines = store.read_logs("bot-1")
        assert len(lines) == 5
        assert lines[0].endswith("line 0")
        assert lines[-1].endswith("line 4")
        assert lines[0].startswith("[")

    def test_read_logs_limit_keeps_most_recent(self, store: ConfigStore) -> None:
        for i in range(10):
            store.append_log("bot-1", f"line {i}")
        lines = store.read_logs("bot-1", lines=3)
        assert [line.rsplit(" ", 1)[-1] for line in lines] == ["7", "8", "9"]

    def test_logs_outlive_deleted_bot(self, store: ConfigStore, bot: BotConfig) -> None:
        store.append_log(bot.id, "before delete")
        store.delete(bot.id)
        assert len(store.read_logs(bot.id)) == 1
