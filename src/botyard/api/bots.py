"""Bot management endpoints.

Record CRUD, lifecycle (start/stop/restart), live status, durable logs,
the text-channel picker, per-section CRUD for commands, events and
integrations, and the announcement test trigger.

Edits made here are registered with the self-write ledger and followed by
an immediate reload, so the config watcher does not reload a second time.
"""

from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog
from fastapi import APIRouter, Body, Depends, Query, Response, status

from botyard.api.deps import get_store, get_supervisor

if TYPE_CHECKING:
    from botyard.store import ConfigStore
    from botyard.supervisor import BotSupervisor

log = structlog.get_logger()

router = APIRouter(prefix="/api/bots", tags=["bots"])


class Section(str, Enum):
    """Editable list sections of a bot record."""

    COMMANDS = "commands"
    EVENTS = "events"
    INTEGRATIONS = "integrations"


def _summary(store: "ConfigStore", supervisor: "BotSupervisor", bot_id: str) -> dict[str, Any]:
    record = store.read(bot_id).redacted()
    record["running"] = supervisor.is_running(bot_id)
    return record


def _item(model: Any) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Records
# =============================================================================


@router.get("")
async def list_bots(
    store: "ConfigStore" = Depends(get_store),
    supervisor: "BotSupervisor" = Depends(get_supervisor),
) -> list[dict[str, Any]]:
    """List every bot with its token masked."""
    bots = []
    for config in store.list():
        record = config.redacted()
        record["running"] = supervisor.is_running(config.id)
        bots.append(record)
    return bots


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_bot(
    fields: dict[str, Any] = Body(...),
    store: "ConfigStore" = Depends(get_store),
) -> dict[str, Any]:
    """Create a bot; id and timestamps are assigned here."""
    config = store.create(fields)
    return config.redacted()


@router.get("/{bot_id}")
async def get_bot(
    bot_id: str,
    store: "ConfigStore" = Depends(get_store),
    supervisor: "BotSupervisor" = Depends(get_supervisor),
) -> dict[str, Any]:
    return _summary(store, supervisor, bot_id)


@router.put("/{bot_id}")
async def update_bot(
    bot_id: str,
    updates: dict[str, Any] = Body(...),
    store: "ConfigStore" = Depends(get_store),
    supervisor: "BotSupervisor" = Depends(get_supervisor),
) -> dict[str, Any]:
    """Merge top-level fields into a bot record and reload it if running."""
    store.patch(bot_id, updates, self_writes=supervisor.ledger)
    await supervisor.reload_bot_config(bot_id)
    return _summary(store, supervisor, bot_id)


@router.delete("/{bot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_bot(
    bot_id: str,
    supervisor: "BotSupervisor" = Depends(get_supervisor),
) -> Response:
    """Stop the bot if it is running, then delete it."""
    await supervisor.delete(bot_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Lifecycle and status
# =============================================================================


@router.post("/{bot_id}/start")
async def start_bot(
    bot_id: str,
    supervisor: "BotSupervisor" = Depends(get_supervisor),
) -> dict[str, Any]:
    result = await supervisor.start(bot_id)
    return result.model_dump()


@router.post("/{bot_id}/stop")
async def stop_bot(
    bot_id: str,
    supervisor: "BotSupervisor" = Depends(get_supervisor),
) -> dict[str, Any]:
    await supervisor.stop(bot_id)
    return supervisor.status(bot_id).model_dump()


@router.post("/{bot_id}/restart")
async def restart_bot(
    bot_id: str,
    supervisor: "BotSupervisor" = Depends(get_supervisor),
) -> dict[str, Any]:
    result = await supervisor.restart(bot_id)
    return result.model_dump()


@router.get("/{bot_id}/status")
async def bot_status(
    bot_id: str,
    store: "ConfigStore" = Depends(get_store),
    supervisor: "BotSupervisor" = Depends(get_supervisor),
) -> dict[str, Any]:
    """Live status of a bot, read from its connection at call time."""
    store.read(bot_id)  # 404 for unknown bots
    return supervisor.status(bot_id).model_dump()


@router.get("/{bot_id}/logs")
async def bot_logs(
    bot_id: str,
    lines: int = Query(default=100, ge=1, le=1000),
    store: "ConfigStore" = Depends(get_store),
) -> dict[str, Any]:
    return {"logs": store.read_logs(bot_id, lines=lines)}


@router.get("/{bot_id}/channels")
async def bot_channels(
    bot_id: str,
    supervisor: "BotSupervisor" = Depends(get_supervisor),
) -> list[dict[str, str]]:
    """Text channels the running bot can see."""
    return supervisor.instance(bot_id).connection.text_channels()


# =============================================================================
# Sections
# =============================================================================


@router.get("/{bot_id}/{section}")
async def list_items(
    bot_id: str,
    section: Section,
    store: "ConfigStore" = Depends(get_store),
) -> list[dict[str, Any]]:
    return [_item(item) for item in store.list_items(bot_id, section.value)]


@router.post("/{bot_id}/{section}", status_code=status.HTTP_201_CREATED)
async def add_item(
    bot_id: str,
    section: Section,
    data: dict[str, Any] = Body(...),
    store: "ConfigStore" = Depends(get_store),
    supervisor: "BotSupervisor" = Depends(get_supervisor),
) -> dict[str, Any]:
    item = store.add_item(bot_id, section.value, data, self_writes=supervisor.ledger)
    await supervisor.reload_bot_config(bot_id)
    return _item(item)


@router.put("/{bot_id}/{section}/{item_id}")
async def update_item(
    bot_id: str,
    section: Section,
    item_id: str,
    updates: dict[str, Any] = Body(...),
    store: "ConfigStore" = Depends(get_store),
    supervisor: "BotSupervisor" = Depends(get_supervisor),
) -> dict[str, Any]:
    item = store.update_item(bot_id, section.value, item_id, updates, self_writes=supervisor.ledger)
    await supervisor.reload_bot_config(bot_id)
    return _item(item)


@router.delete("/{bot_id}/{section}/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_item(
    bot_id: str,
    section: Section,
    item_id: str,
    store: "ConfigStore" = Depends(get_store),
    supervisor: "BotSupervisor" = Depends(get_supervisor),
) -> Response:
    store.delete_item(bot_id, section.value, item_id, self_writes=supervisor.ledger)
    await supervisor.reload_bot_config(bot_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{bot_id}/integrations/{integration_id}/test-announcement")
async def test_announcement(
    bot_id: str,
    integration_id: str,
    supervisor: "BotSupervisor" = Depends(get_supervisor),
) -> dict[str, Any]:
    """Post what the integration added within its interval window.

    The bot must be running. Announcement dedup state is left untouched.
    """
    connection = supervisor.instance(bot_id).connection
    result = await supervisor.scheduler.test_check(bot_id, integration_id, connection)
    log.info("test_announcement_sent", bot_id=bot_id, integration_id=integration_id, sent=result["sent"])
    return result
