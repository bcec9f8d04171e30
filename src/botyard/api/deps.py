"""FastAPI dependency injection for the Botyard API.

Provides access to shared resources via app.state.
"""

from typing import TYPE_CHECKING

from fastapi import Request, WebSocket

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from botyard.config import Config
    from botyard.notifications import NotificationHub
    from botyard.store import ConfigStore
    from botyard.supervisor import BotSupervisor


def get_config(request: Request) -> "Config":
    """Get config from app state."""
    return request.app.state.config


def get_db(request: Request) -> "Engine":
    """Get database engine from app state."""
    return request.app.state.db


def get_store(request: Request) -> "ConfigStore":
    """Get the bot configuration store from app state."""
    return request.app.state.store


def get_supervisor(request: Request) -> "BotSupervisor":
    """Get the bot supervisor from app state.

    Args:
        request: FastAPI request object.

    Returns:
        The process-wide BotSupervisor.
    """
    return request.app.state.supervisor


def get_hub(websocket: WebSocket) -> "NotificationHub":
    """Get the notification hub for a websocket connection."""
    return websocket.app.state.hub
