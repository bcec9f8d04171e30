"""Exception hierarchy for Botyard.

Caller-facing failures (supervisor preconditions, missing records, failed
starts) propagate to whoever invoked the operation. Failures inside chat
listeners never propagate; the dispatch engines catch them at the
listener boundary.
"""

from __future__ import annotations


class BotyardError(Exception):
    """Base class for all Botyard errors."""


class NotFound(BotyardError):
    """A bot, command, event rule or integration id did not resolve."""

    def __init__(self, kind: str, item_id: str) -> None:
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind.capitalize()} with ID {item_id} not found")


class AlreadyRunning(BotyardError):
    """Start was requested for a bot that already has a running instance."""

    def __init__(self, bot_id: str) -> None:
        self.bot_id = bot_id
        super().__init__(f"Bot {bot_id} is already running")


class NotRunning(BotyardError):
    """Stop was requested for a bot with no running instance."""

    def __init__(self, bot_id: str) -> None:
        self.bot_id = bot_id
        super().__init__(f"Bot {bot_id} is not running")


class MissingCredential(BotyardError):
    """The bot record has no token."""

    def __init__(self, bot_id: str) -> None:
        self.bot_id = bot_id
        super().__init__("Bot token is required")


class AuthError(BotyardError):
    """The gateway rejected the credential or its capability set."""


class StartFailed(BotyardError):
    """A start attempt failed; ``reason`` is meant for the operator."""

    def __init__(self, bot_id: str, reason: str) -> None:
        self.bot_id = bot_id
        self.reason = reason
        super().__init__(reason)


class ApiError(BotyardError):
    """A third-party service was unreachable or answered with an error."""

    def __init__(self, service: str, message: str, status: int | None = None) -> None:
        self.service = service
        self.status = status
        super().__init__(f"{service}: {message}")


class PermissionDenied(BotyardError):
    """The invoking member lacks a permission the command requires."""


class RevisionConflict(BotyardError):
    """A compare-and-swap write found a newer revision than expected."""

    def __init__(self, bot_id: str, expected: int, actual: int) -> None:
        self.bot_id = bot_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Bot {bot_id} changed concurrently (expected revision {expected}, found {actual})"
        )


class SchedulerCheckError(BotyardError):
    """A manual announcement check could not run; message is operator-facing."""
