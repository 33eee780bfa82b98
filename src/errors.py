"""Error kinds the bot engine converts every failure into."""

from __future__ import annotations


class BotError(Exception):
    """Base class. ``str(err)`` is safe to show to the user."""


class FormatError(BotError):
    """Free text could not be parsed (wrong delimiter count, bad date/number)."""


class ValidationError(BotError):
    """Well-formed input that is semantically invalid (empty name, buy-in <= 0)."""


class NotFoundError(BotError):
    """A referenced tournament no longer exists."""


class ExternalServiceError(BotError):
    """A collaborator call failed or timed out."""

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed" + (f": {detail}" if detail else ""))
