"""Interfaces of the systems the engine talks to.

Implementations live in storage.py, extract_ticket.py and telegram_bot.py;
tests provide in-memory fakes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, List, Optional, Protocol, TypeVar

from errors import BotError, ExternalServiceError
from models import Keyboard, OcrResult, ResultInput, Tournament, TournamentDraft

logger = logging.getLogger("pokerbot.delivery")

T = TypeVar("T")


class TournamentStore(Protocol):
    async def list_tournaments(self, user_id: str) -> List[Tournament]:
        ...

    async def list_tournaments_without_result(self, user_id: str) -> List[Tournament]:
        ...

    async def create_tournament(self, user_id: str, draft: TournamentDraft) -> Tournament:
        ...

    async def set_tournament_result(
        self, tournament_id: str, result: ResultInput, notes: Optional[str] = None
    ) -> Tournament:
        """Raise NotFoundError if the tournament is gone."""

    async def get_tournament(self, tournament_id: str) -> Tournament:
        """Raise NotFoundError if the tournament is gone."""


class TicketRecognizer(Protocol):
    async def extract_ticket_data(self, image_ref: str) -> OcrResult:
        ...


class VenueStore(Protocol):
    async def get_current_venue(self, user_id: str) -> Optional[str]:
        ...

    async def set_current_venue(self, user_id: str, venue: str) -> bool:
        ...

    async def toggle_notification(self, user_id: str, kind: str) -> bool:
        """Flip one notification switch and return its new state."""


class MessageDelivery(Protocol):
    async def send_message(
        self, chat_ref: Any, text: str, *, buttons: Optional[Keyboard] = None, markdown: bool = False
    ) -> Any:
        """Send a message and return a reference usable with ``edit_message``."""

    async def edit_message(
        self,
        chat_ref: Any,
        message_ref: Any,
        text: str,
        *,
        buttons: Optional[Keyboard] = None,
        markdown: bool = False,
    ) -> None:
        ...

    async def acknowledge_button(self, callback_ref: Any, text: Optional[str] = None) -> None:
        ...

    async def resolve_media_link(self, file_ref: str) -> str:
        ...


async def guarded_call(operation: str, awaitable: Awaitable[T], timeout: float) -> T:
    """Await a collaborator call with a deadline.

    Timeouts and unexpected exceptions become ExternalServiceError; the
    engine's own error kinds (NotFoundError, ...) pass through.
    """

    try:
        return await asyncio.wait_for(awaitable, timeout)
    except BotError:
        raise
    except asyncio.TimeoutError:
        raise ExternalServiceError(operation, f"timed out after {timeout:g}s") from None
    except Exception as e:
        raise ExternalServiceError(operation, f"{type(e).__name__}: {e}") from e


class Outbox:
    """MessageDelivery wrapper used by handlers.

    Delivery failures are logged and swallowed: once a handler has committed
    a change, a lost confirmation message must not roll the session back.
    """

    def __init__(self, delivery: MessageDelivery, timeout: float) -> None:
        self.delivery = delivery
        self.timeout = timeout

    async def send(
        self, chat_ref: Any, text: str, *, buttons: Optional[Keyboard] = None, markdown: bool = False
    ) -> Any:
        try:
            return await guarded_call(
                "send_message",
                self.delivery.send_message(chat_ref, text, buttons=buttons, markdown=markdown),
                self.timeout,
            )
        except ExternalServiceError as e:
            logger.warning("send_failed chat=%s error=%s", chat_ref, e)
            return None

    async def edit(
        self,
        chat_ref: Any,
        message_ref: Any,
        text: str,
        *,
        buttons: Optional[Keyboard] = None,
        markdown: bool = False,
    ) -> None:
        if message_ref is None:
            await self.send(chat_ref, text, buttons=buttons or None, markdown=markdown)
            return
        try:
            await guarded_call(
                "edit_message",
                self.delivery.edit_message(chat_ref, message_ref, text, buttons=buttons, markdown=markdown),
                self.timeout,
            )
        except ExternalServiceError as e:
            logger.warning("edit_failed chat=%s message=%s error=%s", chat_ref, message_ref, e)
            await self.send(chat_ref, text, markdown=markdown)

    async def ack(self, callback_ref: Any, text: Optional[str] = None) -> None:
        if callback_ref is None:
            return
        try:
            await guarded_call("acknowledge_button", self.delivery.acknowledge_button(callback_ref, text), self.timeout)
        except ExternalServiceError as e:
            logger.warning("ack_failed callback=%s error=%s", callback_ref, e)

    async def resolve_media(self, file_ref: str) -> str:
        return await guarded_call("resolve_media_link", self.delivery.resolve_media_link(file_ref), self.timeout)
