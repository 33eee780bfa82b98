"""In-memory collaborators for engine tests."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date
from typing import Any, Dict, List, Optional

from bot_core import result_metrics
from engine import ConversationEngine
from errors import NotFoundError
from models import (
    IncomingUpdate,
    OcrResult,
    ResultInput,
    Tournament,
    TournamentDraft,
    TournamentResult,
    UpdateKind,
)


class FakeStore:
    def __init__(self) -> None:
        self.tournaments: Dict[str, Tournament] = {}
        self.created: List[tuple] = []
        self.fail_create = False
        self.fail_list = False
        self.fail_get = False
        self.delay = 0.0
        self._next_id = 1

    def add(self, user_id: str, name: str, buyin: float, *, venue: str = "Aria Casino") -> Tournament:
        t = Tournament(
            id=str(self._next_id),
            user_id=user_id,
            name=name,
            date=date(2024, 12, 15),
            venue=venue,
            buyin=buyin,
        )
        self._next_id += 1
        self.tournaments[t.id] = t
        return t

    async def list_tournaments(self, user_id: str) -> List[Tournament]:
        if self.fail_list:
            raise ConnectionError("store unavailable")
        return [t for t in self.tournaments.values() if t.user_id == user_id]

    async def list_tournaments_without_result(self, user_id: str) -> List[Tournament]:
        return [t for t in await self.list_tournaments(user_id) if t.result is None]

    async def create_tournament(self, user_id: str, draft: TournamentDraft) -> Tournament:
        self.created.append((user_id, draft))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_create:
            raise ConnectionError("store unavailable")
        t = Tournament(
            id=str(self._next_id),
            user_id=user_id,
            name=draft.name,
            date=draft.date,
            venue=draft.venue,
            buyin=draft.buyin,
            tournament_type=draft.tournament_type,
            structure=draft.structure,
            notes=draft.notes,
        )
        self._next_id += 1
        self.tournaments[t.id] = t
        return t

    async def set_tournament_result(
        self, tournament_id: str, result: ResultInput, notes: Optional[str] = None
    ) -> Tournament:
        t = self.tournaments.get(tournament_id)
        if t is None:
            raise NotFoundError(f"Tournament {tournament_id} not found")
        profit, roi = result_metrics(t.buyin, result.payout)
        t = replace(t, result=TournamentResult(result.position, result.payout, profit, roi, notes))
        self.tournaments[t.id] = t
        return t

    async def get_tournament(self, tournament_id: str) -> Tournament:
        if self.fail_get:
            raise ConnectionError("store unavailable")
        t = self.tournaments.get(tournament_id)
        if t is None:
            raise NotFoundError(f"Tournament {tournament_id} not found")
        return t


class FakeVenues:
    def __init__(self) -> None:
        self.venues: Dict[str, str] = {}
        self.toggles: Dict[tuple, bool] = {}
        self.fail_get = False
        self.refuse_set = False

    async def get_current_venue(self, user_id: str) -> Optional[str]:
        if self.fail_get:
            raise ConnectionError("settings unavailable")
        return self.venues.get(user_id)

    async def set_current_venue(self, user_id: str, venue: str) -> bool:
        if self.refuse_set:
            return False
        self.venues[user_id] = venue
        return True

    async def toggle_notification(self, user_id: str, kind: str) -> bool:
        key = (user_id, kind)
        self.toggles[key] = not self.toggles.get(key, False)
        return self.toggles[key]


class FakeOcr:
    def __init__(self, result: Optional[OcrResult] = None) -> None:
        self.result = result or OcrResult(success=False, error="nothing configured")
        self.calls: List[str] = []

    async def extract_ticket_data(self, image_ref: str) -> OcrResult:
        self.calls.append(image_ref)
        return self.result


class FakeDelivery:
    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.edits: List[Dict[str, Any]] = []
        self.acks: List[tuple] = []
        self._next_id = 100

    async def send_message(self, chat_ref, text, *, buttons=None, markdown=False):
        await asyncio.sleep(0)
        self._next_id += 1
        self.sent.append(
            {"chat": chat_ref, "text": text, "buttons": buttons, "markdown": markdown, "id": self._next_id}
        )
        return self._next_id

    async def edit_message(self, chat_ref, message_ref, text, *, buttons=None, markdown=False):
        self.edits.append({"chat": chat_ref, "message": message_ref, "text": text, "buttons": buttons})

    async def acknowledge_button(self, callback_ref, text=None):
        self.acks.append((callback_ref, text))

    async def resolve_media_link(self, file_ref: str) -> str:
        return f"/tmp/{file_ref}.jpg"

    def texts(self, chat=None) -> List[str]:
        return [m["text"] for m in self.sent if chat is None or m["chat"] == chat]

    @property
    def last_text(self) -> str:
        return self.sent[-1]["text"]


class Harness:
    def __init__(self, **engine_kwargs: Any) -> None:
        self.store = FakeStore()
        self.venues = FakeVenues()
        self.ocr = FakeOcr()
        self.delivery = FakeDelivery()
        self.engine = ConversationEngine(self.store, self.ocr, self.venues, self.delivery, **engine_kwargs)

    async def session(self, user_id: str = "1"):
        return await self.engine.sessions.get(user_id)

    async def command(self, text: str, user_id: str = "1") -> None:
        await self.engine.handle_incoming_update(
            IncomingUpdate(user_id=user_id, chat_ref=int(user_id), kind=UpdateKind.COMMAND, text=text)
        )

    async def text(self, text: str, user_id: str = "1") -> None:
        await self.engine.handle_incoming_update(
            IncomingUpdate(user_id=user_id, chat_ref=int(user_id), kind=UpdateKind.TEXT, text=text)
        )

    async def button(self, data: str, user_id: str = "1", message_ref: Any = None) -> None:
        await self.engine.handle_incoming_update(
            IncomingUpdate(
                user_id=user_id,
                chat_ref=int(user_id),
                kind=UpdateKind.BUTTON,
                text=data,
                callback_ref=f"cb-{data}",
                message_ref=message_ref,
            )
        )

    async def photo(self, user_id: str = "1", file_ref: str = "photo-1") -> None:
        await self.engine.handle_incoming_update(
            IncomingUpdate(user_id=user_id, chat_ref=int(user_id), kind=UpdateKind.PHOTO, file_ref=file_ref)
        )
