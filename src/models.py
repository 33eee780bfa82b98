"""Plain data passed between the engine, its flows and the collaborators."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Any, List, Optional


NOT_SPECIFIED = "not specified"
DEFAULT_TOURNAMENT_TYPE = "freezeout"
DEFAULT_STRUCTURE = "NL Hold'em"
TOURNAMENT_TYPES = ("freezeout", "rebuy", "addon", "bounty", "satellite")


class Flow(str, Enum):
    NONE = "none"
    REGISTERING_TOURNAMENT = "registering_tournament"
    ADDING_RESULT = "adding_result"
    EDITING_TOURNAMENT_DRAFT = "editing_tournament_draft"


class UpdateKind(str, Enum):
    COMMAND = "command"
    TEXT = "text"
    PHOTO = "photo"
    DOCUMENT = "document"
    BUTTON = "button"


@dataclass(frozen=True)
class TournamentDraft:
    name: Optional[str] = None
    date: Optional[date] = None
    venue: Optional[str] = None
    buyin: Optional[float] = None
    tournament_type: str = DEFAULT_TOURNAMENT_TYPE
    structure: str = DEFAULT_STRUCTURE
    participants: Optional[int] = None
    prize_pool: Optional[float] = None
    blind_levels: Optional[str] = None
    starting_stack: Optional[int] = None
    notes: Optional[str] = None

    def with_changes(self, **changes: Any) -> "TournamentDraft":
        return replace(self, **changes)


@dataclass(frozen=True)
class ResultInput:
    position: int
    payout: float


@dataclass(frozen=True)
class TournamentResult:
    position: int
    payout: float
    profit: float
    roi: float
    notes: Optional[str] = None


@dataclass(frozen=True)
class Tournament:
    id: str
    user_id: str
    name: str
    date: date
    venue: str
    buyin: float
    tournament_type: str = DEFAULT_TOURNAMENT_TYPE
    structure: str = DEFAULT_STRUCTURE
    participants: Optional[int] = None
    prize_pool: Optional[float] = None
    blind_levels: Optional[str] = None
    starting_stack: Optional[int] = None
    notes: Optional[str] = None
    result: Optional[TournamentResult] = None


@dataclass
class Session:
    flow: Flow = Flow.NONE
    draft_tournament: Optional[TournamentDraft] = None
    result_tournament_id: Optional[str] = None
    ocr_draft: Optional[TournamentDraft] = None

    def enter(self, flow: Flow) -> None:
        """Switch flows, dropping whatever the previous flow had collected."""
        self.reset_flow()
        self.flow = flow

    def reset_flow(self) -> None:
        self.flow = Flow.NONE
        self.draft_tournament = None
        self.result_tournament_id = None


@dataclass(frozen=True)
class OcrResult:
    success: bool
    data: Optional[TournamentDraft] = None
    confidence: Optional[float] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class Button:
    text: str
    data: str


Keyboard = List[List[Button]]


@dataclass(frozen=True)
class IncomingUpdate:
    """Transport-agnostic update. Only the fields relevant to ``kind`` are set."""

    user_id: str
    chat_ref: Any
    kind: UpdateKind
    text: str = ""
    file_ref: Optional[str] = None
    mime_type: Optional[str] = None
    callback_ref: Optional[str] = None
    message_ref: Optional[Any] = None
