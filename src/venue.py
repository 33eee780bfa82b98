"""Which venue a new tournament gets."""

from __future__ import annotations

from typing import Optional, Tuple

from bot_core import normalize_venue
from collaborators import VenueStore, guarded_call
from models import NOT_SPECIFIED


def resolve_venue(stored: Optional[str], ocr_venue: Optional[str]) -> Tuple[str, bool]:
    """Return (final_venue, was_overridden).

    The stored preference wins. ``was_overridden`` only says the ticket named
    a different venue; it is used for the preview annotation and nothing else.
    """

    stored_n = normalize_venue(stored)
    ocr_n = normalize_venue(ocr_venue)

    if stored_n is not None:
        return stored_n, ocr_n is not None and ocr_n != stored_n
    if ocr_n is not None:
        return ocr_n, False
    return NOT_SPECIFIED, False


class VenueResolver:
    def __init__(self, venues: VenueStore, timeout: float = 8.0) -> None:
        self._venues = venues
        self._timeout = timeout

    async def resolve(self, user_id: str, ocr_venue: Optional[str]) -> Tuple[str, bool]:
        """Fetch the stored preference (may raise ExternalServiceError) and resolve."""
        stored = await guarded_call("get_current_venue", self._venues.get_current_venue(user_id), self._timeout)
        return resolve_venue(stored, ocr_venue)
