"""Confirm, edit or cancel a tournament draft read from a ticket photo."""

from __future__ import annotations

import logging
from typing import Optional

from bot_core import (
    EDIT_FORMAT,
    apply_field_edit,
    build_tournament_created,
    describe_field_edit,
    error_message,
    escape_markdown,
    format_currency,
    format_date,
    parse_field_edit,
    validate_draft,
)
from collaborators import Outbox, TournamentStore, guarded_call
from errors import ExternalServiceError, FormatError, ValidationError
from models import Button, Flow, IncomingUpdate, Keyboard, OcrResult, Session, TournamentDraft
from venue import VenueResolver

logger = logging.getLogger("pokerbot.ticket")

FALLBACK_NAME = "Ticket tournament"

CONFIRM_KEYBOARD: Keyboard = [
    [Button("✅ Confirm", "confirm_tournament"), Button("❌ Cancel", "cancel_tournament")],
    [Button("✏️ Edit", "edit_tournament")],
]

CREATE_FAILED_HINT = (
    "What you can do:\n"
    "• send the ticket photo again in a few minutes\n"
    "• use /register to enter the tournament manually\n"
    "• contact the administrator if this keeps happening"
)


def build_ticket_preview(draft: TournamentDraft, venue_overridden: bool, confidence: Optional[float] = None) -> str:
    venue = escape_markdown(draft.venue or "")
    if venue_overridden:
        venue += " _(your current venue)_"
    lines = [
        "📸 *Ticket recognized:*",
        "",
        f"🎰 *Tournament:* {escape_markdown(draft.name or 'not recognized')}",
        f"📅 *Date:* {format_date(draft.date)}",
        f"💵 *Buy-in:* {format_currency(draft.buyin or 0)}",
        f"🏨 *Venue:* {venue}",
        f"🎯 *Type:* {draft.tournament_type.capitalize()}",
    ]
    if confidence is not None:
        lines.append(f"🔍 Confidence: {confidence:.0%}")
    lines += ["", "Is this correct? Press ✅ to confirm, ❌ to cancel or ✏️ to edit."]
    return "\n".join(lines)


def build_edit_prompt(draft: TournamentDraft) -> str:
    return (
        "✏️ *Editing tournament*\n\n"
        "Current data:\n"
        f"🎰 Tournament: {escape_markdown(draft.name or 'not recognized')}\n"
        f"📅 Date: {format_date(draft.date)}\n"
        f"💵 Buy-in: {format_currency(draft.buyin or 0)}\n"
        f"🏨 Venue: {escape_markdown(draft.venue or 'not specified')}\n\n"
        f"{escape_markdown(EDIT_FORMAT)}"
    )


class TicketFlow:
    """Handlers mutate the ``session`` they are given; the engine publishes it."""

    def __init__(self, store: TournamentStore, venues: VenueResolver, outbox: Outbox, timeout: float) -> None:
        self.store = store
        self.venues = venues
        self.outbox = outbox
        self.timeout = timeout

    async def present(self, update: IncomingUpdate, session: Session, ocr: OcrResult) -> None:
        # The draft keeps the ticket's own venue; the preference is applied on commit.
        draft = ocr.data or TournamentDraft()
        venue, overridden = await self.venues.resolve(update.user_id, draft.venue)
        session.ocr_draft = draft
        logger.info(
            "ticket_recognized user=%s name=%s venue=%s ticket_venue=%s overridden=%s confidence=%s",
            update.user_id,
            draft.name,
            venue,
            draft.venue,
            overridden,
            ocr.confidence,
        )
        await self.outbox.send(
            update.chat_ref,
            build_ticket_preview(draft.with_changes(venue=venue), overridden, ocr.confidence),
            buttons=CONFIRM_KEYBOARD,
            markdown=True,
        )

    async def confirm(self, update: IncomingUpdate, session: Session) -> None:
        await self.outbox.ack(update.callback_ref)
        if await self._editing(update, session):
            return
        if session.ocr_draft is None:
            await self._draft_missing(update)
            return

        draft = session.ocr_draft
        if not (draft.name or "").strip():
            draft = draft.with_changes(name=FALLBACK_NAME)

        problems = validate_draft(draft)
        if problems:
            details = "\n".join(f"• {p}" for p in problems)
            await self.outbox.send(
                update.chat_ref,
                error_message(f"The ticket is missing required data:\n{details}", "Press ✏️ Edit to fill it in."),
            )
            return

        try:
            # The preference may have changed since the photo was sent.
            venue, _ = await self.venues.resolve(update.user_id, draft.venue)
        except ExternalServiceError as e:
            logger.warning("ticket_venue_failed user=%s error=%s", update.user_id, e)
            await self.outbox.send(
                update.chat_ref,
                error_message("Could not load your venue settings.", "Press ✅ Confirm again in a moment."),
            )
            return

        draft = draft.with_changes(venue=venue, notes=draft.notes or "Created from a ticket photo")
        session.ocr_draft = None
        try:
            tournament = await guarded_call(
                "create_tournament", self.store.create_tournament(update.user_id, draft), self.timeout
            )
        except ExternalServiceError as e:
            logger.warning("ticket_create_failed user=%s error=%s", update.user_id, e)
            await self.outbox.send(
                update.chat_ref, error_message("Could not create the tournament.", CREATE_FAILED_HINT)
            )
            return

        logger.info("ticket_confirmed user=%s tournament_id=%s venue=%s", update.user_id, tournament.id, venue)
        await self.outbox.edit(
            update.chat_ref, update.message_ref, build_tournament_created(tournament), buttons=[], markdown=True
        )

    async def cancel(self, update: IncomingUpdate, session: Session) -> None:
        await self.outbox.ack(update.callback_ref)
        if await self._editing(update, session):
            return
        session.ocr_draft = None
        logger.info("ticket_cancelled user=%s", update.user_id)
        await self.outbox.edit(
            update.chat_ref,
            update.message_ref,
            "❌ Tournament creation cancelled.\n\n"
            "You can:\n"
            "• send another ticket photo\n"
            "• use /register to enter the tournament manually",
            buttons=[],
        )

    async def edit(self, update: IncomingUpdate, session: Session) -> None:
        await self.outbox.ack(update.callback_ref)
        if await self._editing(update, session):
            return
        if session.ocr_draft is None:
            await self._draft_missing(update)
            return

        draft = session.ocr_draft
        try:
            venue, _ = await self.venues.resolve(update.user_id, draft.venue)
        except ExternalServiceError as e:
            logger.warning("edit_venue_preview_failed user=%s error=%s", update.user_id, e)
            venue = draft.venue

        # The draft moves out of ocr_draft so the preview buttons cannot submit it again.
        session.enter(Flow.EDITING_TOURNAMENT_DRAFT)
        session.draft_tournament = draft
        session.ocr_draft = None
        logger.info("ticket_edit_started user=%s", update.user_id)
        await self.outbox.edit(
            update.chat_ref,
            update.message_ref,
            build_edit_prompt(draft.with_changes(venue=venue)),
            buttons=[],
            markdown=True,
        )

    async def handle_edit_text(self, update: IncomingUpdate, session: Session) -> None:
        text = update.text.strip()
        if text.lower() == "done":
            await self.finalize(update, session)
            return
        if text.lower() == "cancel":
            self._drop_drafts(session)
            await self.outbox.send(update.chat_ref, "❌ Editing cancelled.")
            return

        draft = session.draft_tournament
        if draft is None:
            session.reset_flow()
            await self._draft_missing(update)
            return

        try:
            edit_field, value = parse_field_edit(text)
            session.draft_tournament = apply_field_edit(draft, edit_field, value)
        except (FormatError, ValidationError) as e:
            await self.outbox.send(update.chat_ref, error_message(str(e)))
            return

        await self.outbox.send(update.chat_ref, "✅ " + describe_field_edit(session.draft_tournament, edit_field))

    async def finalize(self, update: IncomingUpdate, session: Session) -> None:
        draft = session.draft_tournament
        if draft is None:
            self._drop_drafts(session)
            await self._draft_missing(update)
            return

        problems = validate_draft(draft)
        if problems:
            details = "\n".join(f"• {p}" for p in problems)
            await self.outbox.send(
                update.chat_ref,
                error_message(f"The tournament cannot be saved yet:\n{details}", "Fix it with field:value, then send done."),
            )
            return

        try:
            venue, _ = await self.venues.resolve(update.user_id, draft.venue)
        except ExternalServiceError as e:
            logger.warning("edit_venue_failed user=%s error=%s", update.user_id, e)
            await self.outbox.send(
                update.chat_ref,
                error_message("Could not load your venue settings.", "Send done again in a moment."),
            )
            return

        draft = draft.with_changes(venue=venue)
        self._drop_drafts(session)
        try:
            tournament = await guarded_call(
                "create_tournament", self.store.create_tournament(update.user_id, draft), self.timeout
            )
        except ExternalServiceError as e:
            logger.warning("edit_create_failed user=%s error=%s", update.user_id, e)
            await self.outbox.send(
                update.chat_ref, error_message("Could not create the tournament.", CREATE_FAILED_HINT)
            )
            return

        logger.info("edit_finalized user=%s tournament_id=%s venue=%s", update.user_id, tournament.id, venue)
        await self.outbox.send(update.chat_ref, build_tournament_created(tournament), markdown=True)

    @staticmethod
    def _drop_drafts(session: Session) -> None:
        session.reset_flow()
        session.ocr_draft = None

    async def _editing(self, update: IncomingUpdate, session: Session) -> bool:
        if session.flow is not Flow.EDITING_TOURNAMENT_DRAFT:
            return False
        await self.outbox.send(
            update.chat_ref,
            error_message(
                "This tournament is being edited.",
                "Send done to save it or cancel to discard it.",
            ),
        )
        return True

    async def _draft_missing(self, update: IncomingUpdate) -> None:
        await self.outbox.send(
            update.chat_ref,
            error_message("Ticket data not found.", "Send the ticket photo again or use /register."),
        )
