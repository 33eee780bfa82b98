"""Conversation engine: one state machine per user, driven by incoming updates.

The engine owns no network or storage code. Everything goes through the
collaborators injected at construction, so tests run several engines side
by side with in-memory fakes.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import List, Optional, Tuple

from bot_core import (
    REGISTRATION_FORMAT,
    RESULT_FORMAT,
    build_result_added,
    build_stats_message,
    build_tournament_created,
    build_tournament_list,
    compute_stats,
    error_message,
    escape_markdown,
    format_currency,
    parse_registration,
    parse_result,
    result_metrics,
    success_message,
    truncate_text,
)
from collaborators import MessageDelivery, Outbox, TicketRecognizer, TournamentStore, VenueStore, guarded_call
from errors import ExternalServiceError, FormatError, NotFoundError, ValidationError
from models import Button, Flow, IncomingUpdate, Session, UpdateKind
from sessions import InMemorySessionStore, SessionStore, UserLocks
from ticket_flow import TicketFlow
from venue import VenueResolver

logger = logging.getLogger("pokerbot.engine")

DEFAULT_CALL_TIMEOUT = 8.0
# Vision models routinely need longer than a store round trip.
DEFAULT_OCR_TIMEOUT = 45.0
RESULT_NOTES = "Added via Telegram bot"
MAX_SELECTION = 10

NOTIFICATION_KINDS = {
    "reminders": "🔔 Tournament reminders",
    "weekly_stats": "📊 Weekly statistics",
    "achievements": "🎯 Achievements",
}

START_TEXT = (
    "🎰 *Welcome to the poker tournament tracker!*\n\n"
    "I help you keep track of your tournaments:\n"
    "🔹 register tournaments from a ticket photo\n"
    "🔹 add results quickly\n"
    "🔹 see your statistics\n\n"
    "*Quick start:*\n"
    "1️⃣ Set your venue: `/setvenue Aria Casino`\n"
    "2️⃣ Send a photo of your tournament ticket\n"
    "3️⃣ Fix anything I misread\n"
    "4️⃣ After the tournament add your result with /result\n\n"
    "See /help for all commands. Good luck at the tables! 🍀"
)

HELP_TEXT = (
    "🤖 *Commands*\n\n"
    "*Tournaments*\n"
    "/register - register a tournament by typing it in\n"
    "📷 send a ticket photo - register it automatically\n"
    "/result - add a tournament result\n"
    "/tournaments - list your tournaments\n\n"
    "*Statistics*\n"
    "/stats - overall statistics\n\n"
    "*Venues*\n"
    "/venue - show your current venue\n"
    "/setvenue <name> - set the venue for new tournaments\n\n"
    "*Other*\n"
    "/settings - notification settings\n"
    "/cancel - cancel the current action\n"
    "/start - main menu\n"
    "/help - this help"
)

GENERIC_FAILURE = error_message(
    "Something went wrong while handling your message.",
    "Please try again. If it keeps happening, contact the administrator.",
)


class Action(str, Enum):
    TOURNAMENT_SELECT = "tournament_select"
    RESULT_CONFIRM = "result_confirm"
    NOTIFICATION_TOGGLE = "notification_toggle"
    CONFIRM_TOURNAMENT = "confirm_tournament"
    CANCEL_TOURNAMENT = "cancel_tournament"
    EDIT_TOURNAMENT = "edit_tournament"
    UNKNOWN = "unknown"


def parse_action(data: str) -> Tuple[Action, List[str]]:
    """Split callback data on the first ':' into an action tag and parameters."""

    tag, _, rest = (data or "").partition(":")
    params = rest.split(":") if rest else []
    try:
        return Action(tag), params
    except ValueError:
        return Action.UNKNOWN, params


def parse_command(text: str) -> Tuple[str, str]:
    """'/SetVenue@pokerbot Aria Casino' -> ('setvenue', 'Aria Casino')."""

    head, _, rest = (text or "").strip().partition(" ")
    command = head.lstrip("/").split("@", 1)[0].lower()
    return command, rest.strip()


class ConversationEngine:
    def __init__(
        self,
        store: TournamentStore,
        ocr: TicketRecognizer,
        venues: VenueStore,
        delivery: MessageDelivery,
        *,
        sessions: Optional[SessionStore] = None,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
        ocr_timeout: float = DEFAULT_OCR_TIMEOUT,
    ) -> None:
        self.store = store
        self.ocr = ocr
        self.venues = venues
        self.sessions = sessions if sessions is not None else InMemorySessionStore()
        self.timeout = call_timeout
        self.ocr_timeout = ocr_timeout
        self.outbox = Outbox(delivery, call_timeout)
        self.resolver = VenueResolver(venues, call_timeout)
        self.tickets = TicketFlow(store, self.resolver, self.outbox, call_timeout)
        self._locks = UserLocks()

        self._commands = {
            "start": self.cmd_start,
            "help": self.cmd_help,
            "register": self.cmd_register,
            "result": self.cmd_result,
            "stats": self.cmd_stats,
            "tournaments": self.cmd_tournaments,
            "venue": self.cmd_venue,
            "setvenue": self.cmd_setvenue,
            "settings": self.cmd_settings,
            "cancel": self.cmd_cancel,
        }

    async def handle_incoming_update(self, update: IncomingUpdate) -> None:
        """Process one update. Never raises.

        Updates for one user run strictly one after another; the session is
        published only if the handler finished, so a crash mid-step leaves the
        previous state in place.
        """

        async with self._locks.hold(update.user_id):
            session = await self.sessions.get(update.user_id)
            try:
                await self._dispatch(update, session)
            except Exception:
                logger.exception(
                    "update_failed user=%s kind=%s flow=%s", update.user_id, update.kind.value, session.flow.value
                )
                await self.outbox.send(update.chat_ref, GENERIC_FAILURE)
                return

            if session == Session():
                await self.sessions.clear(update.user_id)
            else:
                await self.sessions.set(update.user_id, session)

    async def _dispatch(self, update: IncomingUpdate, session: Session) -> None:
        kind = update.kind
        if kind is UpdateKind.TEXT and update.text.lstrip().startswith("/"):
            kind = UpdateKind.COMMAND
        if kind is UpdateKind.COMMAND:
            await self._handle_command(update, session)
        elif kind is UpdateKind.TEXT:
            await self._handle_text(update, session)
        elif kind is UpdateKind.BUTTON:
            await self._handle_button(update, session)
        elif kind in (UpdateKind.PHOTO, UpdateKind.DOCUMENT):
            await self.handle_ticket_image(update, session)
        else:  # pragma: no cover
            logger.warning("unknown_update_kind user=%s kind=%s", update.user_id, kind)

    # --- dispatch ---------------------------------------------------------

    async def _handle_command(self, update: IncomingUpdate, session: Session) -> None:
        command, args = parse_command(update.text)
        logger.info("command user=%s command=%s flow=%s", update.user_id, command, session.flow.value)
        handler = self._commands.get(command)
        if handler is None:
            await self.outbox.send(update.chat_ref, "❓ Unknown command. Use /help to see what I can do.")
            return
        await handler(update, session, args)

    async def _handle_text(self, update: IncomingUpdate, session: Session) -> None:
        flow = session.flow
        if flow is Flow.REGISTERING_TOURNAMENT:
            await self.handle_registration_text(update, session)
        elif flow is Flow.ADDING_RESULT:
            await self.handle_result_text(update, session)
        elif flow is Flow.EDITING_TOURNAMENT_DRAFT:
            await self.tickets.handle_edit_text(update, session)
        else:
            await self.outbox.send(
                update.chat_ref, "🤖 I don't understand that. Use /help to see the list of commands."
            )

    async def _handle_button(self, update: IncomingUpdate, session: Session) -> None:
        action, params = parse_action(update.text)
        logger.info("button user=%s action=%s params=%s", update.user_id, action.value, params)
        if action is Action.TOURNAMENT_SELECT and params and params[0]:
            await self.select_tournament(update, session, params[0])
        elif action is Action.RESULT_CONFIRM:
            await self.outbox.ack(update.callback_ref, "✅ Result confirmed!")
        elif action is Action.NOTIFICATION_TOGGLE and params:
            await self.toggle_notification(update, params[0])
        elif action is Action.CONFIRM_TOURNAMENT:
            await self.tickets.confirm(update, session)
        elif action is Action.CANCEL_TOURNAMENT:
            await self.tickets.cancel(update, session)
        elif action is Action.EDIT_TOURNAMENT:
            await self.tickets.edit(update, session)
        else:
            await self.outbox.ack(update.callback_ref, "Unknown action")

    # --- commands ---------------------------------------------------------

    async def cmd_start(self, update: IncomingUpdate, session: Session, args: str) -> None:
        await self.outbox.send(update.chat_ref, START_TEXT, markdown=True)

    async def cmd_help(self, update: IncomingUpdate, session: Session, args: str) -> None:
        await self.outbox.send(update.chat_ref, HELP_TEXT, markdown=True)

    async def cmd_register(self, update: IncomingUpdate, session: Session, args: str) -> None:
        session.enter(Flow.REGISTERING_TOURNAMENT)
        await self.outbox.send(
            update.chat_ref,
            "🎰 *New tournament*\n\n"
            "Send me a photo of the ticket and I'll read it, or type the details as:\n"
            f"`{REGISTRATION_FORMAT.splitlines()[0]}`\n\n"
            "*Example:*\n"
            "`Sunday Special | 15.12.2024 | 500 | Aria Casino`\n\n"
            "Send /cancel to stop.",
            markdown=True,
        )

    async def cmd_result(self, update: IncomingUpdate, session: Session, args: str) -> None:
        try:
            pending = await guarded_call(
                "list_tournaments_without_result",
                self.store.list_tournaments_without_result(update.user_id),
                self.timeout,
            )
        except ExternalServiceError as e:
            logger.warning("result_list_failed user=%s error=%s", update.user_id, e)
            await self.outbox.send(
                update.chat_ref, error_message("Could not load your tournaments.", "Try /result again in a minute.")
            )
            return

        if not pending:
            await self.outbox.send(
                update.chat_ref, "📝 You have no tournaments waiting for a result. Register one with /register."
            )
            return

        buttons = [
            [Button(f"🎰 {t.name} ({format_currency(t.buyin)})", f"{Action.TOURNAMENT_SELECT.value}:{t.id}")]
            for t in pending[:MAX_SELECTION]
        ]
        await self.outbox.send(update.chat_ref, "🏆 *Choose a tournament to add the result to:*", buttons=buttons, markdown=True)

    async def cmd_stats(self, update: IncomingUpdate, session: Session, args: str) -> None:
        try:
            tournaments = await guarded_call(
                "list_tournaments", self.store.list_tournaments(update.user_id), self.timeout
            )
        except ExternalServiceError as e:
            logger.warning("stats_failed user=%s error=%s", update.user_id, e)
            await self.outbox.send(
                update.chat_ref, error_message("Could not load your statistics.", "Try /stats again in a minute.")
            )
            return

        if not tournaments:
            await self.outbox.send(update.chat_ref, "📊 No tournaments yet. Register one with /register.")
            return
        await self.outbox.send(update.chat_ref, build_stats_message(compute_stats(tournaments)), markdown=True)

    async def cmd_tournaments(self, update: IncomingUpdate, session: Session, args: str) -> None:
        try:
            tournaments = await guarded_call(
                "list_tournaments", self.store.list_tournaments(update.user_id), self.timeout
            )
        except ExternalServiceError as e:
            logger.warning("tournaments_failed user=%s error=%s", update.user_id, e)
            await self.outbox.send(
                update.chat_ref,
                error_message("Could not load your tournaments.", "Try /tournaments again in a minute."),
            )
            return

        if not tournaments:
            await self.outbox.send(update.chat_ref, "📝 You have no registered tournaments yet. Use /register.")
            return
        await self.outbox.send(update.chat_ref, truncate_text(build_tournament_list(tournaments)), markdown=True)

    async def cmd_venue(self, update: IncomingUpdate, session: Session, args: str) -> None:
        try:
            venue = await guarded_call("get_current_venue", self.venues.get_current_venue(update.user_id), self.timeout)
        except ExternalServiceError as e:
            logger.warning("venue_get_failed user=%s error=%s", update.user_id, e)
            await self.outbox.send(
                update.chat_ref, error_message("Could not load your venue.", "Try /venue again in a minute.")
            )
            return

        if not venue:
            await self.outbox.send(
                update.chat_ref,
                "🏨 *No current venue set*\n\n"
                "Set one with `/setvenue Venue name`, for example `/setvenue Aria Casino`.",
                markdown=True,
            )
            return
        await self.outbox.send(
            update.chat_ref,
            f"🏨 *Current venue:* {escape_markdown(venue)}\n\n"
            "New tournaments will be created at this venue.\n"
            "Change it with `/setvenue New venue`.",
            markdown=True,
        )

    async def cmd_setvenue(self, update: IncomingUpdate, session: Session, args: str) -> None:
        venue = args.strip()
        if not venue:
            await self.outbox.send(
                update.chat_ref,
                error_message("Usage: /setvenue <venue name>", "Example: /setvenue Aria Casino"),
            )
            return
        if len(venue) < 2:
            await self.outbox.send(update.chat_ref, error_message("Venue name is too short (at least 2 characters)."))
            return
        if len(venue) > 100:
            await self.outbox.send(update.chat_ref, error_message("Venue name is too long (at most 100 characters)."))
            return

        try:
            ok = await guarded_call(
                "set_current_venue", self.venues.set_current_venue(update.user_id, venue), self.timeout
            )
        except ExternalServiceError as e:
            logger.warning("venue_set_failed user=%s error=%s", update.user_id, e)
            ok = False

        if not ok:
            await self.outbox.send(
                update.chat_ref, error_message("Could not save the venue.", "Try /setvenue again in a minute.")
            )
            return

        logger.info("venue_set user=%s venue=%s", update.user_id, venue)
        await self.outbox.send(
            update.chat_ref,
            success_message(
                f"Venue set: {venue}",
                "New tournaments will be created at this venue. Check it any time with /venue.",
            ),
        )

    async def cmd_settings(self, update: IncomingUpdate, session: Session, args: str) -> None:
        buttons = [
            [Button(label, f"{Action.NOTIFICATION_TOGGLE.value}:{kind}")] for kind, label in NOTIFICATION_KINDS.items()
        ]
        await self.outbox.send(
            update.chat_ref,
            "⚙️ *Notification settings*\n\nChoose which notifications to switch on or off:",
            buttons=buttons,
            markdown=True,
        )

    async def cmd_cancel(self, update: IncomingUpdate, session: Session, args: str) -> None:
        flow = session.flow
        if flow is Flow.NONE:
            await self.outbox.send(update.chat_ref, "Nothing to cancel. Use /help to see what I can do.")
            return

        session.reset_flow()
        if flow is Flow.EDITING_TOURNAMENT_DRAFT:
            session.ocr_draft = None
        logger.info("flow_cancelled user=%s flow=%s", update.user_id, flow.value)
        messages = {
            Flow.REGISTERING_TOURNAMENT: "❌ Tournament registration cancelled.",
            Flow.ADDING_RESULT: "❌ Adding the result cancelled.",
            Flow.EDITING_TOURNAMENT_DRAFT: "❌ Editing cancelled.",
        }
        await self.outbox.send(update.chat_ref, messages[flow])

    # --- flows ------------------------------------------------------------

    async def handle_registration_text(self, update: IncomingUpdate, session: Session) -> None:
        try:
            draft = parse_registration(update.text)
        except (FormatError, ValidationError) as e:
            await self.outbox.send(update.chat_ref, error_message(str(e), "Try again or send /cancel."))
            return

        session.reset_flow()
        try:
            tournament = await guarded_call(
                "create_tournament", self.store.create_tournament(update.user_id, draft), self.timeout
            )
        except ExternalServiceError as e:
            logger.warning("register_failed user=%s error=%s", update.user_id, e)
            await self.outbox.send(
                update.chat_ref,
                error_message(
                    "Could not register the tournament.",
                    "Start again with /register in a minute, or contact the administrator if it keeps failing.",
                ),
            )
            return

        logger.info("register_ok user=%s tournament_id=%s", update.user_id, tournament.id)
        await self.outbox.send(update.chat_ref, build_tournament_created(tournament), markdown=True)

    async def select_tournament(self, update: IncomingUpdate, session: Session, tournament_id: str) -> None:
        await self.outbox.ack(update.callback_ref)
        session.enter(Flow.ADDING_RESULT)
        session.result_tournament_id = tournament_id
        await self.outbox.send(
            update.chat_ref,
            "🏆 *Adding a result*\n\n"
            "Send the result as:\n"
            "`Position | Payout`\n\n"
            "*Examples:*\n"
            "`1 | 2500` - 1st place, $2500\n"
            "`15 | 0` - 15th place, no prize\n"
            "`3 850` - 3rd place, $850\n\n"
            "Send /cancel to stop.",
            markdown=True,
        )

    async def handle_result_text(self, update: IncomingUpdate, session: Session) -> None:
        tournament_id = session.result_tournament_id
        if not tournament_id:
            session.reset_flow()
            await self.outbox.send(
                update.chat_ref, error_message("No tournament selected.", "Use /result to choose one.")
            )
            return

        try:
            result = parse_result(update.text)
        except (FormatError, ValidationError) as e:
            await self.outbox.send(
                update.chat_ref, error_message(f"{e}\n\nFormat:\n{RESULT_FORMAT}", "Try again or send /cancel.")
            )
            return

        try:
            tournament = await guarded_call("get_tournament", self.store.get_tournament(tournament_id), self.timeout)
            if tournament.user_id != update.user_id:
                logger.warning("result_foreign_tournament user=%s tournament_id=%s", update.user_id, tournament_id)
                raise NotFoundError(f"Tournament {tournament_id} not found")
        except NotFoundError:
            session.reset_flow()
            await self.outbox.send(
                update.chat_ref, error_message("That tournament no longer exists.", "Use /result to choose another one.")
            )
            return
        except ExternalServiceError as e:
            logger.warning("result_lookup_failed user=%s tournament_id=%s error=%s", update.user_id, tournament_id, e)
            await self.outbox.send(
                update.chat_ref, error_message("Could not load the tournament.", "Send the result again in a minute.")
            )
            return

        session.reset_flow()
        try:
            updated = await guarded_call(
                "set_tournament_result",
                self.store.set_tournament_result(tournament_id, result, RESULT_NOTES),
                self.timeout,
            )
        except NotFoundError:
            await self.outbox.send(
                update.chat_ref, error_message("That tournament no longer exists.", "Use /result to choose another one.")
            )
            return
        except ExternalServiceError as e:
            logger.warning("result_save_failed user=%s tournament_id=%s error=%s", update.user_id, tournament_id, e)
            await self.outbox.send(
                update.chat_ref,
                error_message(
                    "Could not save the result.",
                    "Check /tournaments, and add it again with /result if it is missing.",
                ),
            )
            return

        buyin = updated.buyin if updated is not None else tournament.buyin
        profit, roi = result_metrics(buyin, result.payout)
        logger.info(
            "result_ok user=%s tournament_id=%s position=%s payout=%s profit=%s",
            update.user_id,
            tournament_id,
            result.position,
            result.payout,
            profit,
        )
        await self.outbox.send(
            update.chat_ref,
            build_result_added(updated or tournament, result.position, result.payout, profit, roi),
            markdown=True,
        )

    async def toggle_notification(self, update: IncomingUpdate, kind: str) -> None:
        label = NOTIFICATION_KINDS.get(kind)
        if label is None:
            await self.outbox.ack(update.callback_ref, "Unknown setting")
            return
        try:
            enabled = await guarded_call(
                "toggle_notification", self.venues.toggle_notification(update.user_id, kind), self.timeout
            )
        except ExternalServiceError as e:
            logger.warning("toggle_failed user=%s kind=%s error=%s", update.user_id, kind, e)
            await self.outbox.ack(update.callback_ref, "Could not update the setting, try again")
            return
        state = "on" if enabled else "off"
        await self.outbox.ack(update.callback_ref, f"{label}: {state}")
        await self.outbox.send(update.chat_ref, f"✅ {label} switched {state}.")

    async def handle_ticket_image(self, update: IncomingUpdate, session: Session) -> None:
        if update.kind is UpdateKind.DOCUMENT and not (update.mime_type or "").startswith("image/"):
            await self.outbox.send(
                update.chat_ref, error_message("That file is not an image.", "Please send a photo of the ticket.")
            )
            return
        if not update.file_ref:
            await self.outbox.send(update.chat_ref, error_message("Could not get the photo.", "Please send it again."))
            return

        await self.outbox.send(update.chat_ref, "📸 Reading the ticket...")
        try:
            image_ref = await self.outbox.resolve_media(update.file_ref)
            ocr = await guarded_call("extract_ticket_data", self.ocr.extract_ticket_data(image_ref), self.ocr_timeout)
            if ocr.success:
                await self.tickets.present(update, session, ocr)
                return
        except ExternalServiceError as e:
            logger.warning("ticket_failed user=%s error=%s", update.user_id, e)
            await self.outbox.send(
                update.chat_ref,
                error_message(
                    "Something went wrong while processing the photo.",
                    "Send the photo again, or use /register to enter the tournament manually. "
                    "Contact the administrator if it keeps happening.",
                ),
            )
            return

        logger.info("ticket_unreadable user=%s error=%s", update.user_id, ocr.error)
        await self.outbox.send(
            update.chat_ref,
            "❌ I couldn't read the ticket.\n\n"
            "Try:\n"
            "• a sharper photo\n"
            "• making sure the whole ticket is visible\n"
            "• better lighting\n\n"
            "Or use /register to enter it manually.",
        )
