#!/usr/bin/env python3
"""Telegram bot: track poker tournaments, results and ticket photos.

Thin transport around ConversationEngine:
- Telegram updates are normalized into IncomingUpdate and handed to the engine.
- TelegramDelivery is the engine's message channel (send/edit/ack/download).
- Tournaments and settings live in a local sqlite DB; ticket photos are read
  by an OpenAI vision model.

Env:
  TELEGRAM_BOT_TOKEN=...     (from @BotFather)
  OPENAI_API_KEY=...         (for ticket recognition)
  POKERBOT_MODEL=...         (optional, default gpt-4o-mini)
  POKERBOT_DB_PATH=...       (optional, default ./pokerbot.db)
  POKERBOT_CALL_TIMEOUT=...  (optional, seconds, default 8)

Run:
  python3 -m venv .venv && source .venv/bin/activate
  pip install -e .
  export TELEGRAM_BOT_TOKEN=... OPENAI_API_KEY=...
  python3 src/telegram_bot.py
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ChatAction, ParseMode
from telegram.ext import Application, CallbackQueryHandler, ContextTypes, MessageHandler, filters

from engine import DEFAULT_CALL_TIMEOUT, ConversationEngine
from extract_ticket import DEFAULT_MODEL, TicketExtractor
from models import IncomingUpdate, Keyboard, UpdateKind
from storage import SqliteSettingsStore, SqliteTournamentStore


HERE = Path(__file__).resolve().parent
PROJECT_ROOT = HERE.parent

UPLOADS_DIR = PROJECT_ROOT / "uploads"
UPLOADS_DIR.mkdir(parents=True, exist_ok=True)

LOG_PATH = PROJECT_ROOT / "bot.log"

logger = logging.getLogger("pokerbot")
logger.setLevel(logging.INFO)
if not logger.handlers:
    handler = RotatingFileHandler(LOG_PATH, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    handler.setFormatter(fmt)
    logger.addHandler(handler)
    # Also log to stderr for the console
    console = logging.StreamHandler()
    console.setFormatter(fmt)
    logger.addHandler(console)


def _db_path() -> Path:
    return Path(os.getenv("POKERBOT_DB_PATH") or (PROJECT_ROOT / "pokerbot.db"))


def _call_timeout() -> float:
    try:
        return float((os.getenv("POKERBOT_CALL_TIMEOUT") or str(DEFAULT_CALL_TIMEOUT)).strip())
    except ValueError:
        return DEFAULT_CALL_TIMEOUT


def _model() -> str:
    return (os.getenv("POKERBOT_MODEL") or DEFAULT_MODEL).strip()


def _markup(buttons: Optional[Keyboard]) -> Optional[InlineKeyboardMarkup]:
    if buttons is None:
        return None
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(b.text, callback_data=b.data) for b in row] for row in buttons]
    )


def _user_label(update: Update) -> str:
    u = update.effective_user
    if not u:
        return "(unknown)"
    if u.username:
        return f"@{u.username}"
    name = " ".join([x for x in [u.first_name, u.last_name] if x])
    return name or str(u.id)


def normalize_update(update: Update) -> Optional[IncomingUpdate]:
    """Map a Telegram update onto the engine's IncomingUpdate, or None to ignore it."""

    q = update.callback_query
    if q is not None:
        msg = q.message
        return IncomingUpdate(
            user_id=str(q.from_user.id),
            chat_ref=msg.chat.id if msg else q.from_user.id,
            kind=UpdateKind.BUTTON,
            text=q.data or "",
            callback_ref=q.id,
            message_ref=msg.message_id if msg else None,
        )

    msg = update.message
    u = update.effective_user
    if msg is None or u is None:
        return None

    base = {"user_id": str(u.id), "chat_ref": msg.chat_id}
    if msg.photo:
        # Best resolution is last
        return IncomingUpdate(kind=UpdateKind.PHOTO, file_ref=msg.photo[-1].file_id, **base)
    if msg.document:
        return IncomingUpdate(
            kind=UpdateKind.DOCUMENT,
            file_ref=msg.document.file_id,
            mime_type=msg.document.mime_type,
            **base,
        )
    if msg.text:
        kind = UpdateKind.COMMAND if msg.text.startswith("/") else UpdateKind.TEXT
        return IncomingUpdate(kind=kind, text=msg.text, **base)
    return None


class TelegramDelivery:
    """MessageDelivery over the Bot API."""

    def __init__(self, bot: Any, uploads_dir: Path = UPLOADS_DIR) -> None:
        self.bot = bot
        self.uploads_dir = uploads_dir

    async def send_message(
        self, chat_ref: Any, text: str, *, buttons: Optional[Keyboard] = None, markdown: bool = False
    ) -> Any:
        msg = await self.bot.send_message(
            chat_id=chat_ref,
            text=text,
            parse_mode=ParseMode.MARKDOWN if markdown else None,
            reply_markup=_markup(buttons),
        )
        return msg.message_id

    async def edit_message(
        self,
        chat_ref: Any,
        message_ref: Any,
        text: str,
        *,
        buttons: Optional[Keyboard] = None,
        markdown: bool = False,
    ) -> None:
        await self.bot.edit_message_text(
            chat_id=chat_ref,
            message_id=message_ref,
            text=text,
            parse_mode=ParseMode.MARKDOWN if markdown else None,
            reply_markup=_markup(buttons),
        )

    async def acknowledge_button(self, callback_ref: Any, text: Optional[str] = None) -> None:
        await self.bot.answer_callback_query(callback_query_id=callback_ref, text=text)

    async def resolve_media_link(self, file_ref: str) -> str:
        """Download the file next to the other uploads and return its local path."""

        file = await self.bot.get_file(file_ref)
        ts = datetime.now().strftime("%Y%m%d-%H%M%S")
        suffix = Path(file.file_path or "").suffix or ".jpg"
        path = self.uploads_dir / f"ticket-{ts}-{file.file_unique_id}{suffix}"
        await file.download_to_drive(custom_path=str(path))
        logger.info("media_downloaded file=%s", path.name)
        return str(path)


async def handle_update(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    incoming = normalize_update(update)
    if incoming is None:
        return

    if incoming.kind in (UpdateKind.PHOTO, UpdateKind.DOCUMENT) and update.message:
        await update.message.chat.send_action(ChatAction.TYPING)

    logger.info(
        "update_received user=%s label=%s kind=%s",
        incoming.user_id,
        _user_label(update),
        incoming.kind.value,
    )
    engine: ConversationEngine = context.application.bot_data["engine"]
    await engine.handle_incoming_update(incoming)


async def handle_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("telegram_error update=%s", update, exc_info=context.error)


def build_application(token: str) -> Application:
    # Updates from different users run concurrently; the engine serializes per user.
    app = Application.builder().token(token).concurrent_updates(True).build()

    db_path = _db_path()
    engine = ConversationEngine(
        store=SqliteTournamentStore(db_path),
        ocr=TicketExtractor(model=_model()),
        venues=SqliteSettingsStore(db_path),
        delivery=TelegramDelivery(app.bot),
        call_timeout=_call_timeout(),
    )
    app.bot_data["engine"] = engine

    app.add_handler(CallbackQueryHandler(handle_update))
    app.add_handler(MessageHandler(filters.TEXT | filters.PHOTO | filters.Document.ALL, handle_update))
    app.add_error_handler(handle_error)
    return app


def main() -> None:
    token = os.getenv("TELEGRAM_BOT_TOKEN")
    if not token:
        raise SystemExit("Missing TELEGRAM_BOT_TOKEN env var")

    logger.info(
        "service_started pid=%s cwd=%s db=%s uploads=%s model=%s",
        os.getpid(),
        os.getcwd(),
        _db_path(),
        UPLOADS_DIR,
        _model(),
    )

    app = build_application(token)
    app.run_polling(close_loop=False, allowed_updates=["message", "callback_query"])


if __name__ == "__main__":
    main()
