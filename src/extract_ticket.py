#!/usr/bin/env python3
"""Read poker tournament details from a ticket photo.

Vision-model extraction (OpenAI) of the fields a ticket usually carries:
name, date, buy-in, venue, tournament type, structure and a few optional
numbers. The bot uses TicketExtractor as its OCR collaborator; the CLI is
handy for checking a photo by hand.

Auth:
  export OPENAI_API_KEY=...

Usage:
  python3 src/extract_ticket.py --image ticket.jpg
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import io
import json
import logging
import os
import re
import sys
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

from PIL import Image, ImageOps

from bot_core import parse_date
from errors import FormatError
from models import DEFAULT_STRUCTURE, DEFAULT_TOURNAMENT_TYPE, TOURNAMENT_TYPES, OcrResult, TournamentDraft
from vision_client import OpenAIVisionClient, VisionClient, VisionRefusal

logger = logging.getLogger("pokerbot.ocr")

DEFAULT_MODEL = "gpt-4o-mini"
MAX_SIDE = 1600

TICKET_PROMPT = """You are reading a poker tournament entry ticket (a receipt printed by a casino or card room).

Output STRICT JSON with keys:
- name: tournament name as printed, or null
- date: tournament date as YYYY-MM-DD, or null
- buyin: total buy-in amount as a number (no currency sign), or null
- venue: casino / card room name, or null
- tournament_type: one of freezeout, rebuy, addon, bounty, satellite, or null
- structure: game and structure, e.g. "NL Hold'em", or null
- participants: number of entries if printed, or null
- prize_pool: guaranteed or actual prize pool as a number, or null
- starting_stack: starting chips as an integer, or null
- confidence: number 0..1, how sure you are about name, date and buy-in

Rules:
- Output MUST be a single JSON object with exactly those keys.
- Never guess a value that is not printed; use null.
"""

_NULLABLE_STRING = {"type": ["string", "null"]}
_NULLABLE_NUMBER = {"type": ["number", "null"]}

TICKET_SCHEMA: Dict[str, Any] = {
    "name": "poker_ticket",
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "name": _NULLABLE_STRING,
            "date": _NULLABLE_STRING,
            "buyin": _NULLABLE_NUMBER,
            "venue": _NULLABLE_STRING,
            "tournament_type": _NULLABLE_STRING,
            "structure": _NULLABLE_STRING,
            "participants": {"type": ["integer", "null"]},
            "prize_pool": _NULLABLE_NUMBER,
            "starting_stack": {"type": ["integer", "null"]},
            "confidence": {"type": "number"},
        },
        "required": [
            "name",
            "date",
            "buyin",
            "venue",
            "tournament_type",
            "structure",
            "participants",
            "prize_pool",
            "starting_stack",
            "confidence",
        ],
    },
}

_EVENT_PREFIX = re.compile(r"^(?:EVENT\b\s*[#:№]?\s*\d*\s*[-–—]?\s*|[#№]\s*\d+\s*[-–—]?\s*)", re.IGNORECASE)
# "Day 1A", "- Flight B", "D2"
_DAY_SUFFIX = re.compile(r"\s*[-–—]?\s*\b(?:Day|Flight)\s*\d*[A-Za-z]?\s*$|\s+D\d+[A-Za-z]?\s*$", re.IGNORECASE)
_TRAILING_NUMBER = re.compile(r"\s+\d+[A-Za-z]?\s*$")


def _b64_data_url_bytes(img_bytes: bytes, mime: str) -> str:
    data = base64.b64encode(img_bytes).decode("ascii")
    return f"data:{mime};base64,{data}"


def _load_ticket_image(image_path: Path) -> bytes:
    """Upright, RGB, at most MAX_SIDE px on the long side, as JPEG bytes."""

    img = ImageOps.exif_transpose(Image.open(image_path))
    img = img.convert("RGB")
    img.thumbnail((MAX_SIDE, MAX_SIDE))
    bio = io.BytesIO()
    img.save(bio, format="JPEG", quality=90)
    return bio.getvalue()


def clean_tournament_name(raw: Optional[str]) -> str:
    """Drop event numbers ("EVENT #8 -") and day/flight suffixes ("Day 1A")."""

    if not raw:
        return ""
    cleaned = _EVENT_PREFIX.sub("", raw.strip())
    cleaned = _DAY_SUFFIX.sub("", cleaned)
    cleaned = _TRAILING_NUMBER.sub("", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()


def _ticket_date(value: Any) -> Optional[date]:
    if not value:
        return None
    s = str(value).strip()
    candidates = [s, s.replace("-", ".")]
    # YYYY.MM.DD / YYYY/MM/DD -> YYYY-MM-DD
    m = re.fullmatch(r"(\d{4})[./](\d{1,2})[./](\d{1,2})", s)
    if m:
        candidates.append("-".join(m.groups()))
    for c in candidates:
        try:
            return parse_date(c)
        except FormatError:
            continue
    return None


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    return n if n >= 0 else None


def normalize_ticket(obj: Dict[str, Any]) -> TournamentDraft:
    if not isinstance(obj, dict):
        raise RuntimeError(f"Expected ticket object, got: {type(obj)}")

    ttype = str(obj.get("tournament_type") or "").strip().lower()
    if ttype not in TOURNAMENT_TYPES:
        ttype = DEFAULT_TOURNAMENT_TYPE

    buyin = _number(obj.get("buyin"))
    participants = _number(obj.get("participants"))
    starting_stack = _number(obj.get("starting_stack"))
    return TournamentDraft(
        name=clean_tournament_name(obj.get("name")) or None,
        date=_ticket_date(obj.get("date")),
        venue=(str(obj.get("venue") or "").strip() or None),
        buyin=buyin if buyin else None,
        tournament_type=ttype,
        structure=(str(obj.get("structure") or "").strip() or DEFAULT_STRUCTURE),
        participants=int(participants) if participants else None,
        prize_pool=_number(obj.get("prize_pool")),
        starting_stack=int(starting_stack) if starting_stack else None,
    )


class TicketExtractor:
    """OCR collaborator backed by a vision model."""

    def __init__(self, client: Optional[VisionClient] = None, model: str = DEFAULT_MODEL) -> None:
        self.client = client or OpenAIVisionClient()
        self.model = model

    def extract(self, image_path: Path) -> OcrResult:
        try:
            data_url = _b64_data_url_bytes(_load_ticket_image(image_path), "image/jpeg")
            obj = self.client.vision_json(
                prompt=TICKET_PROMPT, data_url=data_url, model=self.model, schema=TICKET_SCHEMA
            )
            draft = normalize_ticket(obj)
        except VisionRefusal:
            logger.info("ticket_refused file=%s", image_path.name)
            return OcrResult(success=False, error="The vision model refused to read this image")
        except Exception as e:
            logger.exception("ticket_extract_failed file=%s", image_path.name)
            return OcrResult(success=False, error=str(e))

        if not (draft.name or draft.date or draft.buyin):
            return OcrResult(success=False, error="No tournament details found on the image")

        confidence = _number(obj.get("confidence"))
        return OcrResult(success=True, data=draft, confidence=min(confidence, 1.0) if confidence is not None else None)

    async def extract_ticket_data(self, image_ref: str) -> OcrResult:
        return await asyncio.to_thread(self.extract, Path(image_ref))


def main(argv: List[str] | None = None) -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--image", required=True, help="Path to ticket image (jpeg/png)")
    ap.add_argument(
        "--model",
        default=os.getenv("POKERBOT_MODEL", DEFAULT_MODEL),
        help=f"OpenAI model to use (default: {DEFAULT_MODEL})",
    )
    args = ap.parse_args(argv)

    image_path = Path(args.image).expanduser().resolve()
    if not image_path.exists():
        print(f"Image not found: {image_path}", file=sys.stderr)
        return 2

    result = TicketExtractor(model=args.model).extract(image_path)
    if not result.success:
        print(f"ERROR: Extraction failed: {result.error}", file=sys.stderr)
        return 1

    d = result.data
    out = {
        "name": d.name,
        "date": d.date.isoformat() if d.date else None,
        "buyin": d.buyin,
        "venue": d.venue,
        "tournament_type": d.tournament_type,
        "structure": d.structure,
        "participants": d.participants,
        "prize_pool": d.prize_pool,
        "starting_stack": d.starting_stack,
        "confidence": result.confidence,
    }
    print(json.dumps(out, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
