"""Core parsing and formatting for the poker tournament bot.

This module is intentionally free of Telegram/OpenAI so it can be unit-tested.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from errors import FormatError, ValidationError
from models import NOT_SPECIFIED, ResultInput, Tournament, TournamentDraft


# Priority order matters: the first delimiter that occurs in the text wins.
DELIMITERS = (" | ", "|", " - ", " – ", " — ")

REGISTRATION_FORMAT = (
    "Name | Date (DD.MM.YYYY) | Buy-in | Venue\n"
    "Example: Sunday Special | 15.12.2024 | 500 | Aria Casino\n"
    "Separators accepted: |, -, – or —"
)

RESULT_FORMAT = (
    "Position | Payout\n"
    "Examples: 1 | 2500, 15 - 0, 3 850\n"
    "Separators accepted: |, -, –, — or a space"
)

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "RUB": "₽"}

_MARKDOWN_SPECIAL = re.compile(r"([_*`\[])")

_THOUSANDS = re.compile(r"-?\d{1,3}(?:,\d{3})+(?:\.\d+)?")

_DATE_FORMATS = (
    # (regex, group order)
    (re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$"), "dmy"),
    (re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$"), "dmy"),
    (re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$"), "ymd"),
)


# --- formatting -------------------------------------------------------------


def format_currency(amount: float, currency: str = "USD") -> str:
    symbol = CURRENCY_SYMBOLS.get(currency, "$")
    sign = "-" if amount < 0 else ""
    value = abs(amount)
    if float(value).is_integer():
        body = f"{int(value):,}"
    else:
        body = f"{value:,.2f}"
    return f"{sign}{symbol}{body}"


def format_signed_currency(amount: float, currency: str = "USD") -> str:
    if amount > 0:
        return "+" + format_currency(amount, currency)
    return format_currency(amount, currency)


def format_percentage(value: float, decimals: int = 1, add_plus: bool = True) -> str:
    sign = "+" if add_plus and value > 0 else ""
    return f"{sign}{value:.{decimals}f}%"


def format_date(d: Optional[date]) -> str:
    if d is None:
        return "not set"
    return d.strftime("%d.%m.%Y")


def escape_markdown(text: str) -> str:
    """Escape the characters Telegram's legacy Markdown treats as markup."""
    return _MARKDOWN_SPECIAL.sub(r"\\\1", text)


def truncate_text(text: str, max_length: int = 4096) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def error_message(error: str, suggestion: Optional[str] = None) -> str:
    msg = f"❌ {error}"
    if suggestion:
        msg += f"\n\n💡 {suggestion}"
    return msg


def success_message(message: str, details: Optional[str] = None) -> str:
    msg = f"✅ {message}"
    if details:
        msg += f"\n\n{details}"
    return msg


# --- parsing ----------------------------------------------------------------


def parse_delimited_fields(text: str, expected_count: int, *, allow_whitespace: bool = False) -> List[str]:
    """Split a free-text line into exactly ``expected_count`` trimmed fields.

    The delimiter is the first entry of DELIMITERS that occurs anywhere in the
    text, even if a later one would have produced the right number of fields.
    With ``allow_whitespace`` a plain whitespace split is the last resort.
    """

    text = (text or "").strip()
    parts: Optional[List[str]] = None
    for delim in DELIMITERS:
        if delim in text:
            parts = text.split(delim)
            break

    if parts is None:
        parts = text.split() if allow_whitespace else [text]

    fields = [p.strip() for p in parts]
    fields = [f for f in fields if f]
    if len(fields) != expected_count:
        accepted = RESULT_FORMAT if allow_whitespace else REGISTRATION_FORMAT
        raise FormatError(f"Expected {expected_count} fields, got {len(fields)}.\nFormat:\n{accepted}")
    return fields


def parse_date(value: str) -> date:
    """Parse DD.MM.YYYY, DD/MM/YYYY or YYYY-MM-DD.

    The calendar date is rebuilt and compared with the input components so
    days/months out of range are rejected rather than rolled over.
    """

    s = (value or "").strip()
    for pattern, order in _DATE_FORMATS:
        m = pattern.match(s)
        if not m:
            continue
        if order == "dmy":
            day, month, year = (int(g) for g in m.groups())
        else:
            year, month, day = (int(g) for g in m.groups())
        try:
            d = date(year, month, day)
        except ValueError:
            break
        if (d.year, d.month, d.day) != (year, month, day):
            break
        return d

    raise FormatError(f"Invalid date '{s}'. Use DD.MM.YYYY, DD/MM/YYYY or YYYY-MM-DD.")


def parse_amount(value: str, *, label: str = "Amount") -> float:
    """Non-negative finite number.

    Commas before groups of exactly three digits are thousands separators
    ("2,500", "1,234,567.50"); any other single comma is a decimal
    separator ("12,5").
    """

    s = (value or "").strip().replace(" ", "")
    s = s.lstrip("$€₽")
    if _THOUSANDS.fullmatch(s):
        s = s.replace(",", "")
    elif s.count(",") == 1 and "." not in s:
        s = s.replace(",", ".")
    try:
        amount = float(s)
    except ValueError:
        raise FormatError(f"{label} must be a number (for example 500).") from None
    if not math.isfinite(amount):
        raise FormatError(f"{label} must be a finite number.")
    if amount < 0:
        raise ValidationError(f"{label} must be 0 or greater.")
    return amount


def parse_buyin(value: str) -> float:
    buyin = parse_amount(value, label="Buy-in")
    if buyin <= 0:
        raise ValidationError("Buy-in must be a positive number (for example 500).")
    return buyin


def parse_position(value: str) -> int:
    s = (value or "").strip()
    if not re.fullmatch(r"\+?\d+", s):
        raise FormatError("Position must be a whole number (for example 3).")
    position = int(s)
    if position < 1:
        raise ValidationError("Position must be 1 or greater.")
    return position


def parse_name(value: str) -> str:
    name = (value or "").strip()
    if not name:
        raise ValidationError("Tournament name cannot be empty.")
    return name


def parse_venue(value: str) -> str:
    venue = (value or "").strip()
    if not venue:
        raise ValidationError("Venue cannot be empty.")
    return venue


def parse_registration(text: str) -> TournamentDraft:
    name_s, date_s, buyin_s, venue_s = parse_delimited_fields(text, 4)
    return TournamentDraft(
        name=parse_name(name_s),
        date=parse_date(date_s),
        buyin=parse_buyin(buyin_s),
        venue=parse_venue(venue_s),
    )


def parse_result(text: str) -> ResultInput:
    position_s, payout_s = parse_delimited_fields(text, 2, allow_whitespace=True)
    return ResultInput(position=parse_position(position_s), payout=parse_amount(payout_s, label="Payout"))


class EditField(str, Enum):
    NAME = "name"
    DATE = "date"
    BUYIN = "buyin"
    VENUE = "venue"


EDIT_FORMAT = (
    "Use field:value, for example:\n"
    "name:Sunday Special\n"
    "date:15.12.2024\n"
    "buyin:500\n"
    "venue:Aria Casino\n\n"
    "Send done to save or cancel to discard."
)

_EDIT_RE = re.compile(r"^\s*(\w+)\s*:(.+)$", re.DOTALL)


def parse_field_edit(text: str) -> Tuple[EditField, str]:
    m = _EDIT_RE.match(text or "")
    if not m:
        raise FormatError(f"Invalid edit command.\n\n{EDIT_FORMAT}")
    name, value = m.group(1).lower(), m.group(2).strip()
    try:
        edit_field = EditField(name)
    except ValueError:
        fields = ", ".join(f.value for f in EditField)
        raise FormatError(f"Unknown field: {name}. Available fields: {fields}") from None
    return edit_field, value


def apply_field_edit(draft: TournamentDraft, edit_field: EditField, value: str) -> TournamentDraft:
    """Return a copy of ``draft`` with one validated field replaced."""

    if edit_field is EditField.NAME:
        return draft.with_changes(name=parse_name(value))
    if edit_field is EditField.DATE:
        return draft.with_changes(date=parse_date(value))
    if edit_field is EditField.BUYIN:
        return draft.with_changes(buyin=parse_buyin(value))
    return draft.with_changes(venue=parse_venue(value))


def describe_field_edit(draft: TournamentDraft, edit_field: EditField) -> str:
    if edit_field is EditField.NAME:
        return f"Name changed to: {draft.name}"
    if edit_field is EditField.DATE:
        return f"Date changed to: {format_date(draft.date)}"
    if edit_field is EditField.BUYIN:
        return f"Buy-in changed to: {format_currency(draft.buyin or 0)}"
    return f"Venue changed to: {draft.venue}"


# --- validation -------------------------------------------------------------


def validate_draft(draft: TournamentDraft) -> List[str]:
    """Problems that block submitting ``draft`` to the store."""

    problems: List[str] = []
    if not (draft.name or "").strip():
        problems.append("Tournament name is missing")
    if draft.date is None:
        problems.append("Tournament date is missing")
    if draft.buyin is None or not math.isfinite(draft.buyin) or draft.buyin <= 0:
        problems.append("Buy-in must be a positive number")
    return problems


def normalize_venue(venue: Optional[str]) -> Optional[str]:
    v = (venue or "").strip()
    if not v or v.lower() == NOT_SPECIFIED:
        return None
    return v


# --- results and stats ------------------------------------------------------


def result_metrics(buyin: float, payout: float) -> Tuple[float, float]:
    """Return (profit, roi_percent) for a finished tournament."""

    profit = payout - buyin
    roi = (profit / buyin * 100) if buyin > 0 else 0.0
    return profit, roi


@dataclass(frozen=True)
class PlayerStats:
    total_tournaments: int
    total_buyin: float
    total_winnings: float
    profit: float
    roi: float
    itm_rate: float
    best_position: Optional[int]
    best_payout: Optional[float]


def compute_stats(tournaments: Iterable[Tournament]) -> PlayerStats:
    tournaments = list(tournaments)
    total_buyin = 0.0
    total_winnings = 0.0
    itm = 0
    best_position: Optional[int] = None
    best_payout = 0.0

    for t in tournaments:
        total_buyin += t.buyin or 0
        if t.result is None:
            continue
        total_winnings += t.result.payout
        itm += 1
        if best_position is None or t.result.position < best_position:
            best_position = t.result.position
        best_payout = max(best_payout, t.result.payout)

    profit = total_winnings - total_buyin
    roi = (profit / total_buyin * 100) if total_buyin > 0 else 0.0
    itm_rate = (itm / len(tournaments) * 100) if tournaments else 0.0
    return PlayerStats(
        total_tournaments=len(tournaments),
        total_buyin=total_buyin,
        total_winnings=total_winnings,
        profit=profit,
        roi=roi,
        itm_rate=itm_rate,
        best_position=best_position,
        best_payout=best_payout if best_payout > 0 else None,
    )


# --- message bodies ---------------------------------------------------------


def build_stats_message(stats: PlayerStats) -> str:
    lines = [
        "📊 *Your statistics*",
        "",
        f"🎰 Tournaments: {stats.total_tournaments}",
        f"💵 Total buy-in: {format_currency(stats.total_buyin)}",
        f"💰 Total winnings: {format_currency(stats.total_winnings)}",
        f"📈 Profit: {format_signed_currency(stats.profit)}",
        f"📊 ROI: {format_percentage(stats.roi)}",
        f"🏆 ITM rate: {format_percentage(stats.itm_rate, add_plus=False)}",
    ]
    if stats.best_position is not None:
        lines.append(f"🥇 Best position: {stats.best_position}")
    if stats.best_payout is not None:
        lines.append(f"💎 Best payout: {format_currency(stats.best_payout)}")
    return "\n".join(lines)


def build_tournament_list(tournaments: List[Tournament], limit: int = 10) -> str:
    lines = ["🎰 *Your tournaments:*", ""]
    for i, t in enumerate(tournaments[:limit], start=1):
        if t.result is not None:
            status = f"🏆 Position {t.result.position}, {format_currency(t.result.payout)}"
        else:
            status = "⏳ Awaiting result"
        lines.append(f"{i}. *{escape_markdown(t.name)}*")
        lines.append(f"   📅 {format_date(t.date)} | 💵 {format_currency(t.buyin)}")
        lines.append(f"   🏨 {escape_markdown(t.venue)}")
        lines.append(f"   {status}")
        lines.append("")
    if len(tournaments) > limit:
        lines.append(f"_...and {len(tournaments) - limit} more_")
    return "\n".join(lines).rstrip()


def build_tournament_created(t: Tournament) -> str:
    return (
        "✅ *Tournament registered!*\n\n"
        f"🎰 *{escape_markdown(t.name)}*\n"
        f"📅 {format_date(t.date)}\n"
        f"💵 Buy-in: {format_currency(t.buyin)}\n"
        f"🏨 {escape_markdown(t.venue)}\n\n"
        f"Tournament ID: `{t.id}`\n\n"
        "After the tournament use /result to add your result."
    )


def build_result_added(t: Tournament, position: int, payout: float, profit: float, roi: float) -> str:
    return (
        "✅ *Result added!*\n\n"
        f"🎰 *{escape_markdown(t.name)}*\n"
        f"🏆 Position: {position}\n"
        f"💰 Payout: {format_currency(payout)}\n"
        f"📈 ROI: {format_percentage(roi)}\n"
        f"💵 Profit: {format_signed_currency(profit)}"
    )
