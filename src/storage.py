"""sqlite3-backed tournament store and user settings store."""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional, Tuple

from bot_core import result_metrics
from errors import NotFoundError
from models import ResultInput, Tournament, TournamentDraft, TournamentResult

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS tournaments (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      created_at TEXT NOT NULL,
      user_id TEXT NOT NULL,
      name TEXT NOT NULL,
      date TEXT NOT NULL,
      venue TEXT NOT NULL,
      buyin REAL NOT NULL,
      tournament_type TEXT NOT NULL,
      structure TEXT,
      participants INTEGER,
      prize_pool REAL,
      blind_levels TEXT,
      starting_stack INTEGER,
      notes TEXT,
      position INTEGER,
      payout REAL,
      profit REAL,
      roi REAL,
      result_notes TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_settings (
      user_id TEXT PRIMARY KEY,
      current_venue TEXT,
      notify_reminders INTEGER NOT NULL DEFAULT 0,
      notify_weekly_stats INTEGER NOT NULL DEFAULT 0,
      notify_achievements INTEGER NOT NULL DEFAULT 0,
      updated_at TEXT
    )
    """,
]

# Lightweight migrations for older DBs
MIGRATIONS = [
    "ALTER TABLE tournaments ADD COLUMN result_notes TEXT",
    "ALTER TABLE user_settings ADD COLUMN notify_reminders INTEGER NOT NULL DEFAULT 0",
    "ALTER TABLE user_settings ADD COLUMN notify_weekly_stats INTEGER NOT NULL DEFAULT 0",
    "ALTER TABLE user_settings ADD COLUMN notify_achievements INTEGER NOT NULL DEFAULT 0",
]

NOTIFICATION_COLUMNS = {
    "reminders": "notify_reminders",
    "weekly_stats": "notify_weekly_stats",
    "achievements": "notify_achievements",
}

_TOURNAMENT_COLUMNS = (
    "id, user_id, name, date, venue, buyin, tournament_type, structure, participants, prize_pool, "
    "blind_levels, starting_stack, notes, position, payout, profit, roi, result_notes"
)


def _db(db_path: Path) -> sqlite3.Connection:
    con = sqlite3.connect(db_path)
    for stmt in SCHEMA:
        con.execute(stmt)
    for stmt in MIGRATIONS:
        try:
            con.execute(stmt)
            con.commit()
        except sqlite3.OperationalError:
            pass
    return con


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _row_to_tournament(row: Tuple) -> Tournament:
    (
        tid,
        user_id,
        name,
        date_s,
        venue,
        buyin,
        ttype,
        structure,
        participants,
        prize_pool,
        blind_levels,
        starting_stack,
        notes,
        position,
        payout,
        profit,
        roi,
        result_notes,
    ) = row

    result = None
    if position is not None:
        result = TournamentResult(
            position=int(position),
            payout=float(payout),
            profit=float(profit),
            roi=float(roi),
            notes=result_notes,
        )

    return Tournament(
        id=str(tid),
        user_id=user_id,
        name=name,
        date=date.fromisoformat(date_s),
        venue=venue,
        buyin=float(buyin),
        tournament_type=ttype,
        structure=structure,
        participants=participants,
        prize_pool=prize_pool,
        blind_levels=blind_levels,
        starting_stack=starting_stack,
        notes=notes,
        result=result,
    )


class SqliteTournamentStore:
    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    # Sync versions (used by tests and via asyncio.to_thread)

    def _list(self, user_id: str, without_result: bool = False) -> List[Tournament]:
        sql = f"SELECT {_TOURNAMENT_COLUMNS} FROM tournaments WHERE user_id = ?"
        if without_result:
            sql += " AND position IS NULL"
        sql += " ORDER BY date DESC, id DESC"
        con = _db(self.db_path)
        try:
            rows = con.execute(sql, (user_id,)).fetchall()
        finally:
            con.close()
        return [_row_to_tournament(r) for r in rows]

    def _get(self, con: sqlite3.Connection, tournament_id: str) -> Tournament:
        try:
            tid = int(tournament_id)
        except (TypeError, ValueError):
            raise NotFoundError(f"Tournament {tournament_id} not found") from None
        row = con.execute(f"SELECT {_TOURNAMENT_COLUMNS} FROM tournaments WHERE id = ?", (tid,)).fetchone()
        if row is None:
            raise NotFoundError(f"Tournament {tournament_id} not found")
        return _row_to_tournament(row)

    def get_sync(self, tournament_id: str) -> Tournament:
        con = _db(self.db_path)
        try:
            return self._get(con, tournament_id)
        finally:
            con.close()

    def create_sync(self, user_id: str, draft: TournamentDraft) -> Tournament:
        if not draft.name or draft.date is None or not draft.buyin:
            raise ValueError("name, date and buyin are required")

        con = _db(self.db_path)
        try:
            cur = con.execute(
                """
                INSERT INTO tournaments (
                  created_at, user_id, name, date, venue, buyin, tournament_type, structure,
                  participants, prize_pool, blind_levels, starting_stack, notes
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    _now(),
                    user_id,
                    draft.name,
                    draft.date.isoformat(),
                    draft.venue or "",
                    draft.buyin,
                    draft.tournament_type,
                    draft.structure,
                    draft.participants,
                    draft.prize_pool,
                    draft.blind_levels,
                    draft.starting_stack,
                    draft.notes,
                ),
            )
            con.commit()
            return self._get(con, str(cur.lastrowid))
        finally:
            con.close()

    def set_result_sync(self, tournament_id: str, result: ResultInput, notes: Optional[str] = None) -> Tournament:
        con = _db(self.db_path)
        try:
            t = self._get(con, tournament_id)
            profit, roi = result_metrics(t.buyin, result.payout)
            con.execute(
                "UPDATE tournaments SET position = ?, payout = ?, profit = ?, roi = ?, result_notes = ? WHERE id = ?",
                (result.position, result.payout, profit, roi, notes, int(t.id)),
            )
            con.commit()
            return self._get(con, t.id)
        finally:
            con.close()

    # TournamentStore

    async def list_tournaments(self, user_id: str) -> List[Tournament]:
        return await asyncio.to_thread(self._list, user_id)

    async def list_tournaments_without_result(self, user_id: str) -> List[Tournament]:
        return await asyncio.to_thread(self._list, user_id, True)

    async def create_tournament(self, user_id: str, draft: TournamentDraft) -> Tournament:
        return await asyncio.to_thread(self.create_sync, user_id, draft)

    async def set_tournament_result(
        self, tournament_id: str, result: ResultInput, notes: Optional[str] = None
    ) -> Tournament:
        return await asyncio.to_thread(self.set_result_sync, tournament_id, result, notes)

    async def get_tournament(self, tournament_id: str) -> Tournament:
        return await asyncio.to_thread(self.get_sync, tournament_id)


class SqliteSettingsStore:
    """Current venue and notification switches per user."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def get_venue_sync(self, user_id: str) -> Optional[str]:
        con = _db(self.db_path)
        try:
            row = con.execute("SELECT current_venue FROM user_settings WHERE user_id = ?", (user_id,)).fetchone()
        finally:
            con.close()
        return row[0] if row and row[0] else None

    def set_venue_sync(self, user_id: str, venue: str) -> bool:
        con = _db(self.db_path)
        try:
            con.execute(
                """
                INSERT INTO user_settings (user_id, current_venue, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET current_venue = excluded.current_venue,
                                                   updated_at = excluded.updated_at
                """,
                (user_id, venue, _now()),
            )
            con.commit()
            return True
        except sqlite3.Error:
            return False
        finally:
            con.close()

    def toggle_sync(self, user_id: str, kind: str) -> bool:
        column = NOTIFICATION_COLUMNS.get(kind)
        if column is None:
            raise ValueError(f"Unknown notification kind: {kind}")
        con = _db(self.db_path)
        try:
            con.execute(
                "INSERT OR IGNORE INTO user_settings (user_id, updated_at) VALUES (?, ?)",
                (user_id, _now()),
            )
            con.execute(
                f"UPDATE user_settings SET {column} = 1 - {column}, updated_at = ? WHERE user_id = ?",
                (_now(), user_id),
            )
            con.commit()
            row = con.execute(f"SELECT {column} FROM user_settings WHERE user_id = ?", (user_id,)).fetchone()
        finally:
            con.close()
        return bool(row[0])

    # VenueStore

    async def get_current_venue(self, user_id: str) -> Optional[str]:
        return await asyncio.to_thread(self.get_venue_sync, user_id)

    async def set_current_venue(self, user_id: str, venue: str) -> bool:
        return await asyncio.to_thread(self.set_venue_sync, user_id, venue)

    async def toggle_notification(self, user_id: str, kind: str) -> bool:
        return await asyncio.to_thread(self.toggle_sync, user_id, kind)
