"""
Rivalry Engine — Relationship & Encounter Store (SQLite)

Rivals are one row per user/rival pair. Encounters are an append-only log;
UNIQUE(rival_id, period_key) plus a BEGIN IMMEDIATE transaction around the
read-modify-write guarantees a rival's state moves at most once per week,
even if a retried request and the weekly cron both fire.
"""
import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, asdict, field

import pandas as pd

from rivalry.config import (
    ENCOUNTER_LIST_LIMIT,
    MAX_AI_RIVALS,
    RIVAL_TYPE_AI,
    RIVAL_TYPE_FRIEND,
    assign_character,
    validate_personality,
)
from rivalry.errors import DuplicateEncounterError, RivalLimitError, RivalNotFoundError
from rivalry.improvement import ImprovementScore, ImprovementSnapshot, calculate_volume_change, to_utc
from rivalry.phantom import (
    PhantomConfig,
    PhantomStats,
    create_default_phantom_config,
    get_suggested_phantom_difficulty,
)
from rivalry.relationship import RivalRelationship, apply_encounter_outcome

SCHEMA = """
CREATE TABLE IF NOT EXISTS rivals (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    rival_type TEXT NOT NULL,
    friend_id TEXT,
    phantom_config TEXT,
    respect_level INTEGER NOT NULL,
    rivalry_heat INTEGER NOT NULL,
    win_streak INTEGER NOT NULL DEFAULT 0,
    longest_win_streak INTEGER NOT NULL DEFAULT 0,
    longest_lose_streak INTEGER NOT NULL DEFAULT 0,
    user_wins INTEGER NOT NULL DEFAULT 0,
    rival_wins INTEGER NOT NULL DEFAULT 0,
    ties INTEGER NOT NULL DEFAULT 0,
    encounter_count INTEGER NOT NULL DEFAULT 0,
    last_encounter TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_rivals_user ON rivals(user_id);

-- Append-only; one row per rival per period
CREATE TABLE IF NOT EXISTS encounters (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    rival_id TEXT NOT NULL REFERENCES rivals(id) ON DELETE CASCADE,
    period_key TEXT NOT NULL,
    encounter_date TEXT NOT NULL,
    user_volume REAL NOT NULL,
    user_workouts INTEGER NOT NULL,
    user_prs INTEGER NOT NULL,
    user_volume_change REAL NOT NULL,
    user_consistency REAL NOT NULL,
    user_top_gains TEXT,
    rival_volume REAL NOT NULL,
    rival_workouts INTEGER NOT NULL,
    rival_prs INTEGER NOT NULL,
    rival_volume_change REAL NOT NULL,
    rival_consistency REAL NOT NULL,
    rival_top_gains TEXT,
    user_score TEXT NOT NULL,
    rival_score TEXT NOT NULL,
    personality TEXT NOT NULL,
    winner TEXT NOT NULL,
    winning_margin REAL NOT NULL,
    dominant_factor TEXT NOT NULL,
    narrative TEXT,
    breakdown TEXT,
    respect_delta INTEGER NOT NULL,
    heat_delta INTEGER NOT NULL,
    UNIQUE (rival_id, period_key)
);

CREATE INDEX IF NOT EXISTS idx_encounters_user_date ON encounters(user_id, encounter_date);
"""


@dataclass
class PartyMetrics:
    total_volume: float
    workout_count: int
    pr_count: int
    volume_change: float
    consistency: float
    top_exercise_gains: list = field(default_factory=list)

    @classmethod
    def from_snapshot(cls, snapshot: ImprovementSnapshot) -> "PartyMetrics":
        return cls(
            total_volume=snapshot.volume_this_week,
            workout_count=snapshot.workouts_this_week,
            pr_count=snapshot.prs_this_week,
            volume_change=calculate_volume_change(snapshot),
            consistency=snapshot.consistency_score,
            top_exercise_gains=list(snapshot.top_exercise_gains),
        )


@dataclass
class EncounterOutcome:
    """What the scoring produced; the store adds identity and state deltas."""
    personality: str
    user_metrics: PartyMetrics
    rival_metrics: PartyMetrics
    user_score: ImprovementScore
    rival_score: ImprovementScore
    victory: object  # victory.VictoryResult


@dataclass
class Encounter:
    id: str
    user_id: str
    rival_id: str
    period_key: str
    encounter_date: str
    personality: str
    user_metrics: PartyMetrics
    rival_metrics: PartyMetrics
    user_score: dict
    rival_score: dict
    winner: str
    winning_margin: float
    dominant_factor: str
    narrative: str
    breakdown: dict
    respect_delta: int
    heat_delta: int


def _complete_phantom_config(config: dict | None, user_level: int | None) -> dict:
    config = dict(config or {})
    if user_level is not None:
        for key, value in get_suggested_phantom_difficulty(user_level).items():
            config.setdefault(key, value)
    if not config.get("personality"):
        raise ValueError("AI phantom rivals need a personality or a user_level")
    validate_personality(config["personality"])
    defaults = create_default_phantom_config(config["personality"])
    config.setdefault("rubber_band_strength", defaults.rubber_band_strength)
    config.setdefault("volatility", defaults.volatility)
    config.setdefault("archetype", defaults.archetype)
    return config


def _now_iso(now=None) -> str:
    ts = pd.Timestamp.now(tz="UTC") if now is None else to_utc(now)
    return ts.isoformat()


class RivalryStore:
    """SQLite-backed persistence for rivals and their encounter log."""

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(SCHEMA)

    def close(self):
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    @contextmanager
    def _transaction(self):
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    # ── Rivals ───────────────────────────────────────────────────────

    def create_rival(
        self,
        user_id: str,
        rival_type: str,
        friend_id: str | None = None,
        phantom_config=None,
        max_ai_rivals: int = MAX_AI_RIVALS,
        user_level: int | None = None,
        now=None,
    ) -> RivalRelationship:
        """
        AI phantoms need a personality, given in `phantom_config` or suggested
        from `user_level`. Knobs left out are filled from the level suggestion,
        then from the personality defaults, so they are always stored.
        """
        if isinstance(phantom_config, PhantomConfig):
            phantom_config = phantom_config.to_dict()
        if rival_type == RIVAL_TYPE_AI:
            phantom_config = _complete_phantom_config(phantom_config, user_level)
        elif rival_type == RIVAL_TYPE_FRIEND:
            if not friend_id:
                raise ValueError("Friend rivals need a friend_id")
            if phantom_config and phantom_config.get("personality"):
                validate_personality(phantom_config["personality"])
        else:
            raise ValueError(f"Unknown rival type {rival_type!r}")

        rival_id = str(uuid.uuid4())
        if rival_type == RIVAL_TYPE_AI and not phantom_config.get("name"):
            # Unnamed phantoms get a stable pre-made character
            character = assign_character(phantom_config["personality"], seed=rival_id)
            phantom_config = {**phantom_config, "name": character["name"], "character_id": character["id"]}

        rival = RivalRelationship(
            id=rival_id,
            user_id=user_id,
            rival_type=rival_type,
            friend_id=friend_id,
            phantom_config=phantom_config,
            created_at=_now_iso(now),
        )
        with self._transaction() as conn:
            if rival_type == RIVAL_TYPE_AI:
                n_ai = conn.execute(
                    "SELECT COUNT(*) FROM rivals WHERE user_id = ? AND rival_type = ?",
                    (user_id, RIVAL_TYPE_AI),
                ).fetchone()[0]
                if n_ai >= max_ai_rivals:
                    raise RivalLimitError(f"Maximum {max_ai_rivals} AI rivals allowed")
            self._insert_rival(conn, rival)
        return rival

    def _insert_rival(self, conn, rival: RivalRelationship):
        row = asdict(rival)
        row["phantom_config"] = json.dumps(rival.phantom_config) if rival.phantom_config else None
        cols = ", ".join(row)
        marks = ", ".join("?" for _ in row)
        conn.execute(f"INSERT INTO rivals ({cols}) VALUES ({marks})", tuple(row.values()))

    @staticmethod
    def _row_to_rival(row: sqlite3.Row) -> RivalRelationship:
        data = dict(row)
        data["phantom_config"] = json.loads(data["phantom_config"]) if data["phantom_config"] else None
        return RivalRelationship(**data)

    def get_rival(self, rival_id: str) -> RivalRelationship:
        with self._lock:
            row = self._conn.execute("SELECT * FROM rivals WHERE id = ?", (rival_id,)).fetchone()
        if row is None:
            raise RivalNotFoundError(f"Rival {rival_id} not found")
        return self._row_to_rival(row)

    def list_rivals(self, user_id: str) -> list[RivalRelationship]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM rivals WHERE user_id = ? ORDER BY created_at DESC", (user_id,)
            ).fetchall()
        return [self._row_to_rival(r) for r in rows]

    def delete_rival(self, rival_id: str):
        """Called on unfriend/removal; the encounter log goes with it."""
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM rivals WHERE id = ?", (rival_id,))
            if cur.rowcount == 0:
                raise RivalNotFoundError(f"Rival {rival_id} not found")

    # ── Encounters ───────────────────────────────────────────────────

    def get_previous_opponent_stats(self, rival_id: str) -> PhantomStats | None:
        """The rival side of the most recent encounter: the phantom's continuity seed."""
        with self._lock:
            row = self._conn.execute(
                """SELECT rival_volume, rival_workouts, rival_prs, rival_consistency, encounter_date
                   FROM encounters WHERE rival_id = ?
                   ORDER BY encounter_date DESC LIMIT 1""",
                (rival_id,),
            ).fetchone()
        if row is None:
            return None
        return PhantomStats(
            weekly_volume=float(row["rival_volume"]),
            weekly_workouts=int(row["rival_workouts"]),
            weekly_consistency=float(row["rival_consistency"]),
            weekly_prs=int(row["rival_prs"]),
            last_updated=row["encounter_date"],
        )

    def has_encounter(self, rival_id: str, period_key: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM encounters WHERE rival_id = ? AND period_key = ?",
                (rival_id, period_key),
            ).fetchone()
        return row is not None

    def record_encounter(
        self,
        rival_id: str,
        period_key: str,
        outcome_fn,
        now=None,
    ) -> tuple[Encounter, RivalRelationship]:
        """
        Score and persist one encounter atomically.

        `outcome_fn(relationship)` is called inside the write lock with the
        freshly read rival and must return an EncounterOutcome. Raises
        DuplicateEncounterError if this rival already has an encounter for
        `period_key`; nothing is written in that case.
        """
        encounter_date = _now_iso(now)
        with self._transaction() as conn:
            rival = self.get_rival(rival_id)
            if self.has_encounter(rival_id, period_key):
                raise DuplicateEncounterError(rival_id, period_key)

            outcome = outcome_fn(rival)
            victory = outcome.victory
            updated, delta = apply_encounter_outcome(
                rival, victory.winner, victory.winning_margin, now=encounter_date,
            )
            encounter = Encounter(
                id=str(uuid.uuid4()),
                user_id=rival.user_id,
                rival_id=rival.id,
                period_key=period_key,
                encounter_date=encounter_date,
                personality=outcome.personality,
                user_metrics=outcome.user_metrics,
                rival_metrics=outcome.rival_metrics,
                user_score=asdict(outcome.user_score),
                rival_score=asdict(outcome.rival_score),
                winner=victory.winner,
                winning_margin=victory.winning_margin,
                dominant_factor=victory.dominant_factor,
                narrative=victory.narrative,
                breakdown=asdict(victory.breakdown),
                respect_delta=delta.respect_delta,
                heat_delta=delta.heat_delta,
            )
            try:
                self._insert_encounter(conn, encounter)
            except sqlite3.IntegrityError as e:
                raise DuplicateEncounterError(rival_id, period_key) from e
            conn.execute(
                """UPDATE rivals SET respect_level = ?, rivalry_heat = ?, win_streak = ?,
                       longest_win_streak = ?, longest_lose_streak = ?, user_wins = ?,
                       rival_wins = ?, ties = ?, encounter_count = ?, last_encounter = ?
                   WHERE id = ?""",
                (updated.respect_level, updated.rivalry_heat, updated.win_streak,
                 updated.longest_win_streak, updated.longest_lose_streak, updated.user_wins,
                 updated.rival_wins, updated.ties, updated.encounter_count,
                 updated.last_encounter, rival.id),
            )
        return encounter, updated

    def _insert_encounter(self, conn, e: Encounter):
        um, rm = e.user_metrics, e.rival_metrics
        conn.execute(
            """INSERT INTO encounters (
                   id, user_id, rival_id, period_key, encounter_date,
                   user_volume, user_workouts, user_prs, user_volume_change, user_consistency, user_top_gains,
                   rival_volume, rival_workouts, rival_prs, rival_volume_change, rival_consistency, rival_top_gains,
                   user_score, rival_score, personality, winner, winning_margin, dominant_factor,
                   narrative, breakdown, respect_delta, heat_delta
               ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                e.id, e.user_id, e.rival_id, e.period_key, e.encounter_date,
                um.total_volume, um.workout_count, um.pr_count, um.volume_change, um.consistency,
                json.dumps(um.top_exercise_gains),
                rm.total_volume, rm.workout_count, rm.pr_count, rm.volume_change, rm.consistency,
                json.dumps(rm.top_exercise_gains),
                json.dumps(e.user_score), json.dumps(e.rival_score), e.personality,
                e.winner, e.winning_margin, e.dominant_factor,
                e.narrative, json.dumps(e.breakdown), e.respect_delta, e.heat_delta,
            ),
        )

    @staticmethod
    def _row_to_encounter(row: sqlite3.Row) -> Encounter:
        def metrics(prefix: str) -> PartyMetrics:
            return PartyMetrics(
                total_volume=row[f"{prefix}_volume"],
                workout_count=row[f"{prefix}_workouts"],
                pr_count=row[f"{prefix}_prs"],
                volume_change=row[f"{prefix}_volume_change"],
                consistency=row[f"{prefix}_consistency"],
                top_exercise_gains=json.loads(row[f"{prefix}_top_gains"] or "[]"),
            )

        return Encounter(
            id=row["id"],
            user_id=row["user_id"],
            rival_id=row["rival_id"],
            period_key=row["period_key"],
            encounter_date=row["encounter_date"],
            personality=row["personality"],
            user_metrics=metrics("user"),
            rival_metrics=metrics("rival"),
            user_score=json.loads(row["user_score"]),
            rival_score=json.loads(row["rival_score"]),
            winner=row["winner"],
            winning_margin=row["winning_margin"],
            dominant_factor=row["dominant_factor"],
            narrative=row["narrative"] or "",
            breakdown=json.loads(row["breakdown"] or "{}"),
            respect_delta=row["respect_delta"],
            heat_delta=row["heat_delta"],
        )

    def list_encounters(self, user_id: str, rival_id: str | None = None, limit: int = 20) -> list[Encounter]:
        """Newest first; limit is capped at ENCOUNTER_LIST_LIMIT."""
        limit = max(1, min(int(limit), ENCOUNTER_LIST_LIMIT))
        query = "SELECT * FROM encounters WHERE user_id = ?"
        params: list = [user_id]
        if rival_id:
            query += " AND rival_id = ?"
            params.append(rival_id)
        query += " ORDER BY encounter_date DESC LIMIT ?"
        params.append(limit)
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_encounter(r) for r in rows]
