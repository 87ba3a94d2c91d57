"""
Rivalry Engine — Improvement Snapshots & Scores

Turns raw workout sessions into a weekly ImprovementSnapshot and reduces a
snapshot to a 0-100 composite ImprovementScore. Both parties of an encounter
go through the same functions so their scores are directly comparable.

Workouts are plain dicts:
    {"id", "start_time", "exercises": [{"id", "name", "sets": [{"weight", "reps", "is_warmup"}]}]}
Warmup sets never count towards volume or max weight.
"""
import math
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from rivalry.config import (
    SCORE_WEIGHTS,
    PR_POINTS,
    TARGET_WORKOUTS_PER_WEEK,
    TOP_GAINS_LIMIT,
    HISTORY_WEEKS,
)

ONE_WEEK = pd.Timedelta(days=7)
SET_COLUMNS = [
    "workout_id", "start_time", "exercise_id", "exercise",
    "weight", "reps", "is_warmup", "volume",
]
SESSION_COLUMNS = ["workout_id", "start_time"]


def round_half_up(value: float, ndigits: int = 0):
    """Round halves upwards (2.5 -> 3, 12.5 -> 13); an int when ndigits is 0."""
    if ndigits == 0:
        return math.floor(value + 0.5)
    scale = 10 ** ndigits
    return math.floor(value * scale + 0.5) / scale


@dataclass
class ImprovementSnapshot:
    volume_this_week: float = 0.0
    volume_last_week: float = 0.0
    workouts_this_week: int = 0
    workouts_last_week: int = 0
    prs_this_week: int = 0
    consistency_score: float = 0.0
    top_exercise_gains: list = field(default_factory=list)


@dataclass
class ImprovementScore:
    volume_change: float
    consistency_score: float
    pr_score: float
    composite_score: float


@dataclass
class UserHistory:
    """Rolling averages over the weeks before the current one (Mirror baseline)."""
    avg_volume_4week: float
    avg_workouts_4week: float
    avg_prs_4week: float
    previous_week_volume: float
    previous_week_workouts: int


# ═══════════════════════════════════════════════════════════════════════
# 1. WEEK WINDOWS
# ═══════════════════════════════════════════════════════════════════════

def to_utc(value) -> pd.Timestamp:
    """Parse a timestamp; naive values are taken as UTC."""
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


def get_week_start(now=None) -> pd.Timestamp:
    """Monday 00:00 UTC of the week containing `now`."""
    now = pd.Timestamp.now(tz="UTC") if now is None else to_utc(now)
    return (now - pd.Timedelta(days=now.weekday())).normalize()


def get_previous_week_start(now=None) -> pd.Timestamp:
    return get_week_start(now) - ONE_WEEK


def get_workouts_in_week(workouts: list[dict], week_start) -> list[dict]:
    """Sessions whose start_time falls in [week_start, week_start + 7d)."""
    start = to_utc(week_start)
    end = start + ONE_WEEK
    result = []
    for w in workouts or []:
        if not w.get("start_time"):
            continue
        t = to_utc(w["start_time"])
        if start <= t < end:
            result.append(w)
    return result


# ═══════════════════════════════════════════════════════════════════════
# 2. FLATTENING
# ═══════════════════════════════════════════════════════════════════════

def workouts_to_sets_dataframe(workouts: list[dict]) -> pd.DataFrame:
    """One row per set across all sessions and exercises."""
    rows = []
    for w in workouts or []:
        start = to_utc(w["start_time"]) if w.get("start_time") else pd.NaT
        for ex in w.get("exercises") or []:
            ex_id = ex.get("id") or ex.get("name", "")
            for s in ex.get("sets") or []:
                weight = float(s.get("weight", 0) or 0)
                reps = int(s.get("reps", 0) or 0)
                rows.append({
                    "workout_id": w.get("id"),
                    "start_time": start,
                    "exercise_id": ex_id,
                    "exercise": ex.get("name", ex_id),
                    "weight": weight,
                    "reps": reps,
                    "is_warmup": bool(s.get("is_warmup", False)),
                    "volume": weight * reps,
                })
    return pd.DataFrame(rows, columns=SET_COLUMNS)


def _sessions_dataframe(workouts: list[dict]) -> pd.DataFrame:
    rows = [
        {"workout_id": w.get("id"), "start_time": to_utc(w["start_time"])}
        for w in workouts or []
        if w.get("start_time")
    ]
    return pd.DataFrame(rows, columns=SESSION_COLUMNS)


def _working_sets(df: pd.DataFrame) -> pd.DataFrame:
    if df.empty:
        return df
    return df[~df["is_warmup"].astype(bool)]


def _max_weight_by_exercise(sets: pd.DataFrame) -> pd.Series:
    if sets.empty:
        return pd.Series(dtype=float)
    return sets.groupby("exercise_id")["weight"].max()


def calculate_total_volume(workouts: list[dict]) -> float:
    sets = _working_sets(workouts_to_sets_dataframe(workouts))
    return float(sets["volume"].sum()) if not sets.empty else 0.0


def records_before(workouts: list[dict], cutoff=None) -> dict[str, float]:
    """Best working-set weight per exercise over sessions before `cutoff` (all if None)."""
    sets = _working_sets(workouts_to_sets_dataframe(workouts))
    if sets.empty:
        return {}
    if cutoff is not None:
        sets = sets[sets["start_time"] < to_utc(cutoff)]
    return {k: float(v) for k, v in _max_weight_by_exercise(sets).items()}


# ═══════════════════════════════════════════════════════════════════════
# 3. SNAPSHOT
# ═══════════════════════════════════════════════════════════════════════

def count_prs(
    sets: pd.DataFrame,
    current_records: dict,
    previous_records: dict | None = None,
) -> int:
    """
    Exercises whose best weight this week strictly beats the stored record.

    `current_records` is the all-time record map as it stood before the week;
    `previous_records` only fills in exercises missing from it. An exercise
    with no record at all has a baseline of 0, so a first weighted lift is a PR.
    """
    previous_records = previous_records or {}
    prs = 0
    for ex_id, max_w in _max_weight_by_exercise(sets).items():
        if ex_id in current_records:
            baseline = current_records[ex_id] or 0
        else:
            baseline = previous_records.get(ex_id, 0) or 0
        if max_w > baseline:
            prs += 1
    return prs


def top_exercise_gains(
    current_sets: pd.DataFrame,
    previous_sets: pd.DataFrame,
    limit: int = TOP_GAINS_LIMIT,
) -> list[dict]:
    """Largest week-over-week max-weight increases for exercises done in both weeks."""
    now_max = _max_weight_by_exercise(current_sets)
    then_max = _max_weight_by_exercise(previous_sets)
    common = now_max.index.intersection(then_max.index)
    if common.empty:
        return []
    gains = (now_max[common] - then_max[common])
    gains = gains[gains > 0].sort_values(ascending=False).head(limit)
    names = current_sets.drop_duplicates("exercise_id").set_index("exercise_id")["exercise"]
    return [
        {"exercise": str(names.get(ex_id, ex_id)), "gain": round(float(g), 2)}
        for ex_id, g in gains.items()
    ]


def build_improvement_snapshot(
    current_week_workouts: list[dict],
    previous_week_workouts: list[dict],
    current_records: dict | None,
    previous_records: dict | None = None,
    target_workouts_per_week: int = TARGET_WORKOUTS_PER_WEEK,
) -> ImprovementSnapshot:
    if target_workouts_per_week <= 0:
        raise ValueError("target_workouts_per_week must be positive")

    current_sets = _working_sets(workouts_to_sets_dataframe(current_week_workouts))
    previous_sets = _working_sets(workouts_to_sets_dataframe(previous_week_workouts))

    workouts_this_week = len(current_week_workouts or [])
    consistency = min(100, round_half_up(workouts_this_week / target_workouts_per_week * 100))

    return ImprovementSnapshot(
        volume_this_week=float(current_sets["volume"].sum()) if not current_sets.empty else 0.0,
        volume_last_week=float(previous_sets["volume"].sum()) if not previous_sets.empty else 0.0,
        workouts_this_week=workouts_this_week,
        workouts_last_week=len(previous_week_workouts or []),
        prs_this_week=count_prs(current_sets, current_records or {}, previous_records),
        consistency_score=consistency,
        top_exercise_gains=top_exercise_gains(current_sets, previous_sets),
    )


# ═══════════════════════════════════════════════════════════════════════
# 4. SCORE
# ═══════════════════════════════════════════════════════════════════════

def calculate_volume_change(snapshot: ImprovementSnapshot) -> float:
    """Week-over-week volume change in %. Zero -> something counts as +100%."""
    if snapshot.volume_last_week > 0:
        return (snapshot.volume_this_week - snapshot.volume_last_week) / snapshot.volume_last_week * 100
    return 100.0 if snapshot.volume_this_week > 0 else 0.0


def calculate_improvement_score(snapshot: ImprovementSnapshot) -> ImprovementScore:
    """
    Composite 0-100 score for one party's week.

    - Volume (40%): change clamped to ±100% then mapped to 0-100 (50 = flat)
    - Consistency (35%): snapshot consistency, already 0-100
    - PRs (25%): 20 points per PR, max 100
    """
    volume_change = calculate_volume_change(snapshot)
    volume_score = (float(np.clip(volume_change, -100, 100)) + 100) / 2
    consistency_score = snapshot.consistency_score
    pr_score = min(100, max(0, snapshot.prs_this_week) * PR_POINTS)

    composite = (
        volume_score * SCORE_WEIGHTS["volume"]
        + consistency_score * SCORE_WEIGHTS["consistency"]
        + pr_score * SCORE_WEIGHTS["prs"]
    )
    return ImprovementScore(
        volume_change=volume_change,
        consistency_score=consistency_score,
        pr_score=pr_score,
        composite_score=composite,
    )


# ═══════════════════════════════════════════════════════════════════════
# 5. ROLLING HISTORY (Mirror baseline)
# ═══════════════════════════════════════════════════════════════════════

def build_user_history(
    workouts: list[dict],
    week_start,
    weeks: int = HISTORY_WEEKS,
) -> UserHistory | None:
    """
    Average volume, sessions and PRs over the `weeks` full weeks before
    `week_start`. PRs in each week are counted against everything lifted
    earlier. Returns None if the user has no sessions before `week_start`.
    """
    start = to_utc(week_start)
    sessions = _sessions_dataframe(workouts)
    if sessions.empty or not (sessions["start_time"] < start).any():
        return None

    sets = _working_sets(workouts_to_sets_dataframe(workouts))
    window_start = start - ONE_WEEK * weeks

    rows = []
    for i in range(weeks):
        ws = window_start + ONE_WEEK * i
        we = ws + ONE_WEEK
        n_sessions = int(((sessions["start_time"] >= ws) & (sessions["start_time"] < we)).sum())
        if sets.empty:
            rows.append({"week": i, "volume": 0.0, "workouts": n_sessions, "prs": 0})
            continue
        wk_sets = sets[(sets["start_time"] >= ws) & (sets["start_time"] < we)]
        record = _max_weight_by_exercise(sets[sets["start_time"] < ws])
        wk_max = _max_weight_by_exercise(wk_sets)
        prs = int((wk_max > record.reindex(wk_max.index).fillna(0)).sum()) if not wk_max.empty else 0
        rows.append({
            "week": i,
            "volume": float(wk_sets["volume"].sum()),
            "workouts": n_sessions,
            "prs": prs,
        })

    weekly = pd.DataFrame(rows)
    last = weekly.iloc[-1]
    return UserHistory(
        avg_volume_4week=round(float(weekly["volume"].mean()), 2),
        avg_workouts_4week=round(float(weekly["workouts"].mean()), 2),
        avg_prs_4week=round(float(weekly["prs"].mean()), 2),
        previous_week_volume=float(last["volume"]),
        previous_week_workouts=int(last["workouts"]),
    )
