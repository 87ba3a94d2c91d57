"""
Rivalry Engine — Relationship State Machine

The only transition is "record encounter outcome". It is pure: callers get a
new RivalRelationship back and are responsible for persisting it exactly once
per encounter (see RivalryStore.record_encounter).
"""
from dataclasses import dataclass, field, replace

import pandas as pd

from rivalry.config import (
    BIG_MARGIN_THRESHOLD,
    DEFAULT_PERSONALITY,
    HEAT_DELTAS,
    HEAT_MAX,
    HEAT_MIN,
    INITIAL_HEAT,
    INITIAL_RESPECT,
    RESPECT_MAX,
    RESPECT_MIN,
    RIVAL_TYPE_AI,
    STREAK_HEAT_BONUS,
    STREAK_HEAT_THRESHOLD,
)

WINNERS = ("user", "rival", "tie")


@dataclass
class RivalRelationship:
    id: str
    user_id: str
    rival_type: str
    friend_id: str | None = None
    phantom_config: dict | None = None
    respect_level: int = INITIAL_RESPECT
    rivalry_heat: int = INITIAL_HEAT
    win_streak: int = 0  # >0 user streak, <0 rival streak
    longest_win_streak: int = 0
    longest_lose_streak: int = 0
    user_wins: int = 0
    rival_wins: int = 0
    ties: int = 0
    encounter_count: int = 0
    last_encounter: str | None = None
    created_at: str = field(default_factory=lambda: pd.Timestamp.now(tz="UTC").isoformat())

    @property
    def is_phantom(self) -> bool:
        return self.rival_type == RIVAL_TYPE_AI

    @property
    def personality(self) -> str:
        """Victory condition: the phantom's personality, or a friend's chosen one."""
        return (self.phantom_config or {}).get("personality") or DEFAULT_PERSONALITY

    @property
    def display_name(self) -> str:
        if self.phantom_config and self.phantom_config.get("name"):
            return self.phantom_config["name"]
        return self.friend_id or "Unknown"


@dataclass
class StateDelta:
    respect_delta: int
    heat_delta: int
    new_respect_level: int
    new_rivalry_heat: int
    new_win_streak: int


def _check_winner(winner: str):
    if winner not in WINNERS:
        raise ValueError(f"winner must be one of {WINNERS}, got {winner!r}")


def clamp(value, lo, hi):
    return max(lo, min(hi, value))


def calculate_respect_delta(winner: str, margin: float) -> int:
    """±1 per decided encounter, doubled above the big-margin threshold."""
    _check_winner(winner)
    if winner == "tie":
        return 0
    delta = 1 if winner == "user" else -1
    if margin > BIG_MARGIN_THRESHOLD:
        delta *= 2
    return delta


def calculate_heat_delta(winner: str, current_streak: int) -> int:
    """Losses heat things up more than wins; long streaks either way add more."""
    _check_winner(winner)
    delta = HEAT_DELTAS[winner]
    if abs(current_streak) >= STREAK_HEAT_THRESHOLD:
        delta += STREAK_HEAT_BONUS
    return delta


def next_win_streak(streak: int, winner: str) -> int:
    _check_winner(winner)
    if winner == "user":
        return streak + 1 if streak >= 0 else 1
    if winner == "rival":
        return streak - 1 if streak <= 0 else -1
    return streak


def apply_encounter_outcome(
    relationship: RivalRelationship,
    winner: str,
    margin: float,
    now=None,
) -> tuple[RivalRelationship, StateDelta]:
    respect_delta = calculate_respect_delta(winner, margin)
    heat_delta = calculate_heat_delta(winner, relationship.win_streak)
    new_streak = next_win_streak(relationship.win_streak, winner)

    new_respect = clamp(relationship.respect_level + respect_delta, RESPECT_MIN, RESPECT_MAX)
    new_heat = clamp(relationship.rivalry_heat + heat_delta, HEAT_MIN, HEAT_MAX)

    longest_win = max(relationship.longest_win_streak, new_streak)
    longest_lose = max(relationship.longest_lose_streak, -new_streak)

    now = pd.Timestamp.now(tz="UTC") if now is None else pd.Timestamp(now)

    updated = replace(
        relationship,
        respect_level=new_respect,
        rivalry_heat=new_heat,
        win_streak=new_streak,
        longest_win_streak=longest_win,
        longest_lose_streak=longest_lose,
        user_wins=relationship.user_wins + (winner == "user"),
        rival_wins=relationship.rival_wins + (winner == "rival"),
        ties=relationship.ties + (winner == "tie"),
        encounter_count=relationship.encounter_count + 1,
        last_encounter=now.isoformat(),
    )
    delta = StateDelta(
        respect_delta=respect_delta,
        heat_delta=heat_delta,
        new_respect_level=new_respect,
        new_rivalry_heat=new_heat,
        new_win_streak=new_streak,
    )
    return updated, delta
