"""
Rivalry Engine — Phantom Generator

Synthesizes an AI rival's week from the user's own snapshot. Each metric is a
bounded random walk: last week's phantom value is pulled towards a
personality-specific target relative to the user ("rubber band"), then
jittered by the configured volatility.
"""
import math
from dataclasses import dataclass, asdict

import numpy as np
import pandas as pd

from rivalry.config import (
    ARCHETYPES,
    DEFAULT_PERSONALITY,
    DIFFICULTY_LADDER,
    PERSONALITY_MODIFIERS,
    PHANTOM_NAMES,
    TARGET_WORKOUTS_PER_WEEK,
    validate_personality,
)
from rivalry.improvement import ImprovementSnapshot, round_half_up


@dataclass
class PhantomConfig:
    personality: str = DEFAULT_PERSONALITY
    rubber_band_strength: float = 0.7  # 0-1, how strongly the phantom tracks the user
    volatility: float = 0.2            # 0-1, random variance
    name: str = "Shadow Self"
    archetype: str = "Athlete"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict | None) -> "PhantomConfig":
        data = data or {}
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)


@dataclass
class PhantomStats:
    weekly_volume: float
    weekly_workouts: int
    weekly_consistency: float
    weekly_prs: int
    last_updated: str


# Stats read back from the last encounter are the same shape.
PreviousOpponentStats = PhantomStats


def _rng(rng) -> np.random.Generator:
    return rng if rng is not None else np.random.default_rng()


def create_default_phantom_config(personality: str = DEFAULT_PERSONALITY, rng=None) -> PhantomConfig:
    validate_personality(personality)
    rng = _rng(rng)
    rubber_band = 0.3 if personality == "nemesis" else 0.5 if personality == "mentor" else 0.7
    volatility = 0.4 if personality == "nemesis" else 0.1 if personality == "mirror" else 0.2
    return PhantomConfig(
        personality=personality,
        rubber_band_strength=rubber_band,
        volatility=volatility,
        name=PHANTOM_NAMES[int(rng.integers(len(PHANTOM_NAMES)))],
        archetype=ARCHETYPES[int(rng.integers(len(ARCHETYPES)))],
    )


def get_suggested_phantom_difficulty(user_level: int) -> dict:
    """Beginners get a mirror, experts a nemesis."""
    for max_level, personality, strength, volatility in DIFFICULTY_LADDER:
        if max_level is None or user_level < max_level:
            return {
                "personality": personality,
                "rubber_band_strength": strength,
                "volatility": volatility,
            }
    raise AssertionError("DIFFICULTY_LADDER must end with an open bracket")


def rubber_band(
    user_value: float,
    previous_value: float,
    target_multiplier: float,
    strength: float,
    volatility: float,
    rng: np.random.Generator,
) -> float:
    """Pull the phantom towards user_value × multiplier, then jitter by ±volatility."""
    target = user_value * target_multiplier
    banded = previous_value + (target - previous_value) * strength
    factor = 1 + rng.uniform(-1.0, 1.0) * volatility
    return max(0.0, banded * factor)


def generate_phantom_stats(
    user_snapshot: ImprovementSnapshot,
    config: PhantomConfig,
    previous_phantom_stats: PhantomStats | None = None,
    rng=None,
) -> PhantomStats:
    validate_personality(config.personality)
    rng = _rng(rng)
    modifiers = PERSONALITY_MODIFIERS[config.personality]

    # Continuity: last week's phantom, else bootstrap from the user's last week
    prev_volume = (previous_phantom_stats.weekly_volume if previous_phantom_stats else 0) \
        or user_snapshot.volume_last_week
    prev_workouts = (previous_phantom_stats.weekly_workouts if previous_phantom_stats else 0) \
        or user_snapshot.workouts_last_week

    weekly_volume = rubber_band(
        user_snapshot.volume_this_week, prev_volume,
        modifiers["volume_multiplier"], config.rubber_band_strength,
        config.volatility, rng,
    )
    weekly_workouts = int(round_half_up(rubber_band(
        user_snapshot.workouts_this_week, prev_workouts,
        modifiers["consistency_multiplier"], config.rubber_band_strength,
        config.volatility * 0.5, rng,  # less variance on session count
    )))
    weekly_consistency = min(100.0, weekly_workouts / TARGET_WORKOUTS_PER_WEEK * 100)

    pr_chance = modifiers["pr_chance"] + rng.uniform(-0.5, 0.5) * config.volatility
    if rng.random() < pr_chance:
        weekly_prs = max(1, math.ceil(rng.random() * 3))
    else:
        weekly_prs = 0

    return PhantomStats(
        weekly_volume=float(round_half_up(weekly_volume)),
        weekly_workouts=weekly_workouts,
        weekly_consistency=weekly_consistency,
        weekly_prs=weekly_prs,
        last_updated=pd.Timestamp.now(tz="UTC").isoformat(),
    )


def phantom_stats_to_snapshot(
    stats: PhantomStats,
    previous_stats: PhantomStats | None = None,
) -> ImprovementSnapshot:
    """Phantoms have no exercise-level data, so top gains stay empty."""
    return ImprovementSnapshot(
        volume_this_week=max(0.0, stats.weekly_volume),
        volume_last_week=max(0.0, previous_stats.weekly_volume) if previous_stats else 0.0,
        workouts_this_week=max(0, stats.weekly_workouts),
        workouts_last_week=max(0, previous_stats.weekly_workouts) if previous_stats else 0,
        prs_this_week=max(0, stats.weekly_prs),
        consistency_score=max(0.0, stats.weekly_consistency),
        top_exercise_gains=[],
    )
