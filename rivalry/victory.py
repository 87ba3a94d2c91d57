"""
Rivalry Engine — Victory Calculator

Each personality has its own victory condition:
- Mirror:  beat your 4-week rolling average
- Rival:   win best 2 of 3 categories (volume, workouts, PRs)
- Mentor:  higher growth rate than the mentor
- Nemesis: composite score, with a random swing applied to the nemesis

Margins are NOT on a common scale: Mirror reports points around 100%,
Rival/Nemesis a symmetric percentage, Mentor a raw growth-score difference.
"""
from dataclasses import dataclass, field

import numpy as np

from rivalry.config import DEFAULT_PERSONALITY, PERSONALITIES, validate_personality
from rivalry.improvement import ImprovementSnapshot, UserHistory, round_half_up

CHAOS_LOW, CHAOS_HIGH = 0.7, 1.3
STUMBLE_BELOW, BEAST_MODE_ABOVE = 0.85, 1.15


@dataclass
class CategoryResult:
    user: float
    rival: float
    winner: str


@dataclass
class CategoryBreakdown:
    volume: CategoryResult
    workouts: CategoryResult
    prs: CategoryResult
    growth_rate: CategoryResult | None = None  # Mentor only


@dataclass
class VictoryResult:
    winner: str
    winning_margin: float
    dominant_factor: str
    breakdown: CategoryBreakdown
    narrative: str
    details: dict = field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════════
# CHAOS SOURCES (Nemesis)
# ═══════════════════════════════════════════════════════════════════════

class UniformChaos:
    """Draws the nemesis swing uniformly from [0.7, 1.3)."""

    def __init__(self, rng: np.random.Generator | None = None):
        self.rng = rng if rng is not None else np.random.default_rng()

    def draw(self) -> float:
        return float(self.rng.uniform(CHAOS_LOW, CHAOS_HIGH))


class FixedChaos:
    """Always returns the same factor. For tests and replaying stored encounters."""

    def __init__(self, value: float):
        self.value = value

    def draw(self) -> float:
        return self.value


# ═══════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════

def compare_category(user_value: float, rival_value: float, tie_margin: float) -> str:
    """Winner of one category; within rival_value × tie_margin is a tie."""
    diff = user_value - rival_value
    threshold = rival_value * tie_margin
    if diff > threshold:
        return "user"
    if diff < -threshold:
        return "rival"
    return "tie"


def _band(user_value: float, rival_value: float, band: float) -> str:
    """Absolute dead-zone comparison."""
    if user_value > rival_value + band:
        return "user"
    if rival_value > user_value + band:
        return "rival"
    return "tie"


def _ratio_band(ratio: float, band: float = 0.02) -> str:
    if ratio > 1 + band:
        return "user"
    if ratio < 1 - band:
        return "rival"
    return "tie"


def _symmetric_margin(a: float, b: float) -> float:
    top = max(a, b)
    return abs(a - b) / top * 100 if top > 0 else 0.0


def calculate_growth_rate(current: float, previous: float) -> float:
    """% growth; going from nothing to something is a flat 50."""
    if previous == 0:
        return 50.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def calculate_composite_score(snapshot: ImprovementSnapshot) -> float:
    """Volume (per 10k) ×40 + workouts ×35 + PRs×2 ×25."""
    volume_score = snapshot.volume_this_week / 10000
    workout_score = snapshot.workouts_this_week
    pr_score = snapshot.prs_this_week * 2
    return volume_score * 40 + workout_score * 35 + pr_score * 25


# ═══════════════════════════════════════════════════════════════════════
# DISPATCH
# ═══════════════════════════════════════════════════════════════════════

def calculate_victory(
    personality: str,
    user_snapshot: ImprovementSnapshot,
    rival_snapshot: ImprovementSnapshot,
    user_history: UserHistory | None = None,
    chaos=None,
    strict: bool = True,
) -> VictoryResult:
    """
    Decide the encounter using the personality's victory condition.

    Unknown personalities raise UnknownPersonalityError unless strict=False,
    in which case the Rival (2 of 3) rules are used.
    """
    if personality not in PERSONALITIES:
        if strict:
            validate_personality(personality)
        personality = DEFAULT_PERSONALITY

    if personality == "mirror":
        return calculate_mirror_victory(user_snapshot, user_history)
    if personality == "mentor":
        return calculate_mentor_victory(user_snapshot, rival_snapshot)
    if personality == "nemesis":
        return calculate_nemesis_victory(user_snapshot, rival_snapshot, chaos)
    return calculate_rival_victory(user_snapshot, rival_snapshot)


# ═══════════════════════════════════════════════════════════════════════
# MIRROR: "Can you beat who you were?"
# ═══════════════════════════════════════════════════════════════════════

def calculate_mirror_victory(
    user_snapshot: ImprovementSnapshot,
    user_history: UserHistory | None = None,
) -> VictoryResult:
    avg_volume = (user_history.avg_volume_4week if user_history else 0) \
        or user_snapshot.volume_last_week or 1
    avg_workouts = (user_history.avg_workouts_4week if user_history else 0) \
        or user_snapshot.workouts_last_week or 1
    history_prs = user_history.avg_prs_4week if user_history else 0
    avg_prs = history_prs or 0.5

    volume_ratio = user_snapshot.volume_this_week / max(avg_volume, 1)
    workouts_ratio = user_snapshot.workouts_this_week / max(avg_workouts, 1)
    if user_snapshot.prs_this_week == 0 and not history_prs:
        prs_ratio = 1.0  # no PRs against a PR-less baseline is par
    else:
        prs_ratio = user_snapshot.prs_this_week / max(avg_prs, 0.5)

    user_score = volume_ratio * 0.4 + workouts_ratio * 0.35 + prs_ratio * 0.25
    threshold = 1.0

    breakdown = CategoryBreakdown(
        volume=CategoryResult(user_snapshot.volume_this_week, round_half_up(avg_volume), _ratio_band(volume_ratio)),
        workouts=CategoryResult(user_snapshot.workouts_this_week, round_half_up(avg_workouts), _ratio_band(workouts_ratio)),
        prs=CategoryResult(user_snapshot.prs_this_week, round_half_up(avg_prs), _ratio_band(prs_ratio)),
    )

    if user_score > threshold + 0.05:
        winner = "user"
        narrative = "You exceeded your potential this week!"
        dominant_factor = "volume" if volume_ratio > workouts_ratio else "consistency"
    elif user_score < threshold - 0.05:
        winner = "rival"
        narrative = "Your past self had the edge this time."
        dominant_factor = "volume" if volume_ratio < workouts_ratio else "consistency"
    else:
        winner = "tie"
        narrative = "Right on track with your usual performance."
        dominant_factor = "consistency"

    return VictoryResult(
        winner=winner,
        winning_margin=abs(user_score - threshold) * 100,
        dominant_factor=dominant_factor,
        breakdown=breakdown,
        narrative=narrative,
        details={"user_score": user_score, "volume_ratio": volume_ratio,
                 "workouts_ratio": workouts_ratio, "prs_ratio": prs_ratio},
    )


# ═══════════════════════════════════════════════════════════════════════
# RIVAL: "Every category is a battle"
# ═══════════════════════════════════════════════════════════════════════

def calculate_rival_victory(
    user_snapshot: ImprovementSnapshot,
    rival_snapshot: ImprovementSnapshot,
) -> VictoryResult:
    volume_winner = compare_category(user_snapshot.volume_this_week, rival_snapshot.volume_this_week, 0.05)
    workouts_winner = compare_category(user_snapshot.workouts_this_week, rival_snapshot.workouts_this_week, 0)
    prs_winner = compare_category(user_snapshot.prs_this_week, rival_snapshot.prs_this_week, 0)

    breakdown = CategoryBreakdown(
        volume=CategoryResult(user_snapshot.volume_this_week, rival_snapshot.volume_this_week, volume_winner),
        workouts=CategoryResult(user_snapshot.workouts_this_week, rival_snapshot.workouts_this_week, workouts_winner),
        prs=CategoryResult(user_snapshot.prs_this_week, rival_snapshot.prs_this_week, prs_winner),
    )

    categories = [("volume", volume_winner), ("consistency", workouts_winner), ("PRs", prs_winner)]
    user_wins = sum(1 for _, w in categories if w == "user")
    rival_wins = sum(1 for _, w in categories if w == "rival")

    if user_wins >= 2:
        winner = "user"
        narrative = f"You won {user_wins} out of 3 battles!"
    elif rival_wins >= 2:
        winner = "rival"
        narrative = f"Your rival took {rival_wins} out of 3 categories."
    else:
        winner = "tie"
        narrative = "The battle was too close to call!"

    if winner == "tie":
        dominant_factor = "none"
    else:
        dominant_factor = next(name for name, w in categories if w == winner)

    # Counts are inflated so they weigh like raw volume units
    total_user = user_snapshot.volume_this_week + user_snapshot.workouts_this_week * 1000 \
        + user_snapshot.prs_this_week * 5000
    total_rival = rival_snapshot.volume_this_week + rival_snapshot.workouts_this_week * 1000 \
        + rival_snapshot.prs_this_week * 5000

    return VictoryResult(
        winner=winner,
        winning_margin=_symmetric_margin(total_user, total_rival),
        dominant_factor=dominant_factor,
        breakdown=breakdown,
        narrative=narrative,
        details={"user_category_wins": user_wins, "rival_category_wins": rival_wins},
    )


# ═══════════════════════════════════════════════════════════════════════
# MENTOR: "Show me your growth"
# ═══════════════════════════════════════════════════════════════════════

def _pr_bonus(prs: int) -> float:
    return 10 + prs * 5 if prs > 0 else 0


def calculate_mentor_victory(
    user_snapshot: ImprovementSnapshot,
    rival_snapshot: ImprovementSnapshot,
) -> VictoryResult:
    user_volume_growth = calculate_growth_rate(user_snapshot.volume_this_week, user_snapshot.volume_last_week)
    rival_volume_growth = calculate_growth_rate(rival_snapshot.volume_this_week, rival_snapshot.volume_last_week)
    user_workout_growth = calculate_growth_rate(user_snapshot.workouts_this_week, user_snapshot.workouts_last_week)
    rival_workout_growth = calculate_growth_rate(rival_snapshot.workouts_this_week, rival_snapshot.workouts_last_week)

    user_growth = user_volume_growth * 0.5 + user_workout_growth * 0.3 + _pr_bonus(user_snapshot.prs_this_week) * 0.2
    rival_growth = rival_volume_growth * 0.5 + rival_workout_growth * 0.3 + _pr_bonus(rival_snapshot.prs_this_week) * 0.2

    breakdown = CategoryBreakdown(
        volume=CategoryResult(
            user_snapshot.volume_this_week, rival_snapshot.volume_this_week,
            _band(user_volume_growth, rival_volume_growth, 2),
        ),
        workouts=CategoryResult(
            user_snapshot.workouts_this_week, rival_snapshot.workouts_this_week,
            _band(user_workout_growth, rival_workout_growth, 2),
        ),
        prs=CategoryResult(
            user_snapshot.prs_this_week, rival_snapshot.prs_this_week,
            _band(user_snapshot.prs_this_week, rival_snapshot.prs_this_week, 0),
        ),
        growth_rate=CategoryResult(
            round_half_up(user_growth, 1), round_half_up(rival_growth, 1),
            _band(user_growth, rival_growth, 2),
        ),
    )

    winner = _band(user_growth, rival_growth, 2)
    narrative = {
        "user": "Your growth impressed me. Well done.",
        "rival": "Keep pushing. Growth takes time.",
        "tie": "We grew together this week.",
    }[winner]

    return VictoryResult(
        winner=winner,
        winning_margin=abs(user_growth - rival_growth),
        dominant_factor="growth",
        breakdown=breakdown,
        narrative=narrative,
        details={"user_growth_score": user_growth, "rival_growth_score": rival_growth},
    )


# ═══════════════════════════════════════════════════════════════════════
# NEMESIS: "Fortune favors the bold"
# ═══════════════════════════════════════════════════════════════════════

def calculate_nemesis_victory(
    user_snapshot: ImprovementSnapshot,
    rival_snapshot: ImprovementSnapshot,
    chaos=None,
) -> VictoryResult:
    chaos = chaos if chaos is not None else UniformChaos()
    user_base = calculate_composite_score(user_snapshot)
    rival_base = calculate_composite_score(rival_snapshot)

    # Only the nemesis swings
    chaos_factor = chaos.draw()
    rival_score = rival_base * chaos_factor

    rival_volume = rival_snapshot.volume_this_week * chaos_factor
    rival_workouts = rival_snapshot.workouts_this_week * chaos_factor
    breakdown = CategoryBreakdown(
        volume=CategoryResult(user_snapshot.volume_this_week, round_half_up(rival_volume),
                              _band(user_snapshot.volume_this_week, rival_volume, 0)),
        workouts=CategoryResult(user_snapshot.workouts_this_week, round_half_up(rival_workouts),
                                _band(user_snapshot.workouts_this_week, rival_workouts, 0)),
        prs=CategoryResult(user_snapshot.prs_this_week, rival_snapshot.prs_this_week,
                           _band(user_snapshot.prs_this_week, rival_snapshot.prs_this_week, 0)),
    )

    margin = _symmetric_margin(user_base, rival_score)

    if user_base > rival_score * 1.05:
        winner = "user"
        if chaos_factor < STUMBLE_BELOW:
            narrative = "They stumbled this week. You capitalized!"
        elif chaos_factor > BEAST_MODE_ABOVE:
            narrative = "Even at their best, you prevailed!"
        else:
            narrative = "A hard-fought victory in the chaos!"
        dominant_factor = "dominance" if margin > 20 else "edge"
    elif rival_score > user_base * 1.05:
        winner = "rival"
        if chaos_factor > BEAST_MODE_ABOVE:
            narrative = "They went beast mode this week!"
        elif chaos_factor < STUMBLE_BELOW:
            narrative = "Even on an off week, they edged you out."
        else:
            narrative = "The chaos favored your nemesis this time."
        dominant_factor = "dominance" if margin > 20 else "edge"
    else:
        winner = "tie"
        narrative = "Neither could break the other!"
        dominant_factor = "stalemate"

    return VictoryResult(
        winner=winner,
        winning_margin=margin,
        dominant_factor=dominant_factor,
        breakdown=breakdown,
        narrative=narrative,
        details={"user_score": user_base, "rival_score": rival_score, "chaos_factor": chaos_factor},
    )
