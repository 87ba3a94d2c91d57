"""
Rivalry Engine — Configuration

Scoring weights, phantom personalities, rival characters and relationship
bounds. Secrets and paths come from the environment; everything else is a
module-level constant so tests and the CLI see the same numbers.
"""
import hashlib
import os

from rivalry.errors import UnknownPersonalityError

# ── API Keys / Paths ─────────────────────────────────────────────────
HEVY_API_KEY = os.environ.get("HEVY_API_KEY", "")
RIVALRY_DB_PATH = os.environ.get("RIVALRY_DB_PATH", "rivalry.db")
FRIEND_DATA_DIR = os.environ.get("FRIEND_DATA_DIR", "friends")

# ── Weekly Targets ───────────────────────────────────────────────────
TARGET_WORKOUTS_PER_WEEK = int(os.environ.get("TARGET_WORKOUTS_PER_WEEK", "4"))
TOP_GAINS_LIMIT = 3
HISTORY_WEEKS = 4  # Mirror rolling window

# ── Limits ───────────────────────────────────────────────────────────
MAX_AI_RIVALS = int(os.environ.get("MAX_AI_RIVALS", "3"))
ENCOUNTER_LIST_LIMIT = 50

# ── Improvement Score ────────────────────────────────────────────────
SCORE_WEIGHTS = {
    "volume": 0.40,
    "consistency": 0.35,
    "prs": 0.25,
}
PR_POINTS = 20  # per PR, capped at 100

# ── Relationship State ───────────────────────────────────────────────
RESPECT_MIN, RESPECT_MAX = 1, 5
HEAT_MIN, HEAT_MAX = 0, 100
INITIAL_RESPECT = 1
INITIAL_HEAT = 50
BIG_MARGIN_THRESHOLD = 20  # same number for every personality's margin scale
STREAK_HEAT_THRESHOLD = 3
HEAT_DELTAS = {"tie": 10, "rival": 15, "user": 5}
STREAK_HEAT_BONUS = 10

RIVAL_TYPE_AI = "AI_PHANTOM"
RIVAL_TYPE_FRIEND = "FRIEND"


# ═════════════════════════════════════════════════════════════════════
# PERSONALITIES
#
# The personality decides both how a phantom is generated and which
# victory condition is used for the weekly comparison.
# ═════════════════════════════════════════════════════════════════════

PERSONALITIES = ("mirror", "rival", "mentor", "nemesis")
DEFAULT_PERSONALITY = "rival"

PERSONALITY_MODIFIERS = {
    "mirror": {
        "volume_multiplier": 1.0,
        "consistency_multiplier": 1.0,
        "pr_chance": 0.5,
        "description": "Matches your performance closely",
    },
    "rival": {
        "volume_multiplier": 1.1,
        "consistency_multiplier": 1.05,
        "pr_chance": 0.6,
        "description": "Always slightly ahead of you",
    },
    "mentor": {
        "volume_multiplier": 1.25,
        "consistency_multiplier": 1.15,
        "pr_chance": 0.75,
        "description": "A stronger version pushing you harder",
    },
    "nemesis": {
        # Volatile: sometimes way ahead, sometimes behind
        "volume_multiplier": 1.0,
        "consistency_multiplier": 1.0,
        "pr_chance": 0.65,
        "description": "Unpredictable and intense",
    },
}

# (max level exclusive, personality, rubber band strength, volatility)
DIFFICULTY_LADDER = [
    (5, "mirror", 0.8, 0.1),
    (15, "rival", 0.7, 0.2),
    (30, "mentor", 0.5, 0.25),
    (None, "nemesis", 0.3, 0.4),
]

PHANTOM_NAMES = [
    "Shadow Self",
    "Past Glory",
    "Future You",
    "The Echo",
    "Iron Ghost",
    "Phantom Lifter",
    "Mirror Image",
    "Dark Twin",
    "The Standard",
    "Steel Shadow",
]

ARCHETYPES = [
    "Powerlifter",
    "Bodybuilder",
    "CrossFitter",
    "Strongman",
    "Athlete",
    "Warrior",
    "Machine",
    "Beast",
]

VICTORY_DESCRIPTIONS = {
    "mirror": {
        "condition": "Beat your 4-week average",
        "strategy": "Stay consistent and keep improving week over week",
        "tagline": "Can you beat who you were?",
    },
    "rival": {
        "condition": "Win 2 of 3 categories",
        "strategy": "Focus on winnable categories - a clutch PR can swing the battle",
        "tagline": "Every category is a battle",
    },
    "mentor": {
        "condition": "Higher growth rate",
        "strategy": "Focus on improvement percentage, not raw numbers",
        "tagline": "Show me your growth",
    },
    "nemesis": {
        "condition": "Composite score (with chaos)",
        "strategy": "Stay consistent - chaos favors the prepared",
        "tagline": "Fortune favors the bold",
    },
}


# ═════════════════════════════════════════════════════════════════════
# RIVAL CHARACTERS: one pre-made character per personality
# ═════════════════════════════════════════════════════════════════════

RIVAL_CHARACTERS = {
    "shadow": {
        "name": "Shadow Self",
        "personality": "mirror",
        "avatar": "🪞",
        "color": "#6366f1",
        "tagline": "Your reflection in the iron",
    },
    "blaze": {
        "name": "Blaze",
        "personality": "rival",
        "avatar": "🔥",
        "color": "#f97316",
        "tagline": "Always one step ahead",
    },
    "sage": {
        "name": "Iron Sage",
        "personality": "mentor",
        "avatar": "🧘",
        "color": "#10b981",
        "tagline": "The path to strength is patience",
    },
    "phantom": {
        "name": "The Phantom",
        "personality": "nemesis",
        "avatar": "👻",
        "color": "#7c3aed",
        "tagline": "You'll never catch me",
    },
}


# ═════════════════════════════════════════════════════════════════════
# HELPER FUNCTIONS
# ═════════════════════════════════════════════════════════════════════

def validate_personality(value: str) -> str:
    """Reject anything that is not one of the four personalities."""
    if value not in PERSONALITIES:
        raise UnknownPersonalityError(
            f"Unknown personality {value!r}; expected one of {', '.join(PERSONALITIES)}"
        )
    return value


def get_character_by_id(character_id: str) -> dict | None:
    entry = RIVAL_CHARACTERS.get(character_id)
    return {"id": character_id, **entry} if entry else None


def get_characters_by_personality(personality: str) -> list[dict]:
    return [
        {"id": cid, **c}
        for cid, c in RIVAL_CHARACTERS.items()
        if c["personality"] == personality
    ]


def assign_character(personality: str, seed: str | None = None, rng=None) -> dict:
    """
    Pick a character for a personality.

    With a seed (e.g. the rival id) the pick is stable across calls;
    otherwise it is drawn from `rng` (a numpy Generator).
    """
    validate_personality(personality)
    characters = get_characters_by_personality(personality)
    if seed is not None:
        digest = hashlib.sha256(seed.encode("utf-8")).hexdigest()
        return characters[int(digest, 16) % len(characters)]
    if rng is None:
        import numpy as np
        rng = np.random.default_rng()
    return characters[int(rng.integers(len(characters)))]


def get_victory_description(personality: str) -> dict:
    return dict(VICTORY_DESCRIPTIONS[validate_personality(personality)])
