"""
Rivalry Engine — Hevy API Client
Loads a user's workout history in the shape the snapshot builder expects.
"""
import time
import requests
from rivalry.config import HEVY_API_KEY
from rivalry.improvement import records_before

BASE_URL = "https://api.hevyapp.com/v1"
HEADERS = {"accept": "application/json", "api-key": HEVY_API_KEY}

# Hevy rate limits are undocumented
RATE_LIMIT_DELAY = 0.35  # seconds between requests
REQUEST_TIMEOUT = 15
MAX_RETRIES = 3
RETRY_BACKOFF = 2  # exponential backoff multiplier
PAGE_SIZE = 10


def _backoff(attempt: int, reason) -> None:
    wait = RETRY_BACKOFF ** attempt
    print(f"  ⏳ Hevy {reason}, retrying in {wait}s (attempt {attempt}/{MAX_RETRIES})")
    time.sleep(wait)


def _get(endpoint: str, params: dict = None) -> dict:
    """
    One Hevy GET. Timeouts, 429s and 5xx are retried with exponential
    backoff; other HTTP errors raise straight away.
    """
    time.sleep(RATE_LIMIT_DELAY)
    for attempt in range(1, MAX_RETRIES + 1):
        try:
            r = requests.get(f"{BASE_URL}{endpoint}", headers=HEADERS,
                             params=params or {}, timeout=REQUEST_TIMEOUT)
        except requests.exceptions.Timeout:
            if attempt == MAX_RETRIES:
                raise
            _backoff(attempt, "timeout")
            continue

        retryable = r.status_code == 429 or r.status_code >= 500
        if retryable and attempt < MAX_RETRIES:
            _backoff(attempt, "rate limit" if r.status_code == 429 else r.status_code)
            continue
        if r.status_code == 429:
            break
        r.raise_for_status()
        return r.json()
    raise requests.exceptions.RetryError(f"Hevy API still rate limiting after {MAX_RETRIES} attempts")


def normalize_workout(raw: dict) -> dict:
    """Hevy workout -> {"id", "start_time", "exercises": [{"id", "name", "sets"}]}."""
    exercises = []
    for ex in raw.get("exercises") or []:
        sets = [
            {
                "weight": float(s.get("weight_kg") or 0),
                "reps": int(s.get("reps") or 0),
                "is_warmup": s.get("type") == "warmup",
            }
            for s in ex.get("sets") or []
        ]
        exercises.append({
            "id": ex.get("exercise_template_id") or ex.get("title", ""),
            "name": ex.get("title", ""),
            "sets": sets,
        })
    return {
        "id": raw.get("id"),
        "start_time": raw.get("start_time"),
        "exercises": exercises,
    }


def iter_workouts(page_size: int = PAGE_SIZE):
    """Normalized workouts, one Hevy page at a time."""
    page = 1
    while True:
        data = _get("/workouts", {"page": page, "pageSize": page_size})
        raw = data.get("workouts") or []
        if not raw:
            return
        for w in raw:
            yield normalize_workout(w)
        if page >= data.get("page_count", 1):
            return
        page += 1


def fetch_all_workouts() -> list[dict]:
    return list(iter_workouts())


def load_history(cutoff=None) -> tuple[list[dict], dict]:
    """
    All workouts plus the best working-set weight per exercise.
    With `cutoff`, records only cover sessions before it, so the week
    starting at `cutoff` can still set new PRs.
    """
    print("📥 Fetching workouts from Hevy...")
    workouts = fetch_all_workouts()
    print(f"   Found {len(workouts)} workouts")
    return workouts, records_before(workouts, cutoff)
