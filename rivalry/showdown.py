"""
Rivalry Engine — Weekly Showdown Orchestrator
Run via cron or manually: python -m rivalry.showdown --user-id ID [--dry-run]

History loaders return `(workouts, records)` where records are the best
weights from BEFORE the week being scored (records=None means "derive them
from the workouts"), so the week can still set PRs.
"""
import argparse
import json
import sys
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd

from rivalry.config import FRIEND_DATA_DIR, RIVALRY_DB_PATH, TARGET_WORKOUTS_PER_WEEK
from rivalry.errors import DuplicateEncounterError, NoWorkoutsError
from rivalry.improvement import (
    ONE_WEEK,
    ImprovementScore,
    ImprovementSnapshot,
    build_improvement_snapshot,
    build_user_history,
    calculate_improvement_score,
    get_week_start,
    get_workouts_in_week,
    records_before,
)
from rivalry.phantom import PhantomConfig, generate_phantom_stats, phantom_stats_to_snapshot
from rivalry.relationship import RivalRelationship
from rivalry.store import Encounter, EncounterOutcome, PartyMetrics, RivalryStore
from rivalry.victory import UniformChaos, VictoryResult, calculate_victory


@dataclass
class EncounterReport:
    encounter: Encounter
    relationship: RivalRelationship
    victory: VictoryResult
    user_score: ImprovementScore
    rival_score: ImprovementScore


def period_key(week_start) -> str:
    """Idempotency key for one rival's weekly encounter: the ISO week-start date."""
    return pd.Timestamp(week_start).date().isoformat()


def _has_workouts(history) -> bool:
    return bool(history) and bool(history[0])


def snapshot_from_history(history, week_start) -> ImprovementSnapshot:
    workouts, records = history
    week_start = pd.Timestamp(week_start)
    if records is None:
        records = records_before(workouts, week_start)
    return build_improvement_snapshot(
        get_workouts_in_week(workouts, week_start),
        get_workouts_in_week(workouts, week_start - ONE_WEEK),
        records,
        target_workouts_per_week=TARGET_WORKOUTS_PER_WEEK,
    )


def build_rival_snapshot(
    store: RivalryStore,
    relationship: RivalRelationship,
    user_snapshot: ImprovementSnapshot,
    rival_history=None,
    week_start=None,
    rng=None,
) -> ImprovementSnapshot | None:
    """
    The opponent's week. Phantoms are generated from the user's snapshot and
    their last encounter's stats; friends are built from their own history.
    Returns None for a friend with no workout data.
    """
    if relationship.is_phantom:
        config = PhantomConfig.from_dict(relationship.phantom_config)
        previous = store.get_previous_opponent_stats(relationship.id)
        stats = generate_phantom_stats(user_snapshot, config, previous, rng=rng)
        return phantom_stats_to_snapshot(stats, previous)

    if not _has_workouts(rival_history):
        return None
    return snapshot_from_history(rival_history, week_start if week_start is not None else get_week_start())


def run_encounter(
    store: RivalryStore,
    rival_id: str,
    user_history,
    rival_history=None,
    now=None,
    rng=None,
    chaos=None,
) -> EncounterReport:
    """
    Score this week's encounter against one rival and persist it.
    Raises NoWorkoutsError if the user (or a friend rival) has nothing to
    score, DuplicateEncounterError if this week was already settled.
    """
    week_start = get_week_start(now)
    user_snapshot = snapshot_from_history(user_history, week_start) if user_history else ImprovementSnapshot()
    if user_snapshot.workouts_this_week == 0:
        raise NoWorkoutsError("No workouts this week to compete with")

    user_score = calculate_improvement_score(user_snapshot)
    mirror_history = build_user_history(user_history[0], week_start)
    if chaos is None and rng is not None:
        chaos = UniformChaos(rng)
    scored = {}

    def outcome(relationship: RivalRelationship) -> EncounterOutcome:
        rival_snapshot = build_rival_snapshot(
            store, relationship, user_snapshot, rival_history, week_start, rng,
        )
        if rival_snapshot is None:
            raise NoWorkoutsError(f"No workout data for {relationship.display_name}")
        rival_score = calculate_improvement_score(rival_snapshot)
        victory = calculate_victory(
            relationship.personality, user_snapshot, rival_snapshot,
            user_history=mirror_history, chaos=chaos,
        )
        scored.update(victory=victory, rival_score=rival_score)
        return EncounterOutcome(
            personality=relationship.personality,
            user_metrics=PartyMetrics.from_snapshot(user_snapshot),
            rival_metrics=PartyMetrics.from_snapshot(rival_snapshot),
            user_score=user_score,
            rival_score=rival_score,
            victory=victory,
        )

    encounter, updated = store.record_encounter(rival_id, period_key(week_start), outcome, now=now)
    return EncounterReport(
        encounter=encounter,
        relationship=updated,
        victory=scored["victory"],
        user_score=user_score,
        rival_score=scored["rival_score"],
    )


def _overall_result(wins: int, losses: int) -> str:
    if wins > losses:
        return "victory"
    if wins < losses:
        return "defeat"
    return "draw"


def run_weekly_showdown(
    store: RivalryStore,
    user_id: str,
    load_history,
    now=None,
    rng=None,
    chaos=None,
) -> dict:
    """
    Weekly showdown against every rival of `user_id`:
    1. Load the user's history and check there is something to score
    2. For each rival, load the friend's history (phantoms need none)
    3. Score and persist the encounter; already-settled weeks are skipped
    4. Summarize wins/losses/ties

    `load_history(subject_id, cutoff)` returns `(workouts, records)` or None.
    A failing rival is reported and counted but does not stop the others.
    """
    week_start = get_week_start(now)
    rng = rng if rng is not None else np.random.default_rng()
    print("🔄 Weekly showdown — Starting...")
    print(f"   Week of {period_key(week_start)}")

    rivals = store.list_rivals(user_id)
    print(f"   {len(rivals)} rivals")
    if not rivals:
        print("   No rivals to showdown against. Done.")

    user_history = None
    if rivals:
        user_history = load_history(user_id, week_start)
        if not _has_workouts(user_history) or not get_workouts_in_week(user_history[0], week_start):
            raise NoWorkoutsError("No workouts this week to compete with")

    results = []
    wins = losses = ties = skipped = failed = 0
    for rival in rivals:
        name = rival.display_name
        base = {"rival_id": rival.id, "rival_name": name, "rival_type": rival.rival_type}

        try:
            rival_history = None
            if not rival.is_phantom:
                rival_history = load_history(rival.friend_id, week_start)
                if not _has_workouts(rival_history):
                    print(f"   ⏭️  {name}: no workout data, skipped")
                    results.append({**base, "status": "skipped", "reason": "no_data"})
                    skipped += 1
                    continue
            report = run_encounter(
                store, rival.id, user_history, rival_history, now=now, rng=rng, chaos=chaos,
            )
        except DuplicateEncounterError:
            print(f"   ⏭️  {name}: already settled this week, skipped")
            results.append({**base, "status": "skipped", "reason": "duplicate"})
            skipped += 1
            continue
        except Exception as e:
            print(f"   ❌ {name}: FAILED: {e}")
            results.append({**base, "status": "failed", "error": str(e)})
            failed += 1
            continue

        v = report.victory
        if v.winner == "user":
            wins += 1
            print(f"   🏆 {name}: won by {v.winning_margin:.1f}. {v.narrative}")
        elif v.winner == "rival":
            losses += 1
            print(f"   💀 {name}: lost by {v.winning_margin:.1f}. {v.narrative}")
        else:
            ties += 1
            print(f"   🤝 {name}: tie. {v.narrative}")

        rel = report.relationship
        results.append({
            **base,
            "status": "completed",
            "winner": v.winner,
            "margin": v.winning_margin,
            "dominant_factor": v.dominant_factor,
            "narrative": v.narrative,
            "user_score": report.user_score.composite_score,
            "rival_score": report.rival_score.composite_score,
            "respect_level": rel.respect_level,
            "rivalry_heat": rel.rivalry_heat,
            "win_streak": rel.win_streak,
        })

    summary = {
        "week_start": week_start.isoformat(),
        "total_rivals": wins + losses + ties,
        "wins": wins,
        "losses": losses,
        "ties": ties,
        "skipped": skipped,
        "failed": failed,
        "overall_result": _overall_result(wins, losses),
        "results": results,
    }
    print(f"\n✅ Showdown complete: {wins}W / {losses}L / {ties}T → {summary['overall_result']}")
    return summary


def preview_showdown(store: RivalryStore, user_id: str, load_history, now=None) -> dict:
    """Read-only view of the coming showdown. Phantom stats only exist once the showdown runs."""
    week_start = get_week_start(now)
    key = period_key(week_start)
    rivals = store.list_rivals(user_id)
    preview = {"has_rivals": bool(rivals), "has_data": False, "week_start": week_start.isoformat(),
               "user_stats": None, "rivals": []}
    if not rivals:
        return preview

    user_history = load_history(user_id, week_start)
    if not _has_workouts(user_history):
        return preview

    user_snapshot = snapshot_from_history(user_history, week_start)
    preview["has_data"] = True
    preview["user_stats"] = {
        "workouts": user_snapshot.workouts_this_week,
        "volume": user_snapshot.volume_this_week,
        "prs": user_snapshot.prs_this_week,
        "improvement_score": calculate_improvement_score(user_snapshot).composite_score,
    }

    for rival in rivals:
        current = {"workouts": 0, "volume": 0.0, "prs": 0}
        if not rival.is_phantom:
            friend_history = load_history(rival.friend_id, week_start)
            if _has_workouts(friend_history):
                snap = snapshot_from_history(friend_history, week_start)
                current = {"workouts": snap.workouts_this_week, "volume": snap.volume_this_week,
                           "prs": snap.prs_this_week}
        preview["rivals"].append({
            "id": rival.id,
            "type": rival.rival_type,
            "name": rival.display_name,
            "personality": rival.personality,
            "respect_level": rival.respect_level,
            "rivalry_heat": rival.rivalry_heat,
            "head_to_head": {"user_wins": rival.user_wins, "rival_wins": rival.rival_wins, "ties": rival.ties},
            "current_week_stats": current,
            "settled": store.has_encounter(rival.id, key),
        })
    return preview


# ═══════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════

def load_friend_history(friend_id: str, cutoff=None, data_dir: str = FRIEND_DATA_DIR):
    """Exported friend history at <data_dir>/<friend_id>.json, or None."""
    path = Path(data_dir) / f"{friend_id}.json"
    if not path.exists():
        return None
    data = json.loads(path.read_text())
    workouts = data.get("workouts", []) if isinstance(data, dict) else data
    return workouts, records_before(workouts, cutoff)


def make_history_loader(user_id: str, data_dir: str = FRIEND_DATA_DIR):
    from rivalry import hevy_client

    def load(subject_id, cutoff):
        if subject_id == user_id:
            return hevy_client.load_history(cutoff)
        return load_friend_history(subject_id, cutoff, data_dir)

    return load


def _print_preview(preview: dict):
    if not preview["has_rivals"]:
        print("   No rivals yet.")
        return
    if not preview["has_data"]:
        print("   No workouts this week.")
        return
    u = preview["user_stats"]
    print(f"   You: {u['workouts']} workouts, {u['volume']:,.0f} kg, {u['prs']} PRs "
          f"(score {u['improvement_score']:.1f})")
    for r in preview["rivals"]:
        h = r["head_to_head"]
        status = "settled" if r["settled"] else "pending"
        print(f"   • {r['name']} [{r['personality']}] {h['user_wins']}-{h['rival_wins']}-{h['ties']} "
              f"respect {r['respect_level']} heat {r['rivalry_heat']} ({status})")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="python -m rivalry.showdown")
    parser.add_argument("--user-id", required=True)
    parser.add_argument("--db", default=RIVALRY_DB_PATH)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args(argv)

    load = make_history_loader(args.user_id)
    with RivalryStore(args.db) as store:
        if args.dry_run:
            print("🔍 Showdown preview (dry run, nothing is written)")
            _print_preview(preview_showdown(store, args.user_id, load))
            return 0
        try:
            summary = run_weekly_showdown(store, args.user_id, load)
        except NoWorkoutsError as e:
            print(f"\n❌ Showdown FAILED: {e}")
            return 1

    if summary["failed"]:
        print(f"⚠️  {summary['failed']} rivals failed")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
