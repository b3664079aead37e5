"""Command line entry point: inspect and plan a user's progress in the SQL store."""
import argparse
import asyncio
import logging
import sys
from datetime import UTC, datetime
from typing import List, Optional

from fluentwork.config import settings
from fluentwork.errors import StoreUnavailable
from fluentwork.logging_config import setup_logging
from fluentwork.models.base import SessionLocal, init_db
from fluentwork.models.records import UserProfile
from fluentwork.models.tables import Vocabulary
from fluentwork.monitoring import start_monitoring
from fluentwork.services import mastery
from fluentwork.services.coach import PlanGenerator
from fluentwork.services.practice_session import PracticeSession
from fluentwork.services.session_aggregator import SessionAggregator
from fluentwork.stores.remote import RemoteStore
from fluentwork.stores.sql import SqlRemoteMedium, SqlVocabularyLookup

logger = logging.getLogger("fluentwork")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fluentwork", description="Vocabulary progress tools")
    subparsers = parser.add_subparsers(dest="command", required=True)

    due = subparsers.add_parser("due", help="List items due for review")
    due.add_argument("user_id")
    due.add_argument("--limit", type=int, default=None)

    stats = subparsers.add_parser("stats", help="Show progress statistics")
    stats.add_argument("user_id")

    week = subparsers.add_parser("start-week", help="Generate and save the weekly plan")
    week.add_argument("user_id")
    week.add_argument("week_number", type=int)
    week.add_argument("--level")
    week.add_argument("--context")
    week.add_argument("--goal")
    return parser


async def show_due(store: RemoteStore, lookup: SqlVocabularyLookup, user_id: str, limit: Optional[int]) -> None:
    """Print the review queue."""
    records = await store.load_all(user_id)
    queue = mastery.review_queue(records, datetime.now(UTC), limit)
    if not queue:
        print("Nothing due for review.")
        return
    for record in queue:
        item = await lookup.get(record.vocabulary_item_id)
        label = f"{item.word} ({item.translation})" if item else record.vocabulary_item_id
        print(f"{label:40} level {record.mastery_level}  due {record.next_review_date:%Y-%m-%d %H:%M}")


async def show_stats(store: RemoteStore, user_id: str) -> None:
    """Print progress and session statistics."""
    records = await store.load_all(user_id)
    db = SessionLocal()
    try:
        total_vocabulary = db.query(Vocabulary).count()
    finally:
        db.close()
    summary = mastery.progress_summary(records, total_vocabulary)
    session_stats = SessionAggregator().fold(await store.load_history(user_id))

    print(f"Total words:        {summary['total_words']}")
    print(f"Learned words:      {summary['learned_words']}")
    print(f"In progress:        {summary['in_progress_words']}")
    print(f"Mastery:            {summary['mastery_percentage']}%")
    print(f"Days practiced:     {session_stats.total_days_practiced}")
    print(f"Mistakes:           {len(session_stats.mistakes)}")
    print(f"Practice time (est): {session_stats.elapsed_minutes}m")


async def start_week(store: RemoteStore, args: argparse.Namespace) -> int:
    """Generate the week's plan from the saved or given profile and print it."""
    profile = await store.load_profile(args.user_id)
    if args.level or args.context or args.goal:
        base = profile or UserProfile(level="", context="", goal="")
        profile = UserProfile(
            level=args.level or base.level, context=args.context or base.context, goal=args.goal or base.goal
        )
    if profile is None:
        logger.error(f"No profile for user {args.user_id}; pass --level, --context and --goal")
        return 2

    session = PracticeSession(args.user_id, store)
    await session.load()
    plan = await session.start_week(profile, args.week_number, PlanGenerator())

    print(f"Week {plan.week_number}: {plan.main_focus}")
    for goal in plan.daily_goals:
        print(f"  {goal.day:10} {goal.goal} ({goal.time})")
    print(f"New words:          {', '.join(item.word for item in plan.new_vocabulary)}")
    return 0


async def main(argv: Optional[List[str]] = None) -> int:
    """Run the command line tool."""
    args = build_parser().parse_args(argv)

    init_db()
    medium = SqlRemoteMedium(SessionLocal)
    store = RemoteStore(medium)
    try:
        if args.command == "due":
            await show_due(store, SqlVocabularyLookup(SessionLocal), args.user_id, args.limit)
        elif args.command == "stats":
            await show_stats(store, args.user_id)
        elif args.command == "start-week":
            return await start_week(store, args)
    except StoreUnavailable as e:
        logger.error(f"Store unavailable: {e}")
        return 1
    return 0


if __name__ == "__main__":
    setup_logging("Starting fluentwork ...")
    if settings.monitoring.enabled:
        start_monitoring(settings.monitoring.port)
    sys.exit(asyncio.run(main()))
