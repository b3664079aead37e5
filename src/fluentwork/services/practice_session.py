"""Practice session: turns outcome events into persisted progress and history.

The flow for every event is MasteryModel -> store -> SessionAggregator. A
write the store could not acknowledge stays in ``pending`` and the computed
state stays visible locally; ``flush`` retries the pending writes.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from fluentwork.errors import StoreUnavailable
from fluentwork.models.records import (
    DailyGoal,
    HistoryEntry,
    PracticeAttempt,
    ProgressRecord,
    SessionStats,
    UserProfile,
    VocabularyItem,
    WeeklyPlan,
    parse_timestamp,
)
from fluentwork.monitoring import reviews_total, words_learned
from fluentwork.services import mastery
from fluentwork.services.coach import AttemptJudge, Judgement, PlanGenerator
from fluentwork.services.plan_lifecycle import PlanLifecycle, complete_goal
from fluentwork.services.reconciler import ReconciledChange
from fluentwork.services.session_aggregator import SessionAggregator
from fluentwork.stores.base import UserStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewResult:
    """Outcome of a flashcard review."""
    record: ProgressRecord
    is_correct: bool
    persisted: bool
    error: Optional[StoreUnavailable] = None


@dataclass(frozen=True)
class AttemptResult:
    """Outcome of a judged practice attempt."""
    judgement: Judgement
    entry: HistoryEntry
    stats: SessionStats
    plan: Optional[WeeklyPlan]
    persisted: bool


class PracticeSession:
    """One user's session state, backed by the store chosen at session start."""

    def __init__(
        self,
        user_id: str,
        store: UserStore,
        judge: Optional[AttemptJudge] = None,
        aggregator: Optional[SessionAggregator] = None,
        plan_lifecycle: Optional[PlanLifecycle] = None,
    ):
        """Initialize the session for a user."""
        self.user_id = user_id
        self.store = store
        self.judge = judge or AttemptJudge()
        self.aggregator = aggregator or SessionAggregator()
        self.plan_lifecycle = plan_lifecycle or PlanLifecycle(store)
        self.progress: Dict[str, ProgressRecord] = {}
        self.plan: Optional[WeeklyPlan] = None
        self.pending: Dict[str, ProgressRecord] = {}
        self.pending_history: List[HistoryEntry] = []
        self.pending_plan: Optional[WeeklyPlan] = None

    @property
    def stats(self) -> SessionStats:
        return self.aggregator.stats

    @property
    def has_pending_writes(self) -> bool:
        return bool(self.pending or self.pending_history or self.pending_plan)

    async def load(self) -> None:
        """Load progress, history and the latest plan from the store."""
        records = await self.store.load_all(self.user_id)
        self.progress = {record.vocabulary_item_id: record for record in records}
        history = await self.store.load_history(self.user_id)
        self.aggregator.fold(history)
        self.plan = await self.store.load_latest_plan(self.user_id)
        logger.info(
            f"Loaded session for user {self.user_id}: {len(records)} progress records, "
            f"{len(history)} history entries"
        )

    def review_queue(self, now: datetime, limit: Optional[int] = None) -> List[ProgressRecord]:
        """Get the records due for review."""
        return mastery.review_queue(self.progress.values(), now, limit)

    async def review_flashcard(self, item: VocabularyItem, user_input: str, now: datetime) -> ReviewResult:
        """Grade a flashcard answer against the item's word and persist the new state."""
        is_correct = mastery.is_answer_correct(user_input, item.word)
        previous = self.progress.get(item.id)
        record = mastery.apply_outcome(
            previous, is_correct, now, user_id=self.user_id, vocabulary_item_id=item.id
        ).with_vocabulary(item)

        reviews_total.labels(outcome="correct" if is_correct else "incorrect").inc()
        if record.learned and not (previous and previous.learned):
            words_learned.inc()
        if not is_correct:
            self.aggregator.record_mistake(f"Error en vocabulario: {item.word}")

        self.progress[item.id] = record
        error = await self._persist_progress(record)
        return ReviewResult(record=record, is_correct=is_correct, persisted=error is None, error=error)

    async def mark_learned(self, item: VocabularyItem, learned: bool, now: datetime) -> ReviewResult:
        """Set an item to full mastery, or back to level 0."""
        record = mastery.set_learned(
            self.progress.get(item.id), learned, now, user_id=self.user_id, vocabulary_item_id=item.id
        ).with_vocabulary(item)
        self.progress[item.id] = record
        error = await self._persist_progress(record)
        return ReviewResult(record=record, is_correct=learned, persisted=error is None, error=error)

    async def submit_attempt(self, goal: DailyGoal, user_input: str, now: datetime) -> AttemptResult:
        """Judge a free-text attempt for a daily goal and record it.

        A correct attempt completes the goal in the current plan.
        """
        now = parse_timestamp(now)
        scenario = goal.practice_scenario
        judgement = await self.judge.judge(user_input, scenario.context, scenario.prompt)
        attempt = PracticeAttempt(
            date=now,
            scenario_title=scenario.title,
            user_input=user_input,
            corrected_text=judgement.corrected_text,
            feedback_text=judgement.feedback_text,
            is_correct=judgement.is_correct,
        )
        entry = HistoryEntry(date=now, type="practice", description=f"Práctica: {scenario.title}", details=attempt)
        stats = self.aggregator.append(entry)
        persisted = await self._persist_history(entry)

        if judgement.is_correct and self.plan is not None:
            persisted = await self._complete_goal(goal.day) and persisted

        return AttemptResult(judgement=judgement, entry=entry, stats=stats, plan=self.plan, persisted=persisted)

    async def start_week(
        self, profile: UserProfile, week_number: int, generator: Optional[PlanGenerator] = None
    ) -> WeeklyPlan:
        """Generate the week's plan from the profile and recent mistakes, and persist it.

        The plan's new vocabulary is added to the catalog before the plan is
        saved, so the plan never refers to unknown items. If the store is
        unreachable the plan stays the session's plan, is kept pending and
        StoreUnavailable is raised.
        """
        generator = generator or PlanGenerator()
        plan = await generator.generate(profile, self.aggregator.recent_mistakes(), week_number)
        self.plan = plan
        try:
            await self.store.save_profile(self.user_id, profile)
            await self.store.save_vocabulary(self.user_id, plan.new_vocabulary)
            await self.store.save_plan(self.user_id, plan)
        except StoreUnavailable as e:
            logger.warning(f"Week {week_number} plan kept pending: {e}")
            self.pending_plan = plan
            raise
        self.pending_plan = None
        logger.info(f"Started week {week_number} for user {self.user_id}: {plan.main_focus}")
        return plan

    async def record_activity(self, description: str, now: datetime, entry_type: str = "practice") -> SessionStats:
        """Record an activity without attempt details, such as a finished flashcard round."""
        entry = HistoryEntry(date=parse_timestamp(now), type=entry_type, description=description)
        stats = self.aggregator.append(entry)
        await self._persist_history(entry)
        return stats

    async def flush(self) -> bool:
        """Retry every pending write. Returns True when nothing is left pending."""
        for record in list(self.pending.values()):
            await self._persist_progress(record)
        await self._flush_history()
        if self.pending_plan is not None:
            await self._persist_plan(self.pending_plan)
        return not self.has_pending_writes

    def apply_remote_change(self, change: ReconciledChange) -> None:
        """Merge a reconciled remote change into the local view.

        A pending local write that is newer than the incoming record wins; the
        record is left for ``flush`` to send. Otherwise the remote record
        supersedes the pending write, which is dropped.
        """
        if change.record is None:
            if change.previous is not None and change.previous.vocabulary_item_id not in self.pending:
                self.progress.pop(change.previous.vocabulary_item_id, None)
            return
        item_id = change.record.vocabulary_item_id
        pending = self.pending.get(item_id)
        if pending is not None and pending.updated_at > change.record.updated_at:
            logger.debug(f"Keeping unacknowledged local write for {item_id}")
            return
        if pending is not None:
            logger.debug(f"Dropping local write for {item_id} superseded by remote change")
            del self.pending[item_id]
        current = self.progress.get(item_id)
        record = change.record
        if record.vocabulary is None and current is not None:
            record = record.with_vocabulary(current.vocabulary)
        if current is None or record.updated_at >= current.updated_at:
            self.progress[item_id] = record

    async def _persist_progress(self, record: ProgressRecord) -> Optional[StoreUnavailable]:
        try:
            await self.store.upsert_progress(record)
        except StoreUnavailable as e:
            logger.warning(f"Progress for {record.vocabulary_item_id} kept pending: {e}")
            self.pending[record.vocabulary_item_id] = record
            return e
        pending = self.pending.get(record.vocabulary_item_id)
        if pending is not None and pending.updated_at <= record.updated_at:
            del self.pending[record.vocabulary_item_id]
        return None

    async def _persist_history(self, entry: HistoryEntry) -> bool:
        self.pending_history.append(entry)
        return await self._flush_history()

    async def _flush_history(self) -> bool:
        """Write pending history entries in order, stopping at the first failure."""
        while self.pending_history:
            try:
                await self.store.append_history(self.user_id, self.pending_history[0])
            except StoreUnavailable as e:
                logger.warning(f"{len(self.pending_history)} history entries kept pending: {e}")
                return False
            self.pending_history.pop(0)
        return True

    async def _complete_goal(self, day_label: str) -> bool:
        previous = self.plan
        try:
            self.plan = await self.plan_lifecycle.mark_goal_completed(self.user_id, previous, day_label)
        except StoreUnavailable as e:
            logger.warning(f"Plan update kept pending: {e}")
            self.plan = complete_goal(previous, day_label)
            self.pending_plan = self.plan
            return False
        if self.plan is not previous:
            # The saved plan includes any earlier pending change
            self.pending_plan = None
        return True

    async def _persist_plan(self, plan: WeeklyPlan) -> bool:
        try:
            await self.store.save_plan(self.user_id, plan)
        except StoreUnavailable as e:
            logger.warning(f"Plan update kept pending: {e}")
            self.pending_plan = plan
            return False
        self.pending_plan = None
        return True
