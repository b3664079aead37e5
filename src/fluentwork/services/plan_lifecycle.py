"""Weekly plan goal completion."""
import logging
from dataclasses import replace

from fluentwork.models.records import WeeklyPlan
from fluentwork.stores.base import PlanStore

logger = logging.getLogger(__name__)


def complete_goal(plan: WeeklyPlan, day_label: str) -> WeeklyPlan:
    """Return the plan with the day's goal completed, or the same plan if nothing changes."""
    goal = plan.goal_for(day_label)
    if goal is None or goal.completed:
        return plan
    goals = tuple(replace(item, completed=True) if item.day == day_label else item for item in plan.daily_goals)
    return replace(plan, daily_goals=goals)


def completion_ratio(plan: WeeklyPlan) -> int:
    """Get the percentage of completed daily goals."""
    if not plan.daily_goals:
        return 0
    completed = sum(1 for goal in plan.daily_goals if goal.completed)
    return round(completed / len(plan.daily_goals) * 100)


class PlanLifecycle:
    """Tracks daily goal completion and persists plan changes.

    Completion only goes one way; there is no operation to undo it.
    """

    def __init__(self, plan_store: PlanStore):
        """Initialize the service with a plan store."""
        self.plan_store = plan_store

    async def mark_goal_completed(self, user_id: str, plan: WeeklyPlan, day_label: str) -> WeeklyPlan:
        """Complete the goal of the given day and persist the plan wholesale."""
        updated = complete_goal(plan, day_label)
        if updated is plan:
            logger.debug(f"No open goal for {day_label!r} in week {plan.week_number}, plan unchanged")
            return plan
        await self.plan_store.save_plan(user_id, updated)
        logger.info(f"Marked {day_label} completed in week {plan.week_number} for user {user_id}")
        return updated
