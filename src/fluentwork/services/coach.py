"""Adapters around the external plan-generation and correction oracles.

Oracle failures never reach the caller: plan generation falls back to a
built-in weekly template and attempt judgement to a degraded answer that
echoes the input back.
"""
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Union

from fluentwork.config import settings
from fluentwork.errors import OracleUnavailable, ValidationFailure
from fluentwork.models.records import (
    DailyGoal,
    PracticeScenario,
    UserProfile,
    VocabularyCategory,
    VocabularyItem,
    WeeklyPlan,
)
from fluentwork.monitoring import oracle_fallbacks

logger = logging.getLogger(__name__)

FALLBACK_FEEDBACK = "No se pudo obtener la corrección. Intenta de nuevo."

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def parse_oracle_json(text: str) -> Dict[str, Any]:
    """Extract the JSON object from raw oracle text, fenced or not."""
    match = _FENCED_JSON.search(text or "")
    candidate = match.group(1) if match else (text or "")
    try:
        data = json.loads(candidate.strip())
    except json.JSONDecodeError as e:
        raise OracleUnavailable(f"Oracle returned unparsable output: {e}") from e
    if not isinstance(data, dict):
        raise OracleUnavailable(f"Oracle returned {type(data).__name__}, expected an object")
    return data


@dataclass(frozen=True)
class Judgement:
    """Correction of a free-text attempt."""
    corrected_text: str
    feedback_text: str
    is_correct: bool
    alternative_text: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Judgement":
        """Create a judgement from the oracle's camelCase or snake_case keys."""
        corrected = data.get("correctedEn", data.get("correctedText", data.get("corrected_text")))
        if corrected is None:
            raise OracleUnavailable("Judgement is missing the corrected text")
        return cls(
            corrected_text=corrected,
            feedback_text=data.get("feedbackEs", data.get("feedbackText", data.get("feedback_text", ""))),
            is_correct=bool(data.get("isCorrect", data.get("is_correct", False))),
            alternative_text=data.get(
                "professionalAlternative", data.get("alternativeText", data.get("alternative_text", corrected))
            ),
        )

    @classmethod
    def degraded(cls, user_input: str) -> "Judgement":
        """Answer used when the correction oracle cannot be reached."""
        return cls(
            corrected_text=user_input,
            feedback_text=FALLBACK_FEEDBACK,
            is_correct=False,
            alternative_text=user_input,
        )


class PlanOracle(ABC):
    """External weekly-plan generator."""

    @abstractmethod
    async def generate_plan(
        self, profile: UserProfile, recent_mistakes: Sequence[str], week_number: int
    ) -> Union[WeeklyPlan, Dict[str, Any], str]:
        """Generate a plan; raw text or a parsed document are accepted."""


class JudgeOracle(ABC):
    """External correctness oracle for practice attempts."""

    @abstractmethod
    async def judge_attempt(
        self, user_input: str, context: str, prompt_instruction: str
    ) -> Union[Judgement, Dict[str, Any], str]:
        """Judge an attempt; raw text or a parsed document are accepted."""


def _scenario_goal(day: str, goal: str, time: str, title: str, prompt: str, context: str, theory: str) -> DailyGoal:
    return DailyGoal(
        day=day,
        goal=goal,
        time=time,
        practice_scenario=PracticeScenario(title=title, prompt=prompt, context=context, theory=theory),
    )


def default_weekly_plan(week_number: int) -> WeeklyPlan:
    """Built-in five-day plan with a fixed starter vocabulary."""
    professional = VocabularyCategory.PROFESSIONAL
    return WeeklyPlan(
        week_number=week_number,
        main_focus="Comunicación profesional básica",
        grammar_focus="Present Simple vs Present Continuous",
        daily_goals=(
            _scenario_goal(
                "Lunes", "Practicar saludos y presentaciones", "10 min",
                "Professional Introduction", "Preséntate a un nuevo compañero de trabajo", "Meeting",
                'Usa "I am" para información permanente y "I work" para tu rol actual.',
            ),
            _scenario_goal(
                "Martes", "Escribir un email de seguimiento", "15 min",
                "Follow-up Email", "Escribe un email de seguimiento después de una reunión", "Email",
                'Comienza con "Thank you for..." o "Following up on..."',
            ),
            _scenario_goal(
                "Miércoles", "Daily standup update", "10 min",
                "Daily Meeting Update", "Explica qué hiciste ayer y en qué trabajarás hoy", "Daily Standup",
                'Usa Past Simple para ayer ("I finished...") y will/going to para hoy.',
            ),
            _scenario_goal(
                "Jueves", "Pedir clarificación educadamente", "10 min",
                "Requesting Clarification", "Un compañero te envió instrucciones confusas. Pide clarificación.",
                "Slack/Chat", 'Usa "Could you please clarify...?" para sonar educado.',
            ),
            _scenario_goal(
                "Viernes", "Resumen semanal", "15 min",
                "Weekly Summary", "Escribe un resumen de tus logros de la semana para tu manager", "Email",
                'Usa "I completed...", "I achieved...", "Next week I will..."',
            ),
        ),
        new_vocabulary=(
            VocabularyItem("v1", "deadline", "fecha límite", "The deadline is next Friday.", professional),
            VocabularyItem("v2", "feedback", "retroalimentación", "Could you give me some feedback?", professional),
            VocabularyItem("v3", "stakeholder", "parte interesada", "We need to update the stakeholders.", professional),
            VocabularyItem("v4", "milestone", "hito", "We reached an important milestone.", professional),
            VocabularyItem("v5", "blocker", "impedimento", "I have a blocker on this task.", professional),
        ),
    )


class PlanGenerator:
    """Generates weekly plans, falling back to the built-in template."""

    def __init__(self, oracle: Optional[PlanOracle] = None):
        self.oracle = oracle

    async def generate(
        self, profile: UserProfile, recent_mistakes: Sequence[str], week_number: int
    ) -> WeeklyPlan:
        """Generate the plan for a week, never failing."""
        if self.oracle is None:
            return self._fallback(week_number, "no plan oracle configured")
        mistakes = list(recent_mistakes)[-settings.learning.recent_mistakes_limit:]
        try:
            result = await self.oracle.generate_plan(profile, mistakes, week_number)
            if isinstance(result, WeeklyPlan):
                return result
            if isinstance(result, str):
                result = parse_oracle_json(result)
            return WeeklyPlan.from_dict(result)
        except (OracleUnavailable, ValidationFailure) as e:
            return self._fallback(week_number, str(e))
        except Exception as e:
            return self._fallback(week_number, f"oracle call failed: {e}")

    def _fallback(self, week_number: int, reason: str) -> WeeklyPlan:
        oracle_fallbacks.labels(operation="generate_plan").inc()
        logger.error(f"Error generating weekly plan, using default plan: {reason}")
        return default_weekly_plan(week_number)


class AttemptJudge:
    """Judges practice attempts, degrading instead of failing."""

    def __init__(self, oracle: Optional[JudgeOracle] = None):
        self.oracle = oracle

    async def judge(self, user_input: str, context: str, prompt_instruction: str) -> Judgement:
        """Judge an attempt, never failing."""
        if self.oracle is None:
            return self._fallback(user_input, "no judge oracle configured")
        try:
            result = await self.oracle.judge_attempt(user_input, context, prompt_instruction)
            if isinstance(result, Judgement):
                return result
            if isinstance(result, str):
                result = parse_oracle_json(result)
            return Judgement.from_dict(result)
        except OracleUnavailable as e:
            return self._fallback(user_input, str(e))
        except Exception as e:
            return self._fallback(user_input, f"oracle call failed: {e}")

    def _fallback(self, user_input: str, reason: str) -> Judgement:
        oracle_fallbacks.labels(operation="judge_attempt").inc()
        logger.error(f"Error getting correction, returning degraded result: {reason}")
        return Judgement.degraded(user_input)
