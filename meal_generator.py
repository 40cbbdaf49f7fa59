"""Single-meal generation against the completion service.

PlanGenerator asks the completion service for one meal and decodes the raw
text at the boundary into ``ValidMeal | ParseError``. It never retries and
never validates macros: every outcome, including transport failures, comes
back as an explicit MealGenerationResult for the caller to act on.
"""

from __future__ import annotations

import llm_auth_init  # noqa: F401

import concurrent.futures
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union

import json_repair
from crewai import Crew, Process
from pydantic import ValidationError

from agents import create_meal_generation_agent
from errors import AI_PARSE_FAILED, NutritionApiError
from food_lookup import FoodLookupService
from llm_config import MEAL_COMPLETION_TIMEOUT_SECONDS, create_agent_llm
from retry_utils import CircuitBreaker, CircuitBreakerOpen, classify_completion_error
from schemas import (
    Meal,
    MealBudget,
    ParseError,
    PlannedFoodItem,
    UserContext,
    ValidMeal,
)
from tasks import create_meal_generation_task
from validation_config import DEFAULT_CONFIG, NutritionPlanConfig, format_tolerances_for_prompt

logger = logging.getLogger(__name__)

MAX_REPAIR_INPUT_CHARS = 20000
REASONING_INDICATORS = (
    "thought:",
    "i need to",
    "let me",
    "looking at",
    "i should",
    "first,",
    "based on",
    "here is",
    "here's",
    "i will",
    "i'll",
)


# ============================================================================
# Request / Result Types
# ============================================================================


@dataclass(frozen=True)
class MealRequest:
    """Everything the completion service needs to compose one meal."""

    date: str
    budget: MealBudget
    user_context: UserContext
    plan_profile: str = "standard"
    avoid_composition: Tuple[str, ...] = ()
    validation_feedback: Tuple[str, ...] = ()
    tolerance_rules: str = ""


@dataclass(frozen=True)
class GeneratedMeal:
    meal: Meal
    explanation: Optional[str] = None
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class GenerationFailure:
    error: NutritionApiError
    ok: bool = field(default=False, init=False)

    @property
    def retryable(self) -> bool:
        return self.error.retryable


MealGenerationResult = Union[GeneratedMeal, GenerationFailure]


class CompletionService(Protocol):
    """Black-box completion backend: request in, raw text out.

    Implementations raise on transport failures (timeouts, quota, network);
    PlanGenerator classifies whatever they raise.
    """

    def complete(self, request: MealRequest) -> str:
        ...


# ============================================================================
# JSON Decoding (service boundary)
# ============================================================================


def clean_json_text(text: str) -> str:
    """Remove markdown fences, thought blocks, reasoning prefixes from JSON text."""
    text = re.sub(r"<thought>.*?</thought>", "", text.strip(), flags=re.DOTALL).strip()

    first_brace = text.find("{")
    if first_brace > 0:
        prefix_lower = text[:first_brace].lower()
        if "```" in prefix_lower or any(ind in prefix_lower for ind in REASONING_INDICATORS):
            text = text[first_brace:]

    text = re.sub(r"```(?:json)?\s*\n?", "", text)
    text = re.sub(r"\n?\s*```", "", text)
    return text.strip()


def extract_json_object(text: str) -> Optional[str]:
    """Extract the first complete JSON object using brace balancing.

    Handles escaped quotes and nested objects correctly.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape_next = False

    for i, char in enumerate(text[start:], start):
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    return None  # Unbalanced braces


def _load_payload(raw: str) -> Optional[Dict[str, Any]]:
    cleaned = clean_json_text(raw)
    extracted = extract_json_object(cleaned)

    for candidate in (extracted, cleaned):
        if not candidate:
            continue
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            try:
                parsed, _ = json.JSONDecoder().raw_decode(candidate)
            except json.JSONDecodeError:
                continue
        if isinstance(parsed, dict):
            return parsed

    # Malformed JSON (trailing commas, unquoted keys, truncated output)
    if cleaned and "{" in cleaned and len(cleaned) < MAX_REPAIR_INPUT_CHARS:
        repaired = json_repair.repair_json(cleaned[cleaned.find("{") :], return_objects=True)
        if isinstance(repaired, dict) and repaired:
            logger.debug("json_repair recovered payload with keys %s", list(repaired.keys()))
            return repaired
    return None


def decode_meal_completion(raw: Optional[str], expected_meal_type: str) -> Union[ValidMeal, ParseError]:
    """Decode raw completion text into a tagged ValidMeal or ParseError.

    Args:
        raw: Raw model output
        expected_meal_type: The slot that was requested

    Returns:
        ValidMeal when the output is a structurally valid meal of the
        requested type, otherwise ParseError with the reasons
    """
    excerpt = (raw or "")[:300]
    if not raw or not raw.strip():
        return ParseError(reasons=["Empty completion"], raw_excerpt=excerpt)

    payload = _load_payload(raw)
    if payload is None:
        return ParseError(reasons=["No JSON object found in completion"], raw_excerpt=excerpt)

    # Some models wrap the meal: {"meal": {...}}
    if "items" not in payload and isinstance(payload.get("meal"), dict):
        payload = payload["meal"]

    payload = {**payload, "kind": "valid"}
    if not any(key in payload for key in ("meal_type", "mealType", "type")):
        payload["meal_type"] = expected_meal_type

    try:
        meal = ValidMeal.model_validate(payload)
    except ValidationError as exc:
        reasons = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        ]
        return ParseError(reasons=reasons, raw_excerpt=excerpt)

    if meal.meal_type != expected_meal_type:
        return ParseError(
            reasons=[f"Expected meal_type '{expected_meal_type}', got '{meal.meal_type}'"],
            raw_excerpt=excerpt,
        )
    return meal


# ============================================================================
# Completion Service (CrewAI)
# ============================================================================


class CrewCompletionService:
    """Completion service backed by a one-agent CrewAI crew.

    Each call is bounded by ``timeout_seconds``; an expired call is reported
    as a timeout while the underlying request is left to finish on its own.
    """

    def __init__(
        self,
        llm: Any = None,
        timeout_seconds: float = MEAL_COMPLETION_TIMEOUT_SECONDS,
        circuit_breaker: Optional[CircuitBreaker] = None,
        max_workers: int = 8,
    ):
        self._llm = llm
        self.timeout_seconds = timeout_seconds
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name="meal_completion")
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="meal-completion"
        )

    @property
    def llm(self) -> Any:
        if self._llm is None:
            self._llm = create_agent_llm("MEAL_GENERATION")
        return self._llm

    def _kickoff(self, request: MealRequest) -> str:
        agent = create_meal_generation_agent(self.llm)
        task = create_meal_generation_task(
            agent,
            date=request.date,
            budget=request.budget.model_dump(),
            user_context=request.user_context.model_dump(),
            plan_profile=request.plan_profile,
            avoid_composition=request.avoid_composition,
            validation_feedback=list(request.validation_feedback),
            tolerance_rules=request.tolerance_rules,
        )
        crew = Crew(
            agents=[agent],
            tasks=[task],
            process=Process.sequential,
            verbose=False,
        )
        output = crew.kickoff()
        return output.raw or ""

    def complete(self, request: MealRequest) -> str:
        if not self.circuit_breaker.can_execute():
            raise CircuitBreakerOpen(
                f"Circuit breaker '{self.circuit_breaker.name}' is open; completion service unavailable"
            )

        future = self._executor.submit(self._kickoff, request)
        try:
            raw = future.result(timeout=self.timeout_seconds)
        except concurrent.futures.TimeoutError:
            self.circuit_breaker.record_failure()
            raise TimeoutError(
                f"Meal completion exceeded {self.timeout_seconds:.0f}s "
                f"({request.budget.meal_type} {request.date})"
            )
        except Exception:
            self.circuit_breaker.record_failure()
            raise

        self.circuit_breaker.record_success()
        return raw

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


# ============================================================================
# Plan Generator
# ============================================================================


class PlanGenerator:
    """Ask the completion service for one meal and decode the answer."""

    def __init__(
        self,
        completion_service: CompletionService,
        food_lookup: Optional[FoodLookupService] = None,
        config: NutritionPlanConfig = DEFAULT_CONFIG,
    ):
        self.completion_service = completion_service
        self.food_lookup = food_lookup
        self.config = config

    def generate_meal(
        self,
        date: str,
        budget: MealBudget,
        user_context: UserContext,
        plan_profile: str = "standard",
        avoid_composition: Optional[List[str]] = None,
        validation_feedback: Optional[List[str]] = None,
        attempt: int = 0,
    ) -> MealGenerationResult:
        """Generate one meal for a slot.

        Args:
            date: Day of the meal (YYYY-MM-DD)
            budget: The slot's macro budget
            user_context: Locale, diet type and food exclusions
            plan_profile: "standard" or "glp1"
            avoid_composition: Food names of a rejected earlier attempt
            validation_feedback: Why the earlier attempt was rejected
            attempt: Attempt number, used to keep item ids unique

        Returns:
            GeneratedMeal on success, GenerationFailure otherwise
        """
        request = MealRequest(
            date=date,
            budget=budget,
            user_context=user_context,
            plan_profile=plan_profile,
            avoid_composition=tuple(avoid_composition or ()),
            validation_feedback=tuple(validation_feedback or ()),
            tolerance_rules=format_tolerances_for_prompt(self.config),
        )

        try:
            raw = self.completion_service.complete(request)
        except Exception as exc:  # noqa: BLE001 - classified into the error taxonomy
            error = classify_completion_error(exc)
            logger.warning(
                "⚠️  %s %s attempt %d failed: %s (%s)",
                date,
                budget.meal_type,
                attempt,
                error.code,
                error.message,
            )
            return GenerationFailure(error)

        decoded = decode_meal_completion(raw, budget.meal_type)
        if isinstance(decoded, ParseError):
            logger.warning(
                "⚠️  %s %s attempt %d unparseable: %s",
                date,
                budget.meal_type,
                attempt,
                "; ".join(decoded.reasons),
            )
            return GenerationFailure(
                NutritionApiError(
                    AI_PARSE_FAILED,
                    f"Could not interpret completion as a {budget.meal_type}: {'; '.join(decoded.reasons)}",
                    details={"reasons": decoded.reasons, "raw_excerpt": decoded.raw_excerpt},
                )
            )

        return GeneratedMeal(meal=self._to_meal(decoded, date, attempt), explanation=decoded.explanation)

    def _to_meal(self, decoded: ValidMeal, date: str, attempt: int) -> Meal:
        items = [
            PlannedFoodItem(
                id=f"item-{date}-{decoded.meal_type}-{attempt}-{index}",
                name=item.name.strip(),
                quantity=item.quantity,
                unit=item.unit,
                calories=item.calories,
                protein_grams=item.protein_grams,
                carbs_grams=item.carbs_grams,
                fats_grams=item.fats_grams,
            )
            for index, item in enumerate(decoded.items)
        ]
        if self.food_lookup is not None:
            items = self.food_lookup.ground_items(items)
        return Meal(id=f"{decoded.meal_type}-{date}", type=decoded.meal_type, items=items)
