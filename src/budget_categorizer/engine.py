import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from budget_categorizer.domain.categories import (
    CATEGORY_KEYS,
    MIN_CONFIDENCE_THRESHOLD,
    OTHER_CATEGORY_KEY,
    clamp_confidence,
    default_categories,
)
from budget_categorizer.domain.prompts import (
    CATEGORY_SCHEMA_NAME,
    build_category_schema,
    build_system_prompt,
    build_user_prompt,
    truncate_description,
)
from budget_categorizer.integration.base import CategoryRepository
from budget_categorizer.integration.errors import indicates_schema_unsupported
from budget_categorizer.integration.openrouter import CompletionClient, LooseJson, StrictSchema
from budget_categorizer.logger import get_logger
from budget_categorizer.models import CategorizationResult, Category, ModelIdentifier

logger = get_logger(__name__)

DEFAULT_FREE_MODELS: tuple[ModelIdentifier, ...] = (
    "google/gemini-2.0-flash-exp:free",
    "meta-llama/llama-3.2-3b-instruct:free",
    "meta-llama/llama-3.2-1b-instruct:free",
)
DEFAULT_PAID_MODELS: tuple[ModelIdentifier, ...] = (
    "openai/gpt-4o-mini",
    "anthropic/claude-3-haiku",
)

DEFAULT_REASONING = "AI categorization completed"
AI_DISABLED_REASONING = "AI categorization unavailable: OPENROUTER_API_KEY is not set."


class CategorizationValidationError(ValueError):
    """The model answered, but not with a usable categorization."""


@dataclass(frozen=True)
class ModelAttempt:
    model: ModelIdentifier
    error: str


def build_model_chain(
    primary_model: ModelIdentifier | None = None,
    fallback_models: Iterable[ModelIdentifier] | None = None,
) -> tuple[ModelIdentifier, ...]:
    """
    Order: configured primary model, then either the configured fallback list or
    the default free models followed by the default paid ones.
    """
    candidates: list[ModelIdentifier] = []
    if primary_model:
        candidates.append(primary_model)
    configured = [model for model in (fallback_models or []) if model]
    if configured:
        candidates.extend(configured)
    else:
        candidates.extend(DEFAULT_FREE_MODELS)
        candidates.extend(DEFAULT_PAID_MODELS)

    chain: list[ModelIdentifier] = []
    for model in candidates:
        if model not in chain:
            chain.append(model)
    return tuple(chain)


def _parse_confidence(value: Any) -> float:
    if isinstance(value, bool):
        raise CategorizationValidationError("Invalid response: missing or invalid confidence")
    if isinstance(value, (int, float)):
        confidence = float(value)
    elif isinstance(value, str):
        try:
            confidence = float(value.strip())
        except ValueError as exc:
            raise CategorizationValidationError(
                "Invalid response: confidence is not a valid number"
            ) from exc
    else:
        raise CategorizationValidationError("Invalid response: missing or invalid confidence")

    if math.isnan(confidence):
        raise CategorizationValidationError("Invalid response: confidence is not a valid number")
    return confidence


def validate_and_normalize(raw: Any, valid_keys: Iterable[str]) -> CategorizationResult:
    """
    Turn an untrusted model answer into a CategorizationResult.

    Raises CategorizationValidationError when the key or the confidence is unusable.
    Low-confidence and unknown-key answers are not errors: they are rewritten to
    the 'other' category with an explanatory prefix on the reasoning.
    """
    if not isinstance(raw, dict):
        raise CategorizationValidationError("Invalid response: not an object")

    category_key = raw.get("categoryKey")
    if not category_key or not isinstance(category_key, str):
        raise CategorizationValidationError("Invalid response: missing or invalid categoryKey")

    confidence = clamp_confidence(_parse_confidence(raw.get("confidence")))

    reasoning = raw.get("reasoning")
    if isinstance(reasoning, str) and reasoning.strip():
        reasoning = reasoning.strip()
    else:
        reasoning = DEFAULT_REASONING

    if confidence < MIN_CONFIDENCE_THRESHOLD:
        return CategorizationResult(
            category_key=OTHER_CATEGORY_KEY,
            confidence=confidence,
            reasoning=f"Low confidence ({confidence:.2f}): {reasoning}",
        )

    if category_key not in set(valid_keys):
        logger.warning("[AI] Model returned unexpected category '%s'.", category_key)
        return CategorizationResult(
            category_key=OTHER_CATEGORY_KEY,
            confidence=confidence,
            reasoning=f'Invalid category "{category_key}": {reasoning}',
        )

    return CategorizationResult(category_key=category_key, confidence=confidence, reasoning=reasoning)


class CategorizationEngine:
    TEMPERATURE = 0.2
    MAX_TOKENS = 150

    def __init__(
        self,
        completion: CompletionClient | None,
        categories: CategoryRepository | None = None,
        primary_model: ModelIdentifier | None = None,
        fallback_models: Iterable[ModelIdentifier] | None = None,
    ) -> None:
        self.completion = completion
        self.categories = categories
        self.models = build_model_chain(primary_model, fallback_models)
        logger.info("[AI] Model fallback chain: %s", ", ".join(self.models) or "(empty)")

    async def _load_categories(self) -> list[Category]:
        if self.categories is not None:
            try:
                live = await self.categories.list_categories()
            except Exception as exc:
                logger.warning("[AI] Could not load categories, using built-in list: %s", exc)
            else:
                if live:
                    return live
        return default_categories()

    async def categorize(self, description: str) -> CategorizationResult:
        if not description or not description.strip():
            return CategorizationResult(
                category_key=OTHER_CATEGORY_KEY,
                confidence=0.0,
                reasoning="No description provided",
            )

        if self.completion is None:
            logger.warning("[AI] No completion client configured, skipping AI categorization.")
            return CategorizationResult(
                category_key=OTHER_CATEGORY_KEY,
                confidence=0.0,
                reasoning=AI_DISABLED_REASONING,
            )

        prompt_description = truncate_description(description)
        categories = await self._load_categories()

        attempts: list[ModelAttempt] = []
        for model in self.models:
            logger.debug("[AI] Attempting categorization with %s.", model)
            try:
                result = await self._categorize_with_model(model, prompt_description, categories)
            except Exception as exc:
                logger.warning("[AI] Model %s failed: %s", model, exc)
                attempts.append(ModelAttempt(model=model, error=str(exc)))
                continue

            logger.info(
                "[AI] Categorized with %s as '%s' (confidence: %.2f).",
                model,
                result.category_key,
                result.confidence,
            )
            return result

        logger.error(
            "[AI] All models failed for categorization: %s",
            "; ".join(f"{attempt.model}: {attempt.error}" for attempt in attempts) or "no models configured",
        )
        return CategorizationResult(
            category_key=OTHER_CATEGORY_KEY,
            confidence=0.0,
            reasoning=f"AI categorization unavailable. Tried {len(attempts)} model(s).",
        )

    async def categorize_many(self, descriptions: Sequence[str]) -> list[CategorizationResult]:
        # Sequential on purpose: parallel requests would burn through free-tier quotas.
        return [await self.categorize(description) for description in descriptions]

    async def _categorize_with_model(
        self,
        model: ModelIdentifier,
        description: str,
        categories: Sequence[Category],
    ) -> CategorizationResult:
        live_keys = [category.key for category in categories]
        system_prompt = build_system_prompt(categories)
        user_prompt = build_user_prompt(description, live_keys)

        try:
            raw = await self.completion.request_structured_completion(
                model=model,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                response_format=StrictSchema(
                    name=CATEGORY_SCHEMA_NAME,
                    schema=build_category_schema(CATEGORY_KEYS),
                ),
                temperature=self.TEMPERATURE,
                max_tokens=self.MAX_TOKENS,
            )
        except Exception as exc:
            if not indicates_schema_unsupported(exc):
                raise
            logger.info("[AI] %s does not support json_schema, retrying with json_object.", model)
        else:
            return validate_and_normalize(raw, CATEGORY_KEYS)

        raw = await self.completion.request_structured_completion(
            model=model,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            response_format=LooseJson(),
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
        )
        return validate_and_normalize(raw, live_keys)
