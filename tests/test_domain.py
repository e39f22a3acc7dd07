import pytest

from budget_categorizer.domain.categories import (
    CATEGORY_KEYS,
    DEFAULT_CATEGORIES,
    default_categories,
    is_ai_categorized,
)
from budget_categorizer.domain.prompts import (
    build_category_schema,
    build_system_prompt,
    build_user_prompt,
    truncate_description,
)
from budget_categorizer.domain.transactions import PendingTransaction, extract_pending_transaction
from budget_categorizer.models import CategorizationResult


@pytest.mark.parametrize(
    ("key", "confidence", "expected"),
    [
        ("dining", 0.95, True),
        ("dining", 0.0, False),
        ("other", 0.0, False),
        ("other", 0.3, False),
        ("other", 0.5, True),
        ("other", 0.9, True),
    ],
)
def test_is_ai_categorized(key: str, confidence: float, expected: bool) -> None:
    result = CategorizationResult(category_key=key, confidence=confidence, reasoning="r")
    assert is_ai_categorized(result) is expected


def test_default_catalogue_covers_known_keys() -> None:
    assert set(DEFAULT_CATEGORIES) == set(CATEGORY_KEYS)
    assert [category.key for category in default_categories()] == list(CATEGORY_KEYS)


def test_truncate_description() -> None:
    assert truncate_description("Coffee") == "Coffee"
    assert truncate_description("a" * 500) == "a" * 500
    assert truncate_description("a" * 501) == "a" * 500 + "..."


def test_prompts_mention_categories_and_json() -> None:
    categories = default_categories()[:2]

    system_prompt = build_system_prompt(categories)
    user_prompt = build_user_prompt("Coffee at Starbucks", ["groceries", "transport"])

    assert "- groceries: Groceries" in system_prompt
    assert "- transport: Transport" in system_prompt
    assert '"Coffee at Starbucks"' in user_prompt
    assert "groceries, transport" in user_prompt
    assert "JSON" in user_prompt


def test_category_schema_is_strict() -> None:
    schema = build_category_schema(CATEGORY_KEYS)

    assert schema["properties"]["categoryKey"]["enum"] == list(CATEGORY_KEYS)
    assert schema["required"] == ["categoryKey", "confidence", "reasoning"]
    assert schema["additionalProperties"] is False


def test_extract_pending_transaction() -> None:
    payload = {
        "type": "INSERT",
        "table": "transactions",
        "record": {
            "id": 3,
            "user_id": "b0a1",
            "description": None,
            "categorization_status": "pending",
        },
    }

    pending, reason = extract_pending_transaction(payload)

    assert reason is None
    assert pending == PendingTransaction(transaction_id=3, owner_id="b0a1", description="")
