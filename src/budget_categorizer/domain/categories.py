from budget_categorizer.models import CategorizationResult, Category

OTHER_CATEGORY_KEY = "other"

# Keys the strict response schema is allowed to return. Must match the `key`
# column of the categories table.
CATEGORY_KEYS: tuple[str, ...] = (
    "groceries",
    "transport",
    "entertainment",
    "dining",
    "utilities",
    "healthcare",
    "shopping",
    "education",
    "housing",
    "insurance",
    "savings",
    OTHER_CATEGORY_KEY,
)

# Used for prompts when the live category table cannot be read.
DEFAULT_CATEGORIES: dict[str, str] = {
    "groceries": "Groceries",
    "transport": "Transport",
    "entertainment": "Entertainment",
    "dining": "Restaurants & cafes",
    "utilities": "Bills & utilities",
    "healthcare": "Health",
    "shopping": "Shopping",
    "education": "Education",
    "housing": "Housing",
    "insurance": "Insurance",
    "savings": "Savings",
    OTHER_CATEGORY_KEY: "Other",
}

MIN_CONFIDENCE_THRESHOLD = 0.5


def default_categories() -> list[Category]:
    # Synthetic ids; these never reach the store.
    return [
        Category(id=index, key=key, name=DEFAULT_CATEGORIES[key])
        for index, key in enumerate(CATEGORY_KEYS, start=1)
    ]


def clamp_confidence(value: float) -> float:
    return max(0.0, min(1.0, value))


def is_ai_categorized(result: CategorizationResult) -> bool:
    """A result counts as AI-categorized unless it is a zero or low-confidence fallback to 'other'."""
    if result.confidence <= 0:
        return False
    return result.category_key != OTHER_CATEGORY_KEY or result.confidence >= MIN_CONFIDENCE_THRESHOLD
