from collections.abc import Sequence
from typing import Any

from budget_categorizer.models import Category

MAX_DESCRIPTION_LENGTH = 500
MAX_REASONING_LENGTH = 200

CATEGORY_SCHEMA_NAME = "transaction_category"


def truncate_description(description: str, limit: int = MAX_DESCRIPTION_LENGTH) -> str:
    if len(description) <= limit:
        return description
    return description[:limit] + "..."


def build_system_prompt(categories: Sequence[Category]) -> str:
    category_lines = "\n".join(f"- {category.key}: {category.name}" for category in categories)
    return (
        "You are an expert in personal finance categorization. Your task is to analyze "
        "transaction descriptions and categorize them into appropriate spending categories.\n"
        "\n"
        "Available categories:\n"
        f"{category_lines}\n"
        "\n"
        "Analyze the transaction description and provide:\n"
        "1. The most appropriate category key (use the exact keys listed above)\n"
        "2. A confidence score (0-1) indicating your certainty\n"
        "3. A brief reasoning explaining your choice\n"
        "\n"
        "Be precise and consistent in your categorization."
    )


def build_user_prompt(description: str, category_keys: Sequence[str]) -> str:
    return (
        f'Categorize this transaction: "{description}"\n'
        "\n"
        f"Available categories: {', '.join(category_keys)}\n"
        "\n"
        "Respond with a JSON object containing:\n"
        "- categoryKey: exact category key from the list\n"
        "- confidence: number 0-1 indicating certainty\n"
        f"- reasoning: brief explanation (max {MAX_REASONING_LENGTH} chars)"
    )


def build_category_schema(category_keys: Sequence[str]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "categoryKey": {
                "type": "string",
                "enum": list(category_keys),
                "description": "The suggested category key for the transaction",
            },
            "confidence": {
                "type": "number",
                "minimum": 0,
                "maximum": 1,
                "description": "How certain the model is about the categorization, between 0 and 1",
            },
            "reasoning": {
                "type": "string",
                "minLength": 1,
                "maxLength": MAX_REASONING_LENGTH,
                "description": "A brief explanation of why this category was chosen",
            },
        },
        "required": ["categoryKey", "confidence", "reasoning"],
        "additionalProperties": False,
    }
