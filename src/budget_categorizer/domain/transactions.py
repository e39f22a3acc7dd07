from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from budget_categorizer.models import CategorizationStatus


@dataclass(frozen=True)
class PendingTransaction:
    transaction_id: int | str
    owner_id: str
    description: str


def _record(payload: dict[str, Any]) -> dict[str, Any] | None:
    record = payload.get("record")
    if isinstance(record, dict):
        return record
    return None


def describe_webhook_event(payload: dict[str, Any]) -> str:
    event = payload.get("type") or "?"
    table = payload.get("table") or "?"
    return f"{event} on {table}"


def extract_pending_transaction(
    payload: dict[str, Any],
    *,
    table: str = "transactions",
) -> tuple[PendingTransaction | None, str | None]:
    """
    Pull a transaction waiting for AI categorization out of a database webhook payload.

    Returns the transaction, or None together with the reason it was ignored.
    """
    if str(payload.get("type", "")).upper() != "INSERT":
        return None, "not an insert"
    if payload.get("table") != table:
        return None, "unexpected table"

    record = _record(payload)
    if record is None:
        return None, "missing record"

    status = record.get("categorization_status")
    if status != CategorizationStatus.PENDING.value:
        return None, "not pending"

    transaction_id = record.get("id")
    owner_id = record.get("user_id")
    if transaction_id is None or not owner_id:
        return None, "missing transaction id or owner"

    return PendingTransaction(
        transaction_id=transaction_id,
        owner_id=str(owner_id),
        description=str(record.get("description") or ""),
    ), None
