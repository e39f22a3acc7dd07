from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request

from budget_categorizer.api.dependencies import get_background
from budget_categorizer.api.schemas import WebhookResponse
from budget_categorizer.domain.transactions import (
    describe_webhook_event,
    extract_pending_transaction,
)
from budget_categorizer.logger import get_logger
from budget_categorizer.services.categorization import BackgroundCategorizationService

logger = get_logger(__name__)

router = APIRouter()


@router.post("/webhook/transactions", response_model=WebhookResponse, response_model_exclude_none=True)
async def transactions_webhook(
    request: Request,
    background: Annotated[BackgroundCategorizationService, Depends(get_background)],
) -> WebhookResponse:
    try:
        payload = await request.json()
    except ValueError as exc:
        logger.warning("[WEBHOOK] Received invalid JSON payload.")
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc

    if not isinstance(payload, dict):
        logger.warning("[WEBHOOK] Unexpected payload type: %s.", type(payload).__name__)
        return WebhookResponse(status="ignored", reason="unexpected payload")

    logger.debug("[WEBHOOK] Received %s.", describe_webhook_event(payload))
    pending, reason = extract_pending_transaction(payload)
    if pending is None:
        logger.debug("[WEBHOOK] Ignoring event: %s.", reason)
        return WebhookResponse(status="ignored", reason=reason)

    background.schedule_categorization(
        pending.transaction_id,
        pending.description,
        pending.owner_id,
    )
    logger.info("[WEBHOOK] Queued AI categorization for transaction %s.", pending.transaction_id)
    return WebhookResponse(status="queued")
