import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from budget_categorizer.api.routes import categorize, webhook
from budget_categorizer.core import settings
from budget_categorizer.engine import CategorizationEngine
from budget_categorizer.integration.openrouter import CompletionClient
from budget_categorizer.integration.supabase import SupabaseClient
from budget_categorizer.logger import get_logger, setup_logging
from budget_categorizer.services.categorization import BackgroundCategorizationService

logger = get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        store = SupabaseClient()
        if not store.configured:
            logger.warning("SUPABASE_URL or SUPABASE_KEY not set. Results cannot be stored.")
        app.state.store = store

        completion: CompletionClient | None = None
        if os.getenv("OPENROUTER_API_KEY"):
            completion = CompletionClient()
        else:
            logger.warning("OPENROUTER_API_KEY not set. New transactions will be completed without a category.")

        engine = CategorizationEngine(
            completion,
            categories=store,
            primary_model=os.getenv("OPENROUTER_MODEL"),
            fallback_models=settings.get_env_list("OPENROUTER_FALLBACK_MODELS"),
        )
        app.state.engine = engine
        app.state.background = BackgroundCategorizationService(
            engine,
            categories=store,
            transactions=store,
            max_concurrency=settings.CATEGORIZATION_MAX_CONCURRENCY,
        )

        logger.info("Services initialized.")
        yield

        logger.info("Service shutting down.")
        await app.state.background.aclose()
        if completion is not None:
            await completion.aclose()
        await store.aclose()

    app = FastAPI(title="Smart Budget Categorizer", lifespan=lifespan)

    app.include_router(categorize.router)
    app.include_router(webhook.router)

    return app


app = create_app()
