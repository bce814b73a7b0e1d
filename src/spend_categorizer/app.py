from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from spend_categorizer.api.errors import register_error_handlers
from spend_categorizer.api.routes import anomalies, categories, categorize, feedback, health
from spend_categorizer.core import settings
from spend_categorizer.logger import get_logger, setup_logging
from spend_categorizer.manager import CategorizerService
from spend_categorizer.services.categorization import CategorizationPipeline

logger = get_logger(__name__)


def create_app(service: CategorizerService | None = None) -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        active = service or CategorizerService(data_dir=settings.DATA_DIR)
        app.state.service = active
        app.state.pipeline = CategorizationPipeline(service=active)

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")

    app = FastAPI(title="Spend Categorizer", lifespan=lifespan)
    register_error_handlers(app)

    app.include_router(categorize.router)
    app.include_router(feedback.router)
    app.include_router(anomalies.router)
    app.include_router(categories.router)
    app.include_router(health.router)

    return app
