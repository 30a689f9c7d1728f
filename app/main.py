# =============================================================================
# Know Your Fan API — FastAPI Application Entry Point
# =============================================================================
#
# Run with:
#   uvicorn app.main:app --reload
#
# Logging is configured here, once, from settings.log_level. Every other
# module only does logging.getLogger(__name__).
#
# The SQL document store needs its table; it is created on startup when
# document_store_type is "sql". The in-memory store needs nothing.
# =============================================================================

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api import chat, documents
from app.config import settings
from app.db.engine import create_schema
from app.models.responses import HealthResponse

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.document_store_type == "sql":
        await create_schema()
        logger.info("Document table ready at %s", settings.database_url)
    logger.info(
        "%s %s started (store=%s, llm=%s)",
        settings.app_name, settings.app_version,
        settings.document_store_type, settings.llm_provider,
    )
    yield


app = FastAPI(
    title=settings.app_name,
    description=(
        "Document verification and search-grounded chat for the "
        f"{settings.organization_name} Know Your Fan programme"
    ),
    version=settings.app_version,
    lifespan=lifespan,
)

app.include_router(documents.router)
app.include_router(chat.router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    return HealthResponse(
        version=settings.app_version, service=settings.app_name,
    )
