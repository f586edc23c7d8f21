"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from esg_pipeline.api.v1 import esg
from esg_pipeline.core.config import settings
from esg_pipeline.core.logging import get_logger, setup_logging
from esg_pipeline.db.session import async_session, init_models
from esg_pipeline.submission.service import build_services


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks."""
    setup_logging("DEBUG" if settings.APP_ENV == "development" else settings.LOG_LEVEL)
    logger = get_logger("startup")
    logger.info("Application starting", env=settings.APP_ENV, esg_environment=settings.ESG_ENVIRONMENT)

    await init_models()
    services = build_services(async_session)
    app.state.esg = services
    app.state.background_tasks = set()
    await services.poller.start()

    yield

    logger.info("Application shutting down")
    for task in list(app.state.background_tasks):
        task.cancel()
    await services.aclose()


app = FastAPI(
    title="ESG Submission API",
    description="FDA ESG NextGen submission and acknowledgment tracking",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

API_PREFIX = "/api/v1"
app.include_router(esg.router, prefix=API_PREFIX)


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Public health-check endpoint."""
    return {"status": "ok", "env": settings.APP_ENV}
