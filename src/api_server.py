"""
FastAPI API Server.

Receives Twilio webhooks for the SMS survey conversation and serves the
survey dashboard and admin endpoints.

Start with:
    uvicorn src.api_server:app --reload --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from dotenv import load_dotenv
load_dotenv(".env.local")

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.admin import API_VERSION, router as admin_router
from src.api.middleware import RequestIdMiddleware, RateLimitMiddleware
from src.api.surveys import router as surveys_router
from src.api.webhooks import router as webhooks_router
from src.config import get_settings
from src.errors import SurveyServiceError
from src.logging_config import setup_logging, get_logger
from src.services.survey_service import close_survey_service

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    logger.info(
        "api_server_starting",
        environment=settings.environment.value,
        dealership=settings.dealership_name,
        visit_locks="redis" if settings.redis_url else "local",
    )
    yield
    await close_survey_service()
    logger.info("api_server_stopping")


app = FastAPI(
    title="Service Survey SMS API",
    description="SMS customer-satisfaction surveys for automotive service visits",
    version=API_VERSION,
    lifespan=lifespan,
)

# The last middleware added is outermost: CORS wraps request IDs, which wrap rate limiting
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["*"],
)

app.include_router(webhooks_router)
app.include_router(surveys_router)
app.include_router(admin_router)


@app.exception_handler(SurveyServiceError)
async def survey_service_error_handler(request: Request, exc: SurveyServiceError) -> JSONResponse:
    logger.error("unhandled_service_error", path=request.url.path, error=str(exc), error_type=type(exc).__name__)
    return JSONResponse(status_code=500, content={"error": "Internal service error"})


@app.get("/health", tags=["System"])
async def health_check() -> dict[str, str]:
    return {"status": "ok", "service": "service-survey-sms"}


@app.get("/", tags=["System"])
async def root() -> dict[str, str]:
    return {
        "service": "Service Survey SMS",
        "version": API_VERSION,
        "docs": "/docs",
    }
