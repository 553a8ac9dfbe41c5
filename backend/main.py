"""
ObsMetrics — Classroom Observation Analytics & Reporting
FastAPI backend entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core import config
from core.clock import SystemClock
from core.dashboard import TIME_PERIODS
from core.errors import AnalyticsError
from core.records import GRANULARITIES
from core.report_builder import LANGUAGES, REPORT_FORMATS
from core.scope import GEOGRAPHIC_TYPES
from core.store import DatasetStore
from core.trends import TREND_METRICS
from routes.analytics import router as analytics_router
from routes.datasets import router as datasets_router
from routes.reports import router as reports_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("obsmetrics")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.datasets = DatasetStore(config.DATASET_TTL_SECONDS)
    app.state.clock = SystemClock()
    logger.info("%s started", config.APP_NAME)
    yield
    app.state.datasets.clear()
    logger.info("%s stopped, dataset store cleared", config.APP_NAME)


app = FastAPI(
    title=f"{config.APP_NAME} API",
    description=(
        "Classroom observation analytics — metrics, trends, comparisons, "
        "dashboards and reports, scoped to each user's place in the hierarchy."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# CORS for the dashboard frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AnalyticsError)
async def analytics_error_handler(request: Request, exc: AnalyticsError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected (%d): %s", request.method, request.url.path, exc.status_code, exc)
    detail = str(exc) if config.EXPOSE_ERROR_DETAIL else type(exc).__name__
    return JSONResponse(status_code=exc.status_code, content={"detail": detail})


# Register route modules
app.include_router(datasets_router, prefix="/api/datasets", tags=["Datasets"])
app.include_router(analytics_router, prefix="/api/analytics", tags=["Analytics"])
app.include_router(reports_router, prefix="/api/reports", tags=["Reports"])


@app.get("/api/health")
async def health_check(request: Request):
    return {
        "status": "ok",
        "app_name": config.APP_NAME,
        "datasets": len(request.app.state.datasets),
    }


@app.get("/api/config")
async def get_config():
    """Return server configuration to the frontend."""
    return {
        "app_name": config.APP_NAME,
        "organisation": config.ORG_NAME,
        "default_time_period": config.DEFAULT_TIME_PERIOD,
        "time_periods": TIME_PERIODS,
        "granularities": GRANULARITIES,
        "trend_metrics": TREND_METRICS,
        "entity_types": GEOGRAPHIC_TYPES,
        "report_formats": REPORT_FORMATS,
        "languages": LANGUAGES,
    }
