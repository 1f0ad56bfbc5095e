"""FastAPI application wiring for DealerFlow.

This module bootstraps the HTTP API:

- Configures logging, optional CORS for the dealer dashboard, Prometheus
  metrics and rate limiting.
- Mounts the channel webhooks (SMS, email), the web chat endpoint and the
  staff conversation routes, agent operations and the dealer dashboard.
- Exposes a dependency-checking health endpoint and version info.

Heavy lifting happens in :mod:`dealerflow.conversations.orchestrator`; slow
side effects (CRM sync, bookings, staff notifications) run in Celery workers
started from :mod:`dealerflow.jobs.celery_app`.
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .core.health import overall_health
from .core.rate_limit import get_client_ip, limiter
from .routers import agent, chat, conversations, dashboard, webhooks

load_dotenv()

logger = logging.getLogger(__name__)

app = FastAPI(title="DealerFlow", version=__version__)
init_logging(app)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
# Optional CORS for the dealer dashboard
dashboard_origins = os.getenv("DASHBOARD_ORIGINS")
if dashboard_origins:
    origins = [o.strip() for o in dashboard_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
app.include_router(webhooks.router)
app.include_router(chat.router)
app.include_router(conversations.router)
app.include_router(agent.router)
app.include_router(dashboard.router)

# Expose Prometheus metrics
Instrumentator().instrument(app).expose(
    app, include_in_schema=False, endpoint="/api/metrics"
)


@app.get("/api/health")
def health():
    """Readiness check: 200 when Postgres and Redis answer, 503 otherwise."""
    healthy, body = overall_health()
    return JSONResponse(body, status_code=200 if healthy else 503)


@app.get("/api/version")
async def version():
    """Return version information for the application."""
    return {
        "version": __version__,
        "build_date": __build_date__,
        "commit_sha": __commit_sha__,
    }


__all__ = ["app", "get_client_ip", "limiter"]
