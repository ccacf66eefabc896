"""FastAPI application wiring for the workshop WhatsApp concierge.

- Configures logging, Prometheus metrics and rate limiting.
- Mounts the WhatsApp webhook routes (Meta Cloud API, Twilio, WAHA).
- Exposes health and version endpoints for probes.
"""

import logging

from dotenv import load_dotenv
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .core.rate_limit import limiter
from .routers import webhooks

load_dotenv()

logger = logging.getLogger(__name__)

app = FastAPI(title="Workshop Concierge", version=__version__)
init_logging(app)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.include_router(webhooks.router)

# Expose Prometheus metrics
Instrumentator().instrument(app).expose(
    app, include_in_schema=False, endpoint="/api/metrics"
)


@app.get("/api/health")
async def health():
    """Liveness/readiness probe with a minimal JSON body."""
    return {"status": "ok"}


@app.get("/api/version")
async def version():
    """Return version information for the application."""
    return {
        "version": __version__,
        "build_date": __build_date__,
        "commit_sha": __commit_sha__,
    }
