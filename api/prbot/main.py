"""
FastAPI application for the PR Reaction Bot.
This module sets up the API server with routes, metrics, and error handling.
"""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from prbot.core.config import get_settings
from prbot.core.error_handlers import register_exception_handlers
from prbot.routes import github_webhook, health, slack_commands
from prbot.services.announcement import AnnouncementService
from prbot.services.coordination import InMemoryKeyedLock
from prbot.services.identity_repository import IdentityRepository
from prbot.services.pr_cache import create_pr_cache
from prbot.services.reaction_client import ReactionClient
from prbot.services.reconciliation import ReconciliationEngine
from prbot.services.slack_client import SlackClient
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from prometheus_fastapi_instrumentator import Instrumentator
from prometheus_fastapi_instrumentator import metrics as instrumentator_metrics

# Configure logging
logging.basicConfig(
    level=get_settings().LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger("prbot.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Application startup...")

    settings = get_settings()
    app.state.settings = settings

    # Create data directories (avoid import-time I/O)
    settings.ensure_data_dirs()

    logger.info("Initializing identity store...")
    identity = IdentityRepository(settings.IDENTITY_DB_PATH)
    identity.seed(
        settings.REVIEWER_GROUP_CHANNEL_MAP,  # type: ignore[arg-type]
        settings.GITHUB_TO_SLACK_USER_MAP,  # type: ignore[arg-type]
    )

    logger.info(f"Initializing PR cache ({settings.PR_CACHE_BACKEND} backend)...")
    pr_cache = await create_pr_cache(settings)
    purged = await pr_cache.purge_expired()
    if purged:
        logger.info(f"Purged {purged} expired PR tracking records")

    if not settings.SLACK_BOT_TOKEN:
        logger.warning("SLACK_BOT_TOKEN is not set - Slack calls will fail")
    slack = SlackClient(
        token=settings.SLACK_BOT_TOKEN,
        base_url=settings.SLACK_API_URL,
        timeout=settings.SLACK_API_TIMEOUT,
        max_retries=settings.SLACK_API_MAX_RETRIES,
    )

    # Outer bound covers the client's own retries
    call_budget = settings.SLACK_API_TIMEOUT * (settings.SLACK_API_MAX_RETRIES + 1)
    engine = ReconciliationEngine(
        cache=pr_cache,
        reactions=ReactionClient(slack, timeout=call_budget),
        guard=InMemoryKeyedLock(),
        identity=identity,
        announcer=AnnouncementService(slack, timeout=call_budget),
        required_approvals=settings.required_approvals,
    )

    app.state.identity = identity
    app.state.pr_cache = pr_cache
    app.state.slack_client = slack
    app.state.engine = engine
    logger.info("Reconciliation engine ready")

    # Yield control to the application
    yield

    # Shutdown
    logger.info("Application shutdown...")
    await slack.aclose()
    await pr_cache.close()


# Create FastAPI application
app = FastAPI(
    title=get_settings().PROJECT_NAME,
    docs_url="/api/docs",
    lifespan=lifespan,
)

# Set up Prometheus metrics
# DON'T call .expose() - /metrics is served below so reconciliation metrics are included
instrumentator = Instrumentator(
    should_group_status_codes=False,
    should_ignore_untemplated=True,
    should_respect_env_var=False,  # Always enable metrics
    excluded_handlers=["/health", "/health/live", "/health/ready", "/metrics"],
)
instrumentator.add(instrumentator_metrics.default())
instrumentator.instrument(app)


@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(github_webhook.router, tags=["GitHub"])
app.include_router(slack_commands.router, tags=["Slack"])

# Register exception handlers
register_exception_handlers(app)


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    # Bind to 0.0.0.0 only in DEBUG mode (container/development)
    host = "0.0.0.0" if settings.DEBUG else "127.0.0.1"

    uvicorn.run(
        "prbot.main:app",
        host=host,
        port=8000,
        reload=settings.DEBUG,
    )
