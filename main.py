"""
Unified backend entry point.

Architecture:
- One Python process, one asyncio event loop
- Three peer services running concurrently:
  1. FastAPI (HTTP server for the web frontend, including SSE streams)
  2. Realtime listener (LISTEN connection feeding the in-process change feed)
  3. Scheduler (periodic sweep of expired bans)

We use FastAPI's lifespan to manage startup/shutdown, but at runtime
all services are equal peers in the event loop. The lifespan pattern
gives us uvicorn's signal handling and --reload for free.

Run with: python main.py [--dev] [--no-realtime] [--port PORT]
"""

import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

# Load .env.local first (if exists), then .env as fallback
# .env.local is gitignored and used for local dev overrides
load_dotenv(project_root / ".env.local")  # Local overrides (gitignored)
load_dotenv()  # Fallback to .env

import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import (
    check_required_env_vars,
    get_allowed_origins,
    get_api_port,
    get_sentry_dsn,
)
from core.database import close_engine, is_configured
from core.realtime import PostgresChangeListener, change_feed
from core.scheduler import init_scheduler, shutdown_scheduler

from web_api.routes.admin import router as admin_router
from web_api.routes.check_ins import router as check_ins_router
from web_api.routes.focus_groups import router as focus_groups_router
from web_api.routes.messages import router as messages_router
from web_api.routes.realtime import router as realtime_router

sentry_dsn = get_sentry_dsn()
if sentry_dsn:
    sentry_sdk.init(
        dsn=sentry_dsn,
        environment=os.getenv("ENVIRONMENT", "development"),
        traces_sample_rate=0.1,
    )

_listener: PostgresChangeListener | None = None


def _realtime_disabled() -> bool:
    return os.getenv("DISABLE_REALTIME", "").lower() in ("true", "1", "yes")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context manager.

    Starts peer services (realtime listener, scheduler) in the background.
    They run concurrently with FastAPI in the same event loop.
    """
    global _listener

    ok, warnings = check_required_env_vars()
    for warning in warnings:
        print(warning)
    if not ok:
        raise RuntimeError("Missing required environment variables")

    if not is_configured():
        print("Warning: DATABASE_URL not set, realtime listener and scheduler disabled")
    elif _realtime_disabled():
        print("Realtime listener disabled (--no-realtime flag or DISABLE_REALTIME=true)")
        init_scheduler()
    else:
        print("Starting realtime listener...")
        _listener = PostgresChangeListener(change_feed)
        _listener.start()
        init_scheduler()

    yield  # FastAPI runs here, peer services run alongside it

    # Graceful shutdown of all peer services
    print("Shutting down peer services...")
    if _listener is not None:
        await _listener.stop()
        _listener = None
    shutdown_scheduler()
    await close_engine()  # Close database connections


# Create FastAPI app with lifespan
app = FastAPI(
    title="BeBusy API",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(focus_groups_router)
app.include_router(check_ins_router)
app.include_router(messages_router)
app.include_router(admin_router)
app.include_router(realtime_router)


@app.get("/api/status")
async def api_status():
    return {"status": "ok"}


@app.get("/health")
async def health():
    """Health check endpoint with detailed status."""
    return {
        "status": "healthy",
        "database_configured": is_configured(),
        "realtime_listening": _listener.running if _listener else False,
        "realtime_subscriptions": change_feed.subscription_count,
    }


if __name__ == "__main__":
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="BeBusy API Server")
    parser.add_argument(
        "--dev",
        action="store_true",
        help="Development mode (relaxed environment checks)",
    )
    parser.add_argument(
        "--no-realtime",
        action="store_true",
        help="Disable the realtime LISTEN connection",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=get_api_port(),
        help="Port to run the server on (default: 8000)",
    )
    args = parser.parse_args()

    # Set env vars so they persist across uvicorn reloads
    if args.dev:
        os.environ["DEV_MODE"] = "true"
    if args.no_realtime:
        os.environ["DISABLE_REALTIME"] = "true"

    # Pass app object directly (not string) to avoid module reimport issues
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=args.port,
    )
