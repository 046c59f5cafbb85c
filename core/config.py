"""
Centralized configuration for the BeBusy backend.

Provides environment-aware settings so main.py, the realtime layer and
the scheduler read the same values.
"""

import os


def is_dev_mode() -> bool:
    """Check if running in development mode (--dev flag or DEV_MODE env)."""
    return os.getenv("DEV_MODE", "").lower() in ("true", "1", "yes")


def is_production() -> bool:
    """Check if running in the production environment."""
    return os.getenv("ENVIRONMENT", "").lower() == "production"


def get_api_port() -> int:
    """Get API server port from env or default."""
    return int(os.getenv("API_PORT", "8000"))


def get_frontend_url() -> str:
    """Get frontend URL (Next.js app) from env or the local dev default."""
    return os.environ.get("FRONTEND_URL", "http://localhost:3000").rstrip("/")


def get_allowed_origins() -> list[str]:
    """
    Get list of allowed CORS origins.

    Includes localhost variants for dev and the configured frontend URL.
    """
    origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    frontend_url = get_frontend_url()
    if frontend_url not in origins:
        origins.append(frontend_url)
    return origins


def get_role_poll_interval() -> float:
    """
    Seconds between role/ban re-checks for each realtime session.

    The poll runs alongside the change feed so a ban takes effect even
    while the push channel is down.
    """
    return float(os.getenv("ROLE_POLL_INTERVAL_SECONDS", "5"))


def get_ban_sweep_interval_minutes() -> int:
    """Minutes between bulk sweeps that clear expired bans."""
    return int(os.getenv("BAN_SWEEP_INTERVAL_MINUTES", "15"))


def get_realtime_channel() -> str:
    """PostgreSQL NOTIFY channel carrying row change events."""
    return os.getenv("REALTIME_CHANNEL", "bebusy_changes")


def get_sentry_dsn() -> str | None:
    """Sentry DSN, or None when error reporting is disabled."""
    return os.environ.get("SENTRY_DSN") or None


# Required environment variables for production
# Format: (name, description, required_in_dev)
REQUIRED_ENV_VARS = [
    ("DATABASE_URL", "PostgreSQL connection string", True),
    ("SUPABASE_JWT_SECRET", "Secret used to verify Supabase access tokens", True),
    ("SENTRY_DSN", "Sentry DSN for error reporting", False),
]


def check_required_env_vars() -> tuple[bool, list[str]]:
    """
    Check that required environment variables are set.

    Returns:
        (all_ok, warnings): Tuple of success flag and list of warning messages
    """
    warnings = []
    errors = []
    in_dev = is_dev_mode()

    for name, description, required_in_dev in REQUIRED_ENV_VARS:
        value = os.environ.get(name)

        if not value:
            if is_production():
                errors.append(f"  ✗ {name}: Not set ({description})")
            elif required_in_dev or not in_dev:
                warnings.append(f"  ⚠ {name}: Not set ({description})")

    if errors:
        for error in errors:
            print(error)
        return False, warnings

    return True, warnings
