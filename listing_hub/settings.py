from __future__ import annotations

import os


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: str = "") -> list[str]:
    raw = os.getenv(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


DEFAULT_ADMIN_PASSWORD = "admin123"

HUB_WS_HOST = os.getenv("HUB_WS_HOST", "0.0.0.0")
HUB_WS_PORT = _env_int("HUB_WS_PORT", 8765)
HUB_REST_HOST = os.getenv("HUB_REST_HOST", "0.0.0.0")
HUB_REST_PORT = _env_int("HUB_REST_PORT", 3000)

# Empty path keeps canonical state in memory only.
HUB_DATA_FILE = os.getenv("HUB_DATA_FILE", "data/listings.json")
HUB_LOG_LEVEL = os.getenv("HUB_LOG_LEVEL", "INFO")

ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD") or DEFAULT_ADMIN_PASSWORD

# FRONTEND_URL is prepended so a single deployed frontend only needs one variable.
ALLOWED_ORIGINS = _env_list("FRONTEND_URL") + _env_list(
    "HUB_ALLOWED_ORIGINS",
    "http://localhost:3000,http://localhost:5500,http://127.0.0.1:5500",
)

# REST handler threads wait this long for the hub loop to commit a mutation.
HUB_CALL_TIMEOUT_S = _env_float("HUB_CALL_TIMEOUT_S", 10.0)
HUB_MAX_BODY_BYTES = _env_int("HUB_MAX_BODY_BYTES", 50 * 1024 * 1024)
