"""
config.py — Environment-driven settings for the ObsMetrics backend.

Values are read once at import time from the process environment
(optionally populated from a local .env file).
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


APP_NAME = os.getenv("APP_NAME", "ObsMetrics")
ORG_NAME = os.getenv("REPORT_ORG_NAME", "Ministry of Education")

# Comma-separated allowed origins, e.g. http://localhost:5173,https://app.example.com
raw_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
ALLOWED_ORIGINS = [o.strip() for o in raw_origins.split(",") if o.strip()]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()

# Uploaded datasets are dropped from the in-memory store after this many seconds.
DATASET_TTL_SECONDS = int(os.getenv("DATASET_TTL_SECONDS", str(60 * 60)))
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))

DEFAULT_TIME_PERIOD = os.getenv("DEFAULT_TIME_PERIOD", "last_30_days")

# A TrueType font with Khmer glyphs; without it PDF reports fall back to English.
REPORT_FONT_PATH = os.getenv("REPORT_FONT_PATH", "").strip()

EXPOSE_ERROR_DETAIL = _env_bool("EXPOSE_ERROR_DETAIL", "true")
