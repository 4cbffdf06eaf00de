"""
Django settings for the Lenmed doctor/hospital directory.

The project only needs enough Django to own the schema and to run the
import and maintenance management commands.  Values are read from the
environment, optionally pre-loaded from a `.env` file so that the
Supabase credentials never have to live in source code.
"""
from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv  # type: ignore

# -----------------------------------------------------------------------------
# Base & .env loading
# -----------------------------------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
env_path = BASE_DIR / ".env"
if env_path.exists():
    load_dotenv(dotenv_path=env_path)

ENV = os.getenv("ENV", "dev")
DEBUG = os.getenv("DEBUG", "0").lower() in {"1", "true", "yes"}

SECRET_KEY = os.getenv("SECRET_KEY") or "replace-me-with-a-secure-secret-key"
if ENV == "prod" and SECRET_KEY == "replace-me-with-a-secure-secret-key":
    raise RuntimeError("SECRET_KEY must be set securely in prod")

# -----------------------------------------------------------------------------
# Applications
# -----------------------------------------------------------------------------
INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "directory",
]

# -----------------------------------------------------------------------------
# Database configuration
#   1) DATABASE_URL (parsed by dj_database_url), e.g. the Supabase Postgres URL
#   2) SQLite fallback
# -----------------------------------------------------------------------------
DB_CONN_MAX_AGE = int(os.getenv("DB_CONN_MAX_AGE", "120"))

database_url = os.getenv("DATABASE_URL", "").strip()
if database_url:
    import dj_database_url  # type: ignore

    DATABASES = {
        "default": dj_database_url.parse(
            database_url,
            conn_max_age=DB_CONN_MAX_AGE,
        )
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": (BASE_DIR / "db.sqlite3").as_posix(),
        }
    }

USE_TZ = True
TIME_ZONE = "Africa/Johannesburg"

# -----------------------------------------------------------------------------
# Supabase (live import / maintenance)
# The service key bypasses row level security and is preferred for imports.
# -----------------------------------------------------------------------------
SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip()
SUPABASE_KEY = (os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_KEY") or "").strip()
# Unset means requests block until Supabase answers.
SUPABASE_TIMEOUT = float(os.getenv("SUPABASE_TIMEOUT")) if os.getenv("SUPABASE_TIMEOUT") else None

# -----------------------------------------------------------------------------
# CSV import
# -----------------------------------------------------------------------------
IMPORT_CSV_PATH = os.getenv("IMPORT_CSV_PATH", "flume_expanded.csv")
IMPORT_SQL_PATH = os.getenv("IMPORT_SQL_PATH", "scripts/import-data.sql")
IMPORT_BATCH_SIZE = 50

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "loggers": {
        "directory": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}
