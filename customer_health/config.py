"""
customer_health/config.py

Runtime configuration, read from environment variables.

Every setting has a default suitable for local development with the
`db` service from docker-compose, so the app starts without a `.env` file.
"""

import os
from typing import List

DATABASE_URL: str = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg2://postgres:postgres@db:5432/healthdb",
)

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
APP_ENV: str = os.getenv("APP_ENV", "development")
APP_VERSION: str = os.getenv("APP_VERSION", "1.0.0")


def cors_origins() -> List[str]:
    """Comma separated list from CORS_ORIGINS; `*` allows everything."""
    raw = os.getenv("CORS_ORIGINS", "*")
    return [o.strip() for o in raw.split(",") if o.strip()]
