# backend/repairdesk/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite for local work; production points DATABASE_URL at PostgreSQL
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///repairdesk.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Folio sequencer retry policy (delay grows linearly with the attempt)
    FOLIO_MAX_ATTEMPTS = int(os.environ.get("FOLIO_MAX_ATTEMPTS", "5"))
    FOLIO_RETRY_DELAY_SECONDS = float(os.environ.get("FOLIO_RETRY_DELAY_SECONDS", "0.01"))

    # Listing endpoints
    DEFAULT_PAGE_SIZE = 50
    MAX_PAGE_SIZE = 500

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
