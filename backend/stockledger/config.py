# backend/stockledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Whole-unit retries on lock timeouts / deadlocks. Domain errors never retry.
    TX_RETRY_ATTEMPTS = int(os.environ.get("TX_RETRY_ATTEMPTS", "3"))
    TX_RETRY_BACKOFF = float(os.environ.get("TX_RETRY_BACKOFF", "0.1"))

    # Unit cost used for adjustment lines when the record has no average or last cost.
    # "selling_price" or "purchase_price".
    ADJUSTMENT_COST_FALLBACK = os.environ.get("ADJUSTMENT_COST_FALLBACK", "selling_price")

    # Upper bound of the "low" alert band, as a multiple of minimum_stock
    LOW_STOCK_MULTIPLIER = os.environ.get("LOW_STOCK_MULTIPLIER", "1.5")

    DEFAULT_PER_PAGE = 10
    MAX_PER_PAGE = 100

    # maximum_stock given to records that an approved adjustment creates
    NEW_RECORD_MAXIMUM_STOCK = 1000
