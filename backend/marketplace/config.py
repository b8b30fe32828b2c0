# backend/marketplace/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/marketplace.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///marketplace.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Offers lapse this many days after submission unless answered
    OFFER_EXPIRY_DAYS = int(os.environ.get("OFFER_EXPIRY_DAYS", "5"))

    # NSW statutory cooling-off window (business days from exchange)
    COOLING_OFF_BUSINESS_DAYS = int(os.environ.get("COOLING_OFF_BUSINESS_DAYS", "5"))

    # Reviews rated at or below the threshold are held before publishing
    REVIEW_NEGATIVE_THRESHOLD = int(os.environ.get("REVIEW_NEGATIVE_THRESHOLD", "2"))
    REVIEW_HOLD_HOURS = int(os.environ.get("REVIEW_HOLD_HOURS", "48"))

    # Attempts for lock / optimistic-version conflicts
    RETRY_ATTEMPTS = int(os.environ.get("RETRY_ATTEMPTS", "3"))
