# backend/goldpos/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/goldpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///goldpos.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Treasury accounts are opened in this currency
    DEFAULT_CURRENCY = os.environ.get("GOLDPOS_DEFAULT_CURRENCY", "EGP")

    # Completed transactions can be voided only inside this window
    VOID_WINDOW_HOURS = int(os.environ.get("GOLDPOS_VOID_WINDOW_HOURS", "24"))

    # Ownership below this share (basis points) raises a sale warning
    LOW_OWNERSHIP_BPS = int(os.environ.get("GOLDPOS_LOW_OWNERSHIP_BPS", "5000"))

    # Pricing business rules
    PREVENT_PERCENTAGE_DISCOUNT_WHEN_MAKING_CHARGES_WAIVED = _env_flag(
        "PREVENT_PERCENTAGE_DISCOUNT_WHEN_MAKING_CHARGES_WAIVED", True
    )
    CAP_DISCOUNT_TO_MAKING_CHARGES = _env_flag("CAP_DISCOUNT_TO_MAKING_CHARGES", True)
