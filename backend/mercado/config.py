# backend/mercado/config.py
from __future__ import annotations
import json
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_promo_codes() -> dict:
    # PROMO_CODES='{"PROMO10": 10, "VERANO5": 5}' maps code -> percent of subtotal
    raw = os.environ.get("PROMO_CODES")
    if not raw:
        return {"PROMO10": 10}
    return {str(code).upper(): pct for code, pct in json.loads(raw).items()}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Central order store (SQLite file in the instance folder by default)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///mercado.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Pricing
    DELIVERY_FEE_CENTS = _env_int("DELIVERY_FEE_CENTS", 1000)
    SERVICE_FEE_BPS = _env_int("SERVICE_FEE_BPS", 200)
    PROMO_CODES = _env_promo_codes()

    # POS terminal
    POS_DATABASE_URL = os.environ.get("POS_DATABASE_URL", "sqlite:///mercado_pos.sqlite3")
    POS_SYNC_INTERVAL_SECONDS = _env_int("POS_SYNC_INTERVAL_SECONDS", 15 * 60)
    POS_CUSTOMER_ID = os.environ.get("POS_CUSTOMER_ID", "pos_user")
    ORDER_STORE_URL = os.environ.get("ORDER_STORE_URL", "http://127.0.0.1:5001")
    ORDER_STORE_TIMEOUT_SECONDS = float(os.environ.get("ORDER_STORE_TIMEOUT_SECONDS", "10"))
