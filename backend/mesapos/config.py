# backend/mesapos/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/mesapos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///mesapos.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Tax / currency
    IGV_PERCENTAGE = _env_int("IGV_PERCENTAGE", 18)  # 10 or 18
    CURRENCY = os.environ.get("CURRENCY", "PEN")

    # Issuing company (company profile screens are not part of this service)
    COMPANY_RUC = os.environ.get("COMPANY_RUC", "")
    COMPANY_NAME = os.environ.get("COMPANY_NAME", "")
    COMPANY_COMMERCIAL_NAME = os.environ.get("COMPANY_COMMERCIAL_NAME", "")
    COMPANY_ADDRESS = os.environ.get("COMPANY_ADDRESS", "")

    # Fiscal gateway (XML generation + SUNAT submission)
    FISCAL_GATEWAY_URL = os.environ.get("FISCAL_GATEWAY_URL", "")
    FISCAL_GATEWAY_TOKEN = os.environ.get("FISCAL_GATEWAY_TOKEN", "")
    FISCAL_GATEWAY_SECRET = os.environ.get("FISCAL_GATEWAY_SECRET", "")
    GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "20"))

    # RUC/DNI lookup proxy
    IDENTITY_LOOKUP_URL = os.environ.get("IDENTITY_LOOKUP_URL", "")
    IDENTITY_LOOKUP_TOKEN = os.environ.get("IDENTITY_LOOKUP_TOKEN", "")

    LOW_STOCK_THRESHOLD = _env_int("LOW_STOCK_THRESHOLD", 10)

    # Sales need an open cash shift on the branch ("0" disables the check)
    REQUIRE_OPEN_SHIFT = os.environ.get("REQUIRE_OPEN_SHIFT", "1") != "0"
    SHIFT_HISTORY_LIMIT = _env_int("SHIFT_HISTORY_LIMIT", 20)
