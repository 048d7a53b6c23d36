# config.py
import os


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("true", "1", "t", "yes")


class Config:
    """
    Runtime settings, read from the environment once at import.
    create_app() loads this with app.config.from_object() and applies overrides on top.
    """

    # Storage
    DATA_DIR = os.environ.get("FUELSYNC_DATA_DIR", "data")
    DB_PATH = os.environ.get("FUELSYNC_DB_PATH", os.path.join(DATA_DIR, "fuelsync.db"))
    AUDIT_LOG_PATH = os.environ.get("FUELSYNC_AUDIT_LOG", os.path.join(DATA_DIR, "ops_audit_log.csv"))

    # Business calendar: "today" and tz-aware timestamps resolve in this zone
    STATION_TIMEZONE = os.environ.get("FUELSYNC_TIMEZONE", "Asia/Kolkata")

    # Pricing guard rails (per litre)
    MAX_PRICE_PER_LITRE = float(os.environ.get("FUELSYNC_MAX_PRICE", 500))

    # Settlement checks
    AMOUNT_EPSILON = 0.01
    SETTLEMENT_TOLERANCE_PCT = float(os.environ.get("FUELSYNC_SETTLEMENT_TOLERANCE_PCT", 5))
    VARIANCE_REVIEW_PCT = float(os.environ.get("FUELSYNC_VARIANCE_REVIEW_PCT", 1))
    VARIANCE_INVESTIGATE_PCT = float(os.environ.get("FUELSYNC_VARIANCE_INVESTIGATE_PCT", 3))

    # Listing
    DEFAULT_PAGE_SIZE = int(os.environ.get("FUELSYNC_PAGE_SIZE", 50))
    MAX_PAGE_SIZE = 500

    # Flask app
    DEBUG = _env_bool("FLASK_DEBUG", "False")
    HOST = os.environ.get("FLASK_HOST", "0.0.0.0")
    PORT = int(os.environ.get("FLASK_PORT", 5000))
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
