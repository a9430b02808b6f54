# ----------------------------------------------------------------
# Import configuration variables to be used throughout the project
# ----------------------------------------------------------------
import os
from dotenv import load_dotenv

# Load .env (allow container env to override file values)
load_dotenv(override=True)


def _rstrip_slash(s: str) -> str:
    return (s or "").rstrip("/")


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw.strip() else default
    except ValueError:
        return default


class Settings:
    # ── H3Yun ERP (OpenApi/Invoke) ───────────────────────────────────────────
    H3YUN_BASE_URL: str = _rstrip_slash(
        os.getenv("H3YUN_BASE_URL", "https://www.h3yun.com/OpenApi/Invoke")
    )
    H3YUN_ENGINE_CODE: str = os.getenv("H3YUN_ENGINE_CODE", "")
    H3YUN_ENGINE_SECRET: str = os.getenv("H3YUN_ENGINE_SECRET", "")
    H3YUN_INVENTORY_SCHEMA_CODE: str = os.getenv("H3YUN_INVENTORY_SCHEMA_CODE", "")
    H3YUN_SKU_MAPPING_SCHEMA_CODE: str = os.getenv("H3YUN_SKU_MAPPING_SCHEMA_CODE", "")

    # The vendor caps a page at 500 rows and rate-limits without documenting it;
    # the inter-page delay dominates pass latency, so keep it tunable.
    H3YUN_PAGE_SIZE: int = _get_int("H3YUN_PAGE_SIZE", 500)
    H3YUN_PAGE_DELAY_SECONDS: float = _get_float("H3YUN_PAGE_DELAY_SECONDS", 0.5)
    H3YUN_MAX_ATTEMPTS: int = _get_int("H3YUN_MAX_ATTEMPTS", 3)
    H3YUN_TIMEOUT_SECONDS: float = _get_float("H3YUN_TIMEOUT_SECONDS", 30.0)

    # ── ERP field codes (raw form field → named attribute) ───────────────────
    # Empty string = the tenant's form has no such field.
    ERP_FIELD_SKU: str = os.getenv("ERP_FIELD_SKU", "F0000001")
    ERP_FIELD_CATEGORY: str = os.getenv("ERP_FIELD_CATEGORY", "F0000003")
    ERP_FIELD_WAREHOUSE: str = os.getenv("ERP_FIELD_WAREHOUSE", "F0000007")
    ERP_FIELD_SELLABLE: str = os.getenv("ERP_FIELD_SELLABLE", "F0000083")
    ERP_FIELD_AVAILABLE: str = os.getenv("ERP_FIELD_AVAILABLE", "F0000030")
    ERP_FIELD_PENDING_OUTBOUND: str = os.getenv("ERP_FIELD_PENDING_OUTBOUND", "")
    ERP_FIELD_SHORTAGE: str = os.getenv("ERP_FIELD_SHORTAGE", "")
    ERP_MAPPING_FIELD_STOREFRONT_SKU: str = os.getenv("ERP_MAPPING_FIELD_STOREFRONT_SKU", "F0000001")
    ERP_MAPPING_FIELD_ERP_SKU: str = os.getenv("ERP_MAPPING_FIELD_ERP_SKU", "F0000002")

    # ── WooCommerce storefronts ──────────────────────────────────────────────
    WC_TIMEOUT_SECONDS: float = _get_float("WC_TIMEOUT_SECONDS", 20.0)
    WC_MAX_ATTEMPTS: int = _get_int("WC_MAX_ATTEMPTS", 2)
    WC_VERIFY_SSL: bool = _get_bool("WC_VERIFY_SSL", True)
    # Parallel SKU lookups/updates per storefront
    SITE_SKU_CONCURRENCY: int = _get_int("SITE_SKU_CONCURRENCY", 4)

    # ── Reconciliation pass ──────────────────────────────────────────────────
    SYNC_TO_INSTOCK: bool = _get_bool("SYNC_TO_INSTOCK", True)
    SYNC_TO_OUTOFSTOCK: bool = _get_bool("SYNC_TO_OUTOFSTOCK", True)
    SYNC_DETAILS_LIMIT: int = _get_int("SYNC_DETAILS_LIMIT", 500)
    SYNC_PASS_TIMEOUT_SECONDS: float = _get_float("SYNC_PASS_TIMEOUT_SECONDS", 1800.0)
    SYNC_STALE_BATCH_MINUTES: int = _get_int("SYNC_STALE_BATCH_MINUTES", 120)

    # Global filter defaults; a site whose own field is empty uses these.
    # Lists are comma/semicolon/newline separated.
    SYNC_DEFAULT_SKU_FILTER: str = os.getenv("SYNC_DEFAULT_SKU_FILTER", "")
    SYNC_DEFAULT_EXCLUDE_SKU_PREFIXES: str = os.getenv("SYNC_DEFAULT_EXCLUDE_SKU_PREFIXES", "")
    SYNC_DEFAULT_CATEGORY_FILTERS: str = os.getenv("SYNC_DEFAULT_CATEGORY_FILTERS", "")
    SYNC_DEFAULT_EXCLUDE_WAREHOUSES: str = os.getenv("SYNC_DEFAULT_EXCLUDE_WAREHOUSES", "")

    # ── Pass notifications (WeCom group robot webhook) ───────────────────────
    # Empty URL = notifications off.
    SYNC_NOTIFY_WEBHOOK_URL: str = os.getenv("SYNC_NOTIFY_WEBHOOK_URL", "")
    SYNC_NOTIFY_ON_SUCCESS: bool = _get_bool("SYNC_NOTIFY_ON_SUCCESS", True)
    SYNC_NOTIFY_ON_FAILURE: bool = _get_bool("SYNC_NOTIFY_ON_FAILURE", True)
    SYNC_NOTIFY_ON_NO_CHANGES: bool = _get_bool("SYNC_NOTIFY_ON_NO_CHANGES", False)
    SYNC_NOTIFY_TIMEOUT_SECONDS: float = _get_float("SYNC_NOTIFY_TIMEOUT_SECONDS", 10.0)

    # ── Scheduler ────────────────────────────────────────────────────────────
    AUTO_SYNC_ENABLED: bool = _get_bool("AUTO_SYNC_ENABLED", False)
    AUTO_SYNC_INTERVAL_MINUTES: int = _get_int("AUTO_SYNC_INTERVAL_MINUTES", 60)

    # ── Database ─────────────────────────────────────────────────────────────
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data/stocksync.db")

    # ── Admin Panel ──────────────────────────────────────────────────────────
    ADMIN_USER: str = os.getenv("ADMIN_USER", "admin")
    ADMIN_PASS: str = os.getenv("ADMIN_PASS", "changeme")

    # ── CORS ─────────────────────────────────────────────────────────────────
    # Comma-separated list in .env, e.g. "https://example.com, https://foo.bar"
    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


settings = Settings()
