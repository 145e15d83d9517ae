import os

from dotenv import load_dotenv

# Local development reads a .env next to the process
load_dotenv()


def _get_env_var(name: str, default: str | None = None, *, strip: bool = True) -> str | None:
    """Read an env var; unset or blank values give ``default``."""
    value = os.environ.get(name)
    if value is None:
        return default

    if strip:
        value = value.strip()

    return value or default


def _get_float_env(name: str, default: float) -> float:
    raw = _get_env_var(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_bool_env(name: str, default: bool = False) -> bool:
    raw = _get_env_var(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes"}


class Config:
    """Process-wide settings, read once from the environment at import."""

    # Environment Detection
    APP_ENV = _get_env_var("APP_ENV", "development")
    IS_DEVELOPMENT = APP_ENV == "development"

    SERVICE_NAME = _get_env_var("SERVICE_NAME", "realty-billing")

    # Supabase Configuration (record store)
    SUPABASE_URL = _get_env_var("SUPABASE_URL")
    SUPABASE_KEY = _get_env_var("SUPABASE_KEY")
    RECORD_STORE_TIMEOUT_SECONDS = _get_float_env("RECORD_STORE_TIMEOUT_SECONDS", 10.0)

    # Stripe Configuration
    STRIPE_SECRET_KEY = _get_env_var("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = _get_env_var("STRIPE_WEBHOOK_SECRET")
    STRIPE_PRICE_BASIC = _get_env_var("STRIPE_PRICE_BASIC")
    STRIPE_PRICE_PRO = _get_env_var("STRIPE_PRICE_PRO")
    STRIPE_PRICE_ENTERPRISE = _get_env_var("STRIPE_PRICE_ENTERPRISE")
    STRIPE_TIMEOUT_SECONDS = _get_float_env("STRIPE_TIMEOUT_SECONDS", 10.0)
    STRIPE_MAX_NETWORK_RETRIES = int(_get_float_env("STRIPE_MAX_NETWORK_RETRIES", 2))

    # Public website (checkout success/cancel and portal return URLs)
    PUBLIC_WEBSITE_URL = _get_env_var("PUBLIC_WEBSITE_URL", "https://jpsrealtor.com")

    # CMS used to resolve session tokens into user ids
    CMS_URL = _get_env_var("CMS_URL", "https://cms.jpsrealtor.com")
    CMS_TIMEOUT_SECONDS = _get_float_env("CMS_TIMEOUT_SECONDS", 5.0)

    # Static-site revalidation
    REVALIDATE_SECRET = _get_env_var("REVALIDATE_SECRET")

    # Sentry Configuration
    SENTRY_ENABLED = _get_bool_env("SENTRY_ENABLED")
    SENTRY_DSN = _get_env_var("SENTRY_DSN")
    SENTRY_ENVIRONMENT = _get_env_var("SENTRY_ENVIRONMENT", APP_ENV)
    SENTRY_RELEASE = _get_env_var("SENTRY_RELEASE")

    @classmethod
    def tier_price_map(cls) -> dict[str, str]:
        """Map of paid tier name to Stripe price ID, skipping unconfigured tiers."""
        prices = {
            "basic": cls.STRIPE_PRICE_BASIC,
            "pro": cls.STRIPE_PRICE_PRO,
            "enterprise": cls.STRIPE_PRICE_ENTERPRISE,
        }
        return {tier: price for tier, price in prices.items() if price}

    @classmethod
    def validate(cls):
        """Raise RuntimeError naming every missing required variable."""
        is_valid, missing_vars = cls.validate_critical_env_vars()

        if not is_valid:
            raise RuntimeError(
                f"Billing service is missing required settings: {', '.join(missing_vars)}. "
                "Set them in the environment or a .env file; STRIPE_PRICE_* are optional per tier."
            )

        return True

    @classmethod
    def validate_critical_env_vars(cls) -> tuple[bool, list[str]]:
        """Return ``(all_present, missing_names)`` for the settings the service cannot start without."""
        critical_vars = {
            "SUPABASE_URL": cls.SUPABASE_URL,
            "SUPABASE_KEY": cls.SUPABASE_KEY,
            "STRIPE_SECRET_KEY": cls.STRIPE_SECRET_KEY,
            "STRIPE_WEBHOOK_SECRET": cls.STRIPE_WEBHOOK_SECRET,
        }

        missing = [name for name, value in critical_vars.items() if not value]
        return not missing, missing
