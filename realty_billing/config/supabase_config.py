"""
Shared Supabase client for the billing record store.

The client is built on first use. A failed build is remembered for
``INIT_FAILURE_COOLDOWN`` seconds so a misconfigured or unreachable project
fails requests fast instead of re-dialling on every webhook.
"""

import logging
import time

from supabase import Client, create_client
from supabase.client import ClientOptions

from realty_billing.config.config import Config

logger = logging.getLogger(__name__)

INIT_FAILURE_COOLDOWN = 60.0

_supabase_client: Client | None = None
_last_error: Exception | None = None
_last_error_time: float = 0


def _build_client() -> Client:
    url, key = Config.SUPABASE_URL, Config.SUPABASE_KEY
    if not url or not key:
        raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must both be configured")
    if not url.startswith(("http://", "https://")):
        raise RuntimeError(f"SUPABASE_URL must start with http:// or https://, got {url!r}")

    return create_client(
        supabase_url=url,
        supabase_key=key,
        options=ClientOptions(
            # Bounded so a hung write surfaces as a retryable webhook failure
            postgrest_client_timeout=Config.RECORD_STORE_TIMEOUT_SECONDS,
            schema="public",
            headers={"X-Client-Info": f"{Config.SERVICE_NAME}/1.0"},
        ),
    )


def get_supabase_client() -> Client:
    global _supabase_client, _last_error, _last_error_time

    if _supabase_client is not None:
        return _supabase_client

    if _last_error is not None:
        waited = time.time() - _last_error_time
        if waited < INIT_FAILURE_COOLDOWN:
            raise RuntimeError(
                f"Supabase unavailable (retry in {int(INIT_FAILURE_COOLDOWN - waited)}s): {_last_error}"
            ) from _last_error
        logger.info("Supabase init cooldown elapsed, trying again")
        _last_error, _last_error_time = None, 0

    try:
        _supabase_client = _build_client()
    except Exception as e:
        _last_error, _last_error_time = e, time.time()
        logger.error(f"Supabase client could not be created: {type(e).__name__}: {e}", exc_info=True)
        raise RuntimeError(f"Supabase client initialization failed: {e}") from e

    logger.info("Supabase client ready")
    return _supabase_client


def reset_supabase_client() -> bool:
    """
    Forget the cached client; the next query opens new connections.

    Returns:
        Whether there was a client to drop
    """
    global _supabase_client, _last_error, _last_error_time

    if _supabase_client is None:
        return False

    session = getattr(getattr(_supabase_client, "postgrest", None), "session", None)
    if session is not None:
        try:
            session.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing the PostgREST session: {e}")

    _supabase_client, _last_error, _last_error_time = None, None, 0
    logger.info("Supabase client dropped after a dead connection")
    return True


_STALE_CONNECTION_MARKERS = (
    "connection reset by peer",
    "server disconnected",
    "connectionstate.closed",
    "stream closed",
    "goaway",
)


def is_stale_connection_error(error: Exception) -> bool:
    """True for errors raised by a pooled connection the server already closed."""
    if "protocolerror" in type(error).__name__.lower():
        return True
    message = str(error).lower()
    return any(marker in message for marker in _STALE_CONNECTION_MARKERS)


def execute_with_retry(operation, max_retries: int = 1, operation_name: str = "database operation"):
    """
    Run ``operation(client)``, rebuilding the client after a stale connection.

    Args:
        operation: Callable taking the Supabase client and returning the query result
        max_retries: Extra attempts allowed after a stale-connection error
        operation_name: Label used in log lines

    Other errors propagate unchanged on the first attempt.
    """
    attempt = 0
    while True:
        try:
            return operation(get_supabase_client())
        except Exception as e:
            if attempt >= max_retries or not is_stale_connection_error(e):
                raise
            attempt += 1
            logger.warning(
                f"{operation_name} hit a stale connection ({e}); "
                f"reconnecting, retry {attempt}/{max_retries}"
            )
            reset_supabase_client()
            time.sleep(0.1)
