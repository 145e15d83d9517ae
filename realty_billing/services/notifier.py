"""
Static-site revalidation notifier.

Content changes in the CMS invalidate pages of the public site. Calls are
fire-and-forget: a failed revalidation only delays fresh content until the
next rebuild, so errors are logged and never raised to the caller.
"""

import logging
from typing import Protocol, runtime_checkable

import httpx

from realty_billing.config import Config

logger = logging.getLogger(__name__)


@runtime_checkable
class Notifier(Protocol):
    """Content-change hook the CMS layer calls after a record is saved or deleted."""

    def notify_changed(self, collection: str, slug: str | None = None) -> bool: ...

    def close(self) -> None: ...


class RevalidationNotifier:
    def __init__(
        self,
        site_url: str,
        secret: str | None = None,
        timeout: float = 5.0,
        client: httpx.Client | None = None,
    ):
        self.site_url = site_url.rstrip("/")
        self.secret = secret
        self._client = client or httpx.Client(timeout=timeout)

    def _revalidate(self, params: dict[str, str]) -> bool:
        if self.secret:
            params = {**params, "secret": self.secret}
        try:
            response = self._client.get(f"{self.site_url}/api/revalidate", params=params)
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.error(f"Revalidate error ({params.get('collection')}): {e}")
            return False

    def notify_changed(self, collection: str, slug: str | None = None) -> bool:
        """
        Revalidate the page for one document, then the global paths.

        Returns:
            True if every revalidation call succeeded
        """
        ok = True
        if slug:
            ok = self._revalidate({"collection": collection, "slug": slug})
        return self._revalidate({"collection": "global"}) and ok

    def close(self) -> None:
        self._client.close()


def notifier_from_config(config: type[Config] = Config) -> RevalidationNotifier:
    """Notifier for the public site, for CMS content hooks."""
    if not config.REVALIDATE_SECRET:
        logger.warning("REVALIDATE_SECRET not set - revalidation requests are unauthenticated")
    return RevalidationNotifier(
        config.PUBLIC_WEBSITE_URL,
        secret=config.REVALIDATE_SECRET,
        timeout=config.CMS_TIMEOUT_SECONDS,
    )
