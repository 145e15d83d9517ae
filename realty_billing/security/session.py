"""
CMS session resolution.

The CMS owns authentication; this service only needs to know which user a
session token belongs to. Tokens are resolved against the CMS ``/api/users/me``
endpoint, which returns ``{"user": {...}}`` for a valid session and
``{"user": null}`` otherwise.
"""

import logging

import httpx

logger = logging.getLogger(__name__)


class CmsSessionResolver:
    def __init__(self, cms_url: str, timeout: float = 5.0, client: httpx.Client | None = None):
        self.cms_url = cms_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def resolve_user_id(self, token: str) -> str | None:
        """Return the user id behind ``token``, or None for an invalid session."""
        try:
            response = self._client.get(
                f"{self.cms_url}/api/users/me",
                headers={"Authorization": f"JWT {token}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"CMS session lookup failed: {e}")
            return None

        if response.status_code != 200:
            logger.info(f"CMS rejected session token (status {response.status_code})")
            return None

        try:
            user = response.json().get("user")
        except ValueError:
            logger.warning("CMS session lookup returned a non-JSON body")
            return None

        if not user or user.get("id") is None:
            return None
        return str(user["id"])

    def close(self) -> None:
        self._client.close()
