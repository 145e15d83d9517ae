"""
FastAPI Security Dependencies
Resolve the authenticated user's billing profile for billing endpoints
"""

import asyncio
import logging

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from realty_billing.schemas.billing import UserBillingProfile
from realty_billing.services.startup import BillingServices, get_billing_services
from realty_billing.utils.exceptions import Unauthorized

logger = logging.getLogger(__name__)

# auto_error=False so the CMS cookie can stand in for the header
security = HTTPBearer(auto_error=False)

SESSION_COOKIE = "payload-token"


def extract_session_token(
    request: Request, credentials: HTTPAuthorizationCredentials | None
) -> str | None:
    """Session token from ``Authorization: Bearer``/``JWT`` or the CMS cookie."""
    if credentials and credentials.credentials:
        return credentials.credentials

    header = request.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "jwt" and value.strip():
        return value.strip()

    return request.cookies.get(SESSION_COOKIE) or None


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    services: BillingServices = Depends(get_billing_services),
) -> UserBillingProfile:
    """
    Resolve the caller's billing profile.

    Raises:
        Unauthorized: Missing or invalid session, or no matching user record
    """
    token = extract_session_token(request, credentials)
    if not token:
        raise Unauthorized()

    user_id = await asyncio.to_thread(services.sessions.resolve_user_id, token)
    if not user_id:
        raise Unauthorized()

    user = await asyncio.to_thread(services.store.find_by_id, user_id)
    if user is None:
        logger.warning(f"Authenticated user {user_id} has no record in the users table")
        raise Unauthorized()
    return user
