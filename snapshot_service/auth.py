# snapshot_service/auth.py
"""
Admin key check for the snapshot admin routes.

The key comes from the service's Settings (ADMIN_API_KEY), not the process
environment, so an app built around an injected service authenticates
against that service's configuration.
"""

import logging
import secrets

from fastapi import Header, HTTPException, Request

logger = logging.getLogger(__name__)


def configured_admin_key(request: Request) -> str | None:
    return request.app.state.service.settings.ADMIN_API_KEY


def require_admin_key(
    request: Request,
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> None:
    """Reject the request unless X-API-Key matches. No key configured means no access."""
    expected_key = configured_admin_key(request)

    if not expected_key:
        logger.error(
            f"Admin request to {request.url.path} refused: ADMIN_API_KEY is not set",
            extra={"event": "admin_auth_unconfigured"},
        )
        raise HTTPException(status_code=500, detail="Admin authentication not configured")

    if x_api_key is None or not secrets.compare_digest(x_api_key.encode(), expected_key.encode()):
        logger.warning(
            f"Admin request to {request.url.path} rejected: {'missing' if x_api_key is None else 'invalid'} key",
            extra={"event": "admin_auth_rejected"},
        )
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
