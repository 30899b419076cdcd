"""Caller identity for MCP tool calls."""

import logging

from fastmcp.server.dependencies import get_access_token

from streamrelay.errors import UnauthenticatedError

logger = logging.getLogger(__name__)


def tool_principal(user_id: str | None, *, authenticated: bool) -> str:
    """Resolve who is calling a tool.

    With OAuth configured the principal is the GitHub login on the access
    token and any ``user_id`` argument is ignored, so a client cannot act on
    another principal's jobs by naming them. Without OAuth (local development)
    the ``user_id`` argument is trusted.
    """
    if authenticated:
        token = get_access_token()
        if token is None:
            raise UnauthenticatedError()
        claims = getattr(token, "claims", None) or {}
        principal = claims.get("login") or claims.get("sub")
        if not principal:
            raise UnauthenticatedError("Access token carries no user identity")
        if user_id and user_id != principal:
            logger.warning("Ignoring user_id %s for authenticated caller %s", user_id, principal)
        return principal

    if not user_id:
        raise UnauthenticatedError("user_id is required when OAuth is disabled")
    return user_id
