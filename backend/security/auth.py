"""HTTP Basic authentication for the tunnel endpoint."""

import logging
import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

logger = logging.getLogger(__name__)

basic = HTTPBasic(auto_error=False)


def check_api_key(password: str, api_key: str) -> bool:
    """Constant-time comparison of the presented password and the API key."""
    return secrets.compare_digest(password.encode("utf-8"), api_key.encode("utf-8"))


async def require_api_key(
    request: Request,
    credentials: HTTPBasicCredentials | None = Depends(basic),
) -> None:
    """Reject the request unless its Basic password is the API key. The username is ignored."""
    if credentials is None or not check_api_key(
        credentials.password, request.app.state.api_key
    ):
        logger.info(f"Rejected unauthenticated tunnel request from {request.client}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "Basic"},
        )
