from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.features.audit.schemas.audit import Identity
from app.features.auth.utils.security import decode_access_token
from app.platform.logger import get_logger
from app.platform.utils.client_ip import get_client_ip

logger = get_logger(__name__)

optional_bearer = HTTPBearer(auto_error=False)


async def get_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer),
) -> Identity:
    """
    Identity for the current request.

    A valid bearer token yields its `sub` as the user id. No token, or one
    that fails verification, means the caller is anonymous and is bucketed
    by network address.
    """
    ip_address = get_client_ip(request)

    user_id = None
    if credentials:
        try:
            payload = decode_access_token(credentials.credentials)
            user_id = payload.get("sub")
        except ValueError as e:
            logger.info(f"Ignoring bearer token ({e}); treating request from {ip_address} as guest")

    return Identity(user_id=str(user_id) if user_id else None, ip_address=ip_address)
