"""
Caller identity.

Token verification happens upstream; the authenticated user id arrives in the
X-User-Id header.
"""
from typing import Optional

from fastapi import Header, HTTPException, Request


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Authenticated user id set by the auth proxy"),
) -> str:
    """
    Raises:
        HTTPException 401: Missing authentication
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    request.state.user_id = user_id
    return user_id
