"""Caller identity from the X-User-Id header set by the fronting gateway."""
from typing import Optional
from fastapi import Header, HTTPException


async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """FastAPI dependency returning the authenticated user id."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    if len(user_id) > 100:
        raise HTTPException(status_code=401, detail="Invalid user id")
    return user_id
