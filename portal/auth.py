"""Request identity utilities."""

from fastapi import Header, HTTPException, status


async def get_current_user(x_user_id: str = Header(default="")) -> str:
    """
    FastAPI dependency extracting the authenticated user id.

    Session handling lives in the gateway in front of the portal, which
    forwards the resolved user in the X-User-ID header.

    Args:
        x_user_id: X-User-ID header value

    Returns:
        user_id of the authenticated user

    Raises:
        HTTPException: 401 if the header is missing or blank
    """
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-ID header"
        )
    return user_id
