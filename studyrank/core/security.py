from fastapi import Header, HTTPException, status


async def get_user_id(x_user_id: str = Header(..., min_length=1)) -> str:
    """Resolve the acting user.

    There is no authentication layer; the caller names the user in the
    ``X-User-Id`` header and every service call receives it explicitly.
    """
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-Id header is empty"
        )
    return user_id
