from typing import Annotated

from fastapi import Depends, HTTPException, status

from .auth import CurrentUser


async def require_admin(current: CurrentUser) -> dict:
    if not current.get("is_admin"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return current


AdminUser = Annotated[dict, Depends(require_admin)]
