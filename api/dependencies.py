"""
FastAPI dependencies shared by the routers.

The BookingContext lives on `app.state.context` (set by the app factory);
admin endpoints require `Authorization: Bearer <ADMIN_API_TOKEN>`.
"""

import hmac
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from booking.context import BookingContext

security = HTTPBearer(auto_error=False)


def get_context(request: Request) -> BookingContext:
    return request.app.state.context


async def require_admin(
    context: Annotated[BookingContext, Depends(get_context)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> None:
    """Dependency rejecting requests without the admin bearer token."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    expected = context.settings.ADMIN_API_TOKEN
    if not hmac.compare_digest(credentials.credentials.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )


ContextDep = Annotated[BookingContext, Depends(get_context)]
