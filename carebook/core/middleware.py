import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import decode_access_token
from carebook.core.observability import TransactionObserver, default_observer
from carebook.db.crud.user import get_user
from carebook.db.models.user import UserModel
from carebook.db.session import get_db_session

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# List of paths that should be excluded from authentication checks
PUBLIC_PATHS = [
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
]


def _claims_from_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        token_data = decode_access_token(token)
    except JWTError as e:
        logger.debug(f"Ignoring invalid token: {e}")
        return None
    try:
        user_id = int(token_data.get("sub"))
    except (TypeError, ValueError):
        return None
    return {"user_id": user_id, "role": token_data.get("role")}


async def verify_token_middleware(request: Request, call_next):
    """
    Attach the caller identity and a correlation id to the request state.

    Identity comes from the `session` cookie or, failing that, a Bearer token.
    Unauthenticated requests pass through; protected routes reject them.
    """
    request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    request.state.user = None

    if not any(request.url.path.startswith(public_path) for public_path in PUBLIC_PATHS):
        token = request.cookies.get("session")
        if not token:
            auth_header = request.headers.get("Authorization")
            if auth_header and auth_header.startswith("Bearer "):
                token = auth_header.split(" ", 1)[1]
        if token:
            request.state.user = _claims_from_token(token)

    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request.state.request_id
    return response


# FastAPI dependency for protected routes
def get_current_user(request: Request) -> Dict[str, Any]:
    """
    Dependency to use in FastAPI route functions that require authentication.
    This will raise an HTTPException if the user is not authenticated.
    """
    if not getattr(request.state, "user", None):
        raise HTTPException(status_code=401, detail="Not authenticated")
    return request.state.user


def get_request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


# Get a database session dependency
async def get_db(request: Request):
    """Yield an async SQLAlchemy session (dependency)."""
    async for session in get_db_session(request):
        yield session


async def get_active_user(
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    """
    Token claims, checked against the stored account.

    The role is taken from the database so a stale token cannot outlive a role change.
    """
    db_user: Optional[UserModel] = await get_user(db, current_user["user_id"])
    if db_user is None or not db_user.is_active:
        raise HTTPException(status_code=401, detail="Account not found or inactive")
    return {"user_id": db_user.id, "role": db_user.role}


def require_roles(roles: list):
    """
    Factory function to create a dependency that requires specific roles.
    Usage: @router.post("/", dependencies=[Depends(require_roles(["doctor"]))])
    """
    async def _require_roles(user: Dict[str, Any] = Depends(get_active_user)):
        if user["role"] not in roles:
            raise HTTPException(status_code=403, detail="Not enough permissions")
        return user

    return _require_roles


def get_transaction_observer(request: Request) -> TransactionObserver:
    """Observer installed on the app at startup, or the logging default."""
    return getattr(request.app.state, "transaction_observer", None) or default_observer
