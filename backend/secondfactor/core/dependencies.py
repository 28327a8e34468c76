"""FastAPI dependencies for authentication and services."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

# Error handling is done via HTTPException which uses the global error handler
from secondfactor.core.redis_client import get_redis_client
from secondfactor.core.security import verify_access_token
from secondfactor.db.session import get_db
from secondfactor.mfa.service import MfaService


def get_current_principal(
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """Dependency to get the authenticated principal id from the JWT `sub` claim."""
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing",
        )

    # Extract token from "Bearer <token>"
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("Invalid authorization scheme")
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format. Expected: Bearer <token>",
        ) from None

    # Verify token
    try:
        payload = verify_access_token(token)
        principal_id = str(payload["sub"])
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or expired token: {str(e)}",
        ) from e

    if not principal_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject",
        )
    return principal_id


def get_mfa_service(db: Session = Depends(get_db)) -> MfaService:
    """Dependency providing an MfaService bound to the request's session."""
    return MfaService(db, redis_client=get_redis_client())


# Type aliases for route signatures
CurrentPrincipal = Annotated[str, Depends(get_current_principal)]
MfaServiceDep = Annotated[MfaService, Depends(get_mfa_service)]
