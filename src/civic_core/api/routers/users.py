"""Users API router: signup, sessions and staff directory."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ...errors import LifecycleError
from ...identity import SqlIdentityResolver
from ...models import UserRole
from ...schemas import (
    Identity,
    SessionResponse,
    SignInRequest,
    UserCreate,
    UserResponse,
)
from ..dependencies import (
    get_current_identity,
    get_identity_resolver,
    get_session_token,
    http_error,
)

logger = logging.getLogger("civic-core.users")

router = APIRouter(prefix="/users", tags=["users"])


@router.post("/", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def sign_up(
    data: UserCreate,
    identities: SqlIdentityResolver = Depends(get_identity_resolver),
):
    """Create an account with a fixed role and sign it in."""
    try:
        identity = identities.register(data.full_name, data.email, data.role)
        token = identities.sign_in(identity.id)
    except LifecycleError as e:
        raise http_error(e)
    return SessionResponse(token=token, user=UserResponse.model_validate(identity))


@router.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def sign_in(
    data: SignInRequest,
    identities: SqlIdentityResolver = Depends(get_identity_resolver),
):
    """Start a session for an existing account."""
    try:
        identity = identities.get_user_by_email(data.email)
        if identity is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unknown account",
            )
        token = identities.sign_in(identity.id)
    except LifecycleError as e:
        raise http_error(e)
    return SessionResponse(token=token, user=UserResponse.model_validate(identity))


@router.delete("/sessions", status_code=status.HTTP_204_NO_CONTENT)
def sign_out(
    token: str = Depends(get_session_token),
    identities: SqlIdentityResolver = Depends(get_identity_resolver),
):
    """Revoke the current session. Signing out twice is not an error."""
    try:
        identities.sign_out(token)
    except LifecycleError as e:
        raise http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=UserResponse)
def get_me(current_user: Identity = Depends(get_current_identity)):
    return current_user


@router.get("/", response_model=list[UserResponse])
def list_users(
    role: Optional[UserRole] = None,
    current_user: Identity = Depends(get_current_identity),
    identities: SqlIdentityResolver = Depends(get_identity_resolver),
):
    """List accounts, typically workers for the assignment picker. Staff only."""
    if not current_user.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only staff can browse users",
        )
    try:
        return identities.list_users(role)
    except LifecycleError as e:
        raise http_error(e)
