"""FastAPI dependencies: shared services, the acting identity and error mapping."""
import logging
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import sessionmaker

from ..errors import (
    AuthorizationError,
    IssueNotFoundError,
    LifecycleError,
    StoreError,
    ValidationError,
)
from ..feed import ChangeFeed
from ..identity import SqlIdentityResolver
from ..lifecycle import IssueLifecycle
from ..schemas import Identity
from ..store import SqlIssueStore
from ..uploads import LocalUploadStore
from .config import Settings, get_settings
from .database import get_session_factory

logger = logging.getLogger("civic-core.api")

bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache
def get_feed() -> ChangeFeed:
    """Process-wide change feed shared by the store and every subscriber."""
    return ChangeFeed()


def get_store(
    session_factory: sessionmaker = Depends(get_session_factory),
    feed: ChangeFeed = Depends(get_feed),
) -> SqlIssueStore:
    return SqlIssueStore(session_factory, feed)


def get_identity_resolver(
    session_factory: sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> SqlIdentityResolver:
    ttl = timedelta(hours=settings.session_ttl_hours) if settings.session_ttl_hours else None
    return SqlIdentityResolver(session_factory, session_ttl=ttl)


def get_upload_store(settings: Settings = Depends(get_settings)) -> LocalUploadStore:
    return LocalUploadStore(Path(settings.upload_dir), settings.upload_base_url)


def get_lifecycle(
    store: SqlIssueStore = Depends(get_store),
    identities: SqlIdentityResolver = Depends(get_identity_resolver),
    uploads: LocalUploadStore = Depends(get_upload_store),
    settings: Settings = Depends(get_settings),
) -> IssueLifecycle:
    return IssueLifecycle(store, identities, uploads, settings.sla_hours)


def get_session_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not signed in",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


def get_current_identity(
    token: str = Depends(get_session_token),
    identities: SqlIdentityResolver = Depends(get_identity_resolver),
) -> Identity:
    """
    Resolve the bearer token to the acting identity.

    Raises:
        HTTPException 401: Missing, unknown, revoked or expired token
    """
    try:
        identity = identities.get_current_user(token)
    except StoreError as e:
        raise http_error(e)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


def http_error(error: LifecycleError) -> HTTPException:
    """Translate a lifecycle error to the HTTPException the routers raise."""
    if isinstance(error, ValidationError):
        detail = {"message": str(error), "field": error.field} if error.field else str(error)
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
    if isinstance(error, AuthorizationError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(error))
    if isinstance(error, IssueNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    logger.error(f"Service unavailable: {error}")
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(error))
