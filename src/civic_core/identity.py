"""Identity Resolver: session tokens to user identities.

Pure lookup plus the minimal account operations the rest of the system needs.
Passwords and e-mail verification belong to the external auth provider.
"""
import enum
import hashlib
import logging
import secrets
import threading
from datetime import timedelta
from typing import Callable, Optional
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from . import models
from .errors import StoreError, ValidationError
from .schemas import Identity

logger = logging.getLogger("civic-core.identity")

TOKEN_PREFIX = "cs_"


class AuthEvent(str, enum.Enum):
    """Identity transitions delivered to auth state listeners."""

    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"


class AuthStateChange(BaseModel):
    """Payload passed to on_auth_state_change callbacks."""

    event: AuthEvent
    identity: Identity


AuthListener = Callable[[AuthStateChange], None]


def hash_token(token: str) -> str:
    """SHA-256 hash of a session token, the only form that is stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_token() -> str:
    return TOKEN_PREFIX + secrets.token_urlsafe(32)


class SqlIdentityResolver:
    """Resolves opaque session tokens against the users/session_tokens tables."""

    def __init__(self, session_factory: sessionmaker, session_ttl: Optional[timedelta] = None):
        self._session_factory = session_factory
        self._session_ttl = session_ttl
        self._listeners: list[AuthListener] = []
        self._lock = threading.Lock()

    def on_auth_state_change(self, callback: AuthListener) -> Callable[[], None]:
        """
        Register a listener for sign-in/sign-out transitions.

        Each transition is delivered exactly once, synchronously, before the
        call that caused it returns.

        Returns:
            Callable that removes the listener
        """
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _notify(self, event: AuthEvent, identity: Identity) -> None:
        with self._lock:
            listeners = list(self._listeners)
        change = AuthStateChange(event=event, identity=identity)
        for listener in listeners:
            listener(change)

    def register(self, full_name: str, email: str, role: models.UserRole, is_admin: bool = False) -> Identity:
        """
        Create a user profile. The role is fixed from here on.

        Raises:
            ValidationError: If the name is blank, the e-mail is taken, or admin
                scope is requested for a non-officer
        """
        full_name = full_name.strip()
        email = email.strip().lower()
        if not full_name:
            raise ValidationError("Full name is required.", field="full_name")
        if is_admin and role != models.UserRole.OFFICER:
            raise ValidationError("Only officers can hold administrative scope.", field="is_admin")

        db = self._session_factory()
        try:
            user = models.User(full_name=full_name, email=email, role=role, is_admin=is_admin)
            db.add(user)
            db.commit()
            db.refresh(user)
            identity = Identity.model_validate(user)
        except IntegrityError as e:
            db.rollback()
            logger.warning(f"Signup rejected for {email}: already registered")
            raise ValidationError(f"An account already exists for {email}.", field="email") from e
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Could not create user: {e}") from e
        finally:
            db.close()

        logger.info(f"Registered {role.value} {identity.id} ({email})")
        return identity

    def get_user(self, user_id: UUID) -> Optional[Identity]:
        db = self._session_factory()
        try:
            user = db.query(models.User).filter(models.User.id == user_id).first()
            return Identity.model_validate(user) if user else None
        except SQLAlchemyError as e:
            raise StoreError(f"Could not load user: {e}") from e
        finally:
            db.close()

    def get_user_by_email(self, email: str) -> Optional[Identity]:
        db = self._session_factory()
        try:
            user = db.query(models.User).filter(models.User.email == email.strip().lower()).first()
            return Identity.model_validate(user) if user else None
        except SQLAlchemyError as e:
            raise StoreError(f"Could not load user: {e}") from e
        finally:
            db.close()

    def list_users(self, role: Optional[models.UserRole] = None) -> list[Identity]:
        """List users, optionally restricted to one role, ordered by name."""
        db = self._session_factory()
        try:
            query = db.query(models.User)
            if role:
                query = query.filter(models.User.role == role)
            return [Identity.model_validate(u) for u in query.order_by(models.User.full_name).all()]
        except SQLAlchemyError as e:
            raise StoreError(f"Could not list users: {e}") from e
        finally:
            db.close()

    def sign_in(self, user_id: UUID) -> str:
        """
        Issue a new session token for a user and notify listeners.

        Returns:
            The plaintext token (only its hash is stored)
        """
        token = generate_token()
        db = self._session_factory()
        try:
            user = db.query(models.User).filter(models.User.id == user_id).first()
            if not user:
                raise ValidationError(f"User not found: {user_id}", field="user_id")
            expires_at = models.utcnow() + self._session_ttl if self._session_ttl else None
            db.add(models.SessionToken(user_id=user.id, token_hash=hash_token(token), expires_at=expires_at))
            db.commit()
            identity = Identity.model_validate(user)
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Could not create session: {e}") from e
        finally:
            db.close()

        logger.info(f"Signed in {identity.role.value} {identity.id}")
        self._notify(AuthEvent.SIGNED_IN, identity)
        return token

    def sign_out(self, token: str) -> bool:
        """
        Revoke a session token.

        Returns:
            True if an active session was revoked, False if it was unknown or
            already inactive (no notification is sent in that case)
        """
        db = self._session_factory()
        try:
            session_token = (
                db.query(models.SessionToken)
                .filter(models.SessionToken.token_hash == hash_token(token))
                .first()
            )
            if not session_token or not session_token.is_active:
                return False
            session_token.revoked_at = models.utcnow()
            db.commit()
            identity = Identity.model_validate(session_token.user)
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Could not revoke session: {e}") from e
        finally:
            db.close()

        logger.info(f"Signed out {identity.role.value} {identity.id}")
        self._notify(AuthEvent.SIGNED_OUT, identity)
        return True

    def get_current_user(self, token: Optional[str]) -> Optional[Identity]:
        """Resolve a session token to its identity, or None if unknown/inactive."""
        if not token:
            return None
        db = self._session_factory()
        try:
            session_token = (
                db.query(models.SessionToken)
                .filter(models.SessionToken.token_hash == hash_token(token))
                .first()
            )
            if not session_token or not session_token.is_active:
                return None
            session_token.last_used_at = models.utcnow()
            db.commit()
            return Identity.model_validate(session_token.user)
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Could not resolve session: {e}") from e
        finally:
            db.close()
