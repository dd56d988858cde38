"""Tests for session-token identity resolution."""
from datetime import timedelta

import pytest

from civic_core.errors import ValidationError
from civic_core.identity import AuthEvent, SqlIdentityResolver, hash_token
from civic_core.models import SessionToken, UserRole


class TestRegistration:

    def test_register_normalizes_email(self, identities):
        user = identities.register("  Ana  ", "Ana@Example.com ", UserRole.CITIZEN)

        assert user.full_name == "Ana"
        assert identities.get_user_by_email("ANA@example.com") == user

    def test_duplicate_email_is_rejected(self, identities, citizen):
        with pytest.raises(ValidationError) as exc_info:
            identities.register("Impostor", "ana@example.com", UserRole.WORKER)
        assert exc_info.value.field == "email"

    def test_admin_scope_requires_officer(self, identities):
        with pytest.raises(ValidationError):
            identities.register("Wes", "wes@example.com", UserRole.WORKER, is_admin=True)

    def test_list_users_by_role(self, identities, citizen, worker, other_worker):
        assert [u.full_name for u in identities.list_users(UserRole.WORKER)] == ["Kim Worker", "Wes Worker"]


class TestSessions:

    def test_sign_in_resolves_token(self, identities, worker):
        token = identities.sign_in(worker.id)

        assert identities.get_current_user(token) == worker
        assert identities.get_current_user("cs_unknown") is None
        assert identities.get_current_user(None) is None

    def test_only_hash_is_stored(self, identities, session_factory, worker):
        token = identities.sign_in(worker.id)
        with session_factory() as db:
            stored = db.query(SessionToken).one()
        assert stored.token_hash == hash_token(token)
        assert stored.token_hash != token

    def test_sign_out_revokes(self, identities, worker):
        token = identities.sign_in(worker.id)

        assert identities.sign_out(token)
        assert identities.get_current_user(token) is None
        assert not identities.sign_out(token)

    def test_expired_session_does_not_resolve(self, session_factory, worker):
        resolver = SqlIdentityResolver(session_factory, session_ttl=timedelta(seconds=-1))
        token = resolver.sign_in(worker.id)

        assert resolver.get_current_user(token) is None


class TestAuthStateListeners:

    def test_each_transition_is_delivered_once(self, identities, citizen):
        changes = []
        unsubscribe = identities.on_auth_state_change(changes.append)

        token = identities.sign_in(citizen.id)
        identities.sign_out(token)
        identities.sign_out(token)

        assert [c.event for c in changes] == [AuthEvent.SIGNED_IN, AuthEvent.SIGNED_OUT]
        assert all(c.identity == citizen for c in changes)

        unsubscribe()
        identities.sign_in(citizen.id)
        assert len(changes) == 2
