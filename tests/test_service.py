"""Unit tests for auth/service.py -- AuthenticationService.

Every test uses private in-memory stores (see conftest.service), so there
is no HTTP layer involved. Errors are asserted by AuthError subclass and
code, which is exactly what the API layer renders.

Covers:
- register: defaults, conflicts, admin refusal
- login: indistinguishable failures, inactive accounts, token pair shape
- logout / refresh / verify session semantics
- change_password and suspend revoke every session
- API key management limits and ownership
- store and hashing failures surface as InternalFailure
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from auth.errors import Conflict, Forbidden, InternalFailure, NotFound, Unauthorized, ValidationFailed
from auth.models import UserRole, UserStatus
from auth.service import MAX_API_KEYS_PER_USER, AuthenticationService
from auth.tokens import verify_token

PASSWORD = "s3cret-pass"


def _register(service: AuthenticationService, email: str = "reader@example.com", **kwargs):
    return service.register(email=email, password=PASSWORD, first_name="Rea", last_name="Der", **kwargs)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegister:
    def test_defaults(self, service):
        user = _register(service)
        assert user.id
        assert user.role == UserRole.customer
        assert user.status == UserStatus.active
        assert user.email_verified is False
        assert user.password_hash != PASSWORD

    def test_email_is_normalized(self, service):
        user = _register(service, email="Reader@Example.COM")
        assert user.email == "reader@example.com"

    def test_vendor_role(self, service):
        assert _register(service, role=UserRole.vendor).role == UserRole.vendor

    def test_duplicate_email_conflicts(self, service):
        _register(service)
        with pytest.raises(Conflict):
            _register(service, email="READER@example.com")

    def test_admin_cannot_self_register(self, service):
        with pytest.raises(Forbidden):
            _register(service, role=UserRole.admin)

    def test_password_over_72_bytes_is_rejected(self, service):
        with pytest.raises(ValidationFailed) as exc_info:
            service.register("long@example.com", "A" * 80, "Lo", "Ng")
        assert exc_info.value.code == "password_too_long"
        assert service.users.get_by_email("long@example.com") is None

    def test_password_of_exactly_72_bytes_is_significant(self, service):
        service.register("edge@example.com", "A" * 72, "Ed", "Ge")
        assert service.login("edge@example.com", "A" * 72).access_token
        with pytest.raises(Unauthorized):
            service.login("edge@example.com", "A" * 72 + "totally-different")


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_success_issues_pair_bound_to_one_session(self, service, settings):
        secret = settings.jwt_secret
        user = _register(service)
        bundle = service.login("reader@example.com", PASSWORD, user_agent="pytest", ip_address="127.0.0.1")

        access = verify_token(bundle.access_token, secret)
        refresh = verify_token(bundle.refresh_token, secret)
        assert access.sub == refresh.sub == user.id
        assert access.jti == refresh.jti
        assert bundle.expires_in == settings.jwt_expiration
        assert access.exp - access.iat == settings.jwt_expiration
        assert refresh.exp - refresh.iat == settings.refresh_token_expiration

        session = service.sessions.get(access.jti)
        assert session is not None
        assert session.user_agent == "pytest"
        assert session.ip_address == "127.0.0.1"

    def test_login_records_last_login(self, service):
        user = _register(service)
        assert user.last_login is None
        service.login("reader@example.com", PASSWORD)
        assert service.get_user(user.id).last_login is not None

    def test_unknown_email_and_wrong_password_are_indistinguishable(self, service):
        _register(service)
        with pytest.raises(Unauthorized) as unknown:
            service.login("nobody@example.com", PASSWORD)
        with pytest.raises(Unauthorized) as wrong:
            service.login("reader@example.com", PASSWORD + "x")
        assert unknown.value.code == wrong.value.code == "bad_credentials"
        assert unknown.value.message == wrong.value.message

    def test_failed_logins_are_counted(self, service, metrics):
        _register(service)
        for _ in range(3):
            with pytest.raises(Unauthorized):
                service.login("reader@example.com", "wrong-password")
        assert metrics.value("auth_failed_logins_total") == 3

    def test_inactive_account_is_forbidden(self, service):
        user = _register(service)
        service.users.update_user(user.id, status=UserStatus.inactive)
        with pytest.raises(Forbidden):
            service.login("reader@example.com", PASSWORD)

    def test_wrong_password_on_suspended_account_is_unauthorized(self, service):
        user = _register(service)
        service.suspend(user.id)
        with pytest.raises(Unauthorized):
            service.login("reader@example.com", "wrong-password")


# ---------------------------------------------------------------------------
# Token lifecycle
# ---------------------------------------------------------------------------


class TestTokenLifecycle:
    def test_verify_returns_user(self, service):
        user = _register(service)
        bundle = service.login("reader@example.com", PASSWORD)
        assert service.verify(bundle.access_token).id == user.id

    def test_verify_rejects_garbage(self, service):
        with pytest.raises(Unauthorized):
            service.verify("garbage")

    def test_logout_revokes_only_that_session(self, service):
        _register(service)
        first = service.login("reader@example.com", PASSWORD)
        second = service.login("reader@example.com", PASSWORD)

        service.logout(f"Bearer {first.access_token}")

        with pytest.raises(Unauthorized):
            service.verify(first.access_token)
        with pytest.raises(Unauthorized):
            service.verify(first.refresh_token)
        assert service.verify(second.access_token)

    def test_logout_twice_is_harmless(self, service, metrics):
        _register(service)
        bundle = service.login("reader@example.com", PASSWORD)
        service.logout(f"Bearer {bundle.access_token}")
        service.logout(f"Bearer {bundle.access_token}")
        assert metrics.value("auth_sessions_revoked_total") == 1

    def test_logout_without_bearer(self, service):
        with pytest.raises(Unauthorized):
            service.logout(None)
        with pytest.raises(Unauthorized):
            service.logout("Basic abc")

    def test_refresh_keeps_session_id(self, service, settings):
        _register(service)
        bundle = service.login("reader@example.com", PASSWORD)
        renewed = service.refresh(bundle.refresh_token)
        old_jti = verify_token(bundle.access_token, settings.jwt_secret).jti
        assert verify_token(renewed.access_token, settings.jwt_secret).jti == old_jti
        assert service.verify(renewed.access_token)

    def test_refresh_after_logout_is_rejected(self, service):
        _register(service)
        bundle = service.login("reader@example.com", PASSWORD)
        service.logout(f"Bearer {bundle.access_token}")
        with pytest.raises(Unauthorized):
            service.refresh(bundle.refresh_token)

    def test_sweep_and_active_count(self, service, metrics):
        _register(service)
        service.login("reader@example.com", PASSWORD)
        service.sessions.create("someone", now=datetime.now(timezone.utc) - timedelta(days=30))
        assert service.sweep_expired_sessions() == 1
        assert service.active_session_count() == 1
        assert metrics.value("auth_active_sessions") == 1


# ---------------------------------------------------------------------------
# Password change and account status
# ---------------------------------------------------------------------------


class TestGlobalLogout:
    def test_password_change_revokes_every_session(self, service):
        user = _register(service)
        first = service.login("reader@example.com", PASSWORD)
        second = service.login("reader@example.com", PASSWORD)

        assert service.change_password(user.id, PASSWORD, "brand-new-pass") == 2

        for token in (first.access_token, second.access_token):
            with pytest.raises(Unauthorized):
                service.verify(token)
        with pytest.raises(Unauthorized):
            service.login("reader@example.com", PASSWORD)
        assert service.login("reader@example.com", "brand-new-pass").access_token

    def test_password_change_requires_current_password(self, service):
        user = _register(service)
        bundle = service.login("reader@example.com", PASSWORD)
        with pytest.raises(ValidationFailed) as exc_info:
            service.change_password(user.id, "not-my-password", "brand-new-pass")
        assert exc_info.value.code == "invalid_current_password"
        assert service.verify(bundle.access_token)

    def test_new_password_over_72_bytes_is_rejected(self, service):
        user = _register(service)
        bundle = service.login("reader@example.com", PASSWORD)
        with pytest.raises(ValidationFailed) as exc_info:
            service.change_password(user.id, PASSWORD, "\u00e9" * 40)
        assert exc_info.value.code == "password_too_long"
        assert service.verify(bundle.access_token)

    def test_suspension_blocks_login_and_existing_tokens(self, service, metrics):
        user = _register(service)
        bundle = service.login("reader@example.com", PASSWORD)

        assert service.suspend(user.id) == 1

        with pytest.raises(Unauthorized):
            service.verify(bundle.access_token)
        with pytest.raises(Forbidden):
            service.login("reader@example.com", PASSWORD)
        assert metrics.value("auth_sessions_revoked_total") == 1

    def test_activate_restores_login(self, service):
        user = _register(service)
        service.suspend(user.id)
        service.activate(user.id)
        assert service.get_user(user.id).status == UserStatus.active
        assert service.login("reader@example.com", PASSWORD)

    def test_unknown_user(self, service):
        with pytest.raises(NotFound):
            service.suspend("no-such-user")
        with pytest.raises(NotFound):
            service.get_user("no-such-user")

    def test_update_profile_ignores_omitted_fields(self, service):
        user = _register(service)
        updated = service.update_profile(user.id, first_name="Reese")
        assert updated.first_name == "Reese"
        assert updated.last_name == "Der"


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


class TestApiKeys:
    @pytest.fixture(autouse=True)
    def cheap_key_hashing(self, monkeypatch):
        monkeypatch.setattr("auth.hashing.API_KEY_COST", 4)

    def test_create_returns_raw_key_once(self, service):
        user = _register(service)
        record, raw = service.create_api_key(user.id, "ci", ["read"])
        assert raw.startswith("bm_")
        assert record.key_hash != raw
        listed = service.list_api_keys(user.id)
        assert [k.id for k in listed] == [record.id]
        assert listed[0].scopes == ["read"]

    def test_limit_per_user(self, service):
        user = _register(service)
        for i in range(MAX_API_KEYS_PER_USER):
            service.create_api_key(user.id, f"key-{i}", [])
        with pytest.raises(ValidationFailed) as exc_info:
            service.create_api_key(user.id, "one-too-many", [])
        assert exc_info.value.code == "key_limit_reached"

    def test_expiry_must_be_in_future(self, service):
        user = _register(service)
        with pytest.raises(ValidationFailed):
            service.create_api_key(user.id, "old", [], datetime.now(timezone.utc) - timedelta(days=1))

    def test_keys_are_scoped_to_owner(self, service):
        owner = _register(service)
        other = _register(service, email="other@example.com")
        record, _ = service.create_api_key(owner.id, "mine", [])
        with pytest.raises(NotFound):
            service.get_api_key(other.id, record.id)
        with pytest.raises(NotFound):
            service.revoke_api_key(other.id, record.id)
        assert service.get_api_key(owner.id, record.id).name == "mine"

    def test_update_and_revoke(self, service):
        user = _register(service)
        record, _ = service.create_api_key(user.id, "ci", ["read"])
        updated = service.update_api_key(user.id, record.id, "deploy", ["read", "write"])
        assert (updated.name, updated.scopes) == ("deploy", ["read", "write"])
        service.revoke_api_key(user.id, record.id)
        with pytest.raises(NotFound):
            service.get_api_key(user.id, record.id)

    def test_keys_survive_password_change(self, service):
        user = _register(service)
        service.create_api_key(user.id, "ci", [])
        service.change_password(user.id, PASSWORD, "brand-new-pass")
        assert len(service.list_api_keys(user.id)) == 1


# ---------------------------------------------------------------------------
# Internal failures
# ---------------------------------------------------------------------------


class TestInternalFailures:
    def test_store_failure_is_generic(self, service, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(service.users, "get_by_email", broken)
        with pytest.raises(InternalFailure) as exc_info:
            service.login("reader@example.com", PASSWORD)
        assert "locked" not in exc_info.value.message
        assert exc_info.value.status_code == 500

    def test_corrupt_password_hash_is_internal(self, service):
        user = _register(service)
        service.users.update_user(user.id, password_hash="corrupted")
        with pytest.raises(InternalFailure):
            service.login("reader@example.com", PASSWORD)
