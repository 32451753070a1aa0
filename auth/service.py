"""
auth/service.py -- AuthenticationService: the orchestration layer.

Combines the credential hasher (auth/hashing.py), the token codec
(auth/tokens.py), the session store (auth/sessions.py) and the user store
(auth/store.py) into the operations the HTTP layer exposes.

Session state machine:
  Created -> Active (now < expires_at) -> Expired | Revoked

Both terminal states are "row absent" (hard delete) or "expires_at passed".
There is no status column to query; liveness is exists(row) AND
expires_at > now, evaluated at lookup time.

Error contract: every public method raises only AuthError subclasses
(auth/errors.py). Store failures, hashing failures and token failures are
converted explicitly at the call site or by _guard(); nothing raw escapes.

Security notes:
  [C1] login() runs bcrypt against a dummy hash when the e-mail is unknown,
       so response time does not reveal which e-mails are registered. Unknown
       e-mail and wrong password raise the identical Unauthorized.
  [R1] refresh() re-issues tokens for the SAME session id; it does not rotate.
       A captured refresh token stays usable until the session's original
       expiry. Rotation is not implemented; see DESIGN.md.
  Self-registration cannot request the admin role. Admins are created with
  `python main.py create-admin`.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.db import now_utc, to_iso
from auth.errors import (
    AuthError,
    Conflict,
    Forbidden,
    NotFound,
    Unauthorized,
    ValidationFailed,
    from_hashing_error,
    from_store_error,
    from_token_error,
)
from auth.hashing import (
    MAX_PASSWORD_BYTES,
    HashingError,
    dummy_hash,
    generate_api_key,
    hash_api_key,
    hash_password,
    password_too_long,
    verify_password,
)
from auth.metrics import MetricsSink, NullMetrics
from auth.models import ApiKey, Claims, User, UserRole, UserStatus
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import TokenError, extract_bearer, issue_token, verify_token

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("bookmarket.auth.service")

MAX_API_KEYS_PER_USER = 10


@dataclass
class TokenBundle:
    """Result of login() and refresh(). expires_in is the access token ttl."""

    access_token: str
    refresh_token: str
    expires_in: int
    user: User


@contextmanager
def _guard() -> Iterator[None]:
    """Map store and hashing failures to InternalFailure. AuthErrors pass through."""
    try:
        yield
    except AuthError:
        raise
    except SQLAlchemyError as exc:
        raise from_store_error(exc) from exc
    except HashingError as exc:
        raise from_hashing_error(exc) from exc


def _check_new_password(password: str) -> None:
    if password_too_long(password):
        raise ValidationFailed(
            f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded.", code="password_too_long"
        )


class AuthenticationService:
    """Register/login/refresh/logout/verify plus password, status and API key management.

    Usage:
        service = AuthenticationService(users, sessions, get_settings(), metrics)
        bundle = service.login("a@example.com", "pw", user_agent="curl", ip_address="10.0.0.1")
        user = service.verify(bundle.access_token)
    """

    def __init__(
        self,
        users: UserStore,
        sessions: SessionStore,
        settings: Settings,
        metrics: Optional[MetricsSink] = None,
    ) -> None:
        self.users = users
        self.sessions = sessions
        self._secret = settings.jwt_secret
        self._access_ttl = settings.jwt_expiration
        self._refresh_ttl = settings.refresh_token_expiration
        self._cost = settings.bcrypt_cost
        self.metrics: MetricsSink = metrics or NullMetrics()

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        phone: Optional[str] = None,
        role: Optional[UserRole] = None,
    ) -> User:
        self.metrics.increment("auth_requests_total")
        role = UserRole(role) if role is not None else UserRole.customer
        if role == UserRole.admin:
            raise Forbidden("Administrator accounts cannot be self-registered.")
        _check_new_password(password)
        with _guard():
            if self.users.get_by_email(email) is not None:
                raise Conflict("User already exists.")
            user = User(
                email=email,
                password_hash=hash_password(password, self._cost),
                first_name=first_name,
                last_name=last_name,
                phone=phone,
                role=role,
            )
            try:
                user_id = self.users.create_user(user)
            except IntegrityError as exc:
                # Lost a race with a concurrent registration of the same e-mail.
                raise Conflict("User already exists.") from exc
            created = self.users.get_by_id(user_id)
        if created is None:
            raise from_store_error(RuntimeError(f"user {user_id} missing after insert"))
        logger.info("Registered user %s (role=%s)", created.id, created.role.value)
        return created

    def login(
        self,
        email: str,
        password: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        remember_me: bool = False,
    ) -> TokenBundle:
        """Authenticate, open a session and issue an access/refresh pair bound to it."""
        started = time.perf_counter()
        self.metrics.increment("auth_requests_total")
        with _guard():
            user = self.users.get_by_email(email)
            if user is None:
                # Equalize timing -- do NOT return before running bcrypt [C1]
                verify_password(password, dummy_hash(self._cost))
                self._login_failed("unknown e-mail", ip_address)
            elif not verify_password(password, user.password_hash):
                self._login_failed(f"bad password for user {user.id}", ip_address)
            if not user.is_active:
                self.metrics.increment("auth_failed_logins_total")
                logger.info("Login refused for user %s: status=%s", user.id, user.status.value)
                raise Forbidden("Account is not active.")

            session = self.sessions.create(user.id, user_agent, ip_address, remember_me)
            bundle = self._issue_pair(user, session.id)
            self.users.update_last_login(user.id)
        self.metrics.observe("auth_request_duration_seconds", time.perf_counter() - started)
        logger.info("User %s logged in (session=%s, remember_me=%s)", user.id, session.id, remember_me)
        return bundle

    def _login_failed(self, why: str, ip_address: Optional[str]) -> None:
        self.metrics.increment("auth_failed_logins_total")
        logger.info("Login failed from %s: %s", ip_address or "unknown", why)
        raise Unauthorized("Invalid email or password.", code="bad_credentials")

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> TokenBundle:
        """Exchange a refresh token for a new pair on the same session [R1]."""
        self.metrics.increment("auth_requests_total")
        claims = self._decode(refresh_token)
        with _guard():
            user = self.users.get_by_id(claims.sub)
            session = self.sessions.get_live(claims.jti)
            if user is None or session is None or session.user_id != user.id:
                raise Unauthorized()
            if not user.is_active:
                raise Forbidden("Account is not active.")
            return self._issue_pair(user, session.id)

    def logout(self, authorization: Optional[str]) -> None:
        """Delete the session named by the bearer token's jti."""
        self.metrics.increment("auth_requests_total")
        token = extract_bearer(authorization)
        if token is None:
            raise Unauthorized()
        claims = self._decode(token)
        with _guard():
            deleted = self.sessions.delete(claims.jti)
        if deleted:
            self.metrics.increment("auth_sessions_revoked_total")
        logger.info("User %s logged out (session=%s)", claims.sub, claims.jti)

    def verify(self, token: str) -> User:
        """Return the user behind a token whose session is still live."""
        self.metrics.increment("auth_requests_total")
        claims = self._decode(token)
        with _guard():
            session = self.sessions.get_live(claims.jti)
            if session is None or session.user_id != claims.sub:
                raise Unauthorized()
            user = self.users.get_by_id(claims.sub)
        if user is None:
            raise Unauthorized()
        return user

    def _decode(self, token: str) -> Claims:
        try:
            return verify_token(token, self._secret)
        except TokenError as exc:
            raise from_token_error(exc) from exc

    def _issue_pair(self, user: User, session_id: str) -> TokenBundle:
        claims = Claims(sub=user.id, email=user.email, role=user.role.value, jti=session_id)
        return TokenBundle(
            access_token=issue_token(claims, self._access_ttl, self._secret),
            refresh_token=issue_token(claims, self._refresh_ttl, self._secret),
            expires_in=self._access_ttl,
            user=user,
        )

    # ------------------------------------------------------------------
    # Account management
    # ------------------------------------------------------------------

    def get_user(self, user_id: str) -> User:
        with _guard():
            user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFound("User not found.")
        return user

    def update_profile(
        self,
        user_id: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> User:
        """Update the provided profile fields; None leaves a field unchanged."""
        updates = {
            k: v for k, v in {"first_name": first_name, "last_name": last_name, "phone": phone}.items() if v is not None
        }
        with _guard():
            if updates:
                if not self.users.update_user(user_id, **updates):
                    raise NotFound("User not found.")
        return self.get_user(user_id)

    def change_password(self, user_id: str, current_password: str, new_password: str) -> int:
        """Re-verify, store the new hash, then log the user out everywhere.

        Returns the number of sessions that were revoked.
        """
        _check_new_password(new_password)
        with _guard():
            user = self.users.get_by_id(user_id)
            if user is None:
                raise NotFound("User not found.")
            if not verify_password(current_password, user.password_hash):
                raise ValidationFailed("Current password is incorrect.", code="invalid_current_password")
            self.users.update_user(user_id, password_hash=hash_password(new_password, self._cost))
            revoked = self.sessions.delete_all_for_user(user_id)
        self.metrics.increment("auth_sessions_revoked_total", revoked)
        logger.info("Password changed for user %s; %d sessions revoked", user_id, revoked)
        return revoked

    def suspend(self, user_id: str) -> int:
        """Suspend the account and revoke all of its sessions. Returns sessions revoked."""
        with _guard():
            if not self.users.update_user(user_id, status=UserStatus.suspended):
                raise NotFound("User not found.")
            revoked = self.sessions.delete_all_for_user(user_id)
        self.metrics.increment("auth_sessions_revoked_total", revoked)
        logger.info("User %s suspended; %d sessions revoked", user_id, revoked)
        return revoked

    def activate(self, user_id: str) -> None:
        with _guard():
            if not self.users.update_user(user_id, status=UserStatus.active):
                raise NotFound("User not found.")
        logger.info("User %s activated", user_id)

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    def create_api_key(
        self,
        user_id: str,
        name: str,
        scopes: list[str],
        expires_at: Optional[datetime] = None,
    ) -> tuple[ApiKey, str]:
        """Create a key and return (record, raw_key). raw_key is never retrievable again.

        [H3] At most MAX_API_KEYS_PER_USER keys per user.
        """
        if expires_at is not None and expires_at <= now_utc():
            raise ValidationFailed("expires_at must be in the future.")
        with _guard():
            if self.users.count_api_keys(user_id) >= MAX_API_KEYS_PER_USER:
                raise ValidationFailed(
                    f"Maximum of {MAX_API_KEYS_PER_USER} API keys per user. Revoke an existing key first.",
                    code="key_limit_reached",
                )
            raw_key = generate_api_key()
            record = self.users.create_api_key(
                ApiKey(
                    user_id=user_id,
                    name=name,
                    key_hash=hash_api_key(raw_key),
                    scopes=list(scopes),
                    expires_at=to_iso(expires_at) if expires_at is not None else None,
                )
            )
        logger.info("API key %s created for user %s", record.id, user_id)
        return record, raw_key

    def list_api_keys(self, user_id: str) -> list[ApiKey]:
        with _guard():
            return self.users.get_api_keys(user_id)

    def get_api_key(self, user_id: str, key_id: str) -> ApiKey:
        with _guard():
            key = self.users.get_api_key(key_id, user_id)
        if key is None:
            raise NotFound("API key not found.")
        return key

    def update_api_key(
        self,
        user_id: str,
        key_id: str,
        name: str,
        scopes: list[str],
        expires_at: Optional[datetime] = None,
    ) -> ApiKey:
        expires = to_iso(expires_at) if expires_at is not None else None
        with _guard():
            key = self.users.update_api_key(key_id, user_id, name, list(scopes), expires)
        if key is None:
            raise NotFound("API key not found.")
        return key

    def revoke_api_key(self, user_id: str, key_id: str) -> None:
        with _guard():
            deleted = self.users.delete_api_key(key_id, user_id)
        if not deleted:
            raise NotFound("API key not found.")
        logger.info("API key %s revoked by user %s", key_id, user_id)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep_expired_sessions(self) -> int:
        with _guard():
            return self.sessions.sweep_expired()

    def active_session_count(self) -> int:
        """Count live sessions and publish the auth_active_sessions gauge."""
        with _guard():
            count = self.sessions.count_active()
        self.metrics.set_gauge("auth_active_sessions", count)
        return count
