"""
api/routes/auth.py -- Registration, login and token lifecycle endpoints.

Routes:
  POST /auth/register   -- create a customer/vendor account (public)
  POST /auth/login      -- open a session, return access + refresh tokens (public)
  POST /auth/refresh    -- exchange a refresh token for a new pair (public)
  POST /auth/logout     -- delete the session behind the bearer token (bearer)
  GET  /auth/verify     -- resolve ?token= to a profile (public)

"Public" means the gate lets the request through without a bearer header;
refresh and verify still authenticate the token they are handed.

Security:
  [H2] register/login/refresh are rate-limited per IP using
       RATE_LIMIT_REQUESTS per RATE_LIMIT_WINDOW seconds.
  [C1] AuthenticationService.login() equalizes timing for unknown e-mails.
  [M5] Cache-Control: no-store on every response that carries tokens.
"""

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import auth_rate_limit, limiter
from api.models import LoginRequest, LoginResponse, RefreshRequest, RegisterRequest, UserProfile
from auth.dependencies import get_auth_service
from auth.service import AuthenticationService, TokenBundle

router = APIRouter()


@router.post("/auth/register", response_model=UserProfile)
@limiter.limit(auth_rate_limit)  # [H2] must sit below @router so the registered endpoint is the limited one
def register(
    request: Request,
    body: RegisterRequest,
    service: AuthenticationService = Depends(get_auth_service),
) -> UserProfile:
    """Create an account. Role defaults to customer; admin cannot be self-registered."""
    user = service.register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
        role=body.role,
    )
    return UserProfile.from_user(user)


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(auth_rate_limit)  # [H2]
def login(
    request: Request,
    body: LoginRequest,
    service: AuthenticationService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with e-mail and password.

    Unknown e-mail and wrong password return the same 401 bad_credentials;
    a correct password on a suspended or inactive account returns 403.
    """
    bundle = service.login(
        email=body.email,
        password=body.password,
        user_agent=request.headers.get("user-agent"),
        ip_address=_client_ip(request),
        remember_me=body.remember_me,
    )
    return _token_response(bundle)


@router.post("/auth/refresh", response_model=LoginResponse)
@limiter.limit(auth_rate_limit)  # [H2]
def refresh(
    request: Request,
    body: RefreshRequest,
    service: AuthenticationService = Depends(get_auth_service),
) -> JSONResponse:
    """Issue a new access/refresh pair bound to the same session."""
    return _token_response(service.refresh(body.refresh_token))


@router.post("/auth/logout", status_code=204)
def logout(
    request: Request,
    service: AuthenticationService = Depends(get_auth_service),
) -> Response:
    """Revoke the session named by the bearer token. Tokens of other sessions stay valid."""
    service.logout(request.headers.get("Authorization"))
    return Response(status_code=204)


@router.get("/auth/verify", response_model=UserProfile)
def verify(
    token: str,
    service: AuthenticationService = Depends(get_auth_service),
) -> UserProfile:
    """Return the profile behind a token if its session is still live."""
    return UserProfile.from_user(service.verify(token))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _client_ip(request: Request) -> str | None:
    """Socket peer, or the first hop of X-Forwarded-For / X-Real-IP when
    TRUST_PROXY_HEADERS says a proxy in front of us sets them.
    """
    peer = request.client.host if request.client else None
    if not request.app.state.settings.trust_proxy_headers:
        return peer
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return peer


def _token_response(bundle: TokenBundle) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=bundle.access_token,
            refresh_token=bundle.refresh_token,
            expires_in=bundle.expires_in,
            user=UserProfile.from_user(bundle.user),
        ).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp
