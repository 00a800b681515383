from typing import Optional

from fastapi import APIRouter, Cookie, Header, HTTPException, Response, status
from fastapi.responses import JSONResponse

from gatekeeper.config import settings
from gatekeeper.errors import (
    AuthError,
    Blacklisted,
    DeliveryError,
    InvalidCode,
    InvalidContact,
    RateLimited,
    StoreUnavailable,
)
from gatekeeper.schemas.otp import OtpRequest, OtpResponse, OtpVerifyRequest, OtpVerifyResponse
from gatekeeper.schemas.tokens import (
    LogoutRequest,
    LogoutResponse,
    SessionValidationResponse,
    TokenRefreshRequest,
    TokenRefreshResponse,
)
from gatekeeper.services.auth import session_issuer
from gatekeeper.services.contacts import ContactIdentity
from gatekeeper.services.delivery import otp_sender
from gatekeeper.services.otp import IssuedOtp, otp_store
from gatekeeper.services.sessions import refresh_tokens
from gatekeeper.services.timeutil import utcnow
from gatekeeper.services.tokens import TokenError, session_tokens

router = APIRouter(prefix="/auth", tags=["auth"])

SESSION_COOKIE = "session-token"
REFRESH_COOKIE = "refresh-token"


def _http_error(exc: AuthError) -> HTTPException:
    headers = None
    if isinstance(exc, RateLimited):
        status_code = status.HTTP_429_TOO_MANY_REQUESTS
        if exc.retry_after is not None:
            headers = {"Retry-After": str(exc.retry_after)}
    elif isinstance(exc, Blacklisted):
        status_code = status.HTTP_429_TOO_MANY_REQUESTS
        if exc.expires_at is not None:
            seconds = max(0, int((exc.expires_at - utcnow()).total_seconds()))
            headers = {"Retry-After": str(seconds)}
    elif isinstance(exc, InvalidCode) and exc.should_blacklist:
        status_code = status.HTTP_429_TOO_MANY_REQUESTS
    elif isinstance(exc, StoreUnavailable):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=status_code, detail=exc.to_detail(), headers=headers)


def _parse_contact(contact_value: str, contact_type: str) -> ContactIdentity:
    try:
        return ContactIdentity.parse(contact_value, contact_type)
    except InvalidContact as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_contact", "message": str(exc)},
        ) from exc


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def _set_cookie(response: Response, key: str, value: str, max_age: int) -> None:
    response.set_cookie(
        key=key,
        value=value,
        max_age=max_age,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )


def _clear_session_cookies(response: Response) -> None:
    for key in (SESSION_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(
            key=key,
            path="/",
            httponly=True,
            secure=settings.is_production,
            samesite="lax",
        )


def _deliver(payload: OtpRequest, resend: bool) -> OtpResponse:
    contact = _parse_contact(payload.contact_value, payload.contact_type)
    try:
        record: IssuedOtp = otp_store.issue(contact, resend=resend)
    except AuthError as exc:
        raise _http_error(exc) from exc
    try:
        otp_sender.send(contact, record.code, record.expires_at)
    except DeliveryError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "delivery_failed", "message": str(exc)},
        ) from exc
    return OtpResponse(
        message="OTP resent" if resend else "OTP sent",
        expires_at=record.expires_at,
        expires_in_seconds=otp_store.policy.expiry_minutes * 60,
        otp=record.code if otp_store.policy.debug else None,
    )


@router.post("/otp/request", response_model=OtpResponse, response_model_exclude_none=True)
def request_otp(payload: OtpRequest) -> OtpResponse:
    return _deliver(payload, resend=False)


@router.post("/otp/resend", response_model=OtpResponse, response_model_exclude_none=True)
def resend_otp(payload: OtpRequest) -> OtpResponse:
    return _deliver(payload, resend=True)


@router.post("/otp/verify", response_model=OtpVerifyResponse)
def verify_otp(
    payload: OtpVerifyRequest,
    response: Response,
    user_agent: Optional[str] = Header(default=None),
) -> OtpVerifyResponse:
    contact = _parse_contact(payload.contact_value, payload.contact_type)
    try:
        otp_store.verify(contact, payload.code)
        bundle = session_issuer.login(contact, device_info=user_agent)
    except AuthError as exc:
        raise _http_error(exc) from exc
    except TokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "token_error", "message": str(exc)},
        ) from exc
    _set_cookie(response, SESSION_COOKIE, bundle.session_token, session_tokens.ttl_seconds)
    _set_cookie(response, REFRESH_COOKIE, bundle.refresh_token, refresh_tokens.ttl_seconds)
    return OtpVerifyResponse(
        message="OTP verified",
        user=bundle.user,
        is_new_user=bundle.is_new_user,
        redirect_to=bundle.redirect_to,
        session_token=bundle.session_token,
        expires_in_seconds=session_tokens.ttl_seconds,
        refresh_expires_in_seconds=refresh_tokens.ttl_seconds,
    )


@router.get("/session", response_model=SessionValidationResponse, response_model_exclude_none=True)
def get_session(
    session_token: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
    authorization: Optional[str] = Header(default=None),
) -> SessionValidationResponse:
    token = session_token or _bearer_token(authorization)
    if not token:
        return SessionValidationResponse(valid=False, error="No session token")
    try:
        validation = session_issuer.validate_session(token)
    except StoreUnavailable as exc:
        raise _http_error(exc) from exc
    return SessionValidationResponse(
        valid=validation.valid,
        user=validation.user,
        profile=validation.profile,
        error=validation.error,
    )


@router.post("/refresh", response_model=TokenRefreshResponse)
def refresh_session(
    response: Response,
    payload: Optional[TokenRefreshRequest] = None,
    refresh_cookie: Optional[str] = Cookie(default=None, alias=REFRESH_COOKIE),
) -> TokenRefreshResponse:
    token = (payload.refresh_token if payload else None) or refresh_cookie
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "token_error", "message": "Missing refresh token"},
        )
    try:
        session_token, user = session_issuer.refresh(token)
    except TokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "token_error", "message": str(exc)},
        ) from exc
    except StoreUnavailable as exc:
        raise _http_error(exc) from exc
    _set_cookie(response, SESSION_COOKIE, session_token, session_tokens.ttl_seconds)
    return TokenRefreshResponse(
        session_token=session_token,
        expires_in_seconds=session_tokens.ttl_seconds,
        user=user,
    )


@router.post("/logout", response_model=LogoutResponse)
def logout(
    response: Response,
    payload: Optional[LogoutRequest] = None,
    session_cookie: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
    refresh_cookie: Optional[str] = Cookie(default=None, alias=REFRESH_COOKIE),
    authorization: Optional[str] = Header(default=None),
) -> LogoutResponse:
    all_devices = payload.all_devices if payload else False
    refresh_token = (payload.refresh_token if payload else None) or refresh_cookie
    token = session_cookie or _bearer_token(authorization)
    try:
        user_id = session_tokens.decode(token).user_id if token else None
    except TokenError:
        user_id = None
    try:
        if user_id is None and refresh_token:
            user_id = refresh_tokens.lookup(refresh_token)
        if user_id is None:
            denied = JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": {"error": "token_error", "message": "Not logged in"}},
            )
            _clear_session_cookies(denied)
            return denied
        revoked = session_issuer.logout(
            user_id, None if all_devices else refresh_token
        )
    except StoreUnavailable as exc:
        raise _http_error(exc) from exc
    _clear_session_cookies(response)
    return LogoutResponse(message="Logged out", revoked=revoked)
