from typing import Union

from fastapi import APIRouter, Depends, HTTPException, Response, status

from portal_auth.context import AppContext
from portal_auth.routers.deps import (
    get_context,
    get_current_principal,
    get_request_meta,
    get_session_id,
)
from portal_auth.schemas.auth import (
    AuthResponse,
    LoginRequest,
    MessageResponse,
    MfaRequiredResponse,
    MfaToggleRequest,
    VerifyContactRequest,
    VerifyMfaRequest,
)
from portal_auth.schemas.users import RegisterRequest, UserResponse
from portal_auth.services.auth import (
    AuthOutcome,
    AuthState,
    DuplicateIdentityError,
    InvalidCredentialsError,
    InvalidOrExpiredCodeError,
    NoContactOnFileError,
    RequestMeta,
)
from portal_auth.services.authorization import Principal
from portal_auth.services.dispatch import DispatchError

router = APIRouter(prefix="/auth", tags=["auth"])


def _set_session_cookie(response: Response, context: AppContext, session_id: str) -> None:
    response.set_cookie(
        key=context.settings.session_cookie_name,
        value=context.sessions.sign(session_id),
        max_age=context.sessions.ttl_seconds,
        httponly=True,
        secure=context.settings.is_production,
        samesite="lax",
    )


def _authenticated_response(
    outcome: AuthOutcome, response: Response, context: AppContext, message: str
) -> AuthResponse:
    _set_session_cookie(response, context, outcome.session_id)
    return AuthResponse(
        user=outcome.user,
        token=outcome.token,
        expires_in_seconds=context.tokens.ttl_seconds,
        message=message,
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    context: AppContext = Depends(get_context),
    meta: RequestMeta = Depends(get_request_meta),
) -> AuthResponse:
    try:
        user, token = context.auth.register(payload, meta)
    except DuplicateIdentityError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return AuthResponse(
        user=user,
        token=token,
        expires_in_seconds=context.tokens.ttl_seconds,
        message="Registration successful. Please verify your email and phone number.",
    )


@router.post("/login", response_model=Union[AuthResponse, MfaRequiredResponse])
def login(
    payload: LoginRequest,
    response: Response,
    context: AppContext = Depends(get_context),
    meta: RequestMeta = Depends(get_request_meta),
) -> Union[AuthResponse, MfaRequiredResponse]:
    try:
        outcome = context.auth.login(
            payload.email, payload.password, meta, mfa_channel=payload.mfa_channel
        )
    except InvalidCredentialsError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        ) from exc
    if outcome.state is AuthState.MFA_PENDING:
        return MfaRequiredResponse(user_id=outcome.user_id, channel=outcome.mfa_channel)
    return _authenticated_response(outcome, response, context, "Login successful")


@router.post("/verify-mfa", response_model=AuthResponse)
def verify_mfa(
    payload: VerifyMfaRequest,
    response: Response,
    context: AppContext = Depends(get_context),
    meta: RequestMeta = Depends(get_request_meta),
) -> AuthResponse:
    try:
        outcome = context.auth.verify_mfa(payload.user_id, payload.code, payload.type, meta)
    except InvalidOrExpiredCodeError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired verification code",
        ) from exc
    except InvalidCredentialsError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        ) from exc
    return _authenticated_response(outcome, response, context, "MFA verification successful")


def _request_verification(context: AppContext, user_id: int, channel: str) -> MessageResponse:
    label = "email" if channel == "email" else "SMS"
    try:
        expires_in = context.auth.request_verification(user_id, channel)
    except NoContactOnFileError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except DispatchError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to send verification {label}",
        ) from exc
    return MessageResponse(message=f"Verification {label} sent", expires_in_seconds=expires_in)


@router.post("/request-email-verification", response_model=MessageResponse, response_model_exclude_none=True)
def request_email_verification(
    principal: Principal = Depends(get_current_principal),
    context: AppContext = Depends(get_context),
) -> MessageResponse:
    return _request_verification(context, principal.user.id, "email")


@router.post("/request-sms-verification", response_model=MessageResponse, response_model_exclude_none=True)
def request_sms_verification(
    principal: Principal = Depends(get_current_principal),
    context: AppContext = Depends(get_context),
) -> MessageResponse:
    return _request_verification(context, principal.user.id, "sms")


@router.post("/verify-contact", response_model=UserResponse)
def verify_contact(
    payload: VerifyContactRequest,
    principal: Principal = Depends(get_current_principal),
    context: AppContext = Depends(get_context),
    meta: RequestMeta = Depends(get_request_meta),
) -> UserResponse:
    try:
        return context.auth.confirm_contact(principal.user.id, payload.code, payload.type, meta)
    except InvalidOrExpiredCodeError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired verification code",
        ) from exc


@router.post("/mfa", response_model=UserResponse)
def toggle_mfa(
    payload: MfaToggleRequest,
    principal: Principal = Depends(get_current_principal),
    context: AppContext = Depends(get_context),
    meta: RequestMeta = Depends(get_request_meta),
) -> UserResponse:
    return context.auth.set_mfa(principal.user.id, payload.enabled, meta)


@router.post("/logout", response_model=MessageResponse, response_model_exclude_none=True)
def logout(
    response: Response,
    session_id: str | None = Depends(get_session_id),
    context: AppContext = Depends(get_context),
    meta: RequestMeta = Depends(get_request_meta),
) -> MessageResponse:
    context.auth.logout(session_id, meta)
    response.delete_cookie(context.settings.session_cookie_name)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserResponse)
def get_me(principal: Principal = Depends(get_current_principal)) -> UserResponse:
    return principal.user
