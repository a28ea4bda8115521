import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from realmgate.auth import service
from realmgate.auth.deps import Principal, get_current_principal, require_super_user, require_user
from realmgate.auth.errors import (
    AuthenticationFailed,
    ClientAssociationRequired,
    CodeMismatch,
    CurrentPasswordIncorrect,
    InvalidClient,
    InvalidRefreshToken,
    NoActiveCode,
    RefreshTokenExpired,
)
from realmgate.auth.schemas import (
    AccessTokenResponse,
    ChangePasswordRequest,
    ClientLoginRequest,
    ClientSessionResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    OtpRequiredResponse,
    PrincipalResponse,
    RefreshRequest,
    ResendOtpRequest,
    ResetPasswordRequest,
    TokenInfo,
    TokenPairResponse,
    TokensListResponse,
    ValidateOtpRequest,
    ValidateRequestRequest,
    ValidateRequestResponse,
)
from realmgate.auth.tokens import list_active_tokens
from realmgate.db.session import get_db
from realmgate.notifications.email import EmailDispatcher, get_email_dispatcher
from realmgate.users.models import User
from realmgate.users.schemas import UserOut

logger = logging.getLogger(__name__)

router = APIRouter()

GENERIC_OTP_ACK = "If the email exists, an OTP has been sent"


def _unauthenticated(exc: AuthenticationFailed) -> HTTPException:
    # never tell the caller which check failed
    if isinstance(exc, (NoActiveCode, CodeMismatch)):
        detail = "Invalid or expired code"
    elif isinstance(exc, (InvalidRefreshToken, RefreshTokenExpired)):
        detail = "Invalid or expired refresh token"
    elif isinstance(exc, InvalidClient):
        detail = "Invalid client"
    else:
        detail = "Invalid credentials"
    logger.info("Authentication rejected: %s", exc.code)
    return HTTPException(status_code=401, detail=detail)


def _user_out(user: User) -> UserOut:
    return UserOut.model_validate(user, from_attributes=True)


def _token_pair(result: service.LoginResult) -> TokenPairResponse:
    return TokenPairResponse(
        access_token=result.issued.access_token,
        refresh_token=result.issued.refresh_token,
        expires_at=result.issued.expires_at,
        user=_user_out(result.user),
    )


@router.post("/login", response_model=TokenPairResponse | OtpRequiredResponse)
def login(
    payload: LoginRequest,
    db: Session = Depends(get_db),
    dispatcher: EmailDispatcher = Depends(get_email_dispatcher),
):
    try:
        result = service.login(db, email=str(payload.email), password=payload.password, dispatcher=dispatcher)
    except ClientAssociationRequired as e:
        raise HTTPException(status_code=403, detail={"error": str(e), "code": e.code})
    except AuthenticationFailed as e:
        raise _unauthenticated(e)

    if result.requires_otp:
        message = "OTP sent to your email" if result.email_sent else "OTP generated but email delivery failed"
        return OtpRequiredResponse(email_sent=bool(result.email_sent), message=message)

    return _token_pair(result)


@router.post("/client-login", response_model=ClientSessionResponse)
def client_login(payload: ClientLoginRequest, db: Session = Depends(get_db)):
    try:
        result = service.client_login(db, client_id=payload.client_id)
    except AuthenticationFailed as e:
        raise _unauthenticated(e)

    return ClientSessionResponse(
        access_token=result.issued.access_token,
        refresh_token=result.issued.refresh_token,
        expires_at=result.issued.expires_at,
        client_id=result.client.client_id,
        realm_id=result.client.realm_id,
        realm_name=result.realm.name if result.realm else None,
    )


@router.post("/refresh", response_model=AccessTokenResponse)
def refresh(payload: RefreshRequest, db: Session = Depends(get_db)):
    try:
        issued = service.refresh(db, refresh_token=payload.refresh_token)
    except AuthenticationFailed as e:
        raise _unauthenticated(e)
    return AccessTokenResponse(access_token=issued.access_token, expires_at=issued.expires_at)


@router.post("/validate-otp", response_model=TokenPairResponse)
def validate_otp(payload: ValidateOtpRequest, db: Session = Depends(get_db)):
    try:
        result = service.validate_otp(db, email=str(payload.email), code=payload.code, purpose=payload.purpose)
    except ClientAssociationRequired as e:
        raise HTTPException(status_code=403, detail={"error": str(e), "code": e.code})
    except AuthenticationFailed as e:
        raise _unauthenticated(e)
    return _token_pair(result)


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(
    payload: ForgotPasswordRequest,
    db: Session = Depends(get_db),
    dispatcher: EmailDispatcher = Depends(get_email_dispatcher),
):
    service.forgot_password(db, email=str(payload.email), dispatcher=dispatcher)
    return MessageResponse(message=GENERIC_OTP_ACK)


@router.post("/resend-otp", response_model=MessageResponse)
def resend_otp(
    payload: ResendOtpRequest,
    db: Session = Depends(get_db),
    dispatcher: EmailDispatcher = Depends(get_email_dispatcher),
):
    service.resend_otp(db, email=str(payload.email), purpose=payload.purpose, dispatcher=dispatcher)
    return MessageResponse(message=GENERIC_OTP_ACK)


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(payload: ResetPasswordRequest, db: Session = Depends(get_db)):
    try:
        service.reset_password(db, email=str(payload.email), code=payload.code, new_password=payload.new_password)
    except AuthenticationFailed as e:
        raise _unauthenticated(e)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return MessageResponse(message="Password reset successfully. Please login again.")


@router.put("/change-password", response_model=MessageResponse)
def change_password(
    payload: ChangePasswordRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_user),
):
    try:
        service.change_password(
            db,
            user=current_user,
            current_password=payload.current_password,
            new_password=payload.new_password,
        )
    except CurrentPasswordIncorrect as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return MessageResponse(message="Password changed successfully. Please login again.")


@router.post("/validate-request", response_model=ValidateRequestResponse)
def validate_request(
    payload: ValidateRequestRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_user),
):
    decision = service.validate_request(
        db,
        user=current_user,
        host=payload.host,
        route=payload.route,
        method=payload.method,
    )
    return ValidateRequestResponse(
        allowed=decision.allowed,
        reason=decision.reason,
        matched_role_id=decision.matched_role_id,
    )


@router.post("/logout", response_model=MessageResponse)
def logout(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    service.logout(db, access_token=principal.access_token)
    return MessageResponse(message="Logged out successfully")


def _principal_out(principal: Principal) -> PrincipalResponse:
    token = principal.token
    return PrincipalResponse(
        is_client_session=principal.is_client_session,
        expires_at=token.expires_at,
        user=_user_out(principal.user) if principal.user else None,
        client_id=token.client_id,
        realm_id=token.realm_id,
    )


@router.get("/profile", response_model=PrincipalResponse)
def profile(principal: Principal = Depends(get_current_principal)):
    return _principal_out(principal)


@router.get("/validate", response_model=PrincipalResponse)
def validate(principal: Principal = Depends(get_current_principal)):
    return _principal_out(principal)


@router.get("/tokens", response_model=TokensListResponse)
def tokens(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_super_user),
):
    rows = list_active_tokens(db, current_user.id)
    return TokensListResponse(tokens=[TokenInfo.model_validate(t, from_attributes=True) for t in rows])
