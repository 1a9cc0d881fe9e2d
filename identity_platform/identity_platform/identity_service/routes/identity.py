"""
Identity endpoints: registration, login, token refresh, logout, email
confirmation, password reset and account management.

Mounted under a configurable prefix by ``map_identity_api``.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from ..auth import InvalidToken, create_access_token, create_refresh_token, decode_refresh_token, get_current_user
from ..config import settings
from ..db import get_db
from ..email_sender import EmailSender, get_email_sender
from ..errors import IdentityResultError, SignInFailed
from ..models import User
from ..schemas import (
    AccessTokenResponse,
    ForgotPasswordRequest,
    InfoRequest,
    InfoResponse,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    ResendConfirmationEmailRequest,
    ResetPasswordRequest,
    TwoFactorRequest,
    TwoFactorResponse,
)
from ..utils.event_logger import log_auth_event
from .. import user_manager

router = APIRouter(tags=["identity"])
logger = logging.getLogger(__name__)


def _challenge() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


def issue_tokens(user: User) -> AccessTokenResponse:
    return AccessTokenResponse(
        access_token=create_access_token(user),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_SECONDS,
        refresh_token=create_refresh_token(user),
    )


def send_confirmation_email(
    user: User,
    request: Request,
    sender: EmailSender,
    email: str,
    is_change: bool = False,
) -> None:
    if is_change:
        code = user_manager.generate_change_email_token(user, email)
        params = {"userId": user.id, "code": code, "changedEmail": email}
    else:
        code = user_manager.generate_email_confirmation_token(user)
        params = {"userId": user.id, "code": code}
    link = str(request.url_for("confirm_email").include_query_params(**params))
    sender.send_confirmation_link(user, email, link)


@router.post("/register")
def register(
    payload: RegisterRequest,
    request: Request,
    db: Session = Depends(get_db),
    sender: EmailSender = Depends(get_email_sender),
):
    user = user_manager.create_user(db, payload.email, payload.password)
    log_auth_event("register", user, request, db)
    send_confirmation_email(user, request, sender, user.email)
    return Response(status_code=status.HTTP_200_OK)


@router.post("/login", response_model=AccessTokenResponse)
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    try:
        user = user_manager.password_sign_in(
            db,
            payload.email,
            payload.password,
            two_factor_code=payload.two_factor_code,
            recovery_code=payload.two_factor_recovery_code,
        )
    except SignInFailed as exc:
        known = user_manager.find_by_email(db, payload.email)
        if known:
            log_auth_event("login_failure", known, request, db, {"reason": exc.reason})
        raise

    log_auth_event("login_success", user, request, db)
    return issue_tokens(user)


@router.post("/refresh", response_model=AccessTokenResponse)
def refresh(payload: RefreshRequest, request: Request, db: Session = Depends(get_db)):
    try:
        data = decode_refresh_token(payload.refresh_token)
    except InvalidToken as exc:
        raise _challenge() from exc

    user = user_manager.validate_refresh_token(db, data)
    if user is None:
        raise _challenge()

    log_auth_event("refresh", user, request, db)
    return issue_tokens(user)


@router.post("/logout")
def logout(request: Request, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """
    Revoke the caller's refresh tokens. Emailed codes and access tokens
    already issued stay valid; access tokens until they expire.
    """
    user_manager.revoke_refresh_tokens(user)
    db.commit()
    log_auth_event("logout", user, request, db)
    return Response(status_code=status.HTTP_200_OK)


@router.get("/confirmEmail", name="confirm_email", response_class=PlainTextResponse)
def confirm_email(
    request: Request,
    user_id: str = Query(alias="userId"),
    code: str = Query(),
    changed_email: Optional[str] = Query(default=None, alias="changedEmail"),
    db: Session = Depends(get_db),
):
    user = user_manager.find_by_id(db, user_id)
    if user is None:
        raise _challenge()

    try:
        if changed_email:
            user_manager.change_email(db, user, changed_email, code)
        else:
            user_manager.confirm_email(db, user, code)
    except IdentityResultError as exc:
        logger.info("Email confirmation rejected: user_id=%s, reason=%s", user.id, exc)
        raise _challenge() from exc

    log_auth_event("email_confirmed", user, request, db, {"changed_email": changed_email} if changed_email else None)
    return "Thank you for confirming your email."


@router.post("/resendConfirmationEmail")
def resend_confirmation_email(
    payload: ResendConfirmationEmailRequest,
    request: Request,
    db: Session = Depends(get_db),
    sender: EmailSender = Depends(get_email_sender),
):
    # Same response whether or not the account exists
    user = user_manager.find_by_email(db, payload.email)
    if user is not None:
        send_confirmation_email(user, request, sender, user.email)
    return Response(status_code=status.HTTP_200_OK)


@router.post("/forgotPassword")
def forgot_password(
    payload: ForgotPasswordRequest,
    db: Session = Depends(get_db),
    sender: EmailSender = Depends(get_email_sender),
):
    user = user_manager.find_by_email(db, payload.email)
    if user is not None and user.email_confirmed:
        code = user_manager.generate_password_reset_token(user)
        sender.send_password_reset_code(user, user.email, code)
    return Response(status_code=status.HTTP_200_OK)


@router.post("/resetPassword")
def reset_password(payload: ResetPasswordRequest, request: Request, db: Session = Depends(get_db)):
    user = user_manager.find_by_email(db, payload.email)
    if user is None or not user.email_confirmed:
        # Indistinguishable from a bad code
        raise IdentityResultError.single("InvalidToken", "Invalid token.")

    user_manager.reset_password(db, user, payload.reset_code, payload.new_password)
    log_auth_event("password_reset", user, request, db)
    return Response(status_code=status.HTTP_200_OK)


# ---------------- Account management ----------------

@router.post("/manage/2fa", response_model=TwoFactorResponse, response_model_exclude_none=True)
def manage_two_factor(
    payload: TwoFactorRequest,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if payload.enable is True:
        if payload.reset_shared_key:
            raise IdentityResultError.single(
                "CannotResetSharedKeyAndEnable",
                "Resetting the 2fa shared key must disable 2fa until a 2fa token based on the new shared key is validated."
            )
        if not payload.two_factor_code:
            raise IdentityResultError.single(
                "RequiresTwoFactor",
                "No 2fa token was provided by the request. A valid 2fa token is required to enable 2fa."
            )
        if not user_manager.verify_two_factor_code(user, payload.two_factor_code):
            raise IdentityResultError.single(
                "InvalidTwoFactorCode",
                "The 2fa token provided by the request was invalid. A valid 2fa token is required to enable 2fa."
            )
        user_manager.set_two_factor_enabled(db, user, True)
        log_auth_event("2fa_enabled", user, request, db)
    elif payload.enable is False or payload.reset_shared_key:
        user_manager.set_two_factor_enabled(db, user, False)
        log_auth_event("2fa_disabled", user, request, db)

    if payload.reset_shared_key:
        user_manager.reset_authenticator_key(db, user)

    recovery_codes = None
    if payload.reset_recovery_codes or (payload.enable is True and user_manager.count_recovery_codes(user) == 0):
        recovery_codes = user_manager.generate_recovery_codes(db, user)

    key = user_manager.get_authenticator_key(user)
    if not key:
        key = user_manager.reset_authenticator_key(db, user)

    return TwoFactorResponse(
        shared_key=key,
        recovery_codes=recovery_codes,
        recovery_codes_left=len(recovery_codes) if recovery_codes is not None else user_manager.count_recovery_codes(user),
        is_two_factor_enabled=user.two_factor_enabled,
        # Bearer tokens carry no remembered-device state
        is_machine_remembered=False,
    )


@router.get("/manage/info", response_model=InfoResponse)
def get_info(user: User = Depends(get_current_user)):
    return InfoResponse(email=user.email, is_email_confirmed=user.email_confirmed)


@router.post("/manage/info", response_model=InfoResponse)
def update_info(
    payload: InfoRequest,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    sender: EmailSender = Depends(get_email_sender),
):
    if payload.new_email:
        errors = user_manager.validate_email(payload.new_email)
        if errors:
            raise IdentityResultError(errors)

    if payload.new_password:
        if not payload.old_password:
            raise IdentityResultError.single(
                "OldPasswordRequired",
                "The old password is required to set a new password. If the old password is forgotten, use /resetPassword."
            )
        user_manager.change_password(db, user, payload.old_password, payload.new_password)

    if payload.new_email and payload.new_email != user.email:
        send_confirmation_email(user, request, sender, payload.new_email, is_change=True)

    return InfoResponse(email=user.email, is_email_confirmed=user.email_confirmed)


def map_identity_api(app: FastAPI, prefix: str = "/identity") -> None:
    """Expose the identity endpoints under ``prefix``."""
    app.include_router(router, prefix=prefix)
    logger.info("Identity endpoints mounted under %s", prefix)
