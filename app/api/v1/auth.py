import logging

from fastapi import APIRouter, status
from supabase_auth.errors import AuthError

from app.core.deps import AuthClient, AuthenticatedUser, SupabaseClient
from app.core.errors import AppError, ErrorKind
from app.schemas.auth import (
    AuthUser,
    ConfirmationStatus,
    SessionResponse,
    SignInRequest,
    SignUpRequest,
    SignUpResponse,
)

log = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _auth_user(user) -> AuthUser:
    return AuthUser(
        id=user.id,
        email=user.email,
        username=(user.user_metadata or {}).get("username"),
        email_confirmed=user.email_confirmed_at is not None,
    )


@router.post("/signup", response_model=SignUpResponse, status_code=status.HTTP_201_CREATED)
async def sign_up(body: SignUpRequest, auth_client: AuthClient):
    """Create an account. The user must confirm their email before signing in."""
    try:
        response = auth_client.auth.sign_up(
            {
                "email": body.email,
                "password": body.password,
                "options": {"data": {"username": body.username}},
            }
        )
    except AuthError as e:
        raise AppError(ErrorKind.AUTH_ERROR, e.message) from e

    if not response.user:
        raise AppError(ErrorKind.AUTH_ERROR, "Sign up failed")

    log.info("User %s signed up", response.user.id)
    return SignUpResponse(
        user=_auth_user(response.user),
        message="Please check your email to confirm your account.",
    )


@router.post("/signin", response_model=SessionResponse)
async def sign_in(body: SignInRequest, auth_client: AuthClient):
    try:
        response = auth_client.auth.sign_in_with_password(
            {"email": body.email, "password": body.password}
        )
    except AuthError as e:
        raise AppError(ErrorKind.AUTH_ERROR, e.message) from e

    if not response.session or not response.user:
        raise AppError(ErrorKind.AUTH_ERROR, "Invalid login credentials")

    return SessionResponse(
        access_token=response.session.access_token,
        refresh_token=response.session.refresh_token,
        expires_in=response.session.expires_in,
        user=_auth_user(response.user),
    )


@router.post("/signout", status_code=status.HTTP_200_OK)
async def sign_out(user: AuthenticatedUser, supabase: SupabaseClient):
    try:
        supabase.auth.admin.sign_out(user.access_token)
    except AuthError as e:
        raise AppError(ErrorKind.AUTH_ERROR, e.message) from e

    return {"message": "Signed out successfully"}


@router.get("/me", response_model=AuthUser)
async def get_me(user: AuthenticatedUser):
    return AuthUser(
        id=user.id,
        email=user.email,
        username=user.username,
        email_confirmed=user.email_confirmed_at is not None,
    )


@router.get("/confirmation", response_model=ConfirmationStatus)
async def get_confirmation_status(user: AuthenticatedUser):
    """Whether the user's email is confirmed. Clients check on load and then poll."""
    return ConfirmationStatus(
        confirmed=user.email_confirmed_at is not None,
        email_confirmed_at=user.email_confirmed_at,
    )
