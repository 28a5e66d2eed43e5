from fastapi import APIRouter, Depends, status
from loguru import logger

from app.core.dependencies import get_user_service, get_current_user
from app.core.exceptions import AuthenticationError
from app.services.user import UserService
from app.db.schema import User
from app.models.auth import Token, TokenAccess, TokenRefresh
from app.models.user import UserSignin, UserRead


router = APIRouter()


@router.post(
    "/signin",
    response_model=Token,
    status_code=status.HTTP_200_OK,
    summary="Signin to get tokens",
    description="Returns an Access Token (short-lived) and Refresh Token (long-lived)."
)
def signin(
    signin_data: UserSignin,
    service: UserService = Depends(get_user_service)
):
    user = service.authenticate_user(signin_data.email, signin_data.password)

    # Same error for unknown email, wrong password and deactivated accounts
    if not user or not user.is_active:
        raise AuthenticationError("Incorrect email or password")

    tokens = service.generate_tokens(user)

    logger.info(f"User logged in: {user.id}")

    return tokens


@router.post(
    "/refresh",
    response_model=TokenAccess,
    status_code=status.HTTP_200_OK,
    summary="Refresh Session",
    description="Exchanges a valid Refresh Token for a new Access Token."
)
def refresh_token(
    refresh_data: TokenRefresh,
    service: UserService = Depends(get_user_service)
):
    return TokenAccess(access_token=service.refresh_session(refresh_data.refresh_token))


@router.get(
    "/me",
    response_model=UserRead,
    status_code=status.HTTP_200_OK,
    summary="Get current user",
    description="Returns the profile of the authenticated user, including circularity credits."
)
def get_me(
    current_user: User = Depends(get_current_user)
):
    return current_user
