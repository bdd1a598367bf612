# routers/auth.py — Registration, login, token refresh and logout
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, UserRegister, UserLogin, TokenResponse, RefreshRequest,
    get_current_user, CurrentUser, ACCESS_TOKEN_EXPIRE_MINUTES,
)
from database import get_db_session
from exceptions import Unauthenticated
from models import User, utcnow
from schemas import UserOut, user_to_out

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])
logger = logging.getLogger("taskflow.auth")


def _build_token_response(user_obj: User) -> TokenResponse:
    """Build token response from a user ORM instance"""
    token_data = {"sub": user_obj.id, "email": user_obj.email}
    return TokenResponse(
        access_token=AuthService.create_access_token(token_data),
        refresh_token=AuthService.create_refresh_token(token_data),
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=user_to_out(user_obj).model_dump(),
    )


@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db_session),
):
    """Register a new worker account"""
    user = await AuthService.register_user(user_data, db)
    return _build_token_response(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and receive tokens"""
    user = await AuthService.authenticate_user(credentials.email, credentials.password, db)
    if not user:
        raise Unauthenticated("Invalid credentials", error_code="INVALID_CREDENTIALS")
    logger.info(f"User {user.id} logged in")
    return _build_token_response(user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    refresh_req: RefreshRequest,
    db: AsyncSession = Depends(get_db_session),
):
    """Refresh access token using a refresh token"""
    payload = AuthService.verify_token(refresh_req.refresh_token)

    if payload.get("type") != "refresh":
        raise Unauthenticated("Invalid token type. Expected refresh token.", error_code="INVALID_TOKEN")

    jti = payload.get("jti")
    if jti and await AuthService.is_token_revoked(jti, db):
        raise Unauthenticated("Refresh token has been revoked", error_code="TOKEN_REVOKED")

    user = await db.get(User, payload.get("sub"))
    if not user or not user.is_active or user.deleted_at is not None:
        raise Unauthenticated("User not found or inactive")

    return _build_token_response(user)


@router.post("/logout")
async def logout(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Revoke the access token used for this request"""
    if user.token_jti:
        await AuthService.revoke_token(
            user.token_jti, user.id, user.token_expires_at or utcnow(), db,
        )
    logger.info(f"User {user.id} logged out")
    return {"status": "logged_out", "message": "Logged out successfully"}


@router.get("/me", response_model=UserOut)
async def get_current_user_info(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Get current authenticated user information"""
    return user_to_out(await db.get(User, user.id))
