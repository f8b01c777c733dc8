from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from models import LoginRequest, RegisterRequest, ForgotPasswordRequest, TokenResponse, UserResponse
from middleware import require_auth, require_admin
from services.auth_service import auth_service
from services.errors import DomainError, raise_http
from utils.rate_limiter import rate_limiter
from typing import List
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth", tags=["auth"])

def _client_info(request: Request):
    ip = request.client.host if request.client else None
    return ip, request.headers.get("user-agent")

async def _enforce_rate_limit(key: str, max_attempts: int, window_minutes: int):
    allowed, error_message = await rate_limiter.check_rate_limit(key, max_attempts, window_minutes)
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"error_code": "RATE_LIMITED", "message": error_message}
        )

@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(request: Request, data: RegisterRequest):
    """Create an account and return a session token."""
    ip, user_agent = _client_info(request)
    try:
        token, user = await auth_service.register(data, ip=ip, user_agent=user_agent)
        return TokenResponse(message="Registration successful", token=token, user=user)
    except DomainError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Registration error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Registration failed"
        )

@router.post("/login", response_model=TokenResponse)
async def login(request: Request, credentials: LoginRequest):
    ip, user_agent = _client_info(request)
    await _enforce_rate_limit(f"login:{ip}:{credentials.username.lower()}", max_attempts=10, window_minutes=15)
    try:
        token, user = await auth_service.login(
            credentials.username, credentials.password, ip=ip, user_agent=user_agent
        )
        return TokenResponse(message="Login successful", token=token, user=user)
    except DomainError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Login error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Login failed"
        )

@router.get("/user", response_model=UserResponse)
async def get_user(user: dict = Depends(require_auth)):
    """Current user's profile."""
    try:
        return await auth_service.get_profile(user["user_id"])
    except DomainError as e:
        raise_http(e)

@router.post("/forgot-password")
async def forgot_password(request: Request, data: ForgotPasswordRequest):
    """Reset a password by matching username, email, phone number and date of birth."""
    ip, user_agent = _client_info(request)
    await _enforce_rate_limit(f"forgot-password:{ip}", max_attempts=5, window_minutes=15)
    try:
        await auth_service.forgot_password(data, ip=ip, user_agent=user_agent)
        return {"message": "Password reset successful"}
    except DomainError as e:
        raise_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Forgot password error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Password reset failed"
        )

@router.post("/logout")
async def logout(request: Request, user: dict = Depends(require_auth)):
    ip, user_agent = _client_info(request)
    await auth_service.logout(user, ip=ip, user_agent=user_agent)
    return {"message": "Logged out"}

@router.get("/users", response_model=List[UserResponse])
async def list_users(
    limit: int = Query(500, ge=1, le=1000),
    admin: dict = Depends(require_admin)
):
    """Admin: all users, newest first, without password hashes."""
    return await auth_service.list_users(limit=limit)
