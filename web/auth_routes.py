"""
Authentication routes.

Prefix: /api/auth
"""

from fastapi import APIRouter, Depends, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from userforge.models.user import User, user_to_public

from .auth_deps import get_current_user
from .models import LoginRequest, RegisterRequest, UpdatePasswordRequest, envelope

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(request: Request, register_data: RegisterRequest):
    """Create an account and return it with a bearer token"""
    result = await run_in_threadpool(
        request.app.state.auth_service.register,
        name=register_data.name,
        email=register_data.email,
        password=register_data.password,
        age=register_data.age,
    )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=envelope(
            "User registered successfully",
            data={"user": user_to_public(result.user), "token": result.token},
        ),
    )


@router.post("/login")
async def login(request: Request, login_data: LoginRequest):
    """Login with email and password"""
    result = await run_in_threadpool(
        request.app.state.auth_service.login,
        email=login_data.email,
        password=login_data.password,
    )
    return envelope(
        "Login successful",
        data={"user": user_to_public(result.user), "token": result.token},
    )


@router.get("/me")
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current user information"""
    return envelope(data={"user": user_to_public(current_user)})


@router.patch("/update-password")
async def update_password(
    request: Request,
    password_data: UpdatePasswordRequest,
    current_user: User = Depends(get_current_user),
):
    """Change the caller's password; returns a fresh token"""
    result = await run_in_threadpool(
        request.app.state.auth_service.change_password,
        current_user,
        password_data.current_password,
        password_data.new_password,
    )
    return envelope("Password updated successfully", data={"token": result.token})
