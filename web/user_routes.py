"""
User management routes.

Prefix: /api/users
"""

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from userforge.models.user import User, user_to_public

from .auth_deps import get_current_user, require_admin
from .models import CreateUserRequest, UpdateUserRequest, envelope

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("")
async def list_users(request: Request, current_user: User = Depends(get_current_user)):
    """
    List users with filtering, search, sorting, field selection and pagination.

    Query: page, limit, sort (``-createdAt,name``), fields (``name,email``),
    search, and filters such as ``role=admin`` or ``age[gte]=18``.
    """
    users, total, query = await run_in_threadpool(
        request.app.state.user_service.list_users,
        list(request.query_params.multi_items()),
    )
    return envelope(
        results=len(users),
        pagination={
            "page": query.page,
            "limit": query.limit,
            "total": total,
            "pages": query.pages(total),
        },
        data={"users": [user_to_public(u, query.fields) for u in users]},
    )


@router.get("/{user_id}")
async def get_user(user_id: str, request: Request, current_user: User = Depends(get_current_user)):
    user = await run_in_threadpool(request.app.state.user_service.get_user, user_id)
    return envelope(data={"user": user_to_public(user)})


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    request: Request,
    user_data: CreateUserRequest,
    admin: User = Depends(require_admin),
):
    """Create a new user (admin only)"""
    user = await run_in_threadpool(
        request.app.state.user_service.create_user,
        admin,
        name=user_data.name,
        email=user_data.email,
        password=user_data.password,
        age=user_data.age,
        role=user_data.role,
        is_active=user_data.is_active,
    )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=envelope("User created successfully", data={"user": user_to_public(user)}),
    )


@router.patch("/{user_id}")
async def update_user(
    user_id: str,
    request: Request,
    user_data: UpdateUserRequest,
    current_user: User = Depends(get_current_user),
):
    """Update a user (self, or any user for admins)"""
    user = await run_in_threadpool(
        request.app.state.user_service.update_user,
        current_user,
        user_id,
        user_data.changes(),
    )
    return envelope("User updated successfully", data={"user": user_to_public(user)})


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(user_id: str, request: Request, admin: User = Depends(require_admin)):
    """Delete a user (admin only)"""
    await run_in_threadpool(request.app.state.user_service.delete_user, admin, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{user_id}/deactivate")
async def deactivate_user(user_id: str, request: Request, admin: User = Depends(require_admin)):
    """Deactivate a user (admin only)"""
    user = await run_in_threadpool(request.app.state.user_service.deactivate_user, admin, user_id)
    return envelope("User deactivated successfully", data={"user": user_to_public(user)})
