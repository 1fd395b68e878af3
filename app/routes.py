# API route definitions (HTTP layer)
# Every endpoint answers with the {isSuccess, data | errorText} envelope

import os
from fastapi import APIRouter, Request, Depends, Form, File, UploadFile, Query, HTTPException
from fastapi.responses import Response
from .schemas import (
    RegisterRequest,
    LoginRequest,
    LogoutRequest,
    UpdatePasswordRequest,
    ResetPasswordRequest,
)
from .models import User
from .dependencies import get_current_user, ensure_same_user
from .responses import success_response
from . import services, posts
from .config import settings
from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)

# Helper to conditionally apply rate limiting (skip in tests)
def conditional_limit(limit_string):
    """Apply rate limit only if not in test mode."""
    if os.getenv('TEST_MODE'):
        def decorator(func):
            return func
        return decorator
    return limiter.limit(limit_string)


def _optional_image(image: UploadFile | None) -> UploadFile | None:
    # Browsers send an empty part for an untouched file input
    if image is None or not image.filename:
        return None
    return image


router = APIRouter()

@router.get("/")
def root():
    return {"app": settings.APP_NAME, "env": settings.APP_ENV}


@router.get("/health")
async def health_check():
    """Health check endpoint for load balancers and monitoring.

    Returns:
        - 200 OK if service and database are healthy (cache may be degraded)
        - 503 Service Unavailable if the database is unreachable
    """
    from . import db
    from .cache import cache_manager

    health_status = {
        "status": "healthy",
        "service": settings.APP_NAME,
        "environment": settings.APP_ENV,
    }

    if await db.check_db_connection():
        health_status["database"] = "connected"
    else:
        health_status["status"] = "unhealthy"
        health_status["database"] = "disconnected"
        raise HTTPException(status_code=503, detail="Database unavailable")

    if settings.CACHE_ENABLED:
        is_healthy = await cache_manager.health_check()
        health_status["cache"] = "connected" if is_healthy else "disconnected"
        if not is_healthy:
            health_status["status"] = "degraded"  # Service works but cache is down
    else:
        health_status["cache"] = "disabled"

    return health_status


@router.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return Response(status_code=204)


# ============================================================================
# Account Endpoints
# ============================================================================

@router.post("/auth/register")
@conditional_limit(settings.RATE_LIMIT_AUTH)
async def register(data: RegisterRequest, request: Request):
    """Create an account and return its first token.

    Returns:
        user: {token, details}
    """
    payload = await services.register_user(data)
    return success_response("user", payload)


@router.post("/auth/login")
@conditional_limit(settings.RATE_LIMIT_AUTH)
async def login(data: LoginRequest, request: Request):
    """Authenticate and issue an additional token."""
    payload = await services.authenticate_user(data)
    return success_response("user", payload)


@router.post("/auth/logout")
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def logout(
    data: LogoutRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
):
    """Revoke every token of the user."""
    ensure_same_user(current_user, data.id)
    message = await services.logout_user(data.id)
    return success_response("user", message)


@router.post("/auth/update-password")
@conditional_limit(settings.RATE_LIMIT_AUTH)
async def update_password(
    data: UpdatePasswordRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
):
    ensure_same_user(current_user, data.id)
    await services.change_password(data)
    return success_response("user", None)


@router.post("/auth/reset-password")
@conditional_limit(settings.RATE_LIMIT_AUTH)
async def reset_password(data: ResetPasswordRequest, request: Request):
    await services.reset_password(data)
    return success_response("user", None)


@router.get("/users/me")
@conditional_limit(settings.RATE_LIMIT_READ)
async def get_me(request: Request, current_user: User = Depends(get_current_user)):
    """The authenticated user's profile."""
    return success_response("user", await services.get_user(current_user.id))


@router.get("/users/{user_id}")
@conditional_limit(settings.RATE_LIMIT_READ)
async def get_user(user_id: int, request: Request):
    return success_response("user", await services.get_user(user_id))


# ============================================================================
# Post Endpoints
# ============================================================================

@router.post("/posts")
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def create_post(
    request: Request,
    user_id: int = Form(...),
    title: str = Form(..., min_length=settings.POST_TITLE_MIN_LENGTH, max_length=settings.POST_TITLE_MAX_LENGTH),
    body: str = Form(..., min_length=settings.POST_BODY_MIN_LENGTH),
    image: UploadFile | None = File(None),
    current_user: User = Depends(get_current_user),
):
    """Create a post, optionally with one image (multipart form)."""
    ensure_same_user(current_user, user_id)
    post = await posts.create_post(user_id, title, body, _optional_image(image))
    return success_response("post", post)


@router.get("/posts")
@conditional_limit(settings.RATE_LIMIT_READ)
async def list_posts(
    request: Request,
    user_id: int,
    current_user: User = Depends(get_current_user),
):
    ensure_same_user(current_user, user_id)
    return success_response("posts", await posts.list_posts(user_id))


@router.get("/posts/paginate")
@conditional_limit(settings.RATE_LIMIT_READ)
async def paginate_posts(
    request: Request,
    user_id: int,
    offset: int = Query(0, ge=0),
    limit: int = Query(settings.DEFAULT_LIMIT, ge=0),
    current_user: User = Depends(get_current_user),
):
    ensure_same_user(current_user, user_id)
    return success_response("posts", await posts.paginate_posts(user_id, offset, limit))


@router.get("/posts/random")
@conditional_limit(settings.RATE_LIMIT_READ)
async def random_post(
    request: Request,
    user_id: int,
    current_user: User = Depends(get_current_user),
):
    ensure_same_user(current_user, user_id)
    return success_response("post", await posts.random_post(user_id))


@router.put("/posts/{post_id}")
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def update_post(
    post_id: int,
    request: Request,
    user_id: int = Form(...),
    title: str = Form(..., min_length=settings.POST_TITLE_MIN_LENGTH, max_length=settings.POST_TITLE_MAX_LENGTH),
    body: str = Form(..., min_length=settings.POST_BODY_MIN_LENGTH),
    image: UploadFile | None = File(None),
    current_user: User = Depends(get_current_user),
):
    """Update a post; a new image replaces the previous one."""
    ensure_same_user(current_user, user_id)
    post = await posts.update_post(user_id, post_id, title, body, _optional_image(image))
    return success_response("post", post)


@router.delete("/posts/{post_id}")
@conditional_limit(settings.RATE_LIMIT_WRITE)
async def delete_post(
    post_id: int,
    request: Request,
    user_id: int,
    current_user: User = Depends(get_current_user),
):
    """Soft delete a post."""
    ensure_same_user(current_user, user_id)
    return success_response("post", await posts.delete_post(user_id, post_id))
