"""
HTTP endpoints: users and sessions, video records and uploads, dev reset.

Components (metadata store, object store, ingestors, settings) are looked up
on request.app.state, where create_app() puts them.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.auth import check_password, get_current_user_id, get_refresh_token, hash_password, make_jwt, make_refresh_token
from api.common import RATE_LIMIT_AUTH, RATE_LIMIT_DEFAULT, RATE_LIMIT_UPLOAD, get_real_ip, limiter
from api.db_retry import DatabaseRetryableError
from api.errors import is_unique_violation
from api.exception_utils import log_and_raise_http_exception
from api.schemas import (
    LoginRequest,
    LoginResponse,
    TokenResponse,
    UserCreate,
    UserResponse,
    VideoCreate,
    VideoResponse,
)
from api.storage import SignError

logger = logging.getLogger(__name__)

router = APIRouter()


def parse_video_id(value: str) -> str:
    """Normalize a path identifier to canonical UUID text, or raise 400."""
    try:
        return str(uuid.UUID(value))
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid ID")


async def get_owned_video(request: Request, video_id: str, user_id: str) -> dict:
    """
    Load a video record and check that user_id owns it.

    Raises:
        HTTPException: 404 if the record does not exist, 403 if another user owns it
    """
    video = await request.app.state.metadata.get_video(video_id)
    if video is None:
        raise HTTPException(status_code=404, detail="Video not found")
    if video["user_id"] != user_id:
        logger.info(f"User {user_id} denied access to video {video_id} from {get_real_ip(request)}")
        raise HTTPException(status_code=403, detail="User does not have access to this video")
    return video


async def get_upload_target(request: Request, video_id: str, user_id: str) -> dict:
    """get_owned_video for the upload endpoints, which report lookup failures as 500."""
    try:
        return await get_owned_video(request, video_id, user_id)
    except DatabaseRetryableError as e:
        log_and_raise_http_exception(e, 500, "Couldn't find video", f"upload_lookup({video_id})")


def sign_video(request: Request, video: dict) -> VideoResponse:
    """Replace the stored bucket/key reference with a presigned URL."""
    state = request.app.state
    try:
        signed_url = state.objects.sign_reference(video.get("video_url"), state.settings.signed_url_ttl)
    except SignError as e:
        log_and_raise_http_exception(e, 500, "Couldn't generate presigned URL", f"sign({video['id']})")
    return VideoResponse(**dict(video, video_url=signed_url))


# ============ Users and sessions ============


@router.post("/api/users", status_code=201, response_model=UserResponse)
@limiter.limit(RATE_LIMIT_AUTH)
async def create_user(request: Request, payload: UserCreate) -> UserResponse:
    metadata = request.app.state.metadata

    if await metadata.get_user_by_email(payload.email):
        raise HTTPException(status_code=400, detail="User already exists")

    try:
        user = await metadata.create_user(payload.email, hash_password(payload.password))
    except Exception as e:
        # Lost a race with a concurrent signup for the same email
        if is_unique_violation(e, "email"):
            raise HTTPException(status_code=400, detail="User already exists")
        raise

    logger.info(f"Created user {user['id']}")
    return UserResponse(**user)


@router.post("/api/login", response_model=LoginResponse)
@limiter.limit(RATE_LIMIT_AUTH)
async def login(request: Request, payload: LoginRequest) -> LoginResponse:
    state = request.app.state
    settings = state.settings

    user = await state.metadata.get_user_by_email(payload.email)
    if user is None or not check_password(payload.password, user["hashed_password"]):
        logger.info(f"Failed login from {get_real_ip(request)}")
        raise HTTPException(status_code=401, detail="Incorrect email or password")

    token = make_jwt(user["id"], settings.jwt_secret, timedelta(seconds=settings.access_token_ttl))
    refresh_token = make_refresh_token()
    expires_at = datetime.now(timezone.utc) + timedelta(days=settings.refresh_token_days)
    await state.metadata.create_refresh_token(refresh_token, user["id"], expires_at)

    return LoginResponse(**user, token=token, refresh_token=refresh_token)


@router.post("/api/refresh", response_model=TokenResponse)
@limiter.limit(RATE_LIMIT_AUTH)
async def refresh(request: Request, refresh_token: str = Depends(get_refresh_token)) -> TokenResponse:
    state = request.app.state
    settings = state.settings

    user = await state.metadata.get_user_for_refresh_token(refresh_token)
    if user is None:
        raise HTTPException(status_code=401, detail="Couldn't validate refresh token")

    token = make_jwt(user["id"], settings.jwt_secret, timedelta(seconds=settings.access_token_ttl))
    return TokenResponse(token=token)


@router.post("/api/revoke", status_code=204)
@limiter.limit(RATE_LIMIT_AUTH)
async def revoke(request: Request, refresh_token: str = Depends(get_refresh_token)) -> Response:
    await request.app.state.metadata.revoke_refresh_token(refresh_token)
    return Response(status_code=204)


# ============ Video records ============


@router.post("/api/videos", status_code=201, response_model=VideoResponse)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def create_video(
    request: Request,
    payload: VideoCreate,
    user_id: str = Depends(get_current_user_id),
) -> VideoResponse:
    video = await request.app.state.metadata.create_video(user_id, payload.title, payload.description)
    logger.info(f"User {user_id} created video {video['id']}")
    return VideoResponse(**video)


@router.get("/api/videos", response_model=List[VideoResponse])
@limiter.limit(RATE_LIMIT_DEFAULT)
async def list_videos(request: Request, user_id: str = Depends(get_current_user_id)) -> List[VideoResponse]:
    """List the caller's videos, newest first."""
    videos = await request.app.state.metadata.list_videos(user_id)
    return [sign_video(request, video) for video in videos]


@router.get("/api/videos/{video_id}", response_model=VideoResponse)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def get_video(request: Request, video_id: str) -> VideoResponse:
    video_id = parse_video_id(video_id)
    video = await request.app.state.metadata.get_video(video_id)
    if video is None:
        raise HTTPException(status_code=404, detail="Video not found")
    return sign_video(request, video)


@router.delete("/api/videos/{video_id}", status_code=204)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def delete_video(request: Request, video_id: str) -> Response:
    """Delete a record. The stored object is left in place."""
    video_id = parse_video_id(video_id)
    user_id = await get_current_user_id(request)
    await get_owned_video(request, video_id, user_id)

    await request.app.state.metadata.delete_video(video_id)
    logger.info(f"User {user_id} deleted video {video_id}")
    return Response(status_code=204)


# ============ Uploads ============
#
# The multipart body is parsed inside the ingestors, after the id, credential,
# existence and ownership checks, so rejected requests never buffer a body.


@router.post("/api/video_upload/{video_id}", response_model=VideoResponse)
@limiter.limit(RATE_LIMIT_UPLOAD)
async def upload_video(request: Request, video_id: str) -> VideoResponse:
    video_id = parse_video_id(video_id)
    user_id = await get_current_user_id(request)
    video = await get_upload_target(request, video_id, user_id)

    logger.info(f"Uploading video for {video_id} by user {user_id}")
    result = await request.app.state.video_ingestor.ingest(request, video)
    return VideoResponse(**result)


@router.post("/api/thumbnail_upload/{video_id}", response_model=VideoResponse)
@limiter.limit(RATE_LIMIT_UPLOAD)
async def upload_thumbnail(request: Request, video_id: str) -> VideoResponse:
    video_id = parse_video_id(video_id)
    user_id = await get_current_user_id(request)
    video = await get_upload_target(request, video_id, user_id)

    logger.info(f"Uploading thumbnail for video {video_id} by user {user_id}")
    result = await request.app.state.thumbnail_ingestor.ingest(request, video)
    return VideoResponse(**result)


# ============ Admin ============


@router.post("/admin/reset")
@limiter.limit(RATE_LIMIT_AUTH)
async def reset(request: Request) -> dict:
    """Wipe all tables. Only available on the dev platform."""
    state = request.app.state
    if not state.settings.is_dev:
        raise HTTPException(status_code=403, detail="Reset is only allowed in dev environment.")

    await state.metadata.reset()
    logger.warning(f"Database reset by {get_real_ip(request)}")
    return {"status": "ok"}
