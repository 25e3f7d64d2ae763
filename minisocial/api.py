"""
REST surface over SocialService.

Authenticated routes expect `Authorization: Bearer <token>` as issued by
`POST /api/auth/login`. Domain errors are mapped to status codes in one
place; the service itself knows nothing about HTTP.

Run with: `uvicorn minisocial.api:app --reload` or `minisocial serve`.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import signal
from typing import Optional, Union

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTask
from pydantic import BaseModel

from .config import get_settings
from .errors import (
    AuthError,
    ConflictError,
    MiniSocialError,
    NotFoundError,
    PersistenceError,
    UnverifiedError,
    ValidationError,
    VerificationError,
)
from .models import RegistrationRequest, User
from .service import SocialService

settings = get_settings()

logger = logging.getLogger(__name__)
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
app = FastAPI(title=settings.APP_NAME, version=settings.VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

service: Optional[SocialService] = None


def get_service() -> SocialService:
    global service
    if service is None:
        service = SocialService.from_settings()
    return service


@app.on_event("shutdown")
def shutdown_event() -> None:
    if service is not None:
        service.close()


# ---------- Error mapping ----------

STATUS_BY_ERROR = (
    (UnverifiedError, status.HTTP_403_FORBIDDEN),
    (AuthError, status.HTTP_401_UNAUTHORIZED),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (VerificationError, status.HTTP_400_BAD_REQUEST),
    (ConflictError, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
)


@app.exception_handler(MiniSocialError)
async def domain_error_handler(request: Request, exc: MiniSocialError) -> JSONResponse:
    status_code = next(
        (code for kind, code in STATUS_BY_ERROR if isinstance(exc, kind)),
        status.HTTP_400_BAD_REQUEST,
    )
    body = {"error": str(exc)}
    if isinstance(exc, UnverifiedError):
        body.update(user_id=exc.user_id, channel=exc.channel)
    elif isinstance(exc, VerificationError):
        body["reason"] = exc.reason.value
    return JSONResponse(status_code=status_code, content=body)


def _terminate_process() -> None:
    os.kill(os.getpid(), signal.SIGTERM)


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    # Memory and disk may have diverged; answer this request, then stop serving.
    logger.critical(
        "Persistence failure while handling %s %s: %s; shutting down", request.method, request.url.path, exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "storage failure"},
        background=BackgroundTask(_terminate_process),
    )


# ---------- Auth ----------


def authorize(request: Request, svc: SocialService = Depends(get_service)) -> User:
    auth_header = request.headers.get("authorization")
    if not auth_header:
        raise AuthError("missing auth header")
    if not auth_header.lower().startswith("bearer "):
        raise AuthError("unsupported authorization scheme")
    token = auth_header.split(" ", 1)[1].strip()
    if not token:
        raise AuthError("missing bearer token")
    return svc.accounts.authenticate(token)


# ---------- Request models ----------


class RegisterRequest(BaseModel):
    email: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    birth_date: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    consent: bool = False
    preferred_channel: str = "email"


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class CodeRequest(BaseModel):
    user_id: int
    channel: str


class VerifyRequest(BaseModel):
    user_id: int
    channel: str
    code: Union[str, int]


class ProfileUpdateRequest(BaseModel):
    username: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None


class PostRequest(BaseModel):
    content: Optional[str] = None
    image_url: Optional[str] = None


class ContentRequest(BaseModel):
    content: Optional[str] = None


def _dump(value):
    return dataclasses.asdict(value)


# ---------- Routes ----------


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "service": settings.APP_NAME, "version": settings.VERSION}


@app.post("/api/auth/register")
def register(payload: RegisterRequest, svc: SocialService = Depends(get_service)) -> dict:
    result = svc.accounts.register(
        RegistrationRequest(
            email=payload.email or "",
            username=payload.username or "",
            password=payload.password or "",
            consent=payload.consent,
            preferred_channel=payload.preferred_channel,
            first_name=payload.first_name,
            last_name=payload.last_name,
            birth_date=payload.birth_date,
            phone=payload.phone,
            address=payload.address,
        )
    )
    return {"status": result.status, "user_id": result.user_id, "channel": result.channel.value}


@app.post("/api/auth/login")
def login(payload: LoginRequest, svc: SocialService = Depends(get_service)) -> dict:
    result = svc.accounts.login(payload.email or "", payload.password or "")
    return {"token": result.token, "user": _dump(result.user)}


@app.post("/api/auth/request-code")
def request_code(payload: CodeRequest, svc: SocialService = Depends(get_service)) -> dict:
    svc.verification.request_code(payload.user_id, payload.channel)
    return {"ok": True}


@app.post("/api/auth/verify")
def verify(payload: VerifyRequest, svc: SocialService = Depends(get_service)) -> dict:
    svc.verification.consume(payload.user_id, payload.channel, str(payload.code))
    return {"ok": True}


@app.get("/api/me")
def me(user: User = Depends(authorize), svc: SocialService = Depends(get_service)) -> dict:
    return _dump(svc.accounts.me(user.id))


@app.put("/api/me")
def update_me(
    payload: ProfileUpdateRequest,
    user: User = Depends(authorize),
    svc: SocialService = Depends(get_service),
) -> dict:
    profile = svc.accounts.update_profile(
        user.id, username=payload.username, avatar_url=payload.avatar_url, bio=payload.bio
    )
    return {"user": _dump(profile)}


@app.get("/api/users/search")
def search_users(
    q: str = "",
    user: User = Depends(authorize),
    svc: SocialService = Depends(get_service),
) -> dict:
    results = svc.accounts.search(user.id, q)
    return {"users": [{**_dump(r.user), "is_following": r.is_following} for r in results]}


@app.get("/api/users/{user_id}")
def get_profile(user_id: int, user: User = Depends(authorize), svc: SocialService = Depends(get_service)) -> dict:
    return _dump(svc.accounts.profile(user.id, user_id))


@app.post("/api/follows/{target_id}")
def toggle_follow(target_id: int, user: User = Depends(authorize), svc: SocialService = Depends(get_service)) -> dict:
    return svc.graph.toggle_follow(user.id, target_id)


@app.post("/api/posts")
def create_post(payload: PostRequest, user: User = Depends(authorize), svc: SocialService = Depends(get_service)) -> dict:
    post = svc.feed.create_post(user.id, payload.content or "", payload.image_url)
    return {"post": _dump(post)}


@app.get("/api/posts")
def list_posts(
    limit: int = Query(default=20),
    offset: int = Query(default=0),
    user: User = Depends(authorize),
    svc: SocialService = Depends(get_service),
) -> dict:
    return {"posts": [_dump(p) for p in svc.feed.list_feed(user.id, limit=limit, offset=offset)]}


@app.post("/api/posts/{post_id}/like")
def toggle_like(post_id: int, user: User = Depends(authorize), svc: SocialService = Depends(get_service)) -> dict:
    return svc.feed.toggle_like(user.id, post_id)


@app.get("/api/posts/{post_id}/comments")
def list_comments(post_id: int, user: User = Depends(authorize), svc: SocialService = Depends(get_service)) -> dict:
    return {"comments": [_dump(c) for c in svc.feed.list_comments(post_id)]}


@app.post("/api/posts/{post_id}/comments")
def add_comment(
    post_id: int,
    payload: ContentRequest,
    user: User = Depends(authorize),
    svc: SocialService = Depends(get_service),
) -> dict:
    return {"comment_id": svc.feed.add_comment(user.id, post_id, payload.content or "")}


@app.get("/api/conversations")
def list_conversations(user: User = Depends(authorize), svc: SocialService = Depends(get_service)) -> dict:
    return {"conversations": [_dump(c) for c in svc.messaging.list_conversations(user.id)]}


@app.get("/api/messages/{partner_id}")
def list_thread(partner_id: int, user: User = Depends(authorize), svc: SocialService = Depends(get_service)) -> dict:
    return {"messages": [_dump(m) for m in svc.messaging.list_thread(user.id, partner_id)]}


@app.post("/api/messages/{partner_id}")
def send_message(
    partner_id: int,
    payload: ContentRequest,
    user: User = Depends(authorize),
    svc: SocialService = Depends(get_service),
) -> dict:
    message = svc.messaging.send_message(user.id, partner_id, payload.content or "")
    return {"message": _dump(message)}


@app.get("/api/notifications")
def list_notifications(user: User = Depends(authorize), svc: SocialService = Depends(get_service)) -> dict:
    return {
        "notifications": [_dump(n) for n in svc.notifications.list_notifications(user.id)],
        "unread": svc.notifications.unread_count(user.id),
    }


@app.post("/api/notifications/read")
def mark_notifications_read(user: User = Depends(authorize), svc: SocialService = Depends(get_service)) -> dict:
    return {"ok": True, "updated": svc.notifications.mark_all_read(user.id)}
