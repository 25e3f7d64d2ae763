"""Entities persisted by the store plus the read-side views built from them.

Entities are frozen: a change is a new record written through a store
transaction, never an in-place mutation, so a shallow copy of a collection is
a consistent snapshot.
"""

from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass
from typing import ClassVar, Hashable, Optional

from .errors import ValidationError


class Channel(str, enum.Enum):
    EMAIL = "email"
    SMS = "sms"

    @classmethod
    def parse(cls, value: object) -> "Channel":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError as exc:
            raise ValidationError(f"unknown channel {value!r}") from exc


class NotificationType(str, enum.Enum):
    FOLLOW = "follow"
    LIKE = "like"
    COMMENT = "comment"
    MESSAGE = "message"


class VerificationState(str, enum.Enum):
    UNVERIFIED = "unverified"
    CODE_ISSUED = "code_issued"
    VERIFIED = "verified"


# ---------- Entities ----------


@dataclass(frozen=True)
class User:
    collection: ClassVar[str] = "users"

    id: int
    email: str
    username: str
    password_hash: str
    created_at: dt.datetime
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    birth_date: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    preferred_channel: Channel = Channel.EMAIL
    email_verified: bool = False
    phone_verified: bool = False
    consent_at: Optional[dt.datetime] = None
    privacy_version: Optional[str] = None

    @property
    def key(self) -> Hashable:
        return self.id

    def is_verified(self, channel: Channel) -> bool:
        if channel is Channel.EMAIL:
            return self.email_verified
        return self.phone_verified

    def destination(self, channel: Channel) -> Optional[str]:
        return self.email if channel is Channel.EMAIL else self.phone


@dataclass(frozen=True)
class VerificationCode:
    collection: ClassVar[str] = "verification_codes"

    id: int
    user_id: int
    channel: Channel
    code_hash: str
    created_at: dt.datetime
    expires_at: dt.datetime

    @property
    def key(self) -> Hashable:
        # One live code per (user, channel).
        return (self.user_id, self.channel)

    def is_expired(self, now: dt.datetime) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class Post:
    collection: ClassVar[str] = "posts"

    id: int
    user_id: int
    content: str
    created_at: dt.datetime
    image_url: Optional[str] = None

    @property
    def key(self) -> Hashable:
        return self.id


@dataclass(frozen=True)
class Comment:
    collection: ClassVar[str] = "comments"

    id: int
    post_id: int
    user_id: int
    content: str
    created_at: dt.datetime

    @property
    def key(self) -> Hashable:
        return self.id


@dataclass(frozen=True)
class Like:
    collection: ClassVar[str] = "likes"

    post_id: int
    user_id: int
    created_at: dt.datetime

    @property
    def key(self) -> Hashable:
        return (self.post_id, self.user_id)


@dataclass(frozen=True)
class Follow:
    collection: ClassVar[str] = "follows"

    follower_id: int
    following_id: int
    created_at: dt.datetime

    @property
    def key(self) -> Hashable:
        return (self.follower_id, self.following_id)


@dataclass(frozen=True)
class Notification:
    collection: ClassVar[str] = "notifications"

    id: int
    user_id: int
    type: NotificationType
    actor_id: int
    created_at: dt.datetime
    post_id: Optional[int] = None
    comment_id: Optional[int] = None
    message: str = ""
    is_read: bool = False

    @property
    def key(self) -> Hashable:
        return self.id


@dataclass(frozen=True)
class Message:
    collection: ClassVar[str] = "messages"

    id: int
    from_id: int
    to_id: int
    content: str
    created_at: dt.datetime

    @property
    def key(self) -> Hashable:
        return self.id

    def involves(self, user_id: int, partner_id: int) -> bool:
        return (self.from_id == user_id and self.to_id == partner_id) or (
            self.from_id == partner_id and self.to_id == user_id
        )


ENTITY_TYPES = (User, VerificationCode, Post, Comment, Like, Follow, Notification, Message)


# ---------- Views ----------


@dataclass(frozen=True)
class PublicProfile:
    id: int
    username: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    birth_date: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    created_at: Optional[dt.datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "PublicProfile":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            birth_date=user.birth_date,
            phone=user.phone,
            avatar_url=user.avatar_url,
            bio=user.bio,
            created_at=user.created_at,
        )

    @classmethod
    def placeholder(cls, user_id: int) -> "PublicProfile":
        return cls(id=user_id, username="unknown")


@dataclass(frozen=True)
class Stats:
    followers: int
    following: int
    posts: int


@dataclass(frozen=True)
class ProfileView:
    user: PublicProfile
    stats: Stats
    is_following: Optional[bool] = None


@dataclass(frozen=True)
class UserSearchResult:
    user: PublicProfile
    is_following: bool


@dataclass(frozen=True)
class PostView:
    id: int
    user_id: int
    username: str
    avatar_url: Optional[str]
    content: str
    image_url: Optional[str]
    created_at: dt.datetime
    like_count: int
    comment_count: int
    liked_by_me: bool


@dataclass(frozen=True)
class CommentView:
    id: int
    post_id: int
    user_id: int
    username: str
    content: str
    created_at: dt.datetime


@dataclass(frozen=True)
class NotificationView:
    id: int
    type: NotificationType
    message: str
    actor_username: Optional[str]
    created_at: dt.datetime
    is_read: bool
    post_id: Optional[int] = None
    comment_id: Optional[int] = None


@dataclass(frozen=True)
class Conversation:
    partner: PublicProfile
    last_message: Message


@dataclass(frozen=True)
class RegistrationRequest:
    email: str
    username: str
    password: str
    consent: bool = False
    preferred_channel: Channel = Channel.EMAIL
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    birth_date: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True)
class RegistrationResult:
    user_id: int
    channel: Channel
    status: str = "verification_required"


@dataclass(frozen=True)
class LoginResult:
    token: str
    user: PublicProfile
