from __future__ import annotations

import dataclasses
import logging
from typing import List, Optional

from .credentials import CredentialManager
from .errors import AuthError, ConflictError, NotFoundError, UnverifiedError, ValidationError
from .graph import SocialGraph
from .models import (
    Channel,
    LoginResult,
    ProfileView,
    PublicProfile,
    RegistrationRequest,
    RegistrationResult,
    User,
    UserSearchResult,
)
from .storage import Store
from .verification import VerificationWorkflow

logger = logging.getLogger(__name__)


def _optional_text(value: Optional[str]) -> Optional[str]:
    text = (value or "").strip()
    return text or None


class AccountService:
    """Registration, login and profile management."""

    def __init__(
        self,
        store: Store,
        credentials: CredentialManager,
        verification: VerificationWorkflow,
        graph: SocialGraph,
        privacy_version: str = "1.0",
        search_limit: int = 10,
    ) -> None:
        self.store = store
        self.credentials = credentials
        self.verification = verification
        self.graph = graph
        self.privacy_version = privacy_version
        self.search_limit = search_limit

    def register(self, request: RegistrationRequest) -> RegistrationResult:
        email = (request.email or "").strip()
        username = (request.username or "").strip()
        if not email or not username or not request.password:
            raise ValidationError("email, username and password are required")
        if not request.consent:
            raise ValidationError("consent is required")
        channel = Channel.parse(request.preferred_channel)
        phone = _optional_text(request.phone)
        if channel is Channel.SMS and not phone:
            raise ValidationError("a phone number is required for SMS verification")

        password_hash = self.credentials.hash_password(request.password)
        with self.store.transaction() as tx:
            for existing in tx.all(User):
                if existing.email == email or existing.username == username:
                    raise ConflictError("a user with this email or username already exists")
            user = User(
                id=tx.allocate_id(User),
                email=email,
                username=username,
                password_hash=password_hash,
                first_name=_optional_text(request.first_name),
                last_name=_optional_text(request.last_name),
                birth_date=_optional_text(request.birth_date),
                phone=phone,
                address=_optional_text(request.address),
                preferred_channel=channel,
                consent_at=tx.now,
                privacy_version=self.privacy_version,
                created_at=tx.now,
            )
            tx.put(user)
            _, code = self.verification.stage_code(tx, user, channel)
        logger.info("Registered user=%s preferred_channel=%s", user.id, channel.value)
        self.verification.deliver(user, channel, code)
        return RegistrationResult(user_id=user.id, channel=channel)

    def login(self, email: str, password: str) -> LoginResult:
        if not email or not password:
            raise ValidationError("email and password are required")
        user = next((u for u in self.store.all(User) if u.email == email.strip()), None)
        if user is None or not self.credentials.verify_password(password, user.password_hash):
            raise AuthError("invalid credentials")
        if not user.is_verified(user.preferred_channel):
            raise UnverifiedError(user.id, user.preferred_channel.value)
        return LoginResult(token=self.credentials.issue_token(user.id), user=PublicProfile.from_user(user))

    def authenticate(self, token: str) -> User:
        user_id = self.credentials.verify_token(token)
        user = self.store.get(User, user_id)
        if user is None:
            raise AuthError("unknown user")
        return user

    def get_user(self, user_id: int) -> User:
        user = self.store.get(User, user_id)
        if user is None:
            raise NotFoundError(f"user {user_id} not found")
        return user

    def me(self, user_id: int) -> ProfileView:
        view = self.store.view()
        user = view.get(User, user_id)
        if user is None:
            raise NotFoundError(f"user {user_id} not found")
        return ProfileView(user=PublicProfile.from_user(user), stats=self.graph.stats(user_id, view))

    def profile(self, viewer_id: int, user_id: int) -> ProfileView:
        view = self.store.view()
        user = view.get(User, user_id)
        if user is None:
            raise NotFoundError(f"user {user_id} not found")
        return ProfileView(
            user=PublicProfile.from_user(user),
            stats=self.graph.stats(user_id, view),
            is_following=self.graph.is_following(viewer_id, user_id),
        )

    def update_profile(
        self,
        user_id: int,
        username: Optional[str] = None,
        avatar_url: Optional[str] = None,
        bio: Optional[str] = None,
    ) -> PublicProfile:
        with self.store.transaction() as tx:
            user = tx.get(User, user_id)
            if user is None:
                raise NotFoundError(f"user {user_id} not found")
            changes = {}
            new_username = (username or "").strip()
            if new_username and new_username != user.username:
                if any(u.username == new_username and u.id != user_id for u in tx.all(User)):
                    raise ConflictError("username already taken")
                changes["username"] = new_username
            if avatar_url is not None:
                changes["avatar_url"] = _optional_text(avatar_url)
            if bio is not None:
                changes["bio"] = _optional_text(bio)
            if changes:
                user = dataclasses.replace(user, **changes)
                tx.put(user)
        return PublicProfile.from_user(user)

    def search(self, viewer_id: int, query: str) -> List[UserSearchResult]:
        needle = (query or "").strip().lower()
        if not needle:
            return []
        matches = [u for u in self.store.all(User) if needle in u.username.lower()]
        return [
            UserSearchResult(user=PublicProfile.from_user(u), is_following=self.graph.is_following(viewer_id, u.id))
            for u in matches[: self.search_limit]
        ]
