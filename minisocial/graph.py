from __future__ import annotations

from typing import Dict, Optional

from .errors import NotFoundError, ValidationError
from .models import Follow, NotificationType, Post, Stats, User
from .notifications import NotificationCenter
from .storage import Store, StoreView


class SocialGraph:
    """Follow edges keyed by (follower, following); counts are always derived."""

    def __init__(self, store: Store, notifications: NotificationCenter) -> None:
        self.store = store
        self.notifications = notifications

    def toggle_follow(self, follower_id: int, target_id: int) -> Dict[str, bool]:
        if follower_id == target_id:
            raise ValidationError("users cannot follow themselves")
        with self.store.transaction() as tx:
            if tx.get(User, target_id) is None:
                raise NotFoundError(f"user {target_id} not found")
            existing = tx.get(Follow, (follower_id, target_id))
            if existing is not None:
                tx.remove(existing)
                return {"following": False}
            tx.put(Follow(follower_id=follower_id, following_id=target_id, created_at=tx.now))
            self.notifications.emit(tx, target_id, NotificationType.FOLLOW, actor_id=follower_id)
        return {"following": True}

    def is_following(self, follower_id: int, target_id: int) -> bool:
        return self.store.get(Follow, (follower_id, target_id)) is not None

    def stats(self, user_id: int, view: Optional[StoreView] = None) -> Stats:
        view = view or self.store.view()
        follows = view.all(Follow)
        return Stats(
            followers=sum(1 for f in follows if f.following_id == user_id),
            following=sum(1 for f in follows if f.follower_id == user_id),
            posts=sum(1 for p in view.all(Post) if p.user_id == user_id),
        )
