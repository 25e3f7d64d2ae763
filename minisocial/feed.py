"""
Global feed with like/comment engagement.

Like and comment counts are recomputed from the underlying records on every
read, so they cannot drift from the likes and comments that exist.
"""

from __future__ import annotations

from collections import Counter
from typing import Dict, List, Optional

from .errors import NotFoundError, ValidationError
from .models import Comment, CommentView, Like, NotificationType, Post, PostView, User
from .notifications import NotificationCenter
from .storage import Store


def _require_text(content: Optional[str], field_name: str = "content") -> str:
    text = (content or "").strip()
    if not text:
        raise ValidationError(f"{field_name} is required")
    return text


class FeedService:
    def __init__(
        self,
        store: Store,
        notifications: NotificationCenter,
        default_limit: int = 20,
        max_limit: int = 50,
    ) -> None:
        self.store = store
        self.notifications = notifications
        self.default_limit = default_limit
        self.max_limit = max_limit

    # ---- posts ----

    def create_post(self, author_id: int, content: str, image_url: Optional[str] = None) -> Post:
        text = _require_text(content)
        with self.store.transaction() as tx:
            post = Post(
                id=tx.allocate_id(Post),
                user_id=author_id,
                content=text,
                image_url=(image_url or "").strip() or None,
                created_at=tx.now,
            )
            tx.put(post)
        return post

    def get_post(self, post_id: int) -> Post:
        post = self.store.get(Post, post_id)
        if post is None:
            raise NotFoundError(f"post {post_id} not found")
        return post

    def list_feed(self, viewer_id: int, limit: Optional[int] = None, offset: int = 0) -> List[PostView]:
        if offset < 0:
            raise ValidationError("offset must be >= 0")
        limit = self.default_limit if limit is None else limit
        limit = max(1, min(limit, self.max_limit))

        view = self.store.view()
        # Stable sort keeps insertion order between posts with equal timestamps.
        posts = sorted(view.all(Post), key=lambda p: p.created_at, reverse=True)
        page = posts[offset : offset + limit]
        if not page:
            return []

        like_counts: Dict[int, int] = Counter(like.post_id for like in view.all(Like))
        comment_counts: Dict[int, int] = Counter(c.post_id for c in view.all(Comment))
        results = []
        for post in page:
            author = view.get(User, post.user_id)
            results.append(
                PostView(
                    id=post.id,
                    user_id=post.user_id,
                    username=author.username if author else "unknown",
                    avatar_url=author.avatar_url if author else None,
                    content=post.content,
                    image_url=post.image_url,
                    created_at=post.created_at,
                    like_count=like_counts.get(post.id, 0),
                    comment_count=comment_counts.get(post.id, 0),
                    liked_by_me=view.contains(Like, (post.id, viewer_id)),
                )
            )
        return results

    # ---- likes ----

    def toggle_like(self, user_id: int, post_id: int) -> Dict[str, bool]:
        with self.store.transaction() as tx:
            post = tx.get(Post, post_id)
            if post is None:
                raise NotFoundError(f"post {post_id} not found")
            existing = tx.get(Like, (post_id, user_id))
            if existing is not None:
                tx.remove(existing)
                return {"liked": False}
            tx.put(Like(post_id=post_id, user_id=user_id, created_at=tx.now))
            self.notifications.emit(tx, post.user_id, NotificationType.LIKE, actor_id=user_id, post_id=post_id)
        return {"liked": True}

    # ---- comments ----

    def add_comment(self, user_id: int, post_id: int, content: str) -> int:
        text = _require_text(content)
        with self.store.transaction() as tx:
            post = tx.get(Post, post_id)
            if post is None:
                raise NotFoundError(f"post {post_id} not found")
            comment = Comment(
                id=tx.allocate_id(Comment),
                post_id=post_id,
                user_id=user_id,
                content=text,
                created_at=tx.now,
            )
            tx.put(comment)
            self.notifications.emit(
                tx,
                post.user_id,
                NotificationType.COMMENT,
                actor_id=user_id,
                post_id=post_id,
                comment_id=comment.id,
            )
        return comment.id

    def list_comments(self, post_id: int) -> List[CommentView]:
        view = self.store.view()
        results = []
        for comment in view.all(Comment):
            if comment.post_id != post_id:
                continue
            author = view.get(User, comment.user_id)
            results.append(
                CommentView(
                    id=comment.id,
                    post_id=comment.post_id,
                    user_id=comment.user_id,
                    username=author.username if author else "unknown",
                    content=comment.content,
                    created_at=comment.created_at,
                )
            )
        return results
