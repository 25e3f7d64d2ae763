from __future__ import annotations

import dataclasses
import logging
from typing import List, Optional

from .models import Notification, NotificationType, NotificationView, User
from .storage import Store, Transaction

logger = logging.getLogger(__name__)

NOTIFICATION_MESSAGES = {
    NotificationType.FOLLOW: "New follower",
    NotificationType.LIKE: "New like",
    NotificationType.COMMENT: "New comment",
    NotificationType.MESSAGE: "New message",
}


class NotificationCenter:
    """Fan-out of activity records to the users an action targets."""

    def __init__(self, store: Store, limit: int = 30) -> None:
        self.store = store
        self.limit = limit

    def emit(
        self,
        tx: Transaction,
        recipient_id: int,
        type: NotificationType,
        actor_id: int,
        post_id: Optional[int] = None,
        comment_id: Optional[int] = None,
    ) -> Optional[Notification]:
        # Actors never notify themselves.
        if recipient_id == actor_id:
            return None
        notification = Notification(
            id=tx.allocate_id(Notification),
            user_id=recipient_id,
            type=type,
            actor_id=actor_id,
            post_id=post_id,
            comment_id=comment_id,
            message=NOTIFICATION_MESSAGES[type],
            created_at=tx.now,
        )
        tx.put(notification)
        return notification

    def list_notifications(self, user_id: int) -> List[NotificationView]:
        view = self.store.view()
        mine = [n for n in view.all(Notification) if n.user_id == user_id]
        mine.sort(key=lambda n: n.created_at, reverse=True)
        results = []
        for notification in mine[: self.limit]:
            actor = view.get(User, notification.actor_id)
            results.append(
                NotificationView(
                    id=notification.id,
                    type=notification.type,
                    message=notification.message,
                    actor_username=actor.username if actor else None,
                    created_at=notification.created_at,
                    is_read=notification.is_read,
                    post_id=notification.post_id,
                    comment_id=notification.comment_id,
                )
            )
        return results

    def unread_count(self, user_id: int) -> int:
        return sum(1 for n in self.store.all(Notification) if n.user_id == user_id and not n.is_read)

    def mark_all_read(self, user_id: int) -> int:
        with self.store.transaction() as tx:
            unread = [n for n in tx.all(Notification) if n.user_id == user_id and not n.is_read]
            for notification in unread:
                tx.put(dataclasses.replace(notification, is_read=True))
        if unread:
            logger.debug("Marked %d notifications read for user=%s", len(unread), user_id)
        return len(unread)
