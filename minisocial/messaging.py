from __future__ import annotations

from typing import Dict, List

from .errors import NotFoundError, ValidationError
from .models import Conversation, Message, NotificationType, PublicProfile, User
from .notifications import NotificationCenter
from .storage import Store


class MessagingService:
    """Direct messages between two users; conversations are derived on read."""

    def __init__(self, store: Store, notifications: NotificationCenter) -> None:
        self.store = store
        self.notifications = notifications

    def send_message(self, from_id: int, to_id: int, content: str) -> Message:
        text = (content or "").strip()
        if not text:
            raise ValidationError("content is required")
        with self.store.transaction() as tx:
            if tx.get(User, to_id) is None:
                raise NotFoundError(f"user {to_id} not found")
            message = Message(
                id=tx.allocate_id(Message),
                from_id=from_id,
                to_id=to_id,
                content=text,
                created_at=tx.now,
            )
            tx.put(message)
            self.notifications.emit(tx, to_id, NotificationType.MESSAGE, actor_id=from_id)
        return message

    def list_thread(self, user_id: int, partner_id: int) -> List[Message]:
        thread = [m for m in self.store.all(Message) if m.involves(user_id, partner_id)]
        thread.sort(key=lambda m: m.created_at)
        return thread

    def list_conversations(self, user_id: int) -> List[Conversation]:
        view = self.store.view()
        latest: Dict[int, Message] = {}
        for message in view.all(Message):
            if message.from_id == user_id:
                partner_id = message.to_id
            elif message.to_id == user_id:
                partner_id = message.from_id
            else:
                continue
            current = latest.get(partner_id)
            # Later insertion wins ties so the newest of equal-time messages is kept.
            if current is None or message.created_at >= current.created_at:
                latest[partner_id] = message

        conversations = []
        for partner_id, message in latest.items():
            partner = view.get(User, partner_id)
            profile = PublicProfile.from_user(partner) if partner else PublicProfile.placeholder(partner_id)
            conversations.append(Conversation(partner=profile, last_message=message))
        conversations.sort(key=lambda c: c.last_message.created_at, reverse=True)
        return conversations
