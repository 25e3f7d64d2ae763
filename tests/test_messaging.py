from __future__ import annotations

import pytest

from minisocial.errors import NotFoundError, ValidationError
from minisocial.models import Notification


def test_three_message_conversation_scenario(service, make_user, clock):
    alice = make_user("alice")
    bob = make_user("bob")
    sent = []
    for text in ("hi", "how are you?", "see you soon"):
        sent.append(service.messaging.send_message(alice, bob, text))
        clock.advance(minutes=5)

    (conversation,) = service.messaging.list_conversations(alice)
    assert conversation.partner.id == bob
    assert conversation.partner.username == "bob"
    assert conversation.last_message == sent[2]

    thread = service.messaging.list_thread(alice, bob)
    assert [m.content for m in thread] == ["hi", "how are you?", "see you soon"]
    assert service.messaging.list_thread(bob, alice) == thread


def test_conversations_sorted_by_latest_message(service, make_user):
    alice = make_user("alice")
    bob = make_user("bob")
    carol = make_user("carol")
    service.messaging.send_message(alice, bob, "first")
    service.messaging.send_message(carol, alice, "second")
    reply = service.messaging.send_message(bob, alice, "third")

    conversations = service.messaging.list_conversations(alice)
    assert [c.partner.username for c in conversations] == ["bob", "carol"]
    assert conversations[0].last_message == reply
    assert [c.partner.username for c in service.messaging.list_conversations(carol)] == ["alice"]


def test_unresolvable_partner_gets_placeholder(service, make_user):
    alice = make_user("alice")
    service.messaging.send_message(999, alice, "hello?")

    (conversation,) = service.messaging.list_conversations(alice)
    assert conversation.partner.id == 999
    assert conversation.partner.username == "unknown"


def test_send_validation(service, make_user):
    alice = make_user("alice")
    with pytest.raises(NotFoundError):
        service.messaging.send_message(alice, 999, "anyone?")
    with pytest.raises(ValidationError):
        service.messaging.send_message(alice, alice, "   ")
    assert service.messaging.list_conversations(alice) == []


def test_message_content_trimmed_and_notifies_recipient(service, make_user):
    alice = make_user("alice")
    bob = make_user("bob")
    message = service.messaging.send_message(alice, bob, "  hey  ")

    assert message.content == "hey"
    (notification,) = service.store.all(Notification)
    assert (notification.user_id, notification.actor_id) == (bob, alice)
