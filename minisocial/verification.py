"""
One-time-code verification per (user, channel).

    Unverified --issue_code--> CodeIssued --consume--> Verified

Verified is terminal. Re-issuing a code replaces the live one for that
channel. Delivery happens after the commit through the notifier dispatcher;
a delivery failure never rolls the code back.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import logging
import secrets
from typing import Optional

from .credentials import CredentialManager
from .errors import NotFoundError, ValidationError, VerificationError, VerificationFailure
from .models import Channel, User, VerificationCode, VerificationState
from .notifier import NotifierDispatcher
from .storage import Store, Transaction

logger = logging.getLogger(__name__)


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


class VerificationWorkflow:
    def __init__(
        self,
        store: Store,
        credentials: CredentialManager,
        dispatcher: NotifierDispatcher,
        code_ttl_seconds: int = 600,
    ) -> None:
        self.store = store
        self.credentials = credentials
        self.dispatcher = dispatcher
        self.code_ttl = dt.timedelta(seconds=code_ttl_seconds)

    def issue_code(self, user_id: int, channel) -> VerificationCode:
        channel = Channel.parse(channel)
        with self.store.transaction() as tx:
            user = tx.get(User, user_id)
            if user is None:
                raise NotFoundError(f"user {user_id} not found")
            entry, code = self.stage_code(tx, user, channel)
        self.deliver(user, channel, code)
        return entry

    # Re-sending is the same transition as the initial issue.
    request_code = issue_code

    def stage_code(self, tx: Transaction, user: User, channel: Channel):
        """Write a fresh code for ``user`` into ``tx`` and return (entry, plaintext)."""
        if channel is Channel.SMS and not user.phone:
            raise ValidationError("a phone number is required for SMS verification")
        code = generate_code()
        entry = VerificationCode(
            id=tx.allocate_id(VerificationCode),
            user_id=user.id,
            channel=channel,
            code_hash=self.credentials.hash_password(code),
            created_at=tx.now,
            expires_at=tx.now + self.code_ttl,
        )
        # Keyed by (user, channel): this replaces any live code.
        tx.put(entry)
        return entry, code

    def deliver(self, user: User, channel: Channel, code: str) -> None:
        destination = user.destination(channel) or ""
        logger.info("Issued %s verification code for user=%s", channel.value, user.id)
        self.dispatcher.dispatch(channel, destination, code)

    def consume(self, user_id: int, channel, code: str) -> User:
        channel = Channel.parse(channel)
        with self.store.transaction() as tx:
            user = tx.get(User, user_id)
            if user is None:
                raise NotFoundError(f"user {user_id} not found")
            entry = tx.get(VerificationCode, (user_id, channel))
            if entry is None:
                raise VerificationError(VerificationFailure.NOT_FOUND)
            if entry.is_expired(tx.now):
                raise VerificationError(VerificationFailure.EXPIRED)
            if not self.credentials.verify_password(str(code), entry.code_hash):
                raise VerificationError(VerificationFailure.MISMATCH)
            if channel is Channel.EMAIL:
                user = dataclasses.replace(user, email_verified=True)
            else:
                user = dataclasses.replace(user, phone_verified=True)
            tx.put(user)
            tx.remove(entry)
        logger.info("Verified %s for user=%s", channel.value, user_id)
        return user

    def status(self, user_id: int, channel) -> VerificationState:
        channel = Channel.parse(channel)
        user = self.store.get(User, user_id)
        if user is None:
            raise NotFoundError(f"user {user_id} not found")
        if user.is_verified(channel):
            return VerificationState.VERIFIED
        if self.store.get(VerificationCode, (user_id, channel)) is not None:
            return VerificationState.CODE_ISSUED
        return VerificationState.UNVERIFIED

    def sweep_expired(self, now: Optional[dt.datetime] = None) -> int:
        with self.store.transaction() as tx:
            cutoff = now or tx.now
            stale = [entry for entry in tx.all(VerificationCode) if entry.is_expired(cutoff)]
            for entry in stale:
                tx.remove(entry)
        if stale:
            logger.info("Swept %d expired verification codes", len(stale))
        return len(stale)
