from __future__ import annotations

import logging
from typing import Callable, Optional

from .accounts import AccountService
from .config import Settings, get_settings
from .credentials import CredentialManager
from .feed import FeedService
from .graph import SocialGraph
from .messaging import MessagingService
from .notifications import NotificationCenter
from .notifier import Notifier, NotifierDispatcher, build_notifier
from .storage import SnapshotFile, Store
from .verification import VerificationWorkflow

logger = logging.getLogger(__name__)


class SocialService:
    """Wires every component over one store; created once per process."""

    def __init__(
        self,
        store: Store,
        settings: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
        token_clock: Optional[Callable[[], float]] = None,
    ) -> None:
        settings = settings or get_settings()
        self.settings = settings
        self.store = store
        self.credentials = CredentialManager(
            secret=settings.JWT_SECRET,
            token_ttl_seconds=settings.TOKEN_TTL_SECONDS,
            rounds=settings.BCRYPT_ROUNDS,
            clock=token_clock,
        )
        self.dispatcher = NotifierDispatcher(
            notifier or build_notifier(settings), max_workers=settings.NOTIFIER_WORKERS
        )
        self.notifications = NotificationCenter(store, limit=settings.NOTIFICATION_LIMIT)
        self.graph = SocialGraph(store, self.notifications)
        self.feed = FeedService(
            store,
            self.notifications,
            default_limit=settings.FEED_DEFAULT_LIMIT,
            max_limit=settings.FEED_MAX_LIMIT,
        )
        self.messaging = MessagingService(store, self.notifications)
        self.verification = VerificationWorkflow(
            store, self.credentials, self.dispatcher, code_ttl_seconds=settings.CODE_TTL_SECONDS
        )
        self.accounts = AccountService(
            store,
            self.credentials,
            self.verification,
            self.graph,
            privacy_version=settings.PRIVACY_VERSION,
            search_limit=settings.SEARCH_LIMIT,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, notifier: Optional[Notifier] = None) -> "SocialService":
        settings = settings or get_settings()
        store = Store(snapshot=SnapshotFile(settings.DATA_PATH))
        return cls(store, settings=settings, notifier=notifier)

    def close(self) -> None:
        self.dispatcher.drain()
        self.dispatcher.close()
        self.store.flush()
        logger.info("Service shut down")
