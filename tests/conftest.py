from __future__ import annotations

import datetime as dt
from typing import Callable, List, Optional, Tuple

import pytest

from minisocial.config import Settings
from minisocial.models import Channel, RegistrationRequest
from minisocial.service import SocialService
from minisocial.storage import SnapshotFile, Store


class FakeClock:
    """Moves forward one step per reading so every write gets a distinct timestamp."""

    def __init__(self, start: Optional[dt.datetime] = None) -> None:
        self.current = start or dt.datetime(2024, 1, 1, 12, 0, tzinfo=dt.timezone.utc)
        self.step = dt.timedelta(seconds=1)

    def __call__(self) -> dt.datetime:
        self.current += self.step
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += dt.timedelta(**kwargs)


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.sent: List[Tuple[Channel, str, str]] = []
        self.fail = fail

    def send(self, channel: Channel, destination: str, code: str) -> None:
        self.sent.append((channel, destination, code))
        if self.fail:
            raise ConnectionError("smtp unreachable")

    def last_code(self, destination: Optional[str] = None) -> str:
        for channel, target, code in reversed(self.sent):
            if destination is None or target == destination:
                return code
        raise AssertionError(f"no code sent to {destination}")


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        DATA_PATH=str(tmp_path / "data.json"),
        JWT_SECRET="test-secret",
        BCRYPT_ROUNDS=4,
        NOTIFIER_WORKERS=1,
    )


@pytest.fixture()
def service(settings, clock, notifier) -> SocialService:
    store = Store(snapshot=SnapshotFile(settings.DATA_PATH), clock=clock)
    svc = SocialService(store, settings=settings, notifier=notifier)
    yield svc
    svc.close()


def _registration(username: str, channel: str = "email", phone: Optional[str] = None) -> RegistrationRequest:
    return RegistrationRequest(
        email=f"{username}@x.com",
        username=username,
        password=f"{username}-password",
        consent=True,
        preferred_channel=Channel(channel),
        phone=phone,
    )


@pytest.fixture()
def registration() -> Callable[..., RegistrationRequest]:
    return _registration


@pytest.fixture()
def make_user(service, notifier) -> Callable[..., int]:
    """Register a user and, unless told otherwise, verify their preferred channel."""

    def _make(username: str, channel: str = "email", phone: Optional[str] = None, verify: bool = True) -> int:
        result = service.accounts.register(_registration(username, channel, phone))
        if verify:
            service.dispatcher.drain()
            destination = f"{username}@x.com" if channel == "email" else phone
            service.verification.consume(result.user_id, channel, notifier.last_code(destination))
        return result.user_id

    return _make
