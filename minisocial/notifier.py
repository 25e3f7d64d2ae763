from __future__ import annotations

import logging
import smtplib
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Dict, Iterable, Optional, Protocol, Set

from twilio.rest import Client

from .models import Channel

logger = logging.getLogger(__name__)

CODE_TEMPLATE = "Your verification code is: {code}"


class Notifier(Protocol):
    def send(self, channel: Channel, destination: str, code: str) -> None:
        ...


@dataclass
class LoggingNotifier:
    """Development fallback: writes the code to the log instead of delivering it."""

    name: str = "dev"

    def send(self, channel: Channel, destination: str, code: str) -> None:
        logger.info("[%s] Verification code for %s via %s: %s", self.name, destination, channel.value, code)


@dataclass
class SmtpEmailNotifier:
    host: str
    port: int
    username: str
    password: str
    sender: str
    timeout: float = 10.0

    def send(self, channel: Channel, destination: str, code: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = destination
        message["Subject"] = "Your verification code"
        message.set_content(CODE_TEMPLATE.format(code=code))
        message.add_alternative(
            f"<p>Your verification code is: <strong>{code}</strong></p>", subtype="html"
        )
        if self.port == 465:
            client = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        else:
            client = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        with client:
            if self.port != 465:
                client.starttls()
            client.login(self.username, self.password)
            client.send_message(message)


@dataclass
class TwilioSmsNotifier:
    account_sid: str
    auth_token: str
    from_number: str

    def send(self, channel: Channel, destination: str, code: str) -> None:
        client = Client(self.account_sid, self.auth_token)
        client.messages.create(from_=self.from_number, to=destination, body=CODE_TEMPLATE.format(code=code))


class ChannelNotifier:
    """Routes each send to the notifier registered for its channel."""

    def __init__(self, routes: Dict[Channel, Notifier], fallback: Optional[Notifier] = None) -> None:
        self._routes = dict(routes)
        self._fallback = fallback or LoggingNotifier()

    def send(self, channel: Channel, destination: str, code: str) -> None:
        handler = self._routes.get(channel)
        if handler is None:
            logger.warning("No notifier configured for channel=%s; using fallback", channel.value)
            handler = self._fallback
        handler.send(channel, destination, code)


class NotifierDispatcher:
    """Runs notifier calls off the caller's path; failures are logged, never raised."""

    def __init__(self, notifier: Notifier, max_workers: int = 2) -> None:
        self.notifier = notifier
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notifier")
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def dispatch(self, channel: Channel, destination: str, code: str) -> None:
        try:
            future = self._executor.submit(self.notifier.send, channel, destination, code)
        except RuntimeError:
            logger.warning("Notifier dispatcher is shut down; dropping %s send to %s", channel.value, destination)
            return
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)

    def _on_done(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        exc = future.exception()
        if exc is not None:
            logger.warning("Notifier delivery failed: %s", exc)

    def drain(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            pending: Iterable[Future] = list(self._pending)
        wait(pending, timeout=timeout)

    def close(self) -> None:
        self._executor.shutdown(wait=True)


def build_notifier(settings) -> Notifier:
    routes: Dict[Channel, Notifier] = {}
    if settings.smtp_configured:
        routes[Channel.EMAIL] = SmtpEmailNotifier(
            host=settings.SMTP_HOST,
            port=int(settings.SMTP_PORT),
            username=settings.SMTP_USER,
            password=settings.SMTP_PASS,
            sender=settings.SMTP_FROM,
        )
    else:
        routes[Channel.EMAIL] = LoggingNotifier()
    if settings.sms_configured:
        routes[Channel.SMS] = TwilioSmsNotifier(
            account_sid=settings.TWILIO_ACCOUNT_SID,
            auth_token=settings.TWILIO_AUTH_TOKEN,
            from_number=settings.TWILIO_FROM_NUMBER,
        )
    else:
        routes[Channel.SMS] = LoggingNotifier()
    return ChannelNotifier(routes)
