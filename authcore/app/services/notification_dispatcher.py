"""
services/notification_dispatcher.py — Best-effort outbound notifications.

The auth core only needs three messages: email verification, password reset
and login alert. Delivery (SMTP, push, WebSocket) and template rendering live
outside this package; anything implementing the Notifier protocol can be
plugged in.

BackgroundDispatcher wraps a Notifier and runs every send on a small thread
pool. Callers return as soon as the job is queued; a failing send is logged
and dropped, never raised to the caller.

Recipient is a plain snapshot of the user. ORM instances are bound to the
request's session and must not cross into worker threads.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Protocol
from urllib.parse import urlencode

from authcore.app.security.opaque import redact_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recipient:
    user_id: int
    email: str
    display_name: str

    @classmethod
    def from_user(cls, user) -> "Recipient":
        return cls(
            user_id=user.id,
            email=user.email,
            display_name=user.first_name or user.email,
        )


class Notifier(Protocol):

    def send_verification(self, recipient: Recipient, token: str) -> None: ...

    def send_password_reset(self, recipient: Recipient, token: str) -> None: ...

    def send_login_alert(
            self,
            recipient: Recipient,
            ip_address: str | None,
            user_agent: str | None,
    ) -> None: ...


class LoggingNotifier:
    """
    Development notifier: builds the links a real mailer would embed and logs
    that a message would have been sent. The link itself, which carries the
    token, is only logged at DEBUG level for local development.
    """

    def __init__(self, app_url: str, frontend_url: str) -> None:
        self.app_url = app_url.rstrip("/")
        self.frontend_url = frontend_url.rstrip("/")

    def verification_url(self, token: str) -> str:
        return f"{self.app_url}/api/v1/auth/verify-email?{urlencode({'token': token})}"

    def password_reset_url(self, token: str) -> str:
        return f"{self.frontend_url}/reset-password?{urlencode({'token': token})}"

    def send_verification(self, recipient: Recipient, token: str) -> None:
        logger.info("Verification email queued for %s", redact_email(recipient.email))
        logger.debug("Verification link: %s", self.verification_url(token))

    def send_password_reset(self, recipient: Recipient, token: str) -> None:
        logger.info("Password reset email queued for %s", redact_email(recipient.email))
        logger.debug("Password reset link: %s", self.password_reset_url(token))

    def send_login_alert(
            self,
            recipient: Recipient,
            ip_address: str | None,
            user_agent: str | None,
    ) -> None:
        logger.info(
            "Login alert for %s (ip=%s, agent=%s)",
            redact_email(recipient.email),
            ip_address or "Unknown",
            user_agent or "Unknown",
        )


class BackgroundDispatcher:
    """Fire-and-forget wrapper around a Notifier."""

    def __init__(self, notifier: Notifier, max_workers: int = 2) -> None:
        self.notifier = notifier
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers),
            thread_name_prefix="authcore-notify",
        )

    def send_verification(self, recipient: Recipient, token: str) -> Future:
        return self._submit("verification", self.notifier.send_verification, recipient, token)

    def send_password_reset(self, recipient: Recipient, token: str) -> Future:
        return self._submit("password_reset", self.notifier.send_password_reset, recipient, token)

    def send_login_alert(
            self,
            recipient: Recipient,
            ip_address: str | None,
            user_agent: str | None,
    ) -> Future:
        return self._submit(
            "login_alert", self.notifier.send_login_alert, recipient, ip_address, user_agent,
        )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _submit(self, kind: str, fn: Callable, recipient: Recipient, *args) -> Future:
        return self._executor.submit(self._run, kind, fn, recipient, *args)

    @staticmethod
    def _run(kind: str, fn: Callable, recipient: Recipient, *args) -> None:
        try:
            fn(recipient, *args)
        except Exception:
            logger.exception(
                "Failed to send %s notification to %s",
                kind,
                redact_email(recipient.email),
            )
