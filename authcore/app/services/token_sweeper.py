"""
services/token_sweeper.py — Periodic removal of expired tokens.

Expired refresh and proof tokens already fail verification, so sweeping is
hygiene, not correctness. sweep_expired_tokens() runs one pass inside the
caller's session; TokenSweeper runs it on a background thread every
TOKEN_SWEEP_INTERVAL_SECONDS, each pass in its own app context and
transaction. `flask sweep-tokens` runs a single pass from the command line.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta

from flask import Flask
from sqlalchemy.orm import Session

from authcore.app.clock import utcnow
from authcore.app.models.proof_token import EmailVerificationToken, PasswordResetToken
from authcore.app.services.proof_token_ledger import ProofTokenLedger
from authcore.app.services.refresh_token_ledger import RefreshTokenLedger

logger = logging.getLogger(__name__)


def sweep_expired_tokens(session: Session, now: datetime | None = None) -> dict:
    """
    Deletes every expired refresh, verification and reset token.
    Flushes only; the caller commits.

    Returns: {"refresh_tokens": n, "email_verification_tokens": n,
              "password_reset_tokens": n}
    """
    now = now or utcnow()
    # Sweeping never issues, so the ledger TTL is unused.
    refresh_ledger = RefreshTokenLedger(session, ttl=timedelta(0))
    counts = {
        "refresh_tokens": refresh_ledger.sweep_expired(now),
        "email_verification_tokens": ProofTokenLedger(
            session, EmailVerificationToken,
        ).sweep_expired(now),
        "password_reset_tokens": ProofTokenLedger(
            session, PasswordResetToken,
        ).sweep_expired(now),
    }
    logger.info("Swept expired tokens: %s", counts)
    return counts


class TokenSweeper:
    """Background thread running sweep_expired_tokens() on a fixed interval."""

    def __init__(self, app: Flask, interval_seconds: int) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive.")
        self.app = app
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Idempotent."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop,
            daemon=True,
            name="authcore-token-sweeper",
        )
        self._thread.start()
        logger.info("Token sweeper started (interval=%ss)", self.interval_seconds)

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> dict:
        from authcore.app.extensions import db

        with self.app.app_context():
            try:
                counts = sweep_expired_tokens(db.session)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
            return counts

    def _loop(self) -> None:
        # wait() returns True once stop() is called.
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("Token sweep failed; retrying next interval")
