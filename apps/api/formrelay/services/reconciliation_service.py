"""Reconciliation scheduler - finds emailed replies to outstanding forms.

Every tick loads the forms still waiting for a reply, groups them by the
mailbox they were sent from, and polls each mailbox on a bounded worker pool.
A reply that matches and yields answers is submitted through the response
service exactly like a web submission.

Failure is contained: a mailbox that cannot be reached (refresh failure,
timeout, provider error) is skipped for this cycle, and a form that fails is
skipped without affecting its siblings. Cycles never overlap; a tick that
fires while a cycle is running is dropped.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, ContextManager
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from formrelay.core.config import settings
from formrelay.core.errors import (
    AlreadyCompletedError,
    FormExpiredError,
    FormRelayError,
    MessageUnavailableError,
    ProviderUnavailableError,
    ValidationFailedError,
)
from formrelay.core.structured_logging import build_log_context, mask_email, token_prefix
from formrelay.db.enums import FormStatus, SubmissionOrigin
from formrelay.db.models import Form
from formrelay.db.session import SessionLocal
from formrelay.db.types import as_utc
from formrelay.services import form_service, response_service
from formrelay.services.mail_providers import MailProviderGateway, open_gateway
from formrelay.services.oauth_service import CredentialVault, get_credential_vault
from formrelay.services.reply_matching import (
    extract_answers,
    is_likely_reply,
    map_answers_to_fields,
    sender_address,
)

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[str, str], ContextManager[MailProviderGateway]]
MailboxKey = tuple[str, str]


def _now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


@dataclass
class MailboxReport:
    """Outcome of polling one mailbox in one cycle."""

    identity: str
    provider: str
    forms_checked: int = 0
    completed: list[str] = field(default_factory=list)
    form_errors: dict[str, str] = field(default_factory=dict)
    error: str | None = None


@dataclass
class CycleReport:
    cycle_id: str
    started_at: datetime
    finished_at: datetime | None = None
    case_id: UUID | None = None
    mailboxes: list[MailboxReport] = field(default_factory=list)

    @property
    def forms_checked(self) -> int:
        return sum(mailbox.forms_checked for mailbox in self.mailboxes)

    @property
    def completed_tokens(self) -> list[str]:
        return [token for mailbox in self.mailboxes for token in mailbox.completed]

    @property
    def failed_mailboxes(self) -> list[MailboxReport]:
        return [mailbox for mailbox in self.mailboxes if mailbox.error]

    @property
    def pending(self) -> int:
        return self.forms_checked - len(self.completed_tokens)

    def summary(self) -> dict:
        return {
            "cycle_id": self.cycle_id,
            "case_id": self.case_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "mailboxes": len(self.mailboxes),
            "mailbox_failures": len(self.failed_mailboxes),
            "forms_checked": self.forms_checked,
            "completed": len(self.completed_tokens),
            "pending": self.pending,
            "form_errors": sum(len(mailbox.form_errors) for mailbox in self.mailboxes),
        }


class ReconciliationScheduler:
    """Skip-if-busy periodic reconciliation of emailed replies."""

    def __init__(
        self,
        *,
        session_factory: sessionmaker | Callable[[], Session] = SessionLocal,
        vault: CredentialVault | None = None,
        gateway_factory: GatewayFactory = open_gateway,
        clock: Callable[[], datetime] | None = None,
        interval_seconds: float | None = None,
        max_workers: int | None = None,
        max_messages_per_form: int | None = None,
    ):
        self._session_factory = session_factory
        self._vault = vault or get_credential_vault()
        self._gateway_factory = gateway_factory
        self._clock = clock or _now_utc
        self._interval = (
            settings.RECONCILE_POLL_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        )
        self._max_workers = max(1, max_workers or settings.RECONCILE_MAX_WORKERS)
        self._max_messages = max_messages_per_form or settings.RECONCILE_MAX_MESSAGES_PER_FORM
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._ticker: threading.Thread | None = None
        self._cycle_thread: threading.Thread | None = None

    @property
    def is_cycle_running(self) -> bool:
        return self._cycle_lock.locked()

    # ------------------------------------------------------------------
    # Cycle entry points
    # ------------------------------------------------------------------

    def run_cycle(self) -> CycleReport | None:
        """Run one cycle over every outstanding form. Returns None if one is already running."""
        return self._run_exclusive(case_id=None)

    def reconcile_case(self, case_id: UUID) -> CycleReport | None:
        """Run the same reconciliation for the outstanding forms of one case."""
        return self._run_exclusive(case_id=case_id)

    def _run_exclusive(self, case_id: UUID | None) -> CycleReport | None:
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Reconciliation cycle already running; skipping")
            return None
        try:
            return self._run(case_id)
        finally:
            self._cycle_lock.release()

    def _run(self, case_id: UUID | None) -> CycleReport:
        report = CycleReport(
            cycle_id=uuid.uuid4().hex[:12],
            started_at=self._clock(),
            case_id=case_id,
        )
        db = self._session_factory()
        try:
            groups = self._load_groups(db, report.started_at, case_id)
        finally:
            db.close()

        if groups:
            workers = min(self._max_workers, len(groups))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="reconcile") as pool:
                futures = {
                    pool.submit(
                        self._reconcile_mailbox, identity, provider, tokens, report.cycle_id
                    ): (identity, provider)
                    for (identity, provider), tokens in groups.items()
                }
                for future in as_completed(futures):
                    identity, provider = futures[future]
                    try:
                        report.mailboxes.append(future.result())
                    except Exception as exc:
                        logger.exception(
                            "Mailbox reconciliation crashed",
                            extra=build_log_context(
                                mailbox=identity, provider=provider, cycle_id=report.cycle_id
                            ),
                        )
                        report.mailboxes.append(
                            MailboxReport(
                                identity=mask_email(identity),
                                provider=provider,
                                error=f"{type(exc).__name__}: {exc}",
                            )
                        )

        report.finished_at = self._clock()
        logger.info("Reconciliation cycle finished", extra=report.summary())
        return report

    def _load_groups(
        self, db: Session, now: datetime, case_id: UUID | None
    ) -> dict[MailboxKey, list[str]]:
        groups: dict[MailboxKey, list[str]] = defaultdict(list)
        for form in form_service.list_awaiting_reply(db, now=now, case_id=case_id):
            groups[(form.issuer_email, form.provider)].append(form.token)
        return dict(groups)

    # ------------------------------------------------------------------
    # Per-mailbox work (runs on pool threads, one session each)
    # ------------------------------------------------------------------

    def _reconcile_mailbox(
        self, identity: str, provider: str, tokens: list[str], cycle_id: str
    ) -> MailboxReport:
        report = MailboxReport(identity=mask_email(identity), provider=provider)
        context = build_log_context(mailbox=identity, provider=provider, cycle_id=cycle_id)
        db = self._session_factory()
        try:
            try:
                access_token = self._vault.get_valid_token(db, identity, provider)
            except FormRelayError as exc:
                report.error = f"{exc.code}: {exc.message}"
                logger.warning("Mailbox unavailable this cycle: %s", exc.message, extra=context)
                return report

            with self._gateway_factory(provider, access_token) as gateway:
                for token in tokens:
                    report.forms_checked += 1
                    form_context = {**context, **build_log_context(form_token=token)}
                    try:
                        if self._reconcile_form(db, gateway, token):
                            report.completed.append(token)
                    except MessageUnavailableError as exc:
                        db.rollback()
                        report.form_errors[token_prefix(token)] = f"{exc.code}: {exc.message}"
                        logger.warning(
                            "Form skipped this cycle: %s", exc.message, extra=form_context
                        )
                    except ProviderUnavailableError as exc:
                        db.rollback()
                        report.error = f"{exc.code}: {exc.message}"
                        logger.warning(
                            "Mailbox unavailable mid-cycle: %s", exc.message, extra=form_context
                        )
                        break
                    except Exception as exc:
                        db.rollback()
                        report.form_errors[token_prefix(token)] = f"{type(exc).__name__}: {exc}"
                        logger.exception("Form reconciliation failed", extra=form_context)
        except Exception as exc:
            db.rollback()
            report.error = f"{type(exc).__name__}: {exc}"
            logger.exception("Mailbox reconciliation failed", extra=context)
        finally:
            db.close()
        return report

    def _reconcile_form(self, db: Session, gateway: MailProviderGateway, token: str) -> bool:
        """Look for a reply to one form. Returns True when it completed the form."""
        now = self._clock()
        form = db.query(Form).filter(Form.token == token).one_or_none()
        if form is None or form_service.derive_status(form, now) not in (
            FormStatus.SENT,
            FormStatus.OPENED,
        ):
            return False

        after = as_utc(form.sent_at or form.created_at)
        refs = [
            ref
            for ref in gateway.list_messages_from(form.candidate_email, after)
            if is_likely_reply(ref, form)
            and (ref.received_at is None or ref.received_at >= after)
        ]
        refs.sort(key=lambda ref: ref.received_at or after)

        context = build_log_context(form_token=token, provider=form.provider)
        for ref in refs[: self._max_messages]:
            message = gateway.fetch_body(ref.id)
            if not is_likely_reply(message, form):
                continue
            extracted = extract_answers(message.body)
            if not extracted:
                logger.info("Reply matched but no answers extracted", extra=context)
                continue
            answers = map_answers_to_fields(extracted, form.fields)
            try:
                response_service.submit(
                    db,
                    token,
                    answers,
                    origin=SubmissionOrigin.EMAIL,
                    source_address=sender_address(message.sender),
                    now=now,
                )
            except ValidationFailedError as exc:
                logger.info(
                    "Reply answers failed validation: %s",
                    sorted(exc.field_errors),
                    extra=context,
                )
                continue
            except (AlreadyCompletedError, FormExpiredError):
                return False
            logger.info("Form completed from email reply", extra=context)
            return True
        return False

    # ------------------------------------------------------------------
    # Ticker
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start ticking every interval on a background thread."""
        if self._ticker is not None and self._ticker.is_alive():
            return
        self._stop_event.clear()
        self._ticker = threading.Thread(
            target=self._tick_forever, name="reconciliation-ticker", daemon=True
        )
        self._ticker.start()
        logger.info("Reconciliation scheduler started (interval=%ss)", self._interval)

    def request_stop(self) -> None:
        """Stop ticking without waiting; safe to call from a signal handler."""
        self._stop_event.set()

    def stop(self, timeout: float | None = None) -> None:
        """Stop ticking and wait up to ``timeout`` for an in-flight cycle to finish."""
        self.request_stop()
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in (self._ticker, self._cycle_thread):
            if thread is None:
                continue
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
        if self._cycle_thread is not None and self._cycle_thread.is_alive():
            logger.warning("Reconciliation scheduler stopped with a cycle still running")
        else:
            logger.info("Reconciliation scheduler stopped")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a stop is requested; returns True once stopped."""
        return self._stop_event.wait(timeout)

    def _tick_forever(self) -> None:
        while not self._stop_event.is_set():
            # A cycle runs on its own thread so a slow cycle never delays the
            # tick; a tick that finds a cycle running is skipped, not queued.
            if self._cycle_thread is None or not self._cycle_thread.is_alive():
                self._cycle_thread = threading.Thread(
                    target=self._tick, name="reconciliation-cycle", daemon=True
                )
                self._cycle_thread.start()
            else:
                logger.info("Reconciliation cycle already running; skipping tick")
            self._stop_event.wait(self._interval)

    def _tick(self) -> None:
        try:
            self.run_cycle()
        except Exception:
            logger.exception("Reconciliation cycle failed")


@lru_cache
def get_scheduler() -> ReconciliationScheduler:
    return ReconciliationScheduler()
