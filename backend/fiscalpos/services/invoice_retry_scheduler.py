# Overview: Periodic sweep re-submitting PENDING invoices and credit notes.

"""
Invoice Retry Scheduler

One daemon thread. A sweep runs right after start() and then every
INVOICE_RETRY_INTERVAL_SECONDS. Within a sweep documents are submitted one
at a time, oldest first, with INVOICE_RETRY_ITEM_DELAY_SECONDS between them;
invoices first, then credit notes.

A failing document is logged and skipped. A failing sweep is logged and the
loop keeps running.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from . import fiscal_state
from .credit_note_service import list_retryable_credit_notes, submit_credit_note
from .invoice_service import list_retryable_invoices, submit_invoice


@dataclass
class SweepResult:
    attempted: int = 0
    issued: int = 0
    pending: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def record(self, status: str) -> None:
        self.attempted += 1
        if status == fiscal_state.STATUS_ISSUED:
            self.issued += 1
        elif status == fiscal_state.STATUS_PENDING:
            self.pending += 1
        elif status == fiscal_state.STATUS_FAILED:
            self.failed += 1

    def to_dict(self) -> dict:
        return {
            "attempted": self.attempted,
            "issued": self.issued,
            "pending": self.pending,
            "failed": self.failed,
            "errors": list(self.errors),
        }


class InvoiceRetryScheduler:
    def __init__(self, app=None):
        self._app = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        self._app = app
        app.extensions["fiscalpos.invoice_retry_scheduler"] = self

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="fiscalpos-invoice-retry", daemon=True)
        self._thread.start()
        self._app.logger.info(
            "Invoice retry scheduler started (every %ss)", self._app.config["INVOICE_RETRY_INTERVAL_SECONDS"]
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self._app.logger.info("Invoice retry scheduler stopped")

    def _loop(self) -> None:
        interval = float(self._app.config["INVOICE_RETRY_INTERVAL_SECONDS"])
        while not self._stop.is_set():
            with self._app.app_context():
                try:
                    self.run_once()
                except Exception:
                    current_app.logger.exception("Invoice retry sweep failed")
                    db.session.rollback()
                finally:
                    db.session.remove()
            self._stop.wait(interval)

    def _pause(self) -> None:
        delay = float(current_app.config.get("INVOICE_RETRY_ITEM_DELAY_SECONDS", 0) or 0)
        if delay > 0:
            self._stop.wait(delay)

    def run_once(self) -> SweepResult:
        """Single sweep; requires an app context."""
        batch_size = int(current_app.config["INVOICE_RETRY_BATCH_SIZE"])
        result = SweepResult()

        invoice_ids = [invoice.id for invoice in list_retryable_invoices(batch_size)]
        credit_note_ids = [note.id for note in list_retryable_credit_notes(batch_size)]
        if not invoice_ids and not credit_note_ids:
            current_app.logger.debug("No pending fiscal documents to retry")
            return result

        current_app.logger.info(
            "Retrying %s invoice(s) and %s credit note(s)", len(invoice_ids), len(credit_note_ids)
        )

        work = [("invoice", doc_id, submit_invoice) for doc_id in invoice_ids]
        work += [("credit_note", doc_id, submit_credit_note) for doc_id in credit_note_ids]

        for index, (kind, doc_id, submit) in enumerate(work):
            if self._stop.is_set():
                break
            if index:
                self._pause()
            try:
                document = submit(doc_id)
                result.record(document.status)
            except Exception as exc:
                db.session.rollback()
                current_app.logger.exception("Retry of %s %s failed", kind, doc_id)
                result.errors.append(f"{kind}:{doc_id}: {exc}")

        current_app.logger.info(
            "Retry sweep done: %s attempted, %s issued, %s pending, %s failed, %s error(s)",
            result.attempted, result.issued, result.pending, result.failed, len(result.errors),
        )
        return result


def get_retry_scheduler() -> InvoiceRetryScheduler:
    return current_app.extensions["fiscalpos.invoice_retry_scheduler"]
