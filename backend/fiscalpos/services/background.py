# Overview: Post-commit task handoff (invoice and credit note generation).

"""
Background dispatch.

A sale or void commits first; follow-up work (fiscal submission) is handed
here and runs with its own app context, session and error boundary. A task
failure is logged, its session rolled back and an optional on_error hook
invoked; it never propagates to the code that submitted it.

BACKGROUND_TASKS_EAGER runs tasks inline in the caller's app context (tests,
CLI).
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

from flask import current_app

from ..extensions import db


class BackgroundDispatcher:
    def __init__(self, app=None):
        self._app = None
        self._executor: ThreadPoolExecutor | None = None
        self.eager = False
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        self._app = app
        self.eager = bool(app.config.get("BACKGROUND_TASKS_EAGER", False))
        if not self.eager:
            self._executor = ThreadPoolExecutor(
                max_workers=int(app.config.get("BACKGROUND_MAX_WORKERS", 4)),
                thread_name_prefix="fiscalpos-bg",
            )
        app.extensions["fiscalpos.dispatcher"] = self

    def submit(
        self,
        name: str,
        func: Callable,
        *args,
        on_error: Callable[[Exception], None] | None = None,
        **kwargs,
    ) -> Future | None:
        if self.eager or self._executor is None:
            self._run_guarded(name, func, args, kwargs, on_error)
            return None
        return self._executor.submit(self._run_in_context, name, func, args, kwargs, on_error)

    def _run_in_context(self, name, func, args, kwargs, on_error) -> None:
        with self._app.app_context():
            self._run_guarded(name, func, args, kwargs, on_error)

    def _run_guarded(self, name, func, args, kwargs, on_error) -> None:
        logger = current_app.logger
        try:
            func(*args, **kwargs)
        except Exception as exc:
            db.session.rollback()
            logger.exception("Background task %s failed", name)
            if on_error is None:
                return
            try:
                on_error(exc)
            except Exception:
                db.session.rollback()
                logger.exception("Error handler for background task %s failed", name)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None


def get_dispatcher() -> BackgroundDispatcher:
    return current_app.extensions["fiscalpos.dispatcher"]
