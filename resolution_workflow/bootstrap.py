"""
Resolution Workflow — service wiring.

Central construction point that:
1. Configures structured logging from settings
2. Opens and initializes the record store
3. Chooses the mail sink (HTTP relay when configured, otherwise log-only)
4. Builds the workflow services around one shared store and dispatcher

Callers (an HTTP layer, the CLI, tests) use ``build_workflow`` and then call
the services as plain functions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from resolution_workflow.config import WorkflowSettings, settings
from resolution_workflow.governance.jurisdiction import LocationScopeGuard
from resolution_workflow.governance.privileges import PrivilegeDeriver
from resolution_workflow.notifications.dispatch import (
    HttpMailSink,
    LoggingMailSink,
    MailSink,
    NotificationDispatcher,
    StoredNotificationSink,
)
from resolution_workflow.store.service import RecordStore
from resolution_workflow.workflow.assignments import AssignmentManager
from resolution_workflow.workflow.meetings import MeetingDesk
from resolution_workflow.workflow.progress import ProgressAggregator
from resolution_workflow.workflow.reports import ReportLifecycle

logger = logging.getLogger(__name__)


def configure_logging(config: WorkflowSettings | None = None) -> None:
    """Configure structured logging."""
    config = config or settings
    level = logging.getLevelName(config.log_level.upper())
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if config.log_format != "json"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@dataclass
class WorkflowServices:
    store: RecordStore
    dispatcher: NotificationDispatcher
    privileges: PrivilegeDeriver
    assignments: AssignmentManager
    reports: ReportLifecycle
    progress: ProgressAggregator
    meetings: MeetingDesk
    closers: list[Callable[[], None]] = field(default_factory=list, repr=False)

    def close(self) -> None:
        """Release the resources ``build_workflow`` opened itself."""
        while self.closers:
            self.closers.pop()()

    def __enter__(self) -> WorkflowServices:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def build_mail_sink(config: WorkflowSettings) -> MailSink:
    if config.mail_relay_url:
        return HttpMailSink(
            config.mail_relay_url,
            token=config.mail_relay_token,
            sender=config.mail_from,
            timeout=config.mail_timeout_seconds,
        )
    return LoggingMailSink()


def build_workflow(
    config: WorkflowSettings | None = None,
    store: RecordStore | None = None,
    mail_sink: MailSink | None = None,
) -> WorkflowServices:
    """
    Wire every workflow service around a single record store.

    Args:
        config: Settings to use; defaults to the module-level ``settings``.
        store: An existing store; otherwise one is opened on
            ``config.effective_database_url`` and initialized.
        mail_sink: Overrides the sink chosen from the mail relay settings.

    Call ``close()`` on the result, or use it as a context manager, to
    release the engine and mail client opened here.
    """
    config = config or settings
    log = structlog.get_logger()
    closers: list[Callable[[], None]] = []

    if store is None:
        store = RecordStore(config.effective_database_url)
        store.initialize()
        closers.append(store.engine.dispose)
        log.info("resolution_workflow.bootstrap.store_ready")

    if mail_sink is None:
        mail_sink = build_mail_sink(config)
        if isinstance(mail_sink, HttpMailSink):
            closers.append(mail_sink.close)

    dispatcher = NotificationDispatcher(
        notification_sink=StoredNotificationSink(store),
        mail_sink=mail_sink,
    )
    guard = LocationScopeGuard()
    privileges = PrivilegeDeriver(store)
    aggregator = ProgressAggregator(store)

    services = WorkflowServices(
        store=store,
        dispatcher=dispatcher,
        privileges=privileges,
        assignments=AssignmentManager(store, guard, dispatcher, aggregator),
        reports=ReportLifecycle(
            store, privileges, dispatcher, config.min_progress_detail_length
        ),
        progress=aggregator,
        meetings=MeetingDesk(store, guard),
        closers=closers,
    )
    log.info(
        "resolution_workflow.bootstrap.ready",
        mail_relay=bool(config.mail_relay_url),
        min_progress_detail_length=config.min_progress_detail_length,
    )
    return services
