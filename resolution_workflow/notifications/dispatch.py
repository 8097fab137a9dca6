"""
Notification Dispatch — best-effort fan-out of workflow events.

State changes commit first; notification happens afterwards and can never
undo or block them. Each recipient is attempted independently: an in-app
notification and then an email. A failure for one recipient is logged and
counted, and the next recipient is still attempted.

Sinks:
    NotificationSink  — in-app notifications (``StoredNotificationSink``)
    MailSink          — outbound email (``HttpMailSink``, ``LoggingMailSink``)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

import httpx

from resolution_workflow.domain.schema import NotificationKind
from resolution_workflow.store.models import NotificationDB

logger = logging.getLogger(__name__)

MAIL_SIGNATURE = "Best regards,\nResolution Workflow Team"


class NotificationSink(Protocol):
    def notify(
        self,
        actor_id: int,
        title: str,
        message: str,
        kind: NotificationKind,
        related_type: str,
        related_id: int,
    ) -> None: ...


class MailSink(Protocol):
    def send_mail(self, to_address: str, to_name: str, subject: str, body: str) -> None: ...


# ════════════════════════════════════════════════════════════════
# Sinks
# ════════════════════════════════════════════════════════════════


class StoredNotificationSink:
    """Persists in-app notifications through the record store."""

    def __init__(self, store: Any) -> None:
        self.store = store

    def notify(
        self,
        actor_id: int,
        title: str,
        message: str,
        kind: NotificationKind,
        related_type: str,
        related_id: int,
    ) -> None:
        with self.store.transaction() as session:
            session.add(
                NotificationDB(
                    actor_id=actor_id,
                    title=title,
                    message=message,
                    kind=kind,
                    related_type=related_type,
                    related_id=related_id,
                )
            )


class HttpMailSink:
    """
    Sends mail through an HTTP mail relay.

    The relay accepts ``POST {base_url}/messages`` with a JSON body and a
    bearer token; any non-2xx answer is raised to the dispatcher.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        sender: str = "no-reply@resolution-workflow.local",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.sender = sender
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def send_mail(self, to_address: str, to_name: str, subject: str, body: str) -> None:
        resp = self._client.post(
            "/messages",
            json={
                "from": self.sender,
                "to": [{"address": to_address, "name": to_name}],
                "subject": subject,
                "text": body,
            },
        )
        resp.raise_for_status()
        logger.info("Mail relayed to %s: %s", to_address, subject)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpMailSink:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class LoggingMailSink:
    """Mail sink used when no relay is configured; only records the intent."""

    def send_mail(self, to_address: str, to_name: str, subject: str, body: str) -> None:
        logger.info("Mail (not relayed) to %s <%s>: %s", to_name, to_address, subject)


# ════════════════════════════════════════════════════════════════
# Fan-out
# ════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Recipient:
    actor_id: int
    name: str
    email: str | None

    @classmethod
    def of(cls, actor: Any) -> Recipient:
        return cls(actor_id=actor.id, name=actor.name, email=actor.email)


@dataclass(frozen=True)
class Notice:
    """One event to tell recipients about, in-app and by mail."""

    title: str
    message: str
    kind: NotificationKind
    related_type: str
    related_id: int
    mail_subject: str
    mail_text: str


@dataclass
class DispatchReport:
    attempted: int = 0
    notified: int = 0
    mailed: int = 0
    failures: list[str] = field(default_factory=list)


class NotificationDispatcher:
    """Delivers ``Notice`` objects to recipients, one recipient at a time."""

    def __init__(
        self,
        notification_sink: NotificationSink | None = None,
        mail_sink: MailSink | None = None,
    ) -> None:
        self.notification_sink = notification_sink
        self.mail_sink = mail_sink or LoggingMailSink()

    def fan_out(self, recipients: Iterable[Recipient], notice: Notice) -> DispatchReport:
        report = DispatchReport()
        for recipient in recipients:
            report.attempted += 1
            self._notify_one(recipient, notice, report)
            self._mail_one(recipient, notice, report)

        logger.info(
            "Dispatched '%s' to %d recipients (in-app=%d mail=%d failures=%d)",
            notice.title, report.attempted, report.notified, report.mailed,
            len(report.failures),
        )
        return report

    def _notify_one(self, recipient: Recipient, notice: Notice, report: DispatchReport) -> None:
        if self.notification_sink is None:
            return
        try:
            self.notification_sink.notify(
                recipient.actor_id,
                notice.title,
                notice.message,
                notice.kind,
                notice.related_type,
                notice.related_id,
            )
            report.notified += 1
        except Exception as exc:
            logger.warning(
                "In-app notification to actor %s failed: %s", recipient.actor_id, exc
            )
            report.failures.append(f"notify:{recipient.actor_id}")

    def _mail_one(self, recipient: Recipient, notice: Notice, report: DispatchReport) -> None:
        if not recipient.email:
            return
        body = f"Dear {recipient.name},\n\n{notice.mail_text}\n\n{MAIL_SIGNATURE}"
        try:
            self.mail_sink.send_mail(recipient.email, recipient.name, notice.mail_subject, body)
            report.mailed += 1
        except Exception as exc:
            logger.warning("Failed to send email to %s: %s", recipient.email, exc)
            report.failures.append(f"mail:{recipient.actor_id}")


# ════════════════════════════════════════════════════════════════
# Notices
# ════════════════════════════════════════════════════════════════


def task_assignment_notice(
    resolution_id: int, resolution_title: str, group_name: str, weight: int
) -> Notice:
    return Notice(
        title="New Task Assignment",
        message=(
            f"A new resolution has been assigned to your subcommittee: "
            f"{resolution_title} (Contribution: {weight}%)"
        ),
        kind=NotificationKind.TASK_ASSIGNMENT,
        related_type="Resolution",
        related_id=resolution_id,
        mail_subject=f"New Task Assignment: {resolution_title}",
        mail_text=(
            f"A new resolution has been assigned to your subcommittee ({group_name}).\n\n"
            f"Resolution: {resolution_title}\n"
            f"Your subcommittee's contribution: {weight}%\n\n"
            "Please check the system for more details and begin working on this task."
        ),
    )


def report_submitted_notice(
    report_id: int, resolution_title: str, submitter_name: str, resubmission: bool = False
) -> Notice:
    verb = "resubmitted" if resubmission else "submitted"
    return Notice(
        title="Report Resubmitted" if resubmission else "New Report Submission",
        message=f"A report has been {verb} for '{resolution_title}' by {submitter_name}",
        kind=NotificationKind.REPORT_SUBMISSION,
        related_type="Report",
        related_id=report_id,
        mail_subject=f"Report Status Update: {resolution_title}",
        mail_text=f"A report for '{resolution_title}' has been {verb} for your review.",
    )


def forwarded_for_final_review_notice(report_id: int, resolution_title: str) -> Notice:
    return Notice(
        title="Report Approved at First Stage",
        message=(
            f"A report for '{resolution_title}' has passed first-stage review "
            "and is forwarded for final review"
        ),
        kind=NotificationKind.REPORT_APPROVAL,
        related_type="Report",
        related_id=report_id,
        mail_subject=f"Report Status Update: {resolution_title}",
        mail_text=(
            f"A report for '{resolution_title}' has been approved at first stage "
            "and forwarded for final review."
        ),
    )


def review_outcome_notice(
    report_id: int,
    resolution_title: str,
    approved: bool,
    reviewer_name: str,
    comments: str | None,
    final: bool,
) -> Notice:
    if approved:
        follow_up = (
            "Your report is now final."
            if final
            else "Your report has been forwarded for final review."
        )
    else:
        follow_up = "Please address the feedback and resubmit your report."
    outcome = "approved" if approved else "rejected"
    comment_block = f"Review Comments:\n{comments}\n\n" if comments and comments.strip() else ""
    return Notice(
        title="Report Approved" if approved else "Report Rejected",
        message=(
            f"Your report for '{resolution_title}' has been {outcome}"
            + (f". Comments: {comments}" if comments else "")
        ),
        kind=NotificationKind.REPORT_APPROVAL if approved else NotificationKind.REPORT_REJECTION,
        related_type="Report",
        related_id=report_id,
        mail_subject=f"Report {outcome.capitalize()}: {resolution_title}",
        mail_text=(
            f"Your report for '{resolution_title}' has been {outcome} by {reviewer_name}.\n\n"
            f"{comment_block}{follow_up}"
        ),
    )
