"""
Tests for notification dispatch.

Validates:
- Per-recipient best-effort fan-out
- Stored in-app notifications
- HTTP mail relay requests (httpx.MockTransport)
- Notice texts
"""

from __future__ import annotations

import json

import httpx
import pytest

from resolution_workflow.domain.schema import NotificationKind
from resolution_workflow.notifications.dispatch import (
    HttpMailSink,
    LoggingMailSink,
    NotificationDispatcher,
    Recipient,
    StoredNotificationSink,
    review_outcome_notice,
    task_assignment_notice,
)

NOTICE = task_assignment_notice(7, "Harmonize fishing licences", "Fisheries Subcommittee", 70)


class TestFanOut:

    def setup_method(self):
        self.recipients = [
            Recipient(actor_id=1, name="One", email="one@example.org"),
            Recipient(actor_id=2, name="Two", email="two@example.org"),
            Recipient(actor_id=3, name="Three", email=None),
        ]

    def test_everyone_attempted(self, notifications, mail, dispatcher):
        report = dispatcher.fan_out(self.recipients, NOTICE)
        assert report.attempted == 3
        assert report.notified == 3
        assert report.mailed == 2
        assert report.failures == []
        assert notifications.recipients() == [1, 2, 3]
        assert mail.sent[0]["subject"] == "New Task Assignment: Harmonize fishing licences"
        assert mail.sent[0]["body"].startswith("Dear One,")

    def test_failures_do_not_stop_the_rest(self, notifications, mail, dispatcher):
        notifications.fail_for.add(1)
        mail.fail_for.add("two@example.org")

        report = dispatcher.fan_out(self.recipients, NOTICE)

        assert report.attempted == 3
        assert report.notified == 2
        assert report.mailed == 1
        assert sorted(report.failures) == ["mail:2", "notify:1"]
        assert notifications.recipients() == [2, 3]
        assert [m["to"] for m in mail.sent] == ["one@example.org"]

    def test_no_recipients(self, dispatcher):
        report = dispatcher.fan_out([], NOTICE)
        assert report.attempted == 0

    def test_defaults_to_logging_mail(self):
        dispatcher = NotificationDispatcher()
        assert isinstance(dispatcher.mail_sink, LoggingMailSink)
        report = dispatcher.fan_out(self.recipients[:1], NOTICE)
        assert report.mailed == 1
        assert report.notified == 0


class TestStoredNotificationSink:

    def test_rows_written(self, store, world):
        sink = StoredNotificationSink(store)
        sink.notify(
            world.fish_member, "Title", "Message", NotificationKind.GENERAL_ANNOUNCEMENT, "Resolution", 3
        )
        with store.transaction() as session:
            rows = store.notifications_for_actor(session, world.fish_member)
            assert len(rows) == 1
            assert rows[0].kind == NotificationKind.GENERAL_ANNOUNCEMENT
            assert rows[0].is_read is False
            assert rows[0].related_id == 3


class TestHttpMailSink:

    def test_posts_message_with_bearer_token(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202, json={"id": "msg-1"})

        sink = HttpMailSink(
            "https://relay.example.org/api/",
            token="secret-token",
            sender="workflow@example.org",
            transport=httpx.MockTransport(handler),
        )
        sink.send_mail("one@example.org", "One", "Subject", "Body")
        sink.close()

        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "https://relay.example.org/api/messages"
        assert request.headers["Authorization"] == "Bearer secret-token"
        payload = json.loads(request.content)
        assert payload["from"] == "workflow@example.org"
        assert payload["to"] == [{"address": "one@example.org", "name": "One"}]
        assert payload["subject"] == "Subject"
        assert payload["text"] == "Body"

    def test_relay_error_raised(self):
        sink = HttpMailSink(
            "https://relay.example.org",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        with pytest.raises(httpx.HTTPStatusError):
            sink.send_mail("one@example.org", "One", "Subject", "Body")

    def test_context_manager_closes_client(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(202))
        with HttpMailSink("https://relay.example.org", transport=transport) as sink:
            sink.send_mail("one@example.org", "One", "Subject", "Body")
        assert sink._client.is_closed

    def test_relay_error_counted_by_dispatcher(self):
        sink = HttpMailSink(
            "https://relay.example.org",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        dispatcher = NotificationDispatcher(mail_sink=sink)
        report = dispatcher.fan_out([Recipient(1, "One", "one@example.org")], NOTICE)
        assert report.mailed == 0
        assert report.failures == ["mail:1"]


class TestNotices:

    def test_task_assignment_mentions_weight(self):
        assert "70%" in NOTICE.message
        assert NOTICE.kind == NotificationKind.TASK_ASSIGNMENT
        assert NOTICE.related_type == "Resolution"

    def test_rejection_includes_comments(self):
        notice = review_outcome_notice(5, "Licences", False, "Chair", "Add budget", final=False)
        assert notice.kind == NotificationKind.REPORT_REJECTION
        assert "Add budget" in notice.message
        assert "resubmit" in notice.mail_text
        assert notice.mail_subject == "Report Rejected: Licences"

    def test_final_approval_text(self):
        notice = review_outcome_notice(5, "Licences", True, "Commissioner", None, final=True)
        assert notice.kind == NotificationKind.REPORT_APPROVAL
        assert "now final" in notice.mail_text
        assert "Comments" not in notice.message
