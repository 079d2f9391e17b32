import smtplib
from types import SimpleNamespace

import pytest

from models.enums import LogStatus
from utils.notification_manager import NotificationManager, SubmissionStatusEmail

EMAIL = SubmissionStatusEmail(
    learner_name="Asha <Learner>",
    learner_email="asha@uni.edu",
    submission_title="CASE-2024-004",
    status="rejected",
    submission_id="log-1",
    teacher_name="Dr Owner",
    comments="Missing examination findings",
)


class FakeSMTP:
    """Records what would have been sent; optionally fails every send."""

    def __init__(self, fail=False):
        self.fail = fail
        self.connections = 0
        self.sent = []
        self.logins = []

    def __call__(self, host, port, timeout=None):
        self.connections += 1
        return self

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        self.logins.append(user)

    def send_message(self, message):
        if self.fail:
            raise smtplib.SMTPServerDisconnected("connection dropped")
        self.sent.append(message)


def _manager(smtp, **kwargs):
    options = dict(host="smtp.example.org", port=587, user="mailer", password="pw", retry_delay=0)
    options.update(kwargs)
    return NotificationManager(smtp_factory=smtp, **options)


def test_sends_once():
    smtp = FakeSMTP()
    assert _manager(smtp).send_status_email(EMAIL) is True
    assert len(smtp.sent) == 1
    assert smtp.logins == ["mailer"]
    assert smtp.sent[0]["To"] == "asha@uni.edu"


def test_gives_up_after_max_attempts():
    smtp = FakeSMTP(fail=True)
    assert _manager(smtp, max_attempts=3).send_status_email(EMAIL) is False
    assert smtp.connections == 3
    assert smtp.sent == []


def test_waits_grow_exponentially_between_attempts():
    waits = []
    smtp = FakeSMTP(fail=True)
    manager = _manager(smtp, max_attempts=4, retry_delay=1, sleep=waits.append)

    assert manager.send_status_email(EMAIL) is False
    assert smtp.connections == 4
    assert waits == [1, 2, 4]


def test_recovers_on_a_later_attempt():
    waits = []
    smtp = FakeSMTP(fail=True)

    def flaky(host, port, timeout=None):
        if smtp.connections == 1:
            smtp.fail = False
        return smtp(host, port, timeout=timeout)

    assert _manager(flaky, max_attempts=3, sleep=waits.append).send_status_email(EMAIL) is True
    assert smtp.connections == 2
    assert len(smtp.sent) == 1
    assert waits == [0]


def test_connection_refused_counts_as_failure():
    def refuse(host, port, timeout=None):
        raise ConnectionRefusedError("nobody listening")

    assert _manager(refuse, max_attempts=2).send_status_email(EMAIL) is False


def test_disabled_without_host():
    smtp = FakeSMTP()
    manager = _manager(smtp, host=None)
    assert manager.enabled is False
    assert manager.send_status_email(EMAIL) is False
    assert smtp.connections == 0


def test_message_content():
    message = _manager(FakeSMTP()).build_message(EMAIL)

    assert message["Subject"] == "Submission REJECTED: CASE-2024-004"
    text = message.get_body(preferencelist=("plain",)).get_content()
    html_body = message.get_body(preferencelist=("html",)).get_content()
    assert "Reviewed by: Dr Owner" in text
    assert 'Teacher\'s Comments: "Missing examination findings"' in text
    assert "/learner/logpage?id=log-1" in text
    assert "Asha &lt;Learner&gt;" in html_body
    assert "#f44336" in html_body


def _log(status, email="asha@uni.edu"):
    return SimpleNamespace(
        log_id="log-1",
        case_no="CASE-2024-004",
        status=status,
        rejection_reason="Missing examination findings",
        teacher_comments="Good history",
        created_by=SimpleNamespace(name="Asha", email=email),
    )


class TestFromLog:
    def test_rejected_uses_reason(self):
        email = SubmissionStatusEmail.from_log(_log(LogStatus.REJECTED), "Dr Owner")
        assert email.status == "rejected"
        assert email.comments == "Missing examination findings"

    def test_approved_uses_comments(self):
        email = SubmissionStatusEmail.from_log(_log(LogStatus.APPROVED))
        assert email.status == "approved"
        assert email.comments == "Good history"

    @pytest.mark.parametrize("status", [LogStatus.DRAFT, LogStatus.SUBMITTED, LogStatus.RESUBMITTED])
    def test_unreviewed_logs_send_nothing(self, status):
        assert SubmissionStatusEmail.from_log(_log(status)) is None

    def test_learner_without_email(self):
        assert SubmissionStatusEmail.from_log(_log(LogStatus.APPROVED, email=None)) is None
