from fastapi import BackgroundTasks

from trackmap import notifications


class FailingMail:
    def __init__(self, config):
        pass

    async def send_message(self, message):
        raise ConnectionRefusedError("smtp down")


class RecordingMail:
    sent: list = []

    def __init__(self, config):
        pass

    async def send_message(self, message):
        RecordingMail.sent.append(message)


def test_send_email_reports_failure(monkeypatch, session_loop):
    monkeypatch.setattr(notifications, "FastMail", FailingMail)
    ok = session_loop.run_until_complete(
        notifications.send_email("rider@example.com", "Hi", "<p>Hi</p>")
    )
    assert ok is False


def test_send_email_reports_success(monkeypatch, session_loop):
    RecordingMail.sent = []
    monkeypatch.setattr(notifications, "FastMail", RecordingMail)
    ok = session_loop.run_until_complete(
        notifications.send_email("rider@example.com", "Hi", "<p>Hi</p>")
    )
    assert ok is True
    assert RecordingMail.sent[0].recipients[0].email == "rider@example.com"


def test_email_changed_task_notifies_both(outbox, session_loop):
    results = session_loop.run_until_complete(
        notifications.send_email_changed_task("old@example.com", "new@example.com", "rider")
    )
    assert results == [True, True]
    assert [mail["to"] for mail in outbox] == ["old@example.com", "new@example.com"]
    assert "new@example.com" in outbox[0]["body"]


def test_templates_escape_user_input():
    _, body = notifications.welcome_email("<script>alert(1)</script>")
    assert "<script>" not in body
    assert "&lt;script&gt;" in body


def test_schedulers_add_background_tasks():
    tasks = BackgroundTasks()
    notifications.send_welcome_email(tasks, "rider@example.com", "rider")
    notifications.send_email_changed(tasks, "old@example.com", "new@example.com", "rider")
    assert [task.func for task in tasks.tasks] == [
        notifications.send_welcome_email_task,
        notifications.send_email_changed_task,
    ]
