import socket

import requests

from dbbackup.config import BackupConfig
from dbbackup.notify import Notifier


class _Response:
    def __init__(self, status_code):
        self.status_code = status_code


def _notifier(env, **notify):
    config = BackupConfig.from_settings({"notify": notify, "commands": {"mail": "mail"}})
    return Notifier(config.notify, config.commands, env.runner, clock=env.clock)


def test_failure_mails_every_address(env):
    _notifier(env, emails=["one@example.org", "two@example.org"]).failure("full", "snapshot failed")

    assert len(env.runner.mails) == 2
    argv, body = env.runner.mails[0]
    assert argv == ["mail", "-s", f"{socket.gethostname()} dbbackup full failed", "one@example.org"]
    assert body == "2026-10-18 03:00:00  snapshot failed\n"


def test_webhook_posts_json(env, monkeypatch):
    posted = []

    def fake_post(url, json=None, timeout=None):
        posted.append((url, json, timeout))
        return _Response(204)

    monkeypatch.setattr(requests, "post", fake_post)
    _notifier(env, webhook_url="https://hooks.example.org/T000/secret", timeout_s=3).failure("archive", "too small")

    assert len(posted) == 1
    url, payload, timeout = posted[0]
    assert url == "https://hooks.example.org/T000/secret"
    assert payload["command"] == "archive"
    assert payload["subject"].endswith("dbbackup archive failed")
    assert timeout == 3.0


def test_delivery_errors_are_not_raised(env, monkeypatch):
    def broken_post(url, json=None, timeout=None):
        raise requests.ConnectionError("unreachable")

    monkeypatch.setattr(requests, "post", broken_post)
    env.runner.fail_when("mail")

    _notifier(env, emails=["dba@example.org"], webhook_url="https://hooks.example.org/x").failure("full", "boom")

    assert env.runner.mails == []
