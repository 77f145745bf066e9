import json

import pytest

from dbbackup import cli


def _write_settings(env, **overrides):
    settings = dict(env.settings)
    settings.update(overrides)
    path = env.tmp_path / "settings.json"
    path.write_text(json.dumps(settings), encoding="utf-8")
    return str(path)


def test_usage_errors_exit_with_2(capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.main([])
    assert excinfo.value.code == 2

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["backup-everything"])
    assert excinfo.value.code == 2


def test_status_without_current_exits_1(env, capsys):
    code = cli.main(["--config", _write_settings(env), "status", "current"])

    assert code == 1
    assert "Current backup directory does not exist" in capsys.readouterr().out


def test_status_defaults_to_all(env, capsys):
    env.make_set("2026-10-17_03.00.00", current=True)

    code = cli.main(["--config", _write_settings(env), "status"])

    out = capsys.readouterr().out
    assert code == 0
    assert "Zero archived backups." in out
    assert "Current backup status:" in out


def test_delete_succeeds(env):
    assert cli.main(["--config", _write_settings(env), "delete"]) == 0
    assert not env.config.pidfile.exists()


def test_missing_settings_file(env, capsys):
    code = cli.main(["--config", str(env.tmp_path / "missing.json"), "status"])

    assert code == 1
    assert "cannot load settings" in capsys.readouterr().err


def test_mutating_commands_require_root(env, monkeypatch):
    monkeypatch.setattr(cli.os, "geteuid", lambda: 1000)
    path = _write_settings(env, require_root=True)

    assert cli.main(["--config", path, "delete"]) == 1
    assert cli.main(["--config", path, "status", "archive"]) == 0


def test_failed_command_exits_1(env):
    env.make_set("2026-10-17_03.00.00")
    path = _write_settings(env, archive={"minimum_bytes": 10 ** 12})

    assert cli.main(["--config", path, "archive"]) == 1


def test_status_rejects_unknown_scope(env, capsys):
    path = _write_settings(env)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--config", path, "status", "nightly"])

    assert excinfo.value.code == 2
    assert "unknown status scope 'nightly'" in capsys.readouterr().err


def test_status_accepts_an_instance_name(env, capsys):
    env.make_set("2026-10-17_03.00.00", current=True)

    assert cli.main(["--config", _write_settings(env), "status", "b"]) == 0
    assert "b Size:" in capsys.readouterr().out
