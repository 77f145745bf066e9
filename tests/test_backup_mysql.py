import pytest

from dbbackup.errors import CommandError
from dbbackup.mysql import InstanceGroup, MysqlClient, parse_batch


def _client(env, name="a"):
    return MysqlClient(env.runner, env.config.mysql_client, env.config.instance(name))


def test_parse_batch_pads_short_rows():
    rows = parse_batch("File\tPosition\tBinlog_Do_DB\nbin.000003\t154\n")

    assert rows == [{"File": "bin.000003", "Position": "154", "Binlog_Do_DB": ""}]
    assert parse_batch("") == []


def test_master_and_slave_status(env):
    client = _client(env)

    assert client.master_status() == ("bin.000001", 154)
    assert client.slave_status()["Exec_Master_Log_Pos"] == "4711"


def test_statements_target_the_instance_socket(env):
    client = _client(env, "b")
    client.flush_logs()

    argv = env.runner.calls[-1]
    assert f"--socket={env.config.instance('b').socket}" in argv
    assert argv[-2:] == ["-e", "FLUSH LOGS"]
    assert env.server("b").active_log == "bin.000002"
    assert env.server("a").active_log == "bin.000001"


def test_status_text_uses_vertical_output(env):
    text = _client(env).status_text("SHOW MASTER STATUS")

    assert "File: bin.000001" in text
    assert env.runner.calls[-1][-1] == "SHOW MASTER STATUS\\G"


def test_failed_statement_raises(env):
    env.runner.fail_when("mysql", "STOP SLAVE")

    with pytest.raises(CommandError, match="a: STOP SLAVE"):
        _client(env).stop_replication()


def test_instance_group_uses_supervisor_commands(env):
    group = InstanceGroup(env.runner, env.config.restore.start_command, env.config.restore.stop_command)

    group.stop()
    assert env.runner.group_running is False
    group.start()
    assert env.runner.group_running is True
