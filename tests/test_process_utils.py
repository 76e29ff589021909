import os
import asyncio

import pytest

from hydra.local.errors import ConfigurationError
from hydra.local.topology import Configuration, parse_topology
from hydra.local.supervisor import ProcessSupervisor
from hydra.local.supervisor.process_utils import (
    ProcessRecord, descendants_of, forward_output, get_launch_spec, snapshot_process_table, to_env_string,
    write_dotenv,
)


def _table(*rows):
    return [ProcessRecord(pid=pid, parent_pid=ppid, command=cmd) for pid, ppid, cmd in rows]


def test_descendants_of_returns_subtree_in_discovery_order():
    table = _table((1, 0, "a"), (2, 1, "b"), (3, 2, "c"), (4, 0, "d"))
    assert [r.pid for r in descendants_of(1, table)] == [1, 2, 3]


def test_descendants_are_pre_order_with_siblings_in_table_order():
    table = _table((10, 1, "sh"), (11, 10, "npm"), (12, 11, "node"), (13, 10, "watch"), (14, 13, "tsc"))
    assert [r.pid for r in descendants_of(10, table)] == [10, 11, 12, 13, 14]


def test_unknown_root_yields_nothing():
    assert descendants_of(99, _table((1, 0, "a"))) == []


def test_pid_matching_is_string_based():
    table = [ProcessRecord(pid="7", parent_pid="1", command="x"), ProcessRecord(pid="8", parent_pid="7", command="y")]
    assert [r.pid for r in descendants_of(7, table)] == ["7", "8"]


def test_parent_cycles_do_not_repeat_processes():
    table = _table((1, 2, "a"), (2, 1, "b"), (3, 2, "c"))
    assert [r.pid for r in descendants_of(1, table)] == [1, 2, 3]


def test_deep_chains_are_walked_without_recursion():
    rows = [(pid, pid - 1, f"p{pid}") for pid in range(1, 5001)]
    assert len(descendants_of(1, _table(*rows))) == 5000


def test_snapshot_contains_current_process():
    records = snapshot_process_table()
    me = [r for r in records if r.pid == os.getpid()]
    assert me and me[0].parent_pid == os.getppid()


def test_filtered_snapshot_skips_missing_pids():
    records = snapshot_process_table([os.getpid(), 2 ** 22 + 12345])
    assert [r.pid for r in records] == [os.getpid()]


def test_env_strings():
    assert to_env_string(True) == "true"
    assert to_env_string(False) == "false"
    assert to_env_string(None) == ""
    assert to_env_string(8080) == "8080"
    assert to_env_string("x") == "x"


def test_write_dotenv_has_no_trailing_newline(tmp_path):
    path = write_dotenv(str(tmp_path), {"A": "1", "B": 2, "C": True})
    assert path == tmp_path / ".env"
    assert path.read_text(encoding="utf-8") == "A=1\nB=2\nC=true"


def test_write_dotenv_overwrites(tmp_path):
    (tmp_path / ".env").write_text("OLD=1\n")
    write_dotenv(str(tmp_path), {"NEW": "2"})
    assert (tmp_path / ".env").read_text() == "NEW=2"


def test_launch_spec_resolves_templates_and_dependencies():
    configuration = Configuration(parse_topology([
        {"name": "db", "modes": [{"name": "local", "config": {"url": "pg://{DB_HOST=localhost}"}}]},
        {"name": "api", "modes": [{
            "name": "local",
            "run": {"command": "serve --port {PORT}", "location": "{ROOT}/api", "shell": "{SHELL_BIN=/bin/bash}"},
            "dependencies": {"env": {"DATABASE_URL": "db.url"}, "dotenv": {"DB": "db.url"}},
        }]},
    ]))
    supervisor = ProcessSupervisor(configuration, environ={"PORT": "9000", "ROOT": "/srv", "KEEP": "1"})
    launch = get_launch_spec(supervisor, configuration.get_selected_mode("api"))

    assert launch.command == "serve --port 9000"
    assert launch.location == "/srv/api"
    assert launch.shell == "/bin/bash"
    assert launch.env == {"PORT": "9000", "ROOT": "/srv", "KEEP": "1", "DATABASE_URL": "pg://localhost"}
    assert launch.dotenv == {"DB": "pg://localhost"}


def test_launch_spec_defaults_to_bin_sh():
    configuration = Configuration(parse_topology([
        {"name": "web", "modes": [{"name": "local", "run": {"command": "make", "location": "."}}]},
    ]))
    supervisor = ProcessSupervisor(configuration, environ={})
    launch = get_launch_spec(supervisor, configuration.get_selected_mode("web"))
    assert launch.shell == "/bin/sh"
    assert launch.dotenv is None


def test_launch_spec_rejects_off_mode():
    configuration = Configuration(parse_topology([{"name": "web", "modes": [{"name": "off"}]}]))
    supervisor = ProcessSupervisor(configuration, environ={})
    with pytest.raises(ConfigurationError):
        get_launch_spec(supervisor, configuration.get_selected_mode("web"))


def test_lines_beyond_the_stream_limit_arrive_in_pieces(loop):
    lines = []

    async def _read():
        stream = asyncio.StreamReader(limit=16)
        task = asyncio.ensure_future(forward_output(stream, "svc", lambda service, line: lines.append(line)))
        stream.feed_data(b"abcdefghijklmnopqrstuvwxyz\nok\n")
        await asyncio.sleep(0)
        stream.feed_data(b"a" * 40)
        await asyncio.sleep(0)
        stream.feed_data(b"b\ntail")
        stream.feed_eof()
        await task

    loop.run_until_complete(_read())
    assert lines == ["abcdefghijklmnopqrstuvwxyz", "ok", "a" * 40, "b", "tail"]
