import io

import pytest

from lockbox import Lockbox_CLI
from lockbox.config.config_lockbox import *
from lockbox.config.logging_config import log_file


@pytest.fixture
def config(tmp_path, monkeypatch):
    path = tmp_path / "config.toml"
    store = tmp_path / "cli.kdbx"

    def write(readonly=False):
        path.write_text(
            f'store = "{store.as_posix()}"\n'
            f"readonly = {str(readonly).lower()}\n"
            "[credentials]\n"
            'password_mode = "plaintext"\n'
            'password = ["pw"]\n'
        )
    write()
    monkeypatch.setenv(CONFIG_ENV, str(path))
    return write


def lb(monkeypatch, *args, stdin=""):
    monkeypatch.setattr("sys.stdin", io.StringIO(stdin))
    return Lockbox_CLI.main(list(args))


def test_success_and_output(config, monkeypatch, capsys):
    assert lb(monkeypatch, "insert", "a/b/password", stdin="hunter2") == 0
    assert lb(monkeypatch, "show", "a/b/password") == 0
    assert capsys.readouterr().out == "hunter2\n"


def test_failure_reports_kind(config, monkeypatch, capsys):
    config(readonly=True)
    assert lb(monkeypatch, "insert", "a/b/password", stdin="x") == 1
    assert capsys.readouterr().err == "readonly: unable to alter database in readonly mode\n"


def test_unknown_command(config, monkeypatch, capsys):
    assert lb(monkeypatch, "bogus") == 1
    assert capsys.readouterr().err == "error: unknown command: bogus\n"
    assert lb(monkeypatch) == 1


def test_bad_config(tmp_path, monkeypatch, capsys):
    path = tmp_path / "bad.toml"
    path.write_text("nosuchkey = 1\n")
    monkeypatch.setenv(CONFIG_ENV, str(path))
    assert lb(monkeypatch, "version") == 1
    assert capsys.readouterr().err.startswith("invalid configuration:")


def test_info_without_store(monkeypatch, capsys):
    assert lb(monkeypatch, "version") == 0
    assert capsys.readouterr().out == f"version: {VERSION}\n"


def test_log_location(tmp_path):
    assert log_file() == tmp_path / "state" / "lockbox" / "error.log"


def test_interrupt_reported(config, monkeypatch, capsys):
    def interrupted(*args, **kwargs):
        raise KeyboardInterrupt

    monkeypatch.setattr(Lockbox_CLI, "run", interrupted)
    assert lb(monkeypatch, "ls") == 1
    assert capsys.readouterr().err == "cancelled: interrupted\n"
