import io

import pytest

from lockbox.config.config_lockbox import *
from lockbox.config.settings import Settings
from lockbox.utils.command_utils import run


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in (CONFIG_ENV, "XDG_CONFIG_HOME", NO_COLOR_ENV, "WAYLAND_DISPLAY", "DISPLAY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv(STATE_ENV, str(tmp_path / "state"))


@pytest.fixture
def settings(tmp_path):
    s = Settings()
    s.set(STORE, str(tmp_path / "test.kdbx"))
    s.set(PASSWORD_MODE, KEY_MODE_PLAINTEXT)
    s.set(PASSWORD, ["pw"])
    return s


@pytest.fixture
def lb(settings):
    """Run a command, returning its stdout."""
    def runner(*args, stdin=""):
        out = io.StringIO()
        run(list(args), settings, stdin=io.StringIO(stdin), stdout=out)
        return out.getvalue()
    return runner
